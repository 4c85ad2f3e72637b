"""Admission gate for the embedded buy-on-credit widget."""
