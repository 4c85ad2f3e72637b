"""SQLAlchemy ORM models for the storefront registry."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class Calculator(Base):
    """One merchant credit-widget integration.

    ``name`` holds the storefront domain or URL as entered by an
    operator; it is not guaranteed to be well formed.
    """

    __tablename__ = "calculators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    unicid: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    type: Mapped[int] = mapped_column(Integer)
    dsk_status: Mapped[int] = mapped_column(Integer, default=0)
