"""Request admission: bot heuristic, geography, rate limiting, pipeline."""

from credit_gate.security.bot import BotClassifier, UserAgentHeuristic, is_bot
from credit_gate.security.geo import CountryLookup, GeoResolver, NetworkTableLookup
from credit_gate.security.pipeline import (
    AdmissionPipeline,
    AdmissionPolicy,
    Decision,
    OrderFields,
    RejectReason,
    RequestContext,
)
from credit_gate.security.rate_limiter import (
    CounterRecord,
    CounterStore,
    FileCounterStore,
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    RedisCounterStore,
    sanitize_key,
)

__all__ = [
    "AdmissionPipeline",
    "AdmissionPolicy",
    "BotClassifier",
    "CounterRecord",
    "CounterStore",
    "CountryLookup",
    "Decision",
    "FileCounterStore",
    "FixedWindowRateLimiter",
    "GeoResolver",
    "InMemoryCounterStore",
    "NetworkTableLookup",
    "OrderFields",
    "RedisCounterStore",
    "RejectReason",
    "RequestContext",
    "UserAgentHeuristic",
    "is_bot",
    "sanitize_key",
]
