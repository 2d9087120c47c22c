"""Vulture whitelist: false positives that are actually used by frameworks or consumers."""

# ---------------------------------------------------------------------------
# Public API (used by consumers and tests, not internally)
# ---------------------------------------------------------------------------
from reacher_api.jwks import SigningKeyCache
from reacher_api.ratelimit import InMemoryStore

SigningKeyCache.cached
InMemoryStore.reset

# ---------------------------------------------------------------------------
# FastAPI route handlers (registered via decorators, not called directly)
# ---------------------------------------------------------------------------
_.user_endpoint
_.users_endpoint
_.verify_demo_endpoint
_.verify_bulk_endpoint
_.health
_.lifespan

# ---------------------------------------------------------------------------
# Pydantic / dataclass fields (used for serialization, not accessed in code)
# ---------------------------------------------------------------------------
_.deliverable
_.risky
_.undeliverable
_.unknown
_.summary
_.updated_at
_.iat
_.azp
_.scope
_.aud
_.iss

# ---------------------------------------------------------------------------
# SQLAlchemy / SQLModel hooks
# ---------------------------------------------------------------------------
_.__tablename__
_.impl
_.cache_ok
_.process_result_value
