# =============================================================================
# Database Package — Async SQLAlchemy engine, sessions and ORM models
# =============================================================================
