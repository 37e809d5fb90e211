# =============================================================================
# Models Package — Pydantic V2 request/response schemas for the API
# =============================================================================
