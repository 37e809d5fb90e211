# =============================================================================
# Services Package — Outbound integrations
# =============================================================================
#   - agent_client.py: one HTTP call per pipeline stage
#   - identity.py: hosted identity service (current user, sign-out)
#   - documents.py: upload validation, storage and download links
# =============================================================================
