# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - conversations.py: drive the pipeline (query, approve, feedback, cancel)
#   - documents.py: upload/list insurance documents, download links
#   - auth.py: current user and sign-out
#   - deps.py: authentication dependency
# =============================================================================
