# =============================================================================
# Agents Package — Five-Stage Remote Analysis Pipeline
# =============================================================================
#   - pipeline.py: per-conversation state machine (gates, feedback, cancel)
#   - orchestrator.py: LangGraph auto-chain for stages 2 → 5
#   - stages.py: stage descriptors and request body composition
#   - decoder.py: normalises agent payloads, incl. repr-style evaluator text
#   - transcript.py: ordered log of user/assistant turns
#   - formatter.py: markdown rendering and table/card projections
# =============================================================================
