# =============================================================================
# InsureChat VN
# =============================================================================
# An insurance analysis assistant. One user query runs through five remote
# analysis agents; a human approves (or sends feedback on) the first and the
# last stage.
#
# Package structure:
#   insurechat/
#   ├── agents/       → pipeline state machine, LangGraph auto-chain, stage
#   │                    catalogue, response decoder, transcript, formatter
#   ├── api/          → FastAPI route handlers (conversations, documents, auth)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Remote agent client, identity client, document store
# =============================================================================
