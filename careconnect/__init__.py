"""CareConnect AI: a ChannelTalk chat assistant for an aesthetic clinic.

Architecture Overview
=====================

Every inbound ChannelTalk webhook event goes through the
**orchestrator** (``careconnect/orchestrator.py``), a fixed sequence of
stages with early returns:

1. **Filters**: system logs, empty messages, duplicates (``processed:`` cache
   marker), the bot's own messages and echoes of our own sends.
2. **Mode gate**: a manager message hands the chat to a human (``//`` hands it
   back); attachments go to a human with a notice; HUMAN_MODE older than
   30 minutes returns to the AI with one notice.
3. **AI turn**: a LangGraph ``StateGraph`` (``careconnect/agent.py``):

       decide → (CALL_FUNCTION?) → execute_tool → respond → END

4. **Send + persist**: the reply is sent with echo bookkeeping, logged,
   and the oracle's ``nextState`` is persisted.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``, called twice per turn: a
  strict-JSON decision (ANSWER / CALL_FUNCTION) and the final reply.
  Near-JSON output is repaired by ``careconnect/json_repair.py``.
- **Retrieval**: Voyage embeddings with a deterministic keyword fallback.
- **Calendar**: Google Calendar v3 REST (freebusy + events.insert).
- **Resilience**: every REST client shares exponential-backoff retries,
  and every downstream failure ends in a localized apology, never silence.
- **Reply length**: at most 250 characters, cut at a sentence ending.

Package Structure
-----------------
- ``careconnect/orchestrator.py``: webhook pipeline + wiring factory
- ``careconnect/agent.py``: per-turn LangGraph graph
- ``careconnect/decision.py`` / ``careconnect/responder.py``: the two oracle calls
- ``careconnect/tools/``: booking and handoff tools
- ``careconnect/idempotency.py``: dedup, echo suppression, sending
- ``careconnect/session.py``: session record and conversation log
- ``careconnect/services/``: cache, storage, metrics and API clients
- ``careconnect/api/``: FastAPI routes and Pydantic schemas
- ``careconnect/server.py`` / ``careconnect/main.py``: server and console
"""
