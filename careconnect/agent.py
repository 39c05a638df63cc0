"""The AI part of a turn as a LangGraph state machine.

Architecture:
  A compiled ``StateGraph`` with three nodes runs once per user message
  that reaches the AI (after dedup, echo and mode gating):

    1. **decide**        one oracle call returning ANSWER or CALL_FUNCTION
    2. **execute_tool**  runs the requested tool (only for CALL_FUNCTION)
    3. **respond**       second oracle call that writes the reply

  Routing:
    decide → (CALL_FUNCTION?) → execute_tool → respond → END
    decide → (ANSWER?)        → respond → END

  State:
    The graph holds no memory between turns.  Conversation history and
    the session live in storage and are read by the decision/response
    adapters; the orchestrator persists the outcome.

  Intent state:
    Some tool outcomes force the intent state used while writing the
    reply (``time_slot_available`` → AWAITING_INFO, ``booking_confirmed``
    → IDLE).  The orchestrator persists the decision's ``next_state``
    when the oracle declared one and ``response_state`` otherwise.
"""

from __future__ import annotations

import logging

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from careconnect.decision import DecisionMaker
from careconnect.models import CallFunction, Decision, IntentState, ToolAction, ToolResult
from careconnect.responder import Responder
from careconnect.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

FORCED_RESPONSE_STATES: dict[ToolAction, IntentState] = {
    ToolAction.TIME_SLOT_AVAILABLE: IntentState.AWAITING_INFO,
    ToolAction.BOOKING_CONFIRMED: IntentState.IDLE,
}


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """Values flowing through one turn.

    The first five keys are inputs; ``decision``, ``tool_result`` and
    ``reply`` are filled in by the nodes.
    """

    user_input: str
    user_id: str
    user_chat_id: str
    language: str
    intent_state: IntentState
    decision: Decision
    tool_result: ToolResult | None
    response_state: IntentState
    reply: str


def response_state_for(intent_state: IntentState, tool_result: ToolResult | None) -> IntentState:
    """Intent state to present to the response call after *tool_result*."""
    if tool_result is not None and tool_result.success:
        return FORCED_RESPONSE_STATES.get(tool_result.action, intent_state)
    return intent_state


# ── Nodes ────────────────────────────────────────────────────────────


def _make_decide_node(decision_maker: DecisionMaker):
    async def decide_node(state: TurnState) -> dict:
        decision = await decision_maker.decide(
            state["user_input"], state["user_id"], state["language"], state["intent_state"],
        )
        return {"decision": decision, "tool_result": None}

    return decide_node


def _make_tool_node(executor: ToolExecutor):
    async def execute_tool_node(state: TurnState) -> dict:
        decision = state["decision"]
        result = await executor.execute(
            decision.function_name,
            decision.parameters,
            user_id=state["user_id"],
            user_chat_id=state["user_chat_id"],
        )
        logger.info("[%s] Tool %s -> %s", state["user_id"], decision.function_name, result.action.value)
        return {"tool_result": result}

    return execute_tool_node


def _make_respond_node(responder: Responder):
    async def respond_node(state: TurnState) -> dict:
        tool_result = state.get("tool_result")
        response_state = response_state_for(state["intent_state"], tool_result)
        reply = await responder.respond(
            state["user_input"],
            tool_result,
            state["language"],
            state["decision"],
            response_state,
            state["user_id"],
        )
        return {"reply": reply, "response_state": response_state}

    return respond_node


# ── Conditional edges ────────────────────────────────────────────────


def should_execute_tool(state: TurnState) -> str:
    if isinstance(state.get("decision"), CallFunction):
        return "execute_tool"
    return "respond"


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(decision_maker: DecisionMaker, executor: ToolExecutor, responder: Responder):
    """Build and compile the per-turn graph.

    Invoke with::

        await graph.ainvoke({"user_input": ..., "user_id": ..., "user_chat_id": ...,
                             "language": "ko", "intent_state": IntentState.IDLE})
    """
    graph = StateGraph(TurnState)

    graph.add_node("decide", _make_decide_node(decision_maker))
    graph.add_node("execute_tool", _make_tool_node(executor))
    graph.add_node("respond", _make_respond_node(responder))

    graph.set_entry_point("decide")
    graph.add_conditional_edges(
        "decide", should_execute_tool, {"execute_tool": "execute_tool", "respond": "respond"},
    )
    graph.add_edge("execute_tool", "respond")
    graph.add_edge("respond", END)

    compiled = graph.compile()
    logger.debug("Turn graph compiled with tools: %s", ", ".join(executor.tool_names))
    return compiled
