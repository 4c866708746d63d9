"""Graph runner: the supervisor as a whole, one instance per user.

Wraps the compiled router graph with per-session threads and the turn
budgets. A turn that runs past the LangGraph recursion limit or the wall
clock budget ends with an apology that is written into the thread as if the
``limit_reached`` node had produced it, so the next turn starts clean.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from langchain_core.messages import HumanMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.errors import GraphRecursionError
from langgraph.graph import END

from grocery_router import config
from grocery_router.graph import RouterResources, build_graph
from grocery_router.messages import annotate, assistant_message, is_ephemeral, message_text
from grocery_router.nodes import BUDGET_APOLOGY
from grocery_router.planner import planner_cache_prefix

logger = logging.getLogger(__name__)


def final_reply(state: Optional[dict]) -> str:
    """Text of the last permanent assistant message in *state*."""
    for entry in reversed((state or {}).get("messages") or []):
        if entry.get("role") != "assistant" or is_ephemeral(entry):
            continue
        if entry.get("agent") == "planner":
            continue
        text = message_text(entry)
        if text:
            return text
    return ""


class SupervisorAgent:
    """Per-user entry point: ``chat``, ``stream`` and session management."""

    def __init__(
        self,
        user_id: str = config.DEFAULT_USER_ID,
        resources: Optional[RouterResources] = None,
        *,
        recursion_limit: int = config.GRAPH_RECURSION_LIMIT,
        turn_timeout: float = config.TURN_TIMEOUT_SECONDS,
    ):
        self.user_id = user_id
        self.resources = resources or RouterResources.default(user_id)
        self.recursion_limit = recursion_limit
        self.turn_timeout = turn_timeout
        self._checkpointer = MemorySaver()
        self._graph = build_graph(self.resources, self._checkpointer)
        self._sessions: set[str] = set()

    # ── Threads ───────────────────────────────────────────────────────────

    def thread_id(self, session_id: Optional[str] = None) -> str:
        return f"supervisor-{self.user_id}-{session_id or 'default'}"

    def _config(self, session_id: Optional[str]) -> dict:
        return {
            "configurable": {"thread_id": self.thread_id(session_id)},
            "recursion_limit": self.recursion_limit,
        }

    def _turn_input(self, message: str, session_id: Optional[str]) -> dict:
        self._sessions.add(session_id or "default")
        return {
            "messages": [annotate(HumanMessage(content=message), "user", sender_id=self.user_id)],
            "userId": self.user_id,
            "conversationId": session_id or "default",
            # Budget and planner verdict are per turn
            "delegationDepth": None,
            "plannerRecommendation": None,
        }

    async def _abort_turn(self, run_config: dict, exc: BaseException) -> dict:
        """Persist the budget apology and return it as an annotated message."""
        logger.warning("Turn aborted on %s: %s", run_config["configurable"]["thread_id"], exc or type(exc).__name__)
        apology = assistant_message(BUDGET_APOLOGY, agent="supervisor")
        try:
            await self._graph.aupdate_state(
                run_config,
                {"messages": [apology], "workflowContext": None, "next": END},
                as_node="limit_reached",
            )
        except Exception:
            logger.exception("Could not record the budget apology in the thread")
        return apology

    # ── Turns ─────────────────────────────────────────────────────────────

    async def chat(self, message: str, session_id: Optional[str] = None) -> dict:
        """Run one turn and return the resulting conversation state."""
        run_config = self._config(session_id)
        try:
            return await asyncio.wait_for(
                self._graph.ainvoke(self._turn_input(message, session_id), config=run_config),
                self.turn_timeout,
            )
        except (GraphRecursionError, asyncio.TimeoutError) as exc:
            apology = await self._abort_turn(run_config, exc)
            state = await self.get_current_state(session_id)
            return state or {"messages": [apology], "userId": self.user_id}

    async def stream(self, message: str, session_id: Optional[str] = None) -> AsyncIterator[dict]:
        """Yield ``{node: fragment}`` updates as the turn advances.

        Progress entries arrive in the fragments' ``messages`` like any other
        entry; a budget abort yields a final ``limit_reached`` update.
        """
        run_config = self._config(session_id)
        updates = self._graph.astream(
            self._turn_input(message, session_id), config=run_config, stream_mode="updates"
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.turn_timeout
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    update = await asyncio.wait_for(updates.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                yield update
        except (GraphRecursionError, asyncio.TimeoutError) as exc:
            apology = await self._abort_turn(run_config, exc)
            yield {"limit_reached": {"messages": [apology], "next": END}}
        finally:
            await updates.aclose()

    def invoke(self, message: str, session_id: Optional[str] = None) -> dict:
        """Blocking variant of :meth:`chat` for scripts."""
        return asyncio.run(self.chat(message, session_id))

    # ── Sessions ──────────────────────────────────────────────────────────

    async def get_current_state(self, session_id: Optional[str] = None) -> dict:
        snapshot = await self._graph.aget_state(self._config(session_id))
        return dict(snapshot.values) if snapshot and snapshot.values else {}

    async def clear_session(self, session_id: Optional[str] = None) -> None:
        """Discard the checkpointed thread and cached classifications."""
        await self._checkpointer.adelete_thread(self.thread_id(session_id))
        self.resources.cache.invalidate_prefix(
            planner_cache_prefix(self.user_id, session_id or "default")
        )
        self._sessions.discard(session_id or "default")
        logger.info("Cleared session %s", self.thread_id(session_id))

    def get_active_sessions(self) -> list[str]:
        return sorted(self._sessions)

    def health_check(self) -> dict:
        return {
            "status": "ok",
            "userId": self.user_id,
            "activeSessions": len(self._sessions),
            "cacheEntries": len(self.resources.cache),
            "circuitKeys": len(self.resources.circuit_breaker),
            "oracle": type(self.resources.oracle).__name__,
            "specialists": sorted(self.resources.specialists),
        }
