"""LangGraph graph construction.

Builds the hub-and-spoke router:

    ┌─────────┐     ┌────────────┐  next   ┌──────────────────────┐
    │ planner │ ──▶ │ supervisor │ ──────▶ │ catalog / deals /    │
    └─────────┘     └────────────┘ ◀────── │ cart_and_checkout /  │
         ▲               ▲   │   hand back │ payment              │
         │               │   │             └──────────────────────┘
    new request    pending   ├─▶ notification_agent ──▶ END
                   workflow  ├─▶ limit_reached ──────▶ END
                             └─▶ END

A turn that resumes a workflow waiting on the user (deal confirmation) or on
the router itself (notification handoff) enters at the supervisor; every
other turn is classified by the planner first. Specialists only ever return
to the supervisor or end the turn.
"""

from dataclasses import dataclass, field
from typing import Optional

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph

from grocery_router import config
from grocery_router.cache import ResultCache
from grocery_router.continuation import ContinuationDetector
from grocery_router.extraction import ProductExtractor
from grocery_router.guardrails import CircuitBreaker, RoutingLogger
from grocery_router.nodes import (
    limit_reached_node,
    make_cart_node,
    make_deals_node,
    make_notification_node,
    make_specialist_node,
)
from grocery_router.notifier import build_notifier
from grocery_router.oracle import build_chat_model, get_default_oracle
from grocery_router.planner import make_planner_node
from grocery_router.state import SPECIALIST_AGENTS, ConversationState
from grocery_router.supervisor import SupervisorRouter

# Specialists the supervisor delegates to through a tool-using executor
EXECUTOR_AGENTS = ("catalog", "deals", "cart_and_checkout", "payment")


@dataclass
class RouterResources:
    """Everything the router nodes share: oracle, caches, collaborators."""

    oracle: object
    specialists: dict
    notifier: object
    cache: ResultCache = field(default_factory=ResultCache)
    circuit_breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    routing_logger: RoutingLogger = field(default_factory=RoutingLogger)
    continuation: Optional[ContinuationDetector] = None
    extractor: Optional[ProductExtractor] = None

    def __post_init__(self):
        if self.continuation is None:
            self.continuation = ContinuationDetector(self.oracle, self.cache)
        if self.extractor is None:
            self.extractor = ProductExtractor(self.oracle, self.cache)
        missing = [name for name in EXECUTOR_AGENTS if name not in self.specialists]
        if missing:
            raise ValueError(f"Missing specialist executors: {', '.join(missing)}")

    @classmethod
    def default(cls, user_id: str = config.DEFAULT_USER_ID) -> "RouterResources":
        """Gemini-backed resources (scripted oracle without credentials)."""
        from grocery_router.specialists import build_specialists

        oracle = get_default_oracle()
        breaker = CircuitBreaker()
        model = build_chat_model() if config.GOOGLE_API_KEY else oracle
        return cls(
            oracle=oracle,
            specialists=build_specialists(model, circuit_breaker=breaker, user_id=user_id),
            notifier=build_notifier(),
            circuit_breaker=breaker,
        )


def _route_start(state: dict) -> str:
    """Skip the planner when a workflow is waiting on this turn."""
    workflow_context = state.get("workflowContext")
    if workflow_context == "send_notification":
        return "supervisor"
    if workflow_context == "awaiting_deal_confirmation" and state.get("pendingProduct"):
        return "supervisor"
    return "planner"


def _route_supervisor(state: dict) -> str:
    return state.get("next") or END


def _after_specialist(state: dict) -> str:
    """Hub-and-spoke: a specialist hands back to the supervisor or ends."""
    if state.get("next") == "supervisor":
        return "supervisor"
    return END


def build_graph(resources: Optional[RouterResources] = None, checkpointer=None):
    """Construct and compile the router graph."""
    resources = resources or RouterResources.default()
    workflow = StateGraph(ConversationState)

    supervisor = SupervisorRouter(
        resources.oracle,
        resources.cache,
        resources.continuation,
        resources.extractor,
        routing_logger=resources.routing_logger,
    )

    # ── Nodes ──────────────────────────────────────────────────────────────
    workflow.add_node("planner", make_planner_node(resources.oracle, resources.cache))
    workflow.add_node("supervisor", supervisor.route)
    workflow.add_node("catalog", make_specialist_node("catalog", resources.specialists["catalog"]))
    workflow.add_node("payment", make_specialist_node("payment", resources.specialists["payment"]))
    workflow.add_node(
        "deals",
        make_deals_node(resources.specialists["deals"], resources.extractor, resources.cache),
    )
    workflow.add_node(
        "cart_and_checkout",
        make_cart_node(resources.specialists["cart_and_checkout"], resources.cache),
    )
    workflow.add_node("notification_agent", make_notification_node(resources.notifier))
    workflow.add_node("limit_reached", limit_reached_node)

    # ── Edges ──────────────────────────────────────────────────────────────
    workflow.set_conditional_entry_point(
        _route_start,
        {"planner": "planner", "supervisor": "supervisor"},
    )
    workflow.add_edge("planner", "supervisor")

    workflow.add_conditional_edges(
        "supervisor",
        _route_supervisor,
        {
            **{name: name for name in SPECIALIST_AGENTS},
            "limit_reached": "limit_reached",
            END: END,
        },
    )

    for name in EXECUTOR_AGENTS:
        workflow.add_conditional_edges(
            name,
            _after_specialist,
            {"supervisor": "supervisor", END: END},
        )

    workflow.add_edge("notification_agent", END)
    workflow.add_edge("limit_reached", END)

    # ── Compile with checkpointing ─────────────────────────────────────────
    return workflow.compile(checkpointer=checkpointer or MemorySaver())
