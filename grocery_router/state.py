"""Conversation state definition.

The state is the shared record that flows through every node of the router
graph and survives across turns in the checkpointer. Each field carries its
own reducer: nodes return partial fragments and LangGraph merges them with
``reducer(old, new)`` between steps. A key missing from a fragment leaves the
field untouched; a key explicitly set to ``None`` is passed to the reducer,
which is how fields are cleared.
"""

import logging
import math
from typing import Annotated, Any, Optional, TypedDict

from langgraph.graph import END

from grocery_router import config
from grocery_router.messages import ensure_annotated, is_ephemeral, now_ms

logger = logging.getLogger(__name__)

# ── Names ─────────────────────────────────────────────────────────────────────

WORKFLOW_CONTEXTS = frozenset({
    "awaiting_deal_confirmation",
    "add_to_cart_with_deals",
    "add_to_cart_with_checkout",
    "check_deals",
    "prepare_checkout",
    "process_checkout",
    "send_notification",
})

CHECKOUT_CONTEXTS = frozenset({"prepare_checkout", "process_checkout"})

# Every specialist node in the graph
SPECIALIST_AGENTS = ("catalog", "deals", "cart_and_checkout", "payment", "notification_agent")

# Specialists the planner and the LLM fallback may pick directly
ROUTABLE_AGENTS = ("catalog", "cart_and_checkout", "payment", "deals")


class ProgressInfo(TypedDict):
    isProgressUpdate: bool
    step: str
    agent: str
    ephemeral: bool
    autoRemoveMs: int


class AnnotatedMessage(TypedDict, total=False):
    """A chat message plus routing metadata (see ``grocery_router.messages``)."""

    id: str
    message: Any
    role: str
    agent: str
    senderId: str
    timestamp: int
    progress: ProgressInfo
    recommendation: dict


class PlanRecommendation(TypedDict, total=False):
    action: str
    confidence: float
    reasoning: str
    task: str
    targetAgent: str
    autoApplyIntent: bool


class ContinuationAnalysis(TypedDict, total=False):
    isContinuation: bool
    continuationType: str
    targetAgent: str
    confidence: float
    reasoning: str


class ProductInfo(TypedDict, total=False):
    product: str
    quantity: float


# ── Reducers ──────────────────────────────────────────────────────────────────


def merge_messages(left: Optional[list], right: Any) -> list:
    """Append new entries, then cap permanent and ephemeral history separately.

    Entries are matched by ``id``: re-merging an entry that is already present
    replaces it in place, so replaying a fragment never duplicates history.
    """
    merged = [ensure_annotated(m) for m in (left or [])]
    if right is None:
        right = []
    elif not isinstance(right, list):
        right = [right]

    positions = {entry["id"]: i for i, entry in enumerate(merged)}
    for raw in right:
        entry = ensure_annotated(raw)
        pos = positions.get(entry["id"])
        if pos is None:
            positions[entry["id"]] = len(merged)
            merged.append(entry)
        else:
            merged[pos] = entry

    permanent = [m for m in merged if not is_ephemeral(m)]
    ephemeral = [m for m in merged if is_ephemeral(m)]
    return (
        permanent[-config.MAX_PERMANENT_MESSAGES:]
        + ephemeral[-config.MAX_EPHEMERAL_MESSAGES:]
    )


def merge_next(left: Optional[str], right: Optional[str]) -> str:
    return right or left or END


def merge_user_id(left: Optional[str], right: Optional[str]) -> str:
    if right:
        return right
    if left:
        return left
    logger.warning("No userId on conversation state, using %r", config.DEFAULT_USER_ID)
    return config.DEFAULT_USER_ID


def merge_conversation_id(left: Optional[str], right: Optional[str]) -> str:
    if right:
        return right
    if left:
        return left
    generated = f"conv-{now_ms()}"
    logger.warning("No conversationId on conversation state, generated %s", generated)
    return generated


def merge_cart_data(left: Optional[dict], right: Optional[dict]) -> Optional[dict]:
    if right is None:
        return None
    if not right:
        return left
    if not left:
        return right
    return {**left, **right}


def merge_workflow_context(left: Optional[str], right: Optional[str]) -> Optional[str]:
    if not right:
        return None
    if right not in WORKFLOW_CONTEXTS:
        logger.warning("Discarding unknown workflowContext %r, keeping %r", right, left)
        return left or None
    return right


def merge_deal_data(left: Optional[dict], right: Optional[dict]) -> Optional[dict]:
    if right is None:
        return None
    if not left:
        return right
    history = list(left.get("history") or []) + list(right.get("history") or [])
    return {**left, **right, "history": history}


def _clamp_depth(value: Any) -> int:
    return max(0, min(100, int(value)))


def merge_delegation_depth(left: Optional[int], right: Optional[int]) -> int:
    if right is None:
        return 0
    if isinstance(right, (int, float)) and not isinstance(right, bool) and math.isfinite(right):
        return _clamp_depth(right)
    logger.warning("Ignoring non-numeric delegationDepth %r", right)
    return _clamp_depth(left or 0)


def merge_pending_product(left: Optional[dict], right: Optional[dict]) -> Optional[dict]:
    if right is None:
        return None
    if not isinstance(right, dict) or "product" not in right:
        logger.warning("Discarding pendingProduct without 'product': %r", right)
        return left or None
    return right


def merge_notification_data(left: Optional[dict], right: Optional[dict]) -> Optional[dict]:
    if right is None:
        return None
    if not left:
        return right
    return {**left, **right}


def merge_planner_recommendation(left: Optional[dict], right: Optional[dict]) -> Optional[dict]:
    return right


class ConversationState(TypedDict, total=False):
    """Shared state for the router graph.

    Attributes:
        messages: Annotated messages; permanent history capped at 10 entries,
                  ephemeral progress entries capped at 5 and kept last.
        next: Node the supervisor routed to, or ``END``.
        userId: Owner of the conversation.
        conversationId: Conversation identifier used in cache keys.
        cartData: Last known cart snapshot.
        workflowContext: Which multi-step flow is in progress.
        dealData: Deal lookup outcome plus an append-only ``history``.
        delegationDepth: Specialist dispatches made during the current turn.
        pendingProduct: Product the current workflow is about.
        notificationData: Payload waiting for the notification agent.
        plannerRecommendation: The planner's verdict for the current turn.
    """

    messages: Annotated[list, merge_messages]
    next: Annotated[str, merge_next]
    userId: Annotated[str, merge_user_id]
    conversationId: Annotated[str, merge_conversation_id]
    cartData: Annotated[Optional[dict], merge_cart_data]
    # str/dict rather than Optional so the reducer also validates the first write
    workflowContext: Annotated[str, merge_workflow_context]
    dealData: Annotated[Optional[dict], merge_deal_data]
    delegationDepth: Annotated[int, merge_delegation_depth]
    pendingProduct: Annotated[dict, merge_pending_product]
    notificationData: Annotated[Optional[dict], merge_notification_data]
    plannerRecommendation: Annotated[Optional[dict], merge_planner_recommendation]


def carry_identity(state: dict) -> dict:
    """Fields every node fragment re-asserts to keep multi-turn continuity."""
    fragment = {}
    for key in ("userId", "conversationId"):
        if state.get(key):
            fragment[key] = state[key]
    if "plannerRecommendation" in state:
        fragment["plannerRecommendation"] = state.get("plannerRecommendation")
    return fragment
