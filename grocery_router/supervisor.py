"""Supervisor routing engine.

Decides, once per pass, which specialist handles the turn or whether the turn
ends. The decision is an ordered table of ``RoutingRule(guard, handler)``
pairs evaluated top to bottom; the first handler that returns a decision
wins, and a handler may return ``None`` to fall through:

    notification_handoff   workflowContext == send_notification
    deal_confirmation      awaiting_deal_confirmation with a pending product
    planner                fresh plannerRecommendation (first pass only)
    continuation           continuation oracle (first pass only)
    workflow_resume        add_to_cart_with_deals / add_to_cart_with_checkout
    llm_fallback           specialist-selection prompt (first pass only)
    handback_done          nothing left to do after a specialist handed back

Before the table runs, a short completion note is prepared when the pass
follows a specialist hand-back, and the complex-workflow heuristic is
evaluated for the handlers to consult.

A *hand-back pass* follows a specialist that returned ``next = supervisor``.
The planner, continuation and fallback rules classify the user's message,
which was already acted on earlier in the turn, so only the state-driven
rules may dispatch again. Every dispatch also spends one unit of the
per-turn delegation budget.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import END

from grocery_router import config
from grocery_router.cache import ResultCache
from grocery_router.continuation import ContinuationDetector
from grocery_router.extraction import ProductExtractor
from grocery_router.guardrails import RoutingLogger
from grocery_router.messages import (
    agent_progress_text,
    assistant_message,
    create_progress_message,
    last_permanent,
    latest_user_text,
)
from grocery_router.oracle import ask_oracle
from grocery_router.planner import planner_cache_prefix
from grocery_router.state import (
    CHECKOUT_CONTEXTS,
    ROUTABLE_AGENTS,
    SPECIALIST_AGENTS,
    carry_identity,
)
from grocery_router.workflow import WorkflowAnalysis, detect_complex_workflow

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKENS = (
    "yes", "sure", "ok", "okay", "apply", "take", "sounds",
    "great", "perfect", "good", "deal", "go",
)

DECLINE_TEXT = (
    "No problem! Let me know if you'd like to explore other products or if "
    "there's anything else I can help you with."
)
DEFAULT_GREETING = "Hello! How can I help you today?"
CHECKOUT_DONE_TEXT = "✅ Checkout completed successfully! Your order ID is: {order_id}"

FALLBACK_ROUTING_PROMPT = """You are an intelligent supervisor routing customer requests in a grocery shopping system.

Available agents:
- catalog: product discovery, search, browsing, recommendations (NO deals/promotions)
- cart_and_checkout: adds items to cart (AFTER deals are checked), checkout, order completion
- payment: payment method management only
- deals: deal discovery, promotions, discounts, sales, special offers

Routing rules:
- ANY "add to cart" request -> deals (offers are checked first)
- Completing checkout or a purchase -> cart_and_checkout
- Adding an item AFTER a deal was offered or accepted -> cart_and_checkout
- Product search or browsing WITHOUT deals -> catalog
- ANY mention of deals, discounts, promotions, sales, offers -> deals
- Payment setup -> payment
- Ambiguous requests -> infer from the workflow context below
{context}
Respond with ONLY the agent name: catalog, cart_and_checkout, payment, or deals"""

_WORD_RE = re.compile(r"[a-z_']+")


def is_affirmative(text: str) -> bool:
    """Prefix-match whitespace-split tokens against the affirmative vocabulary."""
    tokens = [t.strip(".,!?;:\"'()") for t in (text or "").lower().split()]
    return any(token.startswith(word) for token in tokens for word in AFFIRMATIVE_TOKENS)


def resolve_agent_choice(answer: str) -> str:
    """Validate a one-word routing answer, defaulting to ``catalog``."""
    match = _WORD_RE.search((answer or "").strip().lower())
    choice = match.group(0) if match else ""
    return choice if choice in ROUTABLE_AGENTS else "catalog"


def asks_to_add_to_cart(text: str) -> bool:
    lower = (text or "").lower()
    return "add" in lower and "cart" in lower


def completion_text(agent: str, state: dict) -> str:
    """What the specialist that just handed back has done."""
    deal = state.get("dealData") or {}
    if agent == "deals":
        if deal.get("applied"):
            return "🏷️ Found deals, proceeding..."
        if deal.get("pending"):
            return "🏷️ Found deals, awaiting confirmation..."
        return "🏷️ Deal search completed..."
    if agent == "cart_and_checkout":
        if state.get("workflowContext") in CHECKOUT_CONTEXTS | {"send_notification"}:
            return "💳 Checkout completed..."
        return "🛒 Added items to cart..."
    if agent == "catalog":
        return "🛍️ Catalog search completed..."
    if agent == "payment":
        return "💳 Payment processing completed..."
    if agent == "notification_agent":
        return "📧 Notifications sent..."
    return "✅ Agent task completed..."


@dataclass
class RoutingContext:
    """Snapshot the rules read from; built once per supervisor pass."""

    state: dict
    text: str
    workflow_context: Optional[str]
    pending: Optional[dict]
    plan: Optional[dict]
    workflow: WorkflowAnalysis
    handback_agent: Optional[str] = None

    @property
    def handback(self) -> bool:
        return self.handback_agent is not None


@dataclass
class RouteDecision:
    next: str
    rule: str = ""
    updates: dict = field(default_factory=dict)
    messages: list = field(default_factory=list)


@dataclass(frozen=True)
class RoutingRule:
    name: str
    guard: Callable[[RoutingContext], bool]
    handler: Callable[[RoutingContext], Awaitable[Optional[RouteDecision]]]


class SupervisorRouter:
    """The supervisor node: an ordered rule table over ConversationState."""

    def __init__(
        self,
        oracle,
        cache: ResultCache,
        continuation: Optional[ContinuationDetector] = None,
        extractor: Optional[ProductExtractor] = None,
        *,
        routing_logger: Optional[RoutingLogger] = None,
        max_delegations: int = config.MAX_DELEGATIONS,
        planner_threshold: float = config.PLANNER_CONFIDENCE_THRESHOLD,
        continuation_threshold: float = config.CONTINUATION_CONFIDENCE_THRESHOLD,
        timeout: float = config.ORACLE_TIMEOUT_SECONDS,
    ):
        self._oracle = oracle
        self._cache = cache
        self._continuation = continuation or ContinuationDetector(oracle, cache, timeout)
        self._extractor = extractor or ProductExtractor(oracle, cache, timeout)
        self._routing_logger = routing_logger or RoutingLogger()
        self._max_delegations = max_delegations
        self._planner_threshold = planner_threshold
        self._continuation_threshold = continuation_threshold
        self._timeout = timeout

        self.rules: tuple[RoutingRule, ...] = (
            RoutingRule(
                "notification_handoff",
                lambda ctx: ctx.workflow_context == "send_notification",
                self._handoff_notification,
            ),
            RoutingRule(
                "deal_confirmation",
                lambda ctx: ctx.workflow_context == "awaiting_deal_confirmation" and bool(ctx.pending),
                self._resolve_deal_confirmation,
            ),
            RoutingRule(
                "planner",
                lambda ctx: bool(ctx.plan) and not ctx.handback,
                self._follow_plan,
            ),
            RoutingRule(
                "continuation",
                # A fresh multi-step request is not a continuation of anything
                lambda ctx: not ctx.handback
                and not (ctx.workflow.is_complex and not ctx.workflow_context),
                self._follow_continuation,
            ),
            RoutingRule(
                "workflow_resume",
                lambda ctx: ctx.workflow_context == "add_to_cart_with_checkout"
                or (ctx.workflow_context == "add_to_cart_with_deals" and bool(ctx.pending)),
                self._resume_workflow,
            ),
            RoutingRule(
                "llm_fallback",
                lambda ctx: not ctx.handback,
                self._fallback_route,
            ),
            RoutingRule(
                "handback_done",
                lambda ctx: True,
                self._finish_turn,
            ),
        )

    # ── Entry point ───────────────────────────────────────────────────────

    async def route(self, state: dict) -> dict:
        ctx = self.build_context(state)
        decision = await self.decide(ctx)

        if decision.next in SPECIALIST_AGENTS:
            depth = state.get("delegationDepth") or 0
            if depth >= self._max_delegations:
                logger.warning(
                    "Delegation budget of %d exhausted, not routing to %s",
                    self._max_delegations, decision.next,
                )
                decision = RouteDecision(next="limit_reached", rule="delegation_budget")
            else:
                decision.updates["delegationDepth"] = depth + 1

        framing = []
        if ctx.handback:
            framing.append(
                create_progress_message(
                    completion_text(ctx.handback_agent, state), step="completion"
                )
            )

        logger.info(
            "Routing decision rule=%s next=%s workflowContext=%s",
            decision.rule, decision.next, decision.updates.get("workflowContext", ctx.workflow_context),
        )
        self._routing_logger.log(
            conversation_id=state.get("conversationId") or "",
            rule=decision.rule,
            next_node=decision.next,
            workflow_context=ctx.workflow_context,
            message=ctx.text,
        )

        return {
            **carry_identity(state),
            **decision.updates,
            "next": decision.next,
            "messages": framing + decision.messages,
        }

    def build_context(self, state: dict) -> RoutingContext:
        messages = state.get("messages") or []
        text = latest_user_text(messages)
        last = last_permanent(messages)
        handback_agent = None
        if last and last.get("role") == "assistant" and last.get("agent") in SPECIALIST_AGENTS:
            handback_agent = last["agent"]
        return RoutingContext(
            state=state,
            text=text,
            workflow_context=state.get("workflowContext") or None,
            pending=state.get("pendingProduct") or None,
            plan=state.get("plannerRecommendation") or None,
            workflow=detect_complex_workflow(text),
            handback_agent=handback_agent,
        )

    async def decide(self, ctx: RoutingContext) -> RouteDecision:
        """Run the rule table and return the first decision."""
        for rule in self.rules:
            if not rule.guard(ctx):
                continue
            decision = await rule.handler(ctx)
            if decision is not None:
                decision.rule = decision.rule or rule.name
                return decision
        return RouteDecision(next=END, rule="no_rule")

    # ── Helpers ───────────────────────────────────────────────────────────

    def _dispatch(
        self,
        ctx: RoutingContext,
        target: str,
        updates: Optional[dict] = None,
        messages: Optional[list] = None,
    ) -> RouteDecision:
        updates = dict(updates or {})
        workflow_context = updates.get("workflowContext", ctx.workflow_context)
        progress = create_progress_message(agent_progress_text(target, workflow_context))
        return RouteDecision(next=target, updates=updates, messages=list(messages or []) + [progress])

    async def _extract_product(self, ctx: RoutingContext) -> Optional[dict]:
        product = await self._extractor.extract(ctx.text)
        if product:
            # A newly known product changes how later turns classify
            self._cache.invalidate_prefix(
                planner_cache_prefix(ctx.state.get("userId"), ctx.state.get("conversationId"))
            )
        return product

    async def _route_to_deals(self, ctx: RoutingContext) -> RouteDecision:
        """Send the turn to deals, starting a deals→cart workflow when asked to."""
        updates: dict = {}
        product = ctx.pending
        if not product:
            product = await self._extract_product(ctx)
            if product:
                updates["pendingProduct"] = product

        if product and (ctx.workflow.is_complex or asks_to_add_to_cart(ctx.text)):
            updates["workflowContext"] = "check_deals"
            if ctx.workflow.includes_checkout:
                updates["dealData"] = {
                    "includesCheckout": True,
                    "workflowType": ctx.workflow.workflow_type,
                }
        return self._dispatch(ctx, "deals", updates)

    # ── Rules ─────────────────────────────────────────────────────────────

    async def _handoff_notification(self, ctx: RoutingContext) -> RouteDecision:
        order_id = (ctx.state.get("notificationData") or {}).get("orderId") or "N/A"
        done = assistant_message(CHECKOUT_DONE_TEXT.format(order_id=order_id), agent="supervisor")
        return self._dispatch(ctx, "notification_agent", messages=[done])

    async def _resolve_deal_confirmation(self, ctx: RoutingContext) -> RouteDecision:
        if is_affirmative(ctx.text):
            return self._dispatch(
                ctx,
                "cart_and_checkout",
                {
                    "workflowContext": "add_to_cart_with_deals",
                    "dealData": {"pending": False, "applied": True},
                },
            )
        return RouteDecision(
            next=END,
            updates={"workflowContext": None, "dealData": None, "pendingProduct": None},
            messages=[assistant_message(DECLINE_TEXT, agent="supervisor")],
        )

    async def _follow_plan(self, ctx: RoutingContext) -> Optional[RouteDecision]:
        plan = ctx.plan
        if plan.get("action") == "direct_response":
            reply = plan.get("task") or plan.get("reasoning") or DEFAULT_GREETING
            return RouteDecision(next=END, messages=[assistant_message(reply, agent="supervisor")])

        target = plan.get("targetAgent")
        if plan.get("action") != "delegate" or not target:
            return None
        if ctx.workflow_context == "add_to_cart_with_deals" and ctx.pending:
            return self._dispatch(ctx, "cart_and_checkout")
        if ctx.workflow.is_complex and target == "supervisor":
            return await self._route_to_deals(ctx)
        if plan.get("confidence", 0) > self._planner_threshold and target in ROUTABLE_AGENTS:
            if target == "deals":
                return await self._route_to_deals(ctx)
            return self._dispatch(ctx, target)
        return None

    async def _follow_continuation(self, ctx: RoutingContext) -> Optional[RouteDecision]:
        analysis = await self._continuation.analyze(
            ctx.text,
            ctx.state.get("messages") or [],
            ctx.workflow_context,
            ctx.state.get("dealData"),
            ctx.pending,
        )
        if not analysis.get("isContinuation"):
            return None
        if analysis.get("confidence", 0) <= self._continuation_threshold:
            return None

        kind = analysis.get("continuationType")
        if kind == "deal_confirmation":
            return self._dispatch(ctx, "cart_and_checkout", {"workflowContext": "add_to_cart_with_deals"})
        if kind == "checkout_flow":
            context = "process_checkout" if ctx.state.get("cartData") else "prepare_checkout"
            return self._dispatch(ctx, "cart_and_checkout", {"workflowContext": context})
        if kind == "add_to_cart":
            if ctx.pending:
                return self._dispatch(
                    ctx, "cart_and_checkout", {"workflowContext": "add_to_cart_with_deals"}
                )
            return self._dispatch(ctx, "deals", {"workflowContext": "check_deals"})
        return None

    async def _resume_workflow(self, ctx: RoutingContext) -> RouteDecision:
        if ctx.workflow_context == "add_to_cart_with_checkout":
            return self._dispatch(
                ctx,
                "cart_and_checkout",
                {"workflowContext": "process_checkout", "pendingProduct": None},
            )
        return self._dispatch(ctx, "cart_and_checkout")

    async def _fallback_route(self, ctx: RoutingContext) -> RouteDecision:
        context_lines = []
        if ctx.workflow_context:
            context_lines.append(f"Current workflow: {ctx.workflow_context}")
        if ctx.pending:
            context_lines.append(f"Pending product: {ctx.pending.get('product')}")
        if ctx.state.get("dealData"):
            context_lines.append("Deal context available")
        context = ("\n" + "\n".join(context_lines) + "\n") if context_lines else ""

        prompt = [
            SystemMessage(content=FALLBACK_ROUTING_PROMPT.format(context=context)),
            HumanMessage(content=ctx.text or "(empty message)"),
        ]
        try:
            answer = await ask_oracle(self._oracle, prompt, self._timeout)
        except Exception as exc:
            logger.warning("Fallback routing oracle failed, defaulting to catalog: %s", exc)
            answer = ""

        target = resolve_agent_choice(answer)
        if target == "deals":
            return await self._route_to_deals(ctx)

        updates = {}
        if ctx.workflow.is_complex and not ctx.pending:
            product = await self._extract_product(ctx)
            if product:
                updates["pendingProduct"] = product
        return self._dispatch(ctx, target, updates)

    async def _finish_turn(self, ctx: RoutingContext) -> RouteDecision:
        return RouteDecision(next=END)
