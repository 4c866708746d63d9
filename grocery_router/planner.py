"""Planner node.

Classifies the user's turn as ``delegate`` (hand it to the supervisor) or
``direct_response`` (answer it without a specialist) and records the verdict
as ``plannerRecommendation``. The planner never routes by itself and never
fails the turn: every oracle or parsing problem degrades to a moderate
``delegate``.
"""

import json
import logging
from typing import Any, Optional

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from grocery_router import config
from grocery_router.cache import ResultCache, digest
from grocery_router.messages import annotate, ensure_annotated, is_ephemeral, message_text
from grocery_router.oracle import ask_oracle
from grocery_router.parsing import clamp_confidence, safe_parse_json
from grocery_router.state import SPECIALIST_AGENTS, PlanRecommendation

logger = logging.getLogger(__name__)

PLANNER_ACTIONS = ("delegate", "direct_response")
_PLANNER_TARGETS = set(SPECIALIST_AGENTS) | {"supervisor"}

PLANNER_PROMPT = """You are a routing classifier for a grocery shopping assistant.

CONTEXT:
- Workflow: {workflow}
- Pending Product: {pending}
- Deal Status: {deal_status}

OUTPUT: a single JSON object with:
- action: "delegate" | "direct_response"
- confidence: 0.0-1.0
- reasoning: brief explanation
- task: response text (direct_response only)
- targetAgent: "catalog" | "deals" | "cart_and_checkout" | "payment" | "supervisor" (optional, delegate only)
- autoApplyIntent: boolean (deal auto-apply flag)

CLASSIFICATION LOGIC:

1. DEAL CONFIRMATION (highest priority when Deal Status is "pending" or Workflow is "awaiting_deal_confirmation"):
   - Affirmative words ("yes", "sure", "ok", "sounds good", "go ahead") -> autoApplyIntent=true
   - Negative words ("no", "not", "skip", "no thanks") -> autoApplyIntent=false
   - Deal confirmations are always action="delegate"

2. AUTO-APPLY DETECTION (when Deal Status is not "pending"):
   - Explicit: "use any deals", "apply the deal" -> autoApplyIntent=true
   - Conditional: "if there's a deal, use it" -> autoApplyIntent=true
   - Questions only: "check deals", "are there deals?" -> autoApplyIntent=false

3. DELEGATE (grocery shopping requests):
   - Products, deals, cart, checkout and payment requests
   - If any Workflow is set or a Pending Product exists, ALWAYS delegate
   - Greetings inside a shopping conversation delegate too

4. DIRECT_RESPONSE (non-grocery):
   - Weather, news, jokes, unrelated topics; put a helpful redirect in "task"

EXAMPLES:
{{"action": "delegate", "confidence": 1.0, "reasoning": "product search", "targetAgent": "catalog"}}
// "Find organic bananas"
{{"action": "delegate", "confidence": 1.0, "reasoning": "cart with auto-apply", "autoApplyIntent": true}}
// "Add apples and use any deals"
{{"action": "direct_response", "confidence": 0.95, "reasoning": "unrelated", "task": "I help with grocery shopping. What would you like?"}}
// "What's the weather?"

Default: when in doubt, delegate with moderate confidence."""


def describe_pending(pending: Optional[dict]) -> str:
    if not pending:
        return "none"
    return f"{pending.get('product')} (qty: {pending.get('quantity') or 1})"


def describe_deal_status(deal_data: Optional[dict]) -> str:
    if not deal_data:
        return "none"
    if deal_data.get("pending"):
        return "pending"
    if deal_data.get("applied"):
        return "applied"
    return "none"


def build_planner_prompt(state: dict) -> str:
    return PLANNER_PROMPT.format(
        workflow=state.get("workflowContext") or "none",
        pending=describe_pending(state.get("pendingProduct")),
        deal_status=describe_deal_status(state.get("dealData")),
    )


def planner_cache_prefix(user_id: Optional[str], conversation_id: Optional[str]) -> str:
    return f"{user_id or 'anon'}:{conversation_id or 'global'}:"


def planner_cache_key(state: dict, contents: list[str]) -> str:
    return planner_cache_prefix(state.get("userId"), state.get("conversationId")) + digest(
        state.get("workflowContext") or "none",
        describe_pending(state.get("pendingProduct")),
        describe_deal_status(state.get("dealData")),
        "|".join(contents),
    )


def fallback_plan(reasoning: str, task: Optional[str] = None) -> PlanRecommendation:
    plan: PlanRecommendation = {
        "action": "delegate",
        "confidence": 0.5,
        "reasoning": reasoning,
        "autoApplyIntent": False,
    }
    if task:
        plan["task"] = task
    return plan


def validate_plan(raw: Any) -> PlanRecommendation:
    """Normalize an oracle verdict and enforce the direct-response invariants.

    - ``action`` outside ``PLANNER_ACTIONS`` becomes ``delegate``.
    - ``confidence`` is clamped to [0, 1] (default 0.5).
    - ``direct_response`` with neither task nor reasoning, or with confidence
      below ``DIRECT_RESPONSE_MIN_CONFIDENCE``, is demoted to ``delegate``
      with confidence at most 0.6.
    """
    if not isinstance(raw, dict) or raw.get("action") not in PLANNER_ACTIONS:
        return fallback_plan("Planner returned invalid or missing action")

    plan: PlanRecommendation = {
        "action": raw["action"],
        "confidence": clamp_confidence(raw.get("confidence")),
        "reasoning": str(raw.get("reasoning") or "").strip(),
        "autoApplyIntent": raw.get("autoApplyIntent") is True,
    }
    task = raw.get("task")
    if isinstance(task, str) and task.strip():
        plan["task"] = task.strip()
    target = raw.get("targetAgent")
    if isinstance(target, str) and target.strip():
        target = target.strip()
        plan["targetAgent"] = target if target in _PLANNER_TARGETS else "supervisor"

    if plan["action"] == "direct_response":
        if not plan.get("task") and not plan["reasoning"]:
            plan["action"] = "delegate"
            plan["confidence"] = min(plan["confidence"], 0.6)
            plan["reasoning"] = "Direct response without task or reasoning - delegating"
        elif plan["confidence"] < config.DIRECT_RESPONSE_MIN_CONFIDENCE:
            plan["action"] = "delegate"
            plan["confidence"] = min(plan["confidence"], 0.6)
            plan["reasoning"] = (
                "Low confidence classification - delegating for safety. "
                f"Original: {plan['reasoning']}"
            )
    return plan


def _conversation_entries(messages: list) -> list[dict]:
    """Durable history the planner reasons over (no progress, no own verdicts)."""
    entries = []
    for raw in messages or []:
        entry = ensure_annotated(raw)
        if is_ephemeral(entry) or entry.get("agent") == "planner":
            continue
        if message_text(entry):
            entries.append(entry)
    return entries


def make_planner_node(oracle, cache: ResultCache, timeout: float = config.ORACLE_TIMEOUT_SECONDS):
    """Build the async planner node bound to *oracle* and *cache*."""

    async def planner_node(state: dict) -> dict:
        entries = _conversation_entries(state.get("messages", []))[-6:]
        contents = [message_text(e) for e in entries]

        key = planner_cache_key(state, contents)
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Planner cache hit for %s", key[:60])
            return cached

        if not entries:
            plan = fallback_plan("No valid messages to analyze")
        else:
            transcript = "\n".join(
                f"{e.get('role', 'user').upper()}: {message_text(e)}" for e in entries
            )
            prompt = [
                SystemMessage(content=build_planner_prompt(state)),
                HumanMessage(content=f"Conversation (most recent last):\n{transcript}"),
            ]
            try:
                text = await ask_oracle(oracle, prompt, timeout)
            except Exception as exc:
                logger.warning("Planner oracle failed: %s", exc)
                plan = fallback_plan(f"LLM invocation error: {exc}")
            else:
                parsed = safe_parse_json(text)
                if parsed is None:
                    plan = fallback_plan("Could not parse planner output", task=text.strip() or None)
                else:
                    plan = validate_plan(parsed)

        logger.info(
            "Planner verdict action=%s confidence=%.2f autoApply=%s",
            plan["action"], plan["confidence"], plan["autoApplyIntent"],
        )
        verdict = annotate(AIMessage(content=json.dumps(plan)), "assistant", agent="planner")
        verdict["recommendation"] = plan

        fragment = {"messages": [verdict], "plannerRecommendation": plan}
        for field in ("userId", "conversationId"):
            if state.get(field):
                fragment[field] = state[field]
        cache.set(key, fragment)
        return fragment

    return planner_node
