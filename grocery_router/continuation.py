"""Continuation-intent detection.

Decides whether a user message continues a workflow that is already in
progress (confirming a deal, heading to checkout, adding the product just
discussed) or starts something new. The oracle does the classification;
answers are cached per conversation fingerprint and any oracle failure falls
back to keyword heuristics.
"""

import json
import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from grocery_router import config
from grocery_router.cache import ResultCache, digest
from grocery_router.messages import message_text
from grocery_router.oracle import ask_oracle
from grocery_router.parsing import clamp_confidence, safe_parse_json
from grocery_router.state import ContinuationAnalysis

logger = logging.getLogger(__name__)

CONTINUATION_TYPES = ("deal_confirmation", "checkout_flow", "add_to_cart", "other")

_AFFIRMATIVE_WORDS = ("yes", "sure", "ok", "okay", "apply", "take", "sounds good", "great", "perfect")
_CHECKOUT_WORDS = ("checkout", "buy", "purchase", "pay", "order", "complete")


def _as_json(value, limit: int) -> str:
    return json.dumps(value or {}, sort_keys=True, default=str)[:limit]


def continuation_cache_key(
    message: str,
    messages: list,
    workflow_context: Optional[str],
    deal_data: Optional[dict],
    pending_product: Optional[dict],
) -> str:
    tail = "|".join(message_text(m) for m in (messages or [])[-6:])[:1000]
    return "continuation:" + digest(
        (message or "")[:1000],
        workflow_context or "",
        _as_json(pending_product, 300),
        _as_json(deal_data, 300),
        tail,
    )


def build_continuation_prompt(
    workflow_context: Optional[str],
    deal_data: Optional[dict],
    pending_product: Optional[dict],
) -> str:
    pending = json.dumps(pending_product) if pending_product else "none"
    return (
        "You are an expert at detecting user intent continuation in a grocery "
        "shopping conversation.\n\n"
        f"Current workflow context: {workflow_context or 'none'}\n"
        f"Pending product: {pending}\n"
        f"Deal data available: {'yes' if deal_data else 'no'}\n\n"
        "Determine whether the user's message continues the workflow above or "
        "starts a new request.\n\n"
        "Key patterns:\n"
        "- Affirmative responses (yes, sure, ok, apply, take it) in deal contexts = deal_confirmation\n"
        "- Checkout keywords (buy, purchase, checkout, pay) = checkout_flow\n"
        "- Adding items after deals/products were discussed = add_to_cart\n"
        "- Navigation or new topics = not a continuation"
    )


def build_continuation_request(message: str, messages: list) -> str:
    recent = "\n".join(
        f"{m.get('role', 'unknown')}: {message_text(m) or '[empty]'}"
        for m in (messages or [])[-3:]
    )
    return (
        f'Analyze this user message for continuation intent: "{message}"\n\n'
        f"Recent conversation context:\n{recent}\n\n"
        "Respond with a JSON object containing:\n"
        "- isContinuation: boolean\n"
        "- continuationType: string (deal_confirmation, checkout_flow, add_to_cart, or other)\n"
        "- targetAgent: string (cart_and_checkout, deals, catalog, payment)\n"
        "- confidence: number (0.0-1.0)\n"
        "- reasoning: string"
    )


def parse_continuation(text: str) -> ContinuationAnalysis:
    """Turn oracle text into a ContinuationAnalysis, never raising."""
    data = safe_parse_json(text)
    if data is not None:
        continuation_type = data.get("continuationType")
        target = data.get("targetAgent")
        return {
            "isContinuation": bool(data.get("isContinuation")),
            "continuationType": (
                continuation_type if continuation_type in CONTINUATION_TYPES else "other"
            ),
            "targetAgent": target if isinstance(target, str) and target else "catalog",
            "confidence": clamp_confidence(data.get("confidence")),
            "reasoning": str(data.get("reasoning") or "LLM analysis"),
        }

    lower = (text or "").lower()
    if "continuation" in lower and "true" in lower:
        return {
            "isContinuation": True,
            "continuationType": "other",
            "targetAgent": "catalog",
            "confidence": 0.7,
            "reasoning": "Parsed from LLM text response",
        }
    return {
        "isContinuation": False,
        "confidence": 0.6,
        "reasoning": "Could not parse LLM response, assuming new request",
    }


def heuristic_analysis(
    message: str,
    workflow_context: Optional[str],
    pending_product: Optional[dict],
) -> ContinuationAnalysis:
    """Keyword fallback used when the oracle is unavailable."""
    lower = (message or "").lower().strip()

    if workflow_context == "awaiting_deal_confirmation" and pending_product:
        if any(word in lower for word in _AFFIRMATIVE_WORDS):
            return {
                "isContinuation": True,
                "continuationType": "deal_confirmation",
                "targetAgent": "cart_and_checkout",
                "confidence": 0.85,
                "reasoning": "Affirmative reply while a deal awaits confirmation",
            }

    if any(word in lower for word in _CHECKOUT_WORDS):
        return {
            "isContinuation": True,
            "continuationType": "checkout_flow",
            "targetAgent": "cart_and_checkout",
            "confidence": 0.9,
            "reasoning": "Checkout keywords detected",
        }

    if "add" in lower and "cart" in lower and pending_product:
        return {
            "isContinuation": True,
            "continuationType": "add_to_cart",
            "targetAgent": "cart_and_checkout",
            "confidence": 0.8,
            "reasoning": "Add-to-cart request for the product under discussion",
        }

    return {
        "isContinuation": False,
        "confidence": 0.6,
        "reasoning": "No continuation patterns detected",
    }


class ContinuationDetector:
    """Oracle-backed continuation classifier with caching."""

    def __init__(self, oracle, cache: ResultCache, timeout: float = config.ORACLE_TIMEOUT_SECONDS):
        self._oracle = oracle
        self._cache = cache
        self._timeout = timeout

    async def analyze(
        self,
        message: str,
        messages: list,
        workflow_context: Optional[str] = None,
        deal_data: Optional[dict] = None,
        pending_product: Optional[dict] = None,
    ) -> ContinuationAnalysis:
        key = continuation_cache_key(message, messages, workflow_context, deal_data, pending_product)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        prompt = [
            SystemMessage(content=build_continuation_prompt(workflow_context, deal_data, pending_product)),
            HumanMessage(content=build_continuation_request(message, messages)),
        ]
        try:
            text = await ask_oracle(self._oracle, prompt, self._timeout)
        except Exception as exc:
            # Not cached: the next turn should get another chance at the oracle
            logger.warning("Continuation oracle failed, using heuristics: %s", exc)
            return heuristic_analysis(message, workflow_context, pending_product)

        analysis = parse_continuation(text)
        self._cache.set(key, analysis)
        return analysis
