"""Complex-workflow heuristic.

Pure string matching over the lowercased message, flagging requests that
chain several steps ("check deals on apples and add them to my cart, then
checkout"). The result informs routing but never causes a transition by
itself.
"""

import re
from dataclasses import dataclass
from typing import Optional

_DISCOVERY_VERBS = ("check", "find", "look")
_DEAL_NOUNS = ("deal", "promotion", "discount", "sale")
_PURCHASE_VERBS = ("add", "buy", "purchase")
_CHECKOUT_PHRASES = ("checkout", "check out", "place order", "complete order")
_IF_RE = re.compile(r"\bif\b")


@dataclass(frozen=True)
class WorkflowAnalysis:
    is_complex: bool
    includes_checkout: bool = False
    workflow_type: Optional[str] = None
    reason: str = ""


def _any(text: str, words) -> bool:
    return any(word in text for word in words)


def mentions_checkout(text: str) -> bool:
    """True when *text* asks to finish with a checkout."""
    lower = text.lower()
    if _any(lower, _CHECKOUT_PHRASES):
        return True
    continues = "continue" in lower or "proceed" in lower
    return continues and ("then" in lower or "just" in lower)


def detect_complex_workflow(message: str) -> WorkflowAnalysis:
    """Classify *message* for multi-step shopping intent."""
    lower = (message or "").lower()
    includes_checkout = mentions_checkout(lower)
    has_deal_noun = _any(lower, _DEAL_NOUNS)

    if _any(lower, _DISCOVERY_VERBS) and has_deal_noun and "add" in lower and "cart" in lower:
        return WorkflowAnalysis(
            is_complex=True,
            includes_checkout=includes_checkout,
            workflow_type="deals_to_cart_to_checkout" if includes_checkout else "deals_to_cart",
            reason=(
                "Check deals, add to cart, then checkout"
                if includes_checkout
                else "Check deals then add to cart"
            ),
        )

    if _IF_RE.search(lower) and has_deal_noun and _any(lower, _PURCHASE_VERBS):
        return WorkflowAnalysis(
            is_complex=True,
            includes_checkout=includes_checkout,
            workflow_type=(
                "conditional_purchase_with_checkout" if includes_checkout else "conditional_purchase"
            ),
            reason=(
                "Conditional purchase based on deals, then checkout"
                if includes_checkout
                else "Conditional purchase based on deal availability"
            ),
        )

    if " and " in lower and _any(lower, ("deal", "promotion", "discount")) and (
        "add" in lower or "cart" in lower
    ):
        return WorkflowAnalysis(
            is_complex=True,
            includes_checkout=includes_checkout,
            workflow_type=(
                "multi_step_purchase_with_checkout" if includes_checkout else "multi_step_purchase"
            ),
            reason=(
                "Multiple shopping actions ending in checkout"
                if includes_checkout
                else "Multiple shopping actions in one request"
            ),
        )

    return WorkflowAnalysis(is_complex=False)
