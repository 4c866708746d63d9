"""Tests for the supervisor rule table.

The oracle is scripted; every reply a test relies on is queued in the order
the rules consult it.
"""

import pytest
from langgraph.graph import END

from grocery_router.guardrails import RoutingLogger
from grocery_router.messages import is_ephemeral, message_text
from grocery_router.supervisor import (
    DECLINE_TEXT,
    SupervisorRouter,
    completion_text,
    is_affirmative,
    resolve_agent_choice,
)

from tests.conftest import handback_entry, make_state, user_entry

NOT_A_CONTINUATION = '{"isContinuation": false, "confidence": 0.9}'
APPLES = {"product": "apples", "quantity": 2}


@pytest.fixture
def router(oracle, cache):
    return SupervisorRouter(oracle, cache, routing_logger=RoutingLogger(log_dir=None), max_delegations=5)


def _texts(fragment, ephemeral=None):
    return [
        message_text(m)
        for m in fragment["messages"]
        if ephemeral is None or is_ephemeral(m) == ephemeral
    ]


# ── helpers ──────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text",
    ["yes", "Sure!", "ok let's do it", "sounds good", "go ahead", "Yeah, apply it", "No problem, go ahead and apply it"],
)
def test_is_affirmative(text):
    assert is_affirmative(text)


@pytest.mark.parametrize("text", ["no", "no thanks", "not now", "nope, skip", "", "maybe later"])
def test_is_not_affirmative(text):
    assert not is_affirmative(text)


def test_resolve_agent_choice_defaults_to_catalog():
    assert resolve_agent_choice("deals") == "deals"
    assert resolve_agent_choice("  Cart_and_Checkout.\n") == "cart_and_checkout"
    assert resolve_agent_choice("shipping") == "catalog"
    assert resolve_agent_choice("") == "catalog"


def test_completion_text_reflects_state():
    assert completion_text("deals", {"dealData": {"applied": True}}) == "🏷️ Found deals, proceeding..."
    assert completion_text("deals", {"dealData": {"pending": True}}).endswith("awaiting confirmation...")
    assert completion_text("cart_and_checkout", {"workflowContext": "send_notification"}) == "💳 Checkout completed..."
    assert completion_text("cart_and_checkout", {}) == "🛒 Added items to cart..."


# ── deal confirmation ────────────────────────────────────────────────────────


async def test_affirmative_deal_confirmation_goes_to_cart(router, oracle):
    state = make_state("yes please", workflowContext="awaiting_deal_confirmation", pendingProduct=APPLES)

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"
    assert fragment["dealData"] == {"pending": False, "applied": True}
    assert fragment["delegationDepth"] == 1
    assert _texts(fragment, ephemeral=True) == ["🛒 Managing your cart..."]
    assert oracle.calls == []


async def test_declined_deal_clears_workflow(router):
    state = make_state("no thanks", workflowContext="awaiting_deal_confirmation", pendingProduct=APPLES)

    fragment = await router.route(state)

    assert fragment["next"] == END
    assert fragment["workflowContext"] is None
    assert fragment["pendingProduct"] is None
    assert fragment["dealData"] is None
    assert _texts(fragment) == [DECLINE_TEXT]
    assert "delegationDepth" not in fragment


async def test_confirmation_opening_with_no_still_confirms(router):
    state = make_state(
        "No problem, go ahead and apply it",
        workflowContext="awaiting_deal_confirmation",
        pendingProduct=APPLES,
    )

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"


# ── planner ──────────────────────────────────────────────────────────────────


async def test_direct_response_ends_turn(router, oracle):
    plan = {"action": "direct_response", "confidence": 0.95, "task": "I can only help with groceries."}

    fragment = await router.route(make_state("what's the weather?", plannerRecommendation=plan))

    assert fragment["next"] == END
    assert _texts(fragment) == ["I can only help with groceries."]
    assert oracle.calls == []


async def test_confident_plan_dispatches_target(router, oracle):
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "catalog"}

    fragment = await router.route(make_state("find organic bananas", plannerRecommendation=plan))

    assert fragment["next"] == "catalog"
    assert fragment["plannerRecommendation"] == plan
    assert oracle.calls == []


async def test_complex_request_with_supervisor_target_starts_deals_workflow(router, oracle):
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "supervisor"}
    oracle.queue('{"product": "apples", "quantity": 1}')

    fragment = await router.route(
        make_state("check deals on apples and add them to my cart", plannerRecommendation=plan)
    )

    assert fragment["next"] == "deals"
    assert fragment["workflowContext"] == "check_deals"
    assert fragment["pendingProduct"] == {"product": "apples", "quantity": 1}


async def test_checkout_request_marks_deal_data(router, oracle):
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "deals"}
    oracle.queue('{"product": "bread", "quantity": 1}')

    fragment = await router.route(
        make_state("find deals on bread, add it to my cart and checkout", plannerRecommendation=plan)
    )

    assert fragment["next"] == "deals"
    assert fragment["dealData"]["includesCheckout"] is True
    assert fragment["dealData"]["workflowType"] == "deals_to_cart_to_checkout"


async def test_pending_deal_workflow_overrides_planner_target(router, oracle):
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "catalog"}
    state = make_state(
        "sounds good",
        plannerRecommendation=plan,
        workflowContext="add_to_cart_with_deals",
        pendingProduct=APPLES,
    )

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["delegationDepth"] == 1
    assert oracle.calls == []


# ── continuation and fallback ────────────────────────────────────────────────


async def test_low_confidence_plan_falls_through_to_fallback(router, oracle):
    """An unknown agent name from the fallback prompt routes to catalog."""
    plan = {"action": "delegate", "confidence": 0.4, "targetAgent": "payment"}
    oracle.queue(NOT_A_CONTINUATION, "shipping")

    fragment = await router.route(make_state("where is my order?", plannerRecommendation=plan))

    assert fragment["next"] == "catalog"
    assert fragment["delegationDepth"] == 1
    assert len(oracle.calls) == 2


async def test_fallback_to_deals_extracts_product(router, oracle):
    oracle.queue(NOT_A_CONTINUATION, "deals", '{"product": "apples", "quantity": 2}')

    fragment = await router.route(make_state("add 2 apples to my cart"))

    assert fragment["next"] == "deals"
    assert fragment["workflowContext"] == "check_deals"
    assert fragment["pendingProduct"] == APPLES


async def test_fallback_survives_oracle_errors(router, oracle):
    oracle.queue(RuntimeError("down"), RuntimeError("down"))

    fragment = await router.route(make_state("hello"))

    assert fragment["next"] == "catalog"


async def test_checkout_continuation_uses_cart_state(router, oracle):
    oracle.queue(
        '{"isContinuation": true, "continuationType": "checkout_flow",'
        ' "targetAgent": "cart_and_checkout", "confidence": 0.95}'
    )
    state = make_state("let's checkout", cartData={"items": [{"productCode": "apple"}]})

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "process_checkout"
    assert _texts(fragment, ephemeral=True) == ["💳 Processing checkout..."]


async def test_deal_confirmation_continuation_goes_to_cart(router, oracle):
    oracle.queue(
        '{"isContinuation": true, "continuationType": "deal_confirmation",'
        ' "targetAgent": "cart_and_checkout", "confidence": 0.9}'
    )
    state = make_state("I'll take that deal", dealData={"pending": True}, pendingProduct=APPLES)

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"
    assert len(oracle.calls) == 1


async def test_add_to_cart_continuation_with_pending_product_goes_to_cart(router, oracle):
    oracle.queue(
        '{"isContinuation": true, "continuationType": "add_to_cart",'
        ' "targetAgent": "cart_and_checkout", "confidence": 0.85}'
    )
    state = make_state("put them in my basket", pendingProduct=APPLES)

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"


async def test_add_to_cart_continuation_without_product_checks_deals(router, oracle):
    oracle.queue(
        '{"isContinuation": true, "continuationType": "add_to_cart",'
        ' "targetAgent": "cart_and_checkout", "confidence": 0.85}'
    )

    fragment = await router.route(make_state("put them in my basket"))

    assert fragment["next"] == "deals"
    assert fragment["workflowContext"] == "check_deals"
    assert "pendingProduct" not in fragment
    assert len(oracle.calls) == 1


async def test_weak_continuation_is_ignored(router, oracle):
    oracle.queue(
        '{"isContinuation": true, "continuationType": "checkout_flow", "confidence": 0.7}',
        "payment",
    )

    fragment = await router.route(make_state("add a card"))

    assert fragment["next"] == "payment"


# ── hand-back passes ─────────────────────────────────────────────────────────


async def test_handback_without_workflow_ends_turn(router, oracle):
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "catalog"}
    history = [user_entry("show me apples"), handback_entry("catalog", "Here are our apples.")]

    fragment = await router.route(make_state(history=history, plannerRecommendation=plan, delegationDepth=1))

    assert fragment["next"] == END
    assert _texts(fragment) == ["🛍️ Catalog search completed..."]
    assert oracle.calls == []


async def test_handback_resumes_checkout_workflow(router):
    history = [user_entry("add apples and checkout"), handback_entry("deals", "Deal applied.")]
    state = make_state(
        history=history,
        workflowContext="add_to_cart_with_checkout",
        pendingProduct=APPLES,
        dealData={"applied": True},
        delegationDepth=1,
    )

    fragment = await router.route(state)

    assert fragment["next"] == "cart_and_checkout"
    assert fragment["workflowContext"] == "process_checkout"
    assert fragment["pendingProduct"] is None
    assert fragment["delegationDepth"] == 2
    assert _texts(fragment, ephemeral=True) == ["🏷️ Found deals, proceeding...", "💳 Processing checkout..."]


async def test_notification_handoff(router):
    history = [user_entry("checkout"), handback_entry("cart_and_checkout", "Order placed.")]
    state = make_state(
        history=history,
        workflowContext="send_notification",
        notificationData={"orderId": "ORD-42", "total": 12.5},
    )

    fragment = await router.route(state)

    assert fragment["next"] == "notification_agent"
    assert "✅ Checkout completed successfully! Your order ID is: ORD-42" in _texts(fragment, ephemeral=False)


async def test_exhausted_budget_routes_to_limit_reached(router):
    state = make_state(
        "yes",
        workflowContext="awaiting_deal_confirmation",
        pendingProduct=APPLES,
        delegationDepth=5,
    )

    fragment = await router.route(state)

    assert fragment["next"] == "limit_reached"
    assert "delegationDepth" not in fragment


async def test_decisions_are_written_to_routing_log(oracle, cache, tmp_path):
    router = SupervisorRouter(oracle, cache, routing_logger=RoutingLogger(log_dir=str(tmp_path)))
    plan = {"action": "delegate", "confidence": 0.9, "targetAgent": "payment"}

    await router.route(make_state("add a visa card", plannerRecommendation=plan))

    log = (tmp_path / "routing_decisions.jsonl").read_text()
    assert '"rule": "planner"' in log
    assert '"next": "payment"' in log
