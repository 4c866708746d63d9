"""Tests for the specialist adapter nodes."""

import json

import pytest
from langgraph.graph import END

from grocery_router.extraction import ProductExtractor
from grocery_router.messages import is_ephemeral, message_text
from grocery_router.nodes import (
    BUDGET_APOLOGY,
    CHECKOUT_JSON_INSTRUCTION,
    NOTIFICATION_ERROR,
    NOTIFICATION_FAILED,
    NOTIFICATION_MISSING,
    NOTIFICATION_SENT,
    PRODUCT_CLARIFICATION,
    is_checkout_turn,
    limit_reached_node,
    make_cart_node,
    make_deals_node,
    make_notification_node,
    make_specialist_node,
    notification_payload,
)

from tests.conftest import FakeNotifier, FakeSpecialist, make_state

APPLES = {"product": "apples", "quantity": 2}
DEAL_OFFER = "Apples are 20% off this week! Would you like to apply this deal?"


def _texts(fragment):
    return [message_text(m) for m in fragment["messages"] if not is_ephemeral(m)]


# ── catalog & payment ────────────────────────────────────────────────────────


async def test_specialist_node_tags_user_and_ends_turn():
    agent = FakeSpecialist("We have Gala and Fuji apples.")
    node = make_specialist_node("catalog", agent)

    fragment = await node(make_state("show me apples"))

    assert fragment["next"] == END
    assert fragment["messages"][0]["agent"] == "catalog"
    assert _texts(fragment) == ["We have Gala and Fuji apples."]
    assert agent.last_text.startswith("[userId:u1]\n")
    assert "show me apples" in agent.last_text


async def test_specialist_failure_is_apologized():
    node = make_specialist_node("payment", FakeSpecialist(RuntimeError("backend down")))

    fragment = await node(make_state("add a card"))

    assert fragment["next"] == END
    assert "payment service is unavailable" in _texts(fragment)[0]


# ── deals ────────────────────────────────────────────────────────────────────


@pytest.fixture
def extractor(oracle, cache):
    return ProductExtractor(oracle, cache)


async def test_deals_without_product_asks_for_clarification(extractor, oracle, cache):
    agent = FakeSpecialist()
    node = make_deals_node(agent, extractor, cache)

    fragment = await node(make_state("any deals?"))

    assert _texts(fragment) == [PRODUCT_CLARIFICATION]
    assert fragment["workflowContext"] is None
    assert fragment["next"] == END
    assert agent.calls == []


async def test_deals_offer_awaits_confirmation(extractor, oracle, cache):
    oracle.queue('{"product": "apples", "quantity": 2}')
    agent = FakeSpecialist(DEAL_OFFER)
    node = make_deals_node(agent, extractor, cache)

    fragment = await node(make_state("check deals on 2 apples"))

    assert fragment["workflowContext"] == "awaiting_deal_confirmation"
    assert fragment["pendingProduct"] == APPLES
    assert fragment["dealData"]["pending"] is True
    assert fragment["dealData"]["history"][0]["type"] == "offered"
    assert fragment["next"] == END
    assert "Check deals for 2 apples." in agent.last_text


async def test_deals_offer_with_auto_apply_hands_back(extractor, cache):
    agent = FakeSpecialist(DEAL_OFFER)
    node = make_deals_node(agent, extractor, cache)
    state = make_state(
        "add apples and use any deals",
        pendingProduct=APPLES,
        plannerRecommendation={"action": "delegate", "confidence": 0.9, "autoApplyIntent": True},
    )

    fragment = await node(state)

    assert fragment["next"] == "supervisor"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"
    assert fragment["dealData"]["applied"] is True
    assert fragment["dealData"]["originalIntent"] == "add apples and use any deals"
    assert any(is_ephemeral(m) for m in fragment["messages"])


async def test_no_deals_clears_workflow(extractor, cache):
    node = make_deals_node(FakeSpecialist("Sorry, no current deals on apples."), extractor, cache)

    fragment = await node(make_state("deals on apples", pendingProduct=APPLES, workflowContext="check_deals"))

    assert fragment["workflowContext"] is None
    assert fragment["pendingProduct"] is None
    assert fragment["dealData"]["type"] == "no_deals_found"
    assert fragment["next"] == END


async def test_deals_in_check_deals_workflow_hand_back(extractor, cache):
    node = make_deals_node(FakeSpecialist("Apples are 20% off this week."), extractor, cache)

    fragment = await node(make_state("deals on apples", pendingProduct=APPLES, workflowContext="check_deals"))

    assert fragment["next"] == "supervisor"
    assert fragment["workflowContext"] == "add_to_cart_with_deals"
    assert fragment["dealData"]["applied"] is True


async def test_deals_only_presented_keep_pending_product(extractor, cache):
    node = make_deals_node(FakeSpecialist("Apples are 20% off this week."), extractor, cache)

    fragment = await node(make_state("what deals on apples?", pendingProduct=APPLES))

    assert fragment["workflowContext"] is None
    assert "pendingProduct" not in fragment
    assert fragment["next"] == END


# ── cart & checkout ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "workflow_context, text, expected",
    [
        ("process_checkout", "ok", True),
        (None, "please checkout", True),
        ("add_to_cart_with_deals", "add and checkout", False),
        (None, "add milk", False),
    ],
)
def test_is_checkout_turn(workflow_context, text, expected):
    assert is_checkout_turn(workflow_context, text) is expected


async def test_structured_checkout_success_hands_off_notification(cache):
    reply = json.dumps({
        "checkoutStatus": "success",
        "orderId": "ORD-1",
        "summary": "Order ORD-1 placed for $5.98",
        "items": [{"productCode": "apple", "quantity": 2}],
        "total": 5.98,
    })
    agent = FakeSpecialist(reply)
    node = make_cart_node(agent, cache)

    fragment = await node(make_state("checkout", workflowContext="process_checkout", cartData={"total": 5.98}))

    assert fragment["next"] == "supervisor"
    assert fragment["workflowContext"] == "send_notification"
    assert fragment["cartData"] is None
    assert fragment["notificationData"]["orderId"] == "ORD-1"
    assert fragment["notificationData"]["total"] == 5.98
    assert _texts(fragment) == ["Order ORD-1 placed for $5.98"]
    assert CHECKOUT_JSON_INSTRUCTION in agent.last_text
    assert "Cart data:" in agent.last_text


async def test_structured_checkout_failure_ends_turn(cache):
    node = make_cart_node(FakeSpecialist('{"checkoutStatus": "failure", "summary": "card declined"}'), cache)

    fragment = await node(make_state("checkout", workflowContext="process_checkout"))

    assert _texts(fragment) == ["Checkout failed: card declined"]
    assert fragment["workflowContext"] is None
    assert fragment["next"] == END


async def test_textual_checkout_success(cache):
    node = make_cart_node(FakeSpecialist("Order placed! Thanks for shopping."), cache)

    fragment = await node(make_state("please checkout"))

    assert fragment["workflowContext"] == "send_notification"
    assert fragment["notificationData"]["orderId"] is None
    assert fragment["next"] == "supervisor"


async def test_unrecognized_product_resets_workflow(cache):
    node = make_cart_node(FakeSpecialist("Error: product not found."), cache)
    state = make_state("yes", workflowContext="add_to_cart_with_deals", pendingProduct={"product": "kiwis"})

    fragment = await node(state)

    assert len(fragment["messages"]) == 2
    assert 'couldn\'t find "kiwis"' in _texts(fragment)[1]
    assert fragment["pendingProduct"] is None
    assert fragment["next"] == END


async def test_deal_add_chains_into_checkout(cache):
    agent = FakeSpecialist("Added 2 apples to your cart.")
    node = make_cart_node(agent, cache)
    state = make_state(
        "yes",
        workflowContext="add_to_cart_with_deals",
        pendingProduct=APPLES,
        dealData={"applied": True, "type": "product_deal", "includesCheckout": True},
    )

    fragment = await node(state)

    assert fragment["next"] == "supervisor"
    assert fragment["workflowContext"] == "add_to_cart_with_checkout"
    assert fragment["dealData"] == {"includesCheckout": False}
    assert 'productCode "apple"' in agent.last_text
    assert "with the product_deal deal applied." in agent.last_text


async def test_deal_add_without_checkout_closes_workflow(cache):
    node = make_cart_node(FakeSpecialist("Added 2 apples to your cart."), cache)
    state = make_state(
        "yes",
        workflowContext="add_to_cart_with_deals",
        pendingProduct=APPLES,
        dealData={"pending": True, "type": "product_deal"},
    )

    fragment = await node(state)

    assert fragment["workflowContext"] is None
    assert fragment["pendingProduct"] is None
    assert fragment["next"] == END


async def test_cart_listing_records_cart_data(cache):
    node = make_cart_node(FakeSpecialist('{"items": [{"productCode": "milk"}], "total": 3.49}'), cache)

    fragment = await node(make_state("show my cart"))

    assert fragment["cartData"] == {"items": [{"productCode": "milk"}], "total": 3.49}
    assert "workflowContext" not in fragment


# ── notification ─────────────────────────────────────────────────────────────


def test_notification_payload_links_order():
    payload = notification_payload({"userId": "u1", "summary": "Done", "orderId": "ORD-9", "timestamp": 5})
    assert payload["url"].endswith("/orders/ORD-9")
    assert payload["url_title"] == "View Order"
    assert "url" not in notification_payload({"userId": "u1"})


@pytest.mark.parametrize(
    "notifier, expected",
    [
        (FakeNotifier(), NOTIFICATION_SENT),
        (FakeNotifier(result={"ok": True, "result": {"status": 0}}), NOTIFICATION_FAILED),
        (FakeNotifier(error=RuntimeError("network")), NOTIFICATION_ERROR),
    ],
)
async def test_notification_outcomes(notifier, expected):
    node = make_notification_node(notifier)
    state = make_state(workflowContext="send_notification", notificationData={"userId": "u1", "orderId": "ORD-1"})

    fragment = await node(state)

    assert _texts(fragment) == [expected]
    assert fragment["notificationData"] is None
    assert fragment["workflowContext"] is None
    assert fragment["next"] == END
    assert notifier.sent[0]["user"] == "u1"


async def test_notification_without_data():
    notifier = FakeNotifier()
    fragment = await make_notification_node(notifier)(make_state())

    assert _texts(fragment) == [NOTIFICATION_MISSING]
    assert notifier.sent == []


def test_limit_reached_node_apologizes():
    fragment = limit_reached_node(make_state("hi", workflowContext="check_deals"))

    assert _texts(fragment) == [BUDGET_APOLOGY]
    assert fragment["workflowContext"] is None
    assert fragment["next"] == END
