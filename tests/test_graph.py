"""End-to-end turns through the compiled router graph.

The oracle and specialists are scripted, so no API keys are needed and every
turn is deterministic.
"""

import asyncio
import json

import pytest

from grocery_router.graph import RouterResources, build_graph
from grocery_router.nodes import BUDGET_APOLOGY, NOTIFICATION_SENT
from grocery_router.runner import SupervisorAgent, final_reply

from tests.conftest import FakeSpecialist

DEAL_OFFER = "Apples are 20% off this week! Would you like to apply this deal?"


def _plan(**fields):
    return json.dumps({"action": "delegate", "confidence": 0.9, "reasoning": "test", **fields})


@pytest.fixture
def agent(resources):
    return SupervisorAgent(user_id="u1", resources=resources)


def test_graph_has_expected_nodes(resources):
    """The compiled graph has the planner, supervisor, specialists and sentinels."""
    graph = build_graph(resources)

    node_names = set(graph.get_graph().nodes.keys())
    for expected in ("planner", "supervisor", "catalog", "deals", "cart_and_checkout",
                     "payment", "notification_agent", "limit_reached"):
        assert expected in node_names, f"'{expected}' node missing. Found: {node_names}"


def test_resources_require_every_executor(oracle, notifier):
    with pytest.raises(ValueError, match="payment"):
        RouterResources(
            oracle=oracle,
            specialists={name: FakeSpecialist() for name in ("catalog", "deals", "cart_and_checkout")},
            notifier=notifier,
        )


async def test_catalog_turn(agent, oracle, specialists):
    oracle.queue(_plan(targetAgent="catalog"))
    specialists["catalog"].queue("We have Gala and Fuji apples.")

    state = await agent.chat("show me apples")

    assert final_reply(state) == "We have Gala and Fuji apples."
    assert state["delegationDepth"] == 1
    assert len(oracle.calls) == 1


async def test_direct_response_skips_specialists(agent, oracle, specialists):
    oracle.queue(json.dumps({"action": "direct_response", "confidence": 0.95,
                             "task": "I can help with groceries, not the weather."}))

    state = await agent.chat("what's the weather?")

    assert final_reply(state) == "I can help with groceries, not the weather."
    assert all(not fake.calls for fake in specialists.values())


async def test_deal_offer_then_confirmation(agent, oracle, specialists):
    """The confirming turn enters at the supervisor and reaches the cart."""
    oracle.queue(_plan(targetAgent="deals"), '{"product": "apples", "quantity": 2}')
    specialists["deals"].queue(DEAL_OFFER)
    specialists["cart_and_checkout"].queue("Added 2 apples to your cart.")

    first = await agent.chat("check deals on 2 apples")
    assert first["workflowContext"] == "awaiting_deal_confirmation"
    assert first["pendingProduct"] == {"product": "apples", "quantity": 2}

    second = await agent.chat("yes please")

    assert final_reply(second) == "Added 2 apples to your cart."
    assert second.get("workflowContext") is None
    assert second.get("pendingProduct") is None
    assert second["delegationDepth"] == 1
    assert len(oracle.calls) == 2
    assert 'productCode "apple"' in specialists["cart_and_checkout"].last_text


async def test_declined_deal(agent, oracle, specialists):
    oracle.queue(_plan(targetAgent="deals"), '{"product": "apples", "quantity": 2}')
    specialists["deals"].queue(DEAL_OFFER)

    await agent.chat("check deals on 2 apples")
    state = await agent.chat("no thanks")

    assert final_reply(state).startswith("No problem!")
    assert state.get("workflowContext") is None
    assert specialists["cart_and_checkout"].calls == []


async def test_deals_cart_checkout_chain(agent, oracle, specialists, notifier):
    """One request runs deals, cart, checkout and the notification in a single turn."""
    oracle.queue(
        _plan(targetAgent="supervisor", autoApplyIntent=True),
        '{"product": "apples", "quantity": 2}',
    )
    specialists["deals"].queue(DEAL_OFFER)
    specialists["cart_and_checkout"].queue(
        "Added 2 apples to your cart.",
        json.dumps({"checkoutStatus": "success", "orderId": "ORD-7", "summary": "Order ORD-7 placed",
                    "items": [{"productCode": "apple", "quantity": 2}], "total": 4.78}),
    )

    state = await agent.chat("check deals on apples and add them to my cart, then checkout")

    assert final_reply(state) == NOTIFICATION_SENT
    assert state["delegationDepth"] == 4
    assert state.get("workflowContext") is None
    assert state.get("notificationData") is None
    assert len(specialists["cart_and_checkout"].calls) == 2
    assert notifier.sent[0]["url"].endswith("/orders/ORD-7")


async def test_recursion_limit_aborts_with_apology(resources, oracle, specialists):
    agent = SupervisorAgent(user_id="u1", resources=resources, recursion_limit=4)
    oracle.queue(
        _plan(targetAgent="supervisor", autoApplyIntent=True),
        '{"product": "apples", "quantity": 2}',
    )
    specialists["deals"].queue(DEAL_OFFER)

    state = await agent.chat("check deals on apples and add them to my cart, then checkout")

    assert final_reply(state) == BUDGET_APOLOGY
    assert state.get("workflowContext") is None


async def test_turn_timeout_aborts_with_apology(resources, oracle):
    class SlowSpecialist(FakeSpecialist):
        async def ainvoke(self, payload, session_id=None):
            await asyncio.sleep(5)

    resources.specialists["catalog"] = SlowSpecialist()
    agent = SupervisorAgent(user_id="u1", resources=resources, turn_timeout=0.2)
    oracle.queue(_plan(targetAgent="catalog"))

    state = await agent.chat("show me apples")

    assert final_reply(state) == BUDGET_APOLOGY


async def test_stream_yields_node_updates(agent, oracle, specialists):
    oracle.queue(_plan(targetAgent="payment"))
    specialists["payment"].queue("Your saved cards: Visa ending 4242.")

    nodes = [node for update in [u async for u in agent.stream("list my cards")] for node in update]

    assert nodes == ["planner", "supervisor", "payment"]


async def test_clear_session_forgets_thread(agent, oracle, specialists):
    oracle.queue(_plan(targetAgent="catalog"))
    await agent.chat("show me apples", session_id="s1")
    assert agent.get_active_sessions() == ["s1"]

    await agent.clear_session("s1")

    assert await agent.get_current_state("s1") == {}
    assert agent.get_active_sessions() == []


def test_health_check(agent):
    health = agent.health_check()

    assert health["status"] == "ok"
    assert health["oracle"] == "ScriptedOracle"
    assert health["specialists"] == ["cart_and_checkout", "catalog", "deals", "payment"]
