"""Cart tools: add items, view the cart and check out.

``checkout_cart`` always answers with the checkout JSON contract
(``checkoutStatus``, ``orderId``, ``summary``, ``items``, ``total``) so the
cart specialist can pass it through verbatim.
"""

import logging
import time
from typing import Any, Optional

from langchain_core.tools import tool

from grocery_router import config
from shop_tools._responses import error, ok
from shop_tools.client import ShopAPIError, get_shop_client

logger = logging.getLogger(__name__)


@tool
async def add_to_cart(product_code: str, quantity: float = 1, user_id: str = config.DEFAULT_USER_ID) -> str:
    """Add an item to the user's shopping cart.

    Use for messages like "[userId:user123] Please add 2 apple to cart using
    productCode "apple"".

    Args:
        product_code: Catalog product code, e.g. "apple", "banana", "milk".
        quantity: Number of items to add (default 1).
        user_id: The user id from the [userId:USER_ID] prefix of the message.
    """
    if not product_code:
        return error("Missing required field: product_code")
    try:
        data = await get_shop_client().post(
            "/add-to-cart",
            {"productCode": product_code, "quantity": quantity, "userId": user_id},
        )
    except ShopAPIError as exc:
        return error(f"Failed to add item to cart: {exc}")

    if data.get("success") is False:
        return error(data.get("message") or "Failed to add item to cart", details=data)
    item = data.get("cartItem") or {}
    return ok(
        message=f"Successfully added {quantity} x {product_code} to cart",
        cartItem=item,
        total=item.get("totalPrice", 0),
    )


@tool
async def get_cart(user_id: str = config.DEFAULT_USER_ID) -> str:
    """Get the current cart contents for a user.

    Do not call this when the cart is already in the conversation context,
    and never more than once per request.

    Args:
        user_id: The user id from the [userId:USER_ID] prefix of the message.
    """
    try:
        data = await get_shop_client().get("/get-cart", params={"userId": user_id})
    except ShopAPIError as exc:
        return error(str(exc))
    if data.get("success") is False:
        return error(data.get("error") or "Failed to get cart")
    return ok(cart=data.get("cart"), message=data.get("message") or "Cart retrieved successfully")


def checkout_contract(response: dict[str, Any], cart_data: Optional[dict]) -> dict[str, Any]:
    """Map a checkout backend response onto the checkout JSON contract."""
    cart_data = cart_data or {}
    cart = response.get("cart") or {}
    return {
        "checkoutStatus": response.get("checkoutStatus") or "success",
        "orderId": response.get("orderId") or response.get("id"),
        "summary": response.get("summary") or response.get("message") or "Order placed",
        "items": response.get("items") or cart.get("items") or cart_data.get("items"),
        "total": response.get("total") or cart.get("total") or cart_data.get("total"),
    }


@tool
async def checkout_cart(user_id: str = config.DEFAULT_USER_ID, cart_data: Optional[dict] = None) -> str:
    """Check out the user's entire shopping cart.

    Use ONLY for explicit checkout, purchase or "place my order" requests.
    Pass the cart retrieved with get_cart as cart_data.

    Args:
        user_id: The user id from the [userId:USER_ID] prefix of the message.
        cart_data: Cart contents (items, quantities and total).
    """
    try:
        data = await get_shop_client().post(
            "/checkout",
            {"action": "checkout_cart", "userId": user_id, "cart": cart_data or {}},
        )
    except ShopAPIError as exc:
        logger.warning("Checkout failed for %s: %s", user_id, exc)
        contract = {
            "checkoutStatus": "failed",
            "orderId": None,
            "summary": f"Checkout failed: {exc}",
            "items": (cart_data or {}).get("items"),
            "total": (cart_data or {}).get("total"),
        }
    else:
        contract = checkout_contract(data, cart_data)
        if contract["checkoutStatus"] == "success" and not contract["orderId"]:
            contract["orderId"] = f"ORD-{int(time.time() * 1000)}"
    return ok(**contract) if contract["checkoutStatus"] == "success" else error(
        contract["summary"], **contract
    )
