"""Payment-method tools."""

from typing import Optional

from langchain_core.tools import tool

from grocery_router import config
from shop_tools._responses import error, ok
from shop_tools.client import ShopAPIError, get_shop_client


def mask_card_number(number: str) -> str:
    digits = "".join(ch for ch in number if ch.isdigit())
    if len(digits) < 4:
        return "****"
    return f"**** **** **** {digits[-4:]}"


@tool
async def add_payment_method(
    card_number: str,
    expiry: str,
    cardholder_name: str,
    user_id: str = config.DEFAULT_USER_ID,
    nickname: Optional[str] = None,
) -> str:
    """Add a credit or debit card to the user's account.

    Args:
        card_number: Full card number as given by the user.
        expiry: Expiry date in MM/YY format.
        cardholder_name: Name printed on the card.
        user_id: The user id from the [userId:USER_ID] prefix of the message.
        nickname: Optional label such as "work card".
    """
    digits = "".join(ch for ch in card_number if ch.isdigit())
    if not 12 <= len(digits) <= 19:
        return error("Invalid card number")
    try:
        data = await get_shop_client().post(
            "/payment-methods",
            {
                "userId": user_id,
                "cardNumber": digits,
                "expiry": expiry,
                "cardholderName": cardholder_name,
                "nickname": nickname,
            },
        )
    except ShopAPIError as exc:
        return error(f"Failed to add payment method: {exc}")
    return ok(
        message=f"Payment method {mask_card_number(digits)} added",
        paymentMethodId=data.get("id") or data.get("paymentMethodId"),
        card=mask_card_number(digits),
    )


@tool
async def list_payment_methods(user_id: str = config.DEFAULT_USER_ID) -> str:
    """List the payment methods saved on the user's account (masked).

    Args:
        user_id: The user id from the [userId:USER_ID] prefix of the message.
    """
    try:
        data = await get_shop_client().get("/payment-methods", params={"userId": user_id})
    except ShopAPIError as exc:
        return error(f"Failed to list payment methods: {exc}")
    methods = [
        {
            "id": m.get("id"),
            "card": mask_card_number(str(m.get("cardNumber") or m.get("last4") or "")),
            "nickname": m.get("nickname"),
            "expiry": m.get("expiry"),
        }
        for m in data.get("paymentMethods") or []
    ]
    return ok(paymentMethods=methods, count=len(methods))
