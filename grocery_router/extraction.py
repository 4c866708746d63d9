"""Product-extraction fallback.

Asks the oracle for a strict ``{"product", "quantity"}`` object when routing
needs to know what the user is talking about but nothing is recorded yet.
"""

import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from grocery_router import config
from grocery_router.cache import ResultCache, digest
from grocery_router.oracle import ask_oracle
from grocery_router.parsing import safe_parse_json
from grocery_router.state import ProductInfo

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "Extract the grocery product and quantity the user is talking about.\n"
    'Respond with ONLY a JSON object: {"product": "<product name>", "quantity": <number>}.\n'
    "Use quantity 1 when none is given. Keep the product name as the user "
    "wrote it (e.g. \"apples\", \"whole milk\").\n"
    "If the message does not mention a product, respond with: null"
)


def validate_product(data) -> Optional[ProductInfo]:
    if not isinstance(data, dict):
        return None
    product = data.get("product")
    quantity = data.get("quantity")
    if not isinstance(product, str) or not product.strip():
        return None
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        return None
    if isinstance(quantity, float) and quantity.is_integer():
        quantity = int(quantity)
    return {"product": product.strip(), "quantity": quantity}


class ProductExtractor:
    """Oracle-backed ``{product, quantity}`` extraction with caching."""

    def __init__(self, oracle, cache: ResultCache, timeout: float = config.ORACLE_TIMEOUT_SECONDS):
        self._oracle = oracle
        self._cache = cache
        self._timeout = timeout

    async def extract(self, message: str) -> Optional[ProductInfo]:
        """Return the product mentioned in *message*, or None to ask the user."""
        text = (message or "").strip()
        if not text:
            return None

        key = "extract:" + digest(text.lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached["product"]

        try:
            answer = await ask_oracle(
                self._oracle,
                [SystemMessage(content=EXTRACTION_PROMPT), HumanMessage(content=text)],
                self._timeout,
            )
        except Exception as exc:
            logger.warning("Product extraction failed: %s", exc)
            return None

        product = validate_product(safe_parse_json(answer))
        self._cache.set(key, {"product": product})
        return product
