"""Centralized router configuration.

Reads from environment variables with sensible defaults so that the router
works out of the box (offline, with a scripted oracle) while remaining fully
customizable.
"""

import os

from dotenv import load_dotenv

load_dotenv()


# ── LLM Settings ──────────────────────────────────────────────────────────────
MODEL_NAME: str = os.getenv("AGENT_MODEL", "gemini-2.0-flash")
TEMPERATURE: float = float(os.getenv("AGENT_TEMPERATURE", "0.0"))
ORACLE_TIMEOUT_SECONDS: float = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "50"))
SPECIALIST_MAX_ITERATIONS: int = int(os.getenv("SPECIALIST_MAX_ITERATIONS", "6"))

# ── Routing thresholds ────────────────────────────────────────────────────────
PLANNER_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("PLANNER_CONFIDENCE_THRESHOLD", "0.7")
)
CONTINUATION_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("CONTINUATION_CONFIDENCE_THRESHOLD", "0.7")
)
DIRECT_RESPONSE_MIN_CONFIDENCE: float = float(
    os.getenv("DIRECT_RESPONSE_MIN_CONFIDENCE", "0.7")
)

# ── Conversation state ────────────────────────────────────────────────────────
DEFAULT_USER_ID: str = os.getenv("DEFAULT_USER_ID", "default-user")
MAX_PERMANENT_MESSAGES: int = int(os.getenv("MAX_PERMANENT_MESSAGES", "10"))
MAX_EPHEMERAL_MESSAGES: int = int(os.getenv("MAX_EPHEMERAL_MESSAGES", "5"))
CONTEXT_MAX_ENTRIES: int = int(os.getenv("CONTEXT_MAX_ENTRIES", "6"))
PROGRESS_AUTO_REMOVE_MS: int = int(os.getenv("PROGRESS_AUTO_REMOVE_MS", "5000"))

# ── Turn budgets ──────────────────────────────────────────────────────────────
MAX_DELEGATIONS: int = int(os.getenv("MAX_DELEGATIONS", "5"))
GRAPH_RECURSION_LIMIT: int = int(os.getenv("GRAPH_RECURSION_LIMIT", "25"))
TURN_TIMEOUT_SECONDS: float = float(os.getenv("TURN_TIMEOUT_SECONDS", "60"))

# ── Caching & circuit breakers ────────────────────────────────────────────────
CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "30"))
CIRCUIT_WINDOW_SECONDS: int = int(os.getenv("CIRCUIT_WINDOW_SECONDS", "60"))  # seconds
CIRCUIT_LIMITS: dict[str, int] = {
    "add_to_cart": int(os.getenv("CART_ADD_LIMIT", "2")),
    "get_cart": int(os.getenv("CART_VIEW_LIMIT", "3")),
}

# ── External services ─────────────────────────────────────────────────────────
SHOP_API_URL: str = os.getenv("SHOP_API_URL", "http://localhost:3000/api")
SHOP_API_TIMEOUT_SECONDS: float = float(os.getenv("SHOP_API_TIMEOUT_SECONDS", "15"))
PUSHOVER_API_URL: str = os.getenv(
    "PUSHOVER_API_URL", "https://api.pushover.net/1/messages.json"
)
ORDER_URL_TEMPLATE: str = os.getenv(
    "ORDER_URL_TEMPLATE", "https://groceryapp.com/orders/{order_id}"
)

# ── API Keys ──────────────────────────────────────────────────────────────────
GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
PUSHOVER_APP_TOKEN: str = os.getenv("PUSHOVER_APP_TOKEN", "")
PUSHOVER_USER_KEY: str = os.getenv("PUSHOVER_USER_KEY", "")

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")
ROUTER_LOG_DIR: str = os.getenv("ROUTER_LOG_DIR", "")  # empty disables the audit log
