"""Copy-trader configuration loaded from environment variables."""

import logging
import os
import sys

from pythonjsonlogger import jsonlogger


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key, "").strip().lower()
    if raw in ("true", "1", "yes"):
        return True
    if raw in ("false", "0", "no"):
        return False
    return default


def _env_list(key: str) -> list[str]:
    raw = os.environ.get(key, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# Caps set to this value never trigger under normal trade sizes.
UNLIMITED = 1e12

# ---------------------------------------------------------------------------
# Polymarket API base URLs
# ---------------------------------------------------------------------------
GAMMA_API_URL = os.environ.get("GAMMA_API_URL", "https://gamma-api.polymarket.com")
CLOB_API_URL = os.environ.get("CLOB_API_URL", "https://clob.polymarket.com")
DATA_API_URL = os.environ.get("DATA_API_URL", "https://data-api.polymarket.com")

# ---------------------------------------------------------------------------
# API client settings
# ---------------------------------------------------------------------------
HTTP_TIMEOUT = _env_float("HTTP_TIMEOUT", 30.0)    # httpx timeout in seconds
API_RATE_PER_SECOND = _env_float("API_RATE_PER_SECOND", 10.0)
API_RATE_BURST = _env_float("API_RATE_BURST", 20.0)

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
DATA_DIR = os.environ.get("DATA_DIR", "./data")

# ---------------------------------------------------------------------------
# Targets and execution mode
# ---------------------------------------------------------------------------
COPY_TARGETS = [w.lower() for w in _env_list("COPY_TARGETS")]
EXECUTION_MODE = os.environ.get("EXECUTION_MODE", "paper").lower()  # paper | live
EXECUTION_DRY_RUN = _env_bool("DRY_RUN", False)

EXECUTION_PRIVATE_KEY = os.environ.get("EXECUTION_PRIVATE_KEY", "")
EXECUTION_FUNDER_ADDRESS = os.environ.get("EXECUTION_FUNDER_ADDRESS", "")
EXECUTION_CHAIN_ID = int(os.environ.get("EXECUTION_CHAIN_ID", "137"))  # Polygon
EXECUTION_SIGNATURE_TYPE = int(os.environ.get("EXECUTION_SIGNATURE_TYPE", "0"))

# ---------------------------------------------------------------------------
# Sizing
# ---------------------------------------------------------------------------
SIZING_MODE = os.environ.get("SIZING_MODE", "proportional").lower()
DEFAULT_USD_SIZE = _env_float("DEFAULT_USD_SIZE", 10.0)
DEFAULT_SHARES_SIZE = _env_float("DEFAULT_SHARES_SIZE", 10.0)
PROPORTIONAL_MULTIPLIER = _env_float("PROPORTIONAL_MULTIPLIER", 0.01)
MIN_ORDER_SIZE = _env_float("MIN_ORDER_SIZE", 0.01)        # USD
MIN_ORDER_SHARES = _env_float("MIN_ORDER_SHARES", 0.01)
SLIPPAGE = _env_float("SLIPPAGE", 0.01)                    # 0.01 = 1%

# ---------------------------------------------------------------------------
# Risk limits
# ---------------------------------------------------------------------------
RISK_MAX_USD_PER_TRADE = _env_float("MAX_USD_PER_TRADE", 100.0)
RISK_MAX_USD_PER_MARKET = _env_float("MAX_USD_PER_MARKET", 500.0)
RISK_MAX_DAILY_USD_VOLUME = _env_float("MAX_DAILY_USD_VOLUME", 1000.0)
RISK_MARKET_ALLOWLIST = _env_list("MARKET_ALLOWLIST")
RISK_MARKET_DENYLIST = _env_list("MARKET_DENYLIST")

# ---------------------------------------------------------------------------
# Paper trading
# ---------------------------------------------------------------------------
PAPER_STARTING_BALANCE = _env_float("PAPER_STARTING_BALANCE", 1000.0)
PAPER_FEE_RATE = _env_float("PAPER_FEE_RATE", 0.001)       # 0.1%
STOP_LOSS_PERCENT = _env_float("STOP_LOSS_PERCENT", 0.0)   # 0 = disabled

# ---------------------------------------------------------------------------
# Polling / reconciliation intervals (seconds)
# ---------------------------------------------------------------------------
POLL_INTERVAL = _env_float("POLL_INTERVAL", 5.0)
ACTIVITY_LIMIT = int(_env_float("ACTIVITY_LIMIT", 50))
MAX_SIGNAL_AGE = _env_float("MAX_SIGNAL_AGE", 300.0)       # 5 minutes
RECONCILE_INTERVAL = _env_float("RECONCILE_INTERVAL", 300.0)
FORCE_SETTLE_EXPIRED = _env_bool("FORCE_SETTLE_EXPIRED", False)
SEEN_TRADES_MAX = 5000                                     # per target wallet

# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
HEALTH_CHECK_PORT = int(os.environ.get("HEALTH_CHECK_PORT", "8080"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def setup_logging() -> None:
    """Send JSON log lines to stdout; one event name per line."""
    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
