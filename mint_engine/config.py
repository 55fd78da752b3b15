"""
Engine configuration.

Settings come from the environment (a .env file is loaded first). The
economics and timing values only seed a fresh ledger; once stored, the
ledger's own settings win and are changed with Database.save_economics /
Database.save_timing.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from mint_engine.database import Database, EconomicsConfig, MintTiming
from mint_engine.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_DB_PATH = "./mint_ledger.db"
DEFAULT_CURRENCIES = "HBAR,LAZY"


def setup_logging(level: Optional[str] = None):
    """Configure root logging for tools built on the engine."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level, logging.INFO))


def _get_int(environ: Mapping[str, str], name: str, default: Optional[int] = None) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise InvalidConfigurationError(f"Missing required setting {name}")
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be an integer, got {raw!r}")


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineSettings:
    """Runtime settings for a mint engine process."""
    db_path: str = DEFAULT_DB_PATH
    lock_timeout: float = 5.0
    log_level: str = "INFO"
    economics: EconomicsConfig = field(default_factory=EconomicsConfig)
    timing: MintTiming = field(default_factory=MintTiming)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """Build settings from environment variables.

        Args:
            environ: Variables to read. Defaults to os.environ after loading .env.
            dotenv_path: Explicit .env file (only used with os.environ)

        Raises:
            InvalidConfigurationError: Missing or out-of-range values
        """
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        currencies = [c.strip().upper() for c in environ.get("MINT_CURRENCIES", DEFAULT_CURRENCIES).split(",") if c.strip()]
        if len(currencies) < 2:
            raise InvalidConfigurationError("MINT_CURRENCIES must name at least two currencies")

        prices: Dict[str, int] = {currency: _get_int(environ, f"MINT_PRICE_{currency}") for currency in currencies}

        # Slot purchases and burns default to the second currency
        wl_slot_currency = environ.get("MINT_WL_SLOT_CURRENCY", currencies[1]).strip().upper()
        burn_currency = environ.get("MINT_BURN_CURRENCY", currencies[1]).strip().upper()

        economics = EconomicsConfig(
            base_prices=prices,
            wl_discount_percent=_get_int(environ, "MINT_WL_DISCOUNT", 0),
            sacrifice_discount_percent=_get_int(environ, "MINT_SACRIFICE_DISCOUNT", 0),
            max_units_per_tx=_get_int(environ, "MINT_MAX_PER_TX", 50),
            max_sacrifice_units=_get_int(environ, "MINT_MAX_SACRIFICE", 10),
            max_units_per_wallet=_get_int(environ, "MINT_MAX_PER_WALLET", 0),
            wl_slot_cost=_get_int(environ, "MINT_WL_SLOT_COST", 0),
            wl_slot_currency=wl_slot_currency or None,
            wl_slots_per_purchase=_get_int(environ, "MINT_WL_SLOTS_PER_PURCHASE", 1),
            burn_percentage=_get_int(environ, "MINT_BURN_PERCENTAGE", 50),
            burn_currency=burn_currency or None,
        )
        economics.validate()

        timing = MintTiming(
            paused=_get_bool(environ, "MINT_PAUSED", True),
            refund_window_seconds=_get_int(environ, "MINT_REFUND_WINDOW", 3600),
            refund_percentage=_get_int(environ, "MINT_REFUND_PERCENTAGE", 60),
            wl_only=_get_bool(environ, "MINT_WL_ONLY", False),
        )
        timing.validate()

        try:
            lock_timeout = float(environ.get("MINT_LOCK_TIMEOUT", "5"))
        except ValueError:
            raise InvalidConfigurationError("MINT_LOCK_TIMEOUT must be a number of seconds")

        return cls(
            db_path=environ.get("MINT_DB_PATH", DEFAULT_DB_PATH),
            lock_timeout=lock_timeout,
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            economics=economics,
            timing=timing,
        )

    def open_ledger(self) -> Database:
        """Open the ledger, seeding economics and timing if it is new."""
        logger.info(f"Opening mint ledger at {self.db_path} ({', '.join(self.economics.currencies)})")
        return Database(
            self.db_path,
            lock_timeout=self.lock_timeout,
            default_economics=self.economics,
            default_timing=self.timing,
        )
