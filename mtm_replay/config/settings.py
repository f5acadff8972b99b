"""
Configuration settings for the replay engine.

**Conceptual**: This module provides a strongly-typed configuration object
that loads from environment variables (via .env files). The valuation
formulas depend on a handful of constants (contract size, conversion
fallback, position tolerance, starting balance). Each one is a named module
constant and an overridable setting; none of them appear as literals in the
engine code.

**Environment variables** (all optional):
  - MTM_LOT_NOTIONAL: Contract size of one lot (default 100000).
  - MTM_DEFAULT_CONVERSION_FX: Conversion factor used when a price bar has
    none (default 130.932).
  - MTM_POSITION_TOLERANCE: Band around zero treated as a flat position
    (default 0.001).
  - MTM_STARTING_BALANCE: Seed balance for the drawdown simulation
    (default 100000).
  - MTM_DEFAULT_LOTS: Lot size assumed for report rows without a size
    (default 1.0).
  - MTM_PRICE_TIMEFRAME: Bar timeframe requested from the price source
    (default "M15").

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root (no-op when the file is absent)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


# Reference values used by the strategy-tester reports
LOT_NOTIONAL = 100_000.0
DEFAULT_CONVERSION_FX = 130.932
POSITION_TOLERANCE = 0.001
STARTING_BALANCE = 100_000.0
DEFAULT_LOTS = 1.0
DEFAULT_PRICE_TIMEFRAME = "M15"


def _float_from_env(name: str, default: float) -> float:
    """Read a float environment variable, naming the variable on failure."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw}")


@dataclass(frozen=True)
class ReplaySettings:
    """
    Valuation and metrics constants for a replay run.

    **Conceptual**: One settings object is passed explicitly to the replay
    engine, the metrics aggregator, and the ledger normalizer. Tests build
    their own instances instead of touching the environment.

    Attributes:
        lot_notional: Units of the base currency per lot. Floating P&L is
                     (close - AEP) * position * lot_notional / conversion_fx.
        default_conversion_fx: Conversion factor for bars that carry none.
                              Must be positive.
        position_tolerance: Positions with abs(value) below this are flat
                           (AEP and floating P&L report 0).
        starting_balance: Seed balance for the running-balance drawdown.
        default_lots: Lot size for ledger rows that do not state one.
        price_timeframe: Bar timeframe label requested from the price source.
    """
    lot_notional: float = LOT_NOTIONAL
    default_conversion_fx: float = DEFAULT_CONVERSION_FX
    position_tolerance: float = POSITION_TOLERANCE
    starting_balance: float = STARTING_BALANCE
    default_lots: float = DEFAULT_LOTS
    price_timeframe: str = DEFAULT_PRICE_TIMEFRAME

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.lot_notional <= 0:
            raise ValueError(f"lot_notional must be positive, got: {self.lot_notional}")
        if self.default_conversion_fx <= 0:
            raise ValueError(
                f"default_conversion_fx must be positive, got: {self.default_conversion_fx}"
            )
        if self.position_tolerance <= 0:
            raise ValueError(
                f"position_tolerance must be positive, got: {self.position_tolerance}"
            )
        if self.starting_balance <= 0:
            raise ValueError(
                f"starting_balance must be positive, got: {self.starting_balance}"
            )
        if self.default_lots <= 0:
            raise ValueError(f"default_lots must be positive, got: {self.default_lots}")
        if not self.price_timeframe:
            raise ValueError("price_timeframe must be a non-empty string.")

    @classmethod
    def from_env(cls) -> "ReplaySettings":
        """
        Load replay settings from environment variables.

        Unset or blank variables fall back to the module constants.

        Returns:
            ReplaySettings object with values loaded from environment.

        Raises:
            ValueError: If a variable is not numeric or fails validation.

        Usage example:
            >>> # In .env file:
            >>> # MTM_LOT_NOTIONAL=10000
            >>> settings = ReplaySettings.from_env()
            >>> settings.lot_notional
            10000.0
        """
        return cls(
            lot_notional=_float_from_env("MTM_LOT_NOTIONAL", LOT_NOTIONAL),
            default_conversion_fx=_float_from_env(
                "MTM_DEFAULT_CONVERSION_FX", DEFAULT_CONVERSION_FX
            ),
            position_tolerance=_float_from_env("MTM_POSITION_TOLERANCE", POSITION_TOLERANCE),
            starting_balance=_float_from_env("MTM_STARTING_BALANCE", STARTING_BALANCE),
            default_lots=_float_from_env("MTM_DEFAULT_LOTS", DEFAULT_LOTS),
            price_timeframe=os.getenv("MTM_PRICE_TIMEFRAME", "").strip() or DEFAULT_PRICE_TIMEFRAME,
        )


# Lazily loaded on first get_settings() call; tests inject ReplaySettings directly.
_default_settings: Optional[ReplaySettings] = None


def get_settings() -> ReplaySettings:
    """
    Get the cached settings loaded from the environment.

    Returns:
        ReplaySettings loaded on first call and reused afterwards.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = ReplaySettings.from_env()

    return _default_settings


def reset_settings():
    """
    Reset the cached settings (for testing).

    Returns:
        None (side effect: clears the settings cache).
    """
    global _default_settings
    _default_settings = None
