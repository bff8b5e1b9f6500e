"""
Trading settings read from an external key/value store.

The store itself (persistence, UI editing) lives outside this package;
here we only parse its string values into a typed, immutable Settings
snapshot. A fresh snapshot is taken for every scan and execution so an
edit is picked up without restarting.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Protocol

from .errors import SettingsError


class ThresholdMode(Enum):
    FIXED = "fixed"
    PERCENT = "percent"


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot."""
    threshold_mode: ThresholdMode = ThresholdMode.FIXED
    min_profit_fixed: Decimal = Decimal("50")
    min_profit_percent: Decimal = Decimal("0.5")
    max_position_size: Decimal = Decimal("1000")
    slippage_tolerance: Decimal = Decimal("0.5")  # percent
    gas_estimates: Mapping[int, Decimal] = field(default_factory=dict)

    # auto execution session limits
    auto_execute: bool = False
    session_duration_sec: int = 600
    auto_exec_max_per_session: int = 5

    @property
    def slippage_bps(self) -> int:
        """slippage_tolerance percent -> basis points (0.5% -> 50)."""
        return int(self.slippage_tolerance * 100)

    def gas_estimate(self, chain_id: int) -> Decimal:
        return self.gas_estimates.get(chain_id, Decimal("0"))


class SettingsStore(Protocol):
    """External key/value collaborator. Values are strings."""

    def get_all(self) -> Mapping[str, str]: ...


class InMemorySettingsStore:
    """Dict-backed store, used by the CLI and in tests."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = {k: str(v) for k, v in (values or {}).items()}

    def get_all(self) -> Mapping[str, str]:
        return dict(self._values)

    def set(self, key: str, value: object) -> None:
        self._values[key] = str(value)

    def update(self, values: Mapping[str, object]) -> None:
        for key, value in values.items():
            self.set(key, value)


def _decimal(values: Mapping[str, str], key: str, default: Decimal) -> Decimal:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise SettingsError(f"Setting {key}={raw!r} is not a number") from None
    if not value.is_finite() or value < 0:
        raise SettingsError(f"Setting {key}={raw!r} must be a non-negative number")
    return value


def _int(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"Setting {key}={raw!r} is not an integer") from None
    if value < 0:
        raise SettingsError(f"Setting {key}={raw!r} must not be negative")
    return value


def _bool(values: Mapping[str, str], key: str, default: bool) -> bool:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_settings(
    values: Mapping[str, str],
    chain_gas_defaults: Optional[Mapping[int, Decimal]] = None,
) -> Settings:
    """
    Parse raw store values into Settings.

    gasEstimate_<chainId> keys override the per-chain defaults from the
    chain registry. minProfitThreshold is accepted as an alias of
    minProfitFixed.
    """
    mode_raw = values.get("thresholdMode", ThresholdMode.FIXED.value).strip().lower()
    try:
        mode = ThresholdMode(mode_raw)
    except ValueError:
        raise SettingsError(f"thresholdMode must be 'fixed' or 'percent', got {mode_raw!r}") from None

    fixed_key = "minProfitFixed" if "minProfitFixed" in values else "minProfitThreshold"

    slippage = _decimal(values, "slippageTolerance", Decimal("0.5"))
    if slippage > 100:
        raise SettingsError(f"slippageTolerance must be within [0, 100], got {slippage}")

    gas_estimates: Dict[int, Decimal] = dict(chain_gas_defaults or {})
    for key in values:
        if key.startswith("gasEstimate_"):
            try:
                chain_id = int(key.split("_", 1)[1])
            except ValueError:
                raise SettingsError(f"Malformed gas estimate key {key!r}") from None
            gas_estimates[chain_id] = _decimal(values, key, Decimal("0"))

    return Settings(
        threshold_mode=mode,
        min_profit_fixed=_decimal(values, fixed_key, Decimal("50")),
        min_profit_percent=_decimal(values, "minProfitPercent", Decimal("0.5")),
        max_position_size=_decimal(values, "maxPositionSize", Decimal("1000")),
        slippage_tolerance=slippage,
        gas_estimates=gas_estimates,
        auto_execute=_bool(values, "autoExecute", False),
        session_duration_sec=_int(values, "sessionDurationSec", 600),
        auto_exec_max_per_session=_int(values, "autoExecMaxPerSession", 5),
    )


def load_settings(store: SettingsStore, chain_gas_defaults: Optional[Mapping[int, Decimal]] = None) -> Settings:
    return parse_settings(store.get_all(), chain_gas_defaults)


def chain_gas_defaults(chains: Iterable) -> Dict[int, Decimal]:
    """Per-chain gasEstimate values from the registry."""
    return {chain.chain_id: chain.gas_estimate for chain in chains}
