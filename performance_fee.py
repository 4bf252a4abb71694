"""
Performance fee calculator with a per-share high-water-mark.

Handles performance fee settlement for a pooled fund:
- A fee is owed only when the gross share price exceeds the high-water-mark (HWM)
- The fee is paid by minting dilutive shares to the fee recipient
- After a settlement the HWM moves to the post-dilution share price

Example (HWM = 1.0, rate = 10%):
- Shares supply = 2, GAV = 3 -> share price = 1.5, gain = 0.5 per share
- Value due = 0.5 * 10% * 2 = 0.1
- Shares due = 2 * 0.0666 / (2 - 0.0666) = 0.0689
- Next HWM = 3 / 2.0689 = 1.45

All amounts are 18-decimal fixed-point integers (see fixed_point.py) and
every division floors. The module-level functions are pure; applying their
results to stored state is left to the caller (see fee_registry.py).
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import pandas as pd

from fixed_point import SHARE_UNIT, RATE_UNIT, Number, to_fixed, from_fixed, rate_from_fraction


class InvariantViolation(ValueError):
    """Settlement inputs or results break a fee invariant."""


class UnauthorizedCaller(PermissionError):
    """Fee state was mutated by someone other than the fee manager."""


class FeeHook(Enum):
    """Points in the fund lifecycle where the fee manager invokes fees."""
    CONTINUOUS = 'Continuous'
    PRE_BUY_SHARES = 'PreBuyShares'
    POST_BUY_SHARES = 'PostBuyShares'
    PRE_REDEEM_SHARES = 'PreRedeemShares'


SETTLES_ON_HOOKS = (FeeHook.CONTINUOUS, FeeHook.PRE_BUY_SHARES, FeeHook.PRE_REDEEM_SHARES)
UPDATES_ON_HOOKS = (FeeHook.CONTINUOUS, FeeHook.POST_BUY_SHARES, FeeHook.PRE_REDEEM_SHARES)


class HookEligibility(NamedTuple):
    settles: bool
    updates: bool


# Event records, emitted by whoever applies the results

@dataclass(frozen=True)
class Settled:
    share_price: int
    shares_due: int


@dataclass(frozen=True)
class HighWaterMarkUpdated:
    next_high_water_mark: int


@dataclass(frozen=True)
class FundSettingsAdded:
    rate: int
    recipient: str


@dataclass(frozen=True)
class ActivatedForFund:
    high_water_mark: int


@dataclass(frozen=True)
class LastSharePriceUpdated:
    prev_share_price: int
    next_share_price: int


@dataclass(frozen=True)
class FeeState:
    """
    Per-fund performance fee state.

    Attributes:
        high_water_mark: Asset base units per share unit; never decreases
        rate: Fee fraction scaled by RATE_UNIT; fixed once the fund is configured
        recipient: Receiver of the minted fee shares
        last_share_price: Gross share price seen by the last update hook
        activated: Whether activate_for_fund has seeded the HWM
    """
    high_water_mark: int
    rate: int
    recipient: str
    last_share_price: int = 0
    activated: bool = False


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of one settlement; shares_due == 0 means nothing is applied."""
    shares_due: int
    next_high_water_mark: int
    share_price: int = 0
    value_due: int = 0
    events: Tuple = ()

    @property
    def settled(self) -> bool:
        return self.shares_due > 0


def parse_hook(hook: Union[FeeHook, str, None]) -> Optional[FeeHook]:
    """
    Resolve a hook identifier.

    Accepts a FeeHook, its value ('PreBuyShares') or its name
    ('PRE_BUY_SHARES'), case-insensitively. Unknown identifiers give None.
    """
    if isinstance(hook, FeeHook):
        return hook
    if isinstance(hook, str):
        key = hook.strip().lower()
        for member in FeeHook:
            if key in (member.value.lower(), member.name.lower()):
                return member
    return None


def eligible_on_hook(hook: Union[FeeHook, str, None]) -> HookEligibility:
    """
    Look up whether the fee settles and/or updates on a hook.

    | Hook            | settles | updates |
    |-----------------|---------|---------|
    | Continuous      | yes     | yes     |
    | PreBuyShares    | yes     | no      |
    | PostBuyShares   | no      | yes     |
    | PreRedeemShares | yes     | yes     |
    | anything else   | no      | no      |
    """
    member = parse_hook(hook)
    return HookEligibility(
        settles=member in SETTLES_ON_HOOKS,
        updates=member in UPDATES_ON_HOOKS,
    )


def settles_on_hook(hook: Union[FeeHook, str, None]) -> Tuple[bool, bool]:
    """Return (settles, uses_gav) for a hook."""
    settles = eligible_on_hook(hook).settles
    return settles, settles


def updates_on_hook(hook: Union[FeeHook, str, None]) -> Tuple[bool, bool]:
    """Return (updates, uses_gav) for a hook."""
    updates = eligible_on_hook(hook).updates
    return updates, updates


def implemented_hooks() -> List[FeeHook]:
    """Hooks on which the fee settles."""
    return list(SETTLES_ON_HOOKS)


def _require_non_negative(name: str, value: int):
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvariantViolation(f"{name} must be a fixed-point integer, got {value!r}")
    if value < 0:
        raise InvariantViolation(f"{name} must be non-negative, got {value}")


def _require_valid_rate(rate: int):
    _require_non_negative('rate', rate)
    if rate >= RATE_UNIT:
        raise InvariantViolation(f"rate must be below 100% ({RATE_UNIT}), got {rate}")


def add_fund_settings(rate: int, recipient: str, initial_share_price: int = SHARE_UNIT) -> FeeState:
    """
    Create the fee state for a fund adopting the performance fee.

    Args:
        rate: Fee fraction scaled by RATE_UNIT (10% = 10**17)
        recipient: Receiver of the fee shares
        initial_share_price: Starting HWM, one asset unit per share by default

    Returns:
        FeeState seeded with the initial share price as its HWM
    """
    _require_valid_rate(rate)
    _require_non_negative('initial_share_price', initial_share_price)
    return FeeState(high_water_mark=initial_share_price, rate=rate, recipient=recipient)


def activate_for_fund(state: FeeState, gross_share_value: int) -> FeeState:
    """
    Seed the HWM with the fund's gross share value at activation.

    A fund is activated once; after that only settlement moves the HWM.
    """
    if state.activated:
        raise InvariantViolation("Performance fee is already active for this fund")
    _require_non_negative('gross_share_value', gross_share_value)
    return replace(state, high_water_mark=gross_share_value, activated=True)


def _no_settlement(high_water_mark: int, share_price: int = 0) -> SettlementResult:
    return SettlementResult(shares_due=0, next_high_water_mark=high_water_mark, share_price=share_price)


def settle(state: FeeState, gav: int, total_shares_supply: int) -> SettlementResult:
    """
    Compute the shares due to the fee recipient and the next HWM.

    Uses the two-step dilution form:
        value_due = gain_per_share * rate * supply
        pre_dilution_shares = supply * value_due / gav
        shares_due = supply * pre_dilution_shares / (supply - pre_dilution_shares)
        next_hwm = gav / (supply + shares_due)

    Args:
        state: Current fee state of the fund
        gav: Gross asset value in asset base units
        total_shares_supply: Shares outstanding, scaled by SHARE_UNIT

    Returns:
        SettlementResult; zero shares_due and an unchanged HWM when no fee is owed

    Raises:
        InvariantViolation: On negative inputs, an invalid rate, or a fee
            value that would reach the whole GAV
    """
    _require_non_negative('high_water_mark', state.high_water_mark)
    _require_valid_rate(state.rate)
    _require_non_negative('gav', gav)
    _require_non_negative('total_shares_supply', total_shares_supply)

    high_water_mark = state.high_water_mark

    # Empty fund
    if total_shares_supply == 0:
        return _no_settlement(high_water_mark)

    share_price = gav * SHARE_UNIT // total_shares_supply
    if share_price <= high_water_mark:
        return _no_settlement(high_water_mark, share_price)

    gain_per_share = share_price - high_water_mark
    value_due = gain_per_share * state.rate // RATE_UNIT * total_shares_supply // SHARE_UNIT

    if value_due >= gav:
        raise InvariantViolation(
            f"Fee value {value_due} would consume the whole GAV {gav}"
        )

    pre_dilution_shares = total_shares_supply * value_due // gav
    shares_due = total_shares_supply * pre_dilution_shares // (total_shares_supply - pre_dilution_shares)

    # Gain too small to be represented as shares
    if shares_due == 0:
        return _no_settlement(high_water_mark, share_price)

    next_high_water_mark = gav * SHARE_UNIT // (total_shares_supply + shares_due)
    if next_high_water_mark < high_water_mark:
        raise InvariantViolation(
            f"High-water-mark would decrease from {high_water_mark} to {next_high_water_mark}"
        )

    return SettlementResult(
        shares_due=shares_due,
        next_high_water_mark=next_high_water_mark,
        share_price=share_price,
        value_due=value_due,
        events=(
            Settled(share_price=share_price, shares_due=shares_due),
            HighWaterMarkUpdated(next_high_water_mark=next_high_water_mark),
        ),
    )


def apply_settlement(state: FeeState, result: SettlementResult) -> FeeState:
    """Return the state with the settlement's HWM applied."""
    if not result.settled:
        return state
    return replace(state, high_water_mark=result.next_high_water_mark)


def update(state: FeeState, gav: int, total_shares_supply: int) -> FeeState:
    """
    Record the current gross share price without paying out.

    The HWM is left untouched. An empty fund leaves the state as is.
    """
    _require_non_negative('gav', gav)
    _require_non_negative('total_shares_supply', total_shares_supply)
    if total_shares_supply == 0:
        return state
    return replace(state, last_share_price=gav * SHARE_UNIT // total_shares_supply)


@dataclass
class PerformanceFeeCalculator:
    """
    Performance fee calculator for a single fund, working in decimals.

    Wraps the fixed-point functions above: inputs are converted with
    to_fixed, results are applied to the calculator's own state, and every
    call is recorded for an audit trail.

    Attributes:
        rate: Fee fraction (default 10%)
        recipient: Receiver of the fee shares
        initial_share_price: Starting HWM in asset units per share (default 1)
        history: List of settlement records
    """
    rate: Number = Decimal('0.10')
    recipient: str = ''
    initial_share_price: Number = 1
    history: List[Dict] = field(default_factory=list)

    def __post_init__(self):
        self.state = add_fund_settings(
            rate_from_fraction(self.rate),
            self.recipient,
            to_fixed(self.initial_share_price),
        )
        self._initial_state = self.state

    @property
    def high_water_mark(self) -> Decimal:
        return from_fixed(self.state.high_water_mark)

    def settle(
        self,
        gav: Number,
        total_shares_supply: Number,
        hook: Union[FeeHook, str] = FeeHook.CONTINUOUS,
        label: Optional[str] = None
    ) -> SettlementResult:
        """
        Settle the fee for one hook invocation.

        Settles only on hooks that settle, then records the share price on
        hooks that update (using the supply after minting).

        Args:
            gav: Gross asset value in asset units (e.g. "3")
            total_shares_supply: Shares outstanding (e.g. "2")
            hook: Fee hook being invoked
            label: Optional label for the audit trail

        Returns:
            SettlementResult in fixed point
        """
        eligibility = eligible_on_hook(hook)
        gav_fixed = to_fixed(gav)
        supply_fixed = to_fixed(total_shares_supply)
        hwm_before = self.state.high_water_mark

        if eligibility.settles:
            result = settle(self.state, gav_fixed, supply_fixed)
        else:
            result = _no_settlement(hwm_before)

        self.state = apply_settlement(self.state, result)
        if eligibility.updates:
            self.state = update(self.state, gav_fixed, supply_fixed + result.shares_due)

        member = parse_hook(hook)
        self.history.append({
            'label': label,
            'hook': member.value if member else str(hook),
            'gav': from_fixed(gav_fixed),
            'total_shares_supply': from_fixed(supply_fixed),
            'share_price': from_fixed(result.share_price),
            'high_water_mark_before': from_fixed(hwm_before),
            'value_due': from_fixed(result.value_due),
            'shares_due': from_fixed(result.shares_due),
            'high_water_mark_after': from_fixed(self.state.high_water_mark),
        })

        if result.settled:
            logging.info(
                f"Performance fee settled: {from_fixed(result.shares_due)} shares due, "
                f"HWM {from_fixed(hwm_before)} -> {from_fixed(result.next_high_water_mark)}"
            )

        return result

    def reset(self):
        """Reset the calculator to the state it was created with."""
        self.state = self._initial_state
        self.history = []

    def get_history_df(self) -> pd.DataFrame:
        """Get settlement history as DataFrame for audit purposes."""
        if not self.history:
            return pd.DataFrame(columns=[
                'label', 'hook', 'gav', 'total_shares_supply', 'share_price',
                'high_water_mark_before', 'value_due', 'shares_due', 'high_water_mark_after'
            ])
        return pd.DataFrame(self.history)
