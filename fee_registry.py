"""
Performance Fee Registry

Keeps performance fee state for many funds on behalf of a single fee manager,
the way the fee contract does for each fund it serves.

Responsibilities:
1. Access control: only the configured fee manager can change fee state
   ("Only the FeeManager can make this call")

2. Hook dispatch: settle() and update() consult the hook table and do nothing
   on hooks the fee does not act on

3. Atomic application: a settlement is computed in full before the stored
   state is replaced, so a failed settlement leaves the fund untouched

4. Event trail: FundSettingsAdded, ActivatedForFund, Settled,
   HighWaterMarkUpdated and LastSharePriceUpdated records are kept in
   `events` and logged

Share minting, GAV valuation and persistence are the caller's job; the
registry returns shares due and keeps the HWM.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Union
import logging

import pandas as pd

from fixed_point import SHARE_UNIT, to_fixed, from_fixed
import fixed_point
from performance_fee import (
    ActivatedForFund,
    FeeHook,
    FeeState,
    FundSettingsAdded,
    InvariantViolation,
    LastSharePriceUpdated,
    SettlementResult,
    UnauthorizedCaller,
    activate_for_fund,
    add_fund_settings,
    apply_settlement,
    eligible_on_hook,
    parse_hook,
    settle,
    update,
)


@dataclass
class PerformanceFeeRegistry:
    """
    Performance fee state for a set of funds, mutated only by the fee manager.

    Attributes:
        fee_manager: Identifier of the only caller allowed to mutate state
        asset_decimals: Decimals of the denomination asset (default 18)
    """
    fee_manager: str
    asset_decimals: int = 18
    funds: Dict[str, FeeState] = field(default_factory=dict)
    events: List[Dict] = field(default_factory=list)

    def _only_fee_manager(self, caller: str):
        if caller != self.fee_manager:
            raise UnauthorizedCaller("Only the FeeManager can make this call")

    def _get_state(self, fund_id: str) -> FeeState:
        try:
            return self.funds[fund_id]
        except KeyError:
            raise InvariantViolation(f"No performance fee settings for fund {fund_id}") from None

    def _emit(self, fund_id: str, event):
        record = {'fund_id': fund_id, 'event': type(event).__name__, **asdict(event)}
        self.events.append(record)
        logging.info(f"{record['event']} for fund {fund_id}: {asdict(event)}")

    @property
    def asset_unit(self) -> int:
        return fixed_point.asset_unit(self.asset_decimals)

    def add_fund_settings(self, caller: str, fund_id: str, rate: int, recipient: str) -> FeeState:
        """
        Register a fund with the performance fee.

        The HWM is seeded with one unit of the denomination asset per share.
        Settings are fixed once added; registering a fund twice raises
        InvariantViolation.
        """
        self._only_fee_manager(caller)
        if fund_id in self.funds:
            raise InvariantViolation(f"Performance fee settings already added for fund {fund_id}")
        state = add_fund_settings(rate, recipient, initial_share_price=self.asset_unit)
        self.funds[fund_id] = state
        self._emit(fund_id, FundSettingsAdded(rate=rate, recipient=recipient))
        return state

    def activate_for_fund(
        self,
        caller: str,
        fund_id: str,
        gross_share_value: Optional[int] = None
    ) -> FeeState:
        """
        Activate the fee for a fund, seeding the HWM with its gross share value.

        A new fund has no shares yet, so the gross share value defaults to
        one unit of the denomination asset. A fund can be activated only once.
        """
        self._only_fee_manager(caller)
        if gross_share_value is None:
            gross_share_value = self.asset_unit
        state = activate_for_fund(self._get_state(fund_id), gross_share_value)
        self.funds[fund_id] = state
        self._emit(fund_id, ActivatedForFund(high_water_mark=state.high_water_mark))
        return state

    def settle(
        self,
        caller: str,
        fund_id: str,
        hook: Union[FeeHook, str],
        gav: int,
        total_shares_supply: int
    ) -> SettlementResult:
        """
        Settle the performance fee for a fund on a hook.

        Args:
            caller: Must be the fee manager
            fund_id: Fund being settled
            hook: Hook being invoked; non-settling hooks are a no-op
            gav: Gross asset value in asset base units
            total_shares_supply: Shares outstanding in SHARE_UNIT

        Returns:
            SettlementResult with the shares the caller must mint

        Raises:
            UnauthorizedCaller: If caller is not the fee manager
            InvariantViolation: If the settlement breaks an invariant; the
                stored state is unchanged
        """
        self._only_fee_manager(caller)
        state = self._get_state(fund_id)

        if not eligible_on_hook(hook).settles:
            logging.debug(f"Hook {hook} does not settle the performance fee, skipping")
            return SettlementResult(shares_due=0, next_high_water_mark=state.high_water_mark)

        result = settle(state, gav, total_shares_supply)

        if result.settled:
            self.funds[fund_id] = apply_settlement(state, result)
            for event in result.events:
                self._emit(fund_id, event)
        else:
            logging.debug(f"No performance fee due for fund {fund_id}")

        return result

    def update(
        self,
        caller: str,
        fund_id: str,
        hook: Union[FeeHook, str],
        gav: int,
        total_shares_supply: int
    ) -> FeeState:
        """Record the fund's gross share price on hooks that update."""
        self._only_fee_manager(caller)
        state = self._get_state(fund_id)

        if not eligible_on_hook(hook).updates:
            return state

        next_state = update(state, gav, total_shares_supply)
        if next_state.last_share_price != state.last_share_price:
            self.funds[fund_id] = next_state
            self._emit(fund_id, LastSharePriceUpdated(
                prev_share_price=state.last_share_price,
                next_share_price=next_state.last_share_price,
            ))
        return next_state

    def get_fee_info_for_fund(self, fund_id: str) -> FeeState:
        return self._get_state(fund_id)

    def get_recipient_for_fund(self, fund_id: str) -> str:
        return self._get_state(fund_id).recipient

    def process_snapshots(
        self,
        snapshots: pd.DataFrame,
        fund_id: str,
        caller: Optional[str] = None
    ) -> Dict:
        """
        Replay a DataFrame of fund snapshots through settle() and update().

        Each row is a ledger reading taken when a hook fires, with columns
        'hook', 'gav' and 'total_shares_supply' in decimal units (see
        snapshot_utils.normalize_snapshot_dataframe). The update step sees
        the supply including the shares just minted.

        Returns comprehensive results including:
        - Initial and final HWM
        - Total shares minted to the recipient
        - Per-row settlements DataFrame
        """
        caller = caller if caller is not None else self.fee_manager
        initial_hwm = self._get_state(fund_id).high_water_mark
        unit = self.asset_unit

        rows = []
        total_shares_minted = 0
        for idx, row in snapshots.iterrows():
            hook = row['hook']
            gav = to_fixed(row['gav'], unit)
            supply = to_fixed(row['total_shares_supply'], SHARE_UNIT)
            hwm_before = self._get_state(fund_id).high_water_mark

            result = self.settle(caller, fund_id, hook, gav, supply)
            self.update(caller, fund_id, hook, gav, supply + result.shares_due)
            total_shares_minted += result.shares_due

            member = parse_hook(hook)
            rows.append({
                'row': idx,
                'hook': member.value if member else str(hook),
                'gav': from_fixed(gav, unit),
                'total_shares_supply': from_fixed(supply),
                'share_price': from_fixed(result.share_price, unit),
                'high_water_mark_before': from_fixed(hwm_before, unit),
                'value_due': from_fixed(result.value_due, unit),
                'shares_due': from_fixed(result.shares_due),
                'high_water_mark_after': from_fixed(self._get_state(fund_id).high_water_mark, unit),
            })

        settlements = pd.DataFrame(rows)
        settlement_count = int((settlements['shares_due'] > 0).sum()) if not settlements.empty else 0
        logging.info(f"Replayed {len(rows)} snapshots for fund {fund_id}, {settlement_count} settlements")

        return {
            'fund_id': fund_id,
            'initial_high_water_mark': from_fixed(initial_hwm, unit),
            'final_high_water_mark': from_fixed(self._get_state(fund_id).high_water_mark, unit),
            'total_shares_minted': from_fixed(total_shares_minted),
            'settlement_count': settlement_count,
            'settlements': settlements,
            'events': [e for e in self.events if e['fund_id'] == fund_id],
        }

    def get_summary(self, fund_id: str) -> Dict:
        """Get a summary of a fund's fee state in decimal units."""
        state = self._get_state(fund_id)
        unit = self.asset_unit
        return {
            'fund_id': fund_id,
            'recipient': state.recipient,
            'rate': from_fixed(state.rate),
            'high_water_mark': from_fixed(state.high_water_mark, unit),
            'last_share_price': from_fixed(state.last_share_price, unit),
            'settlements': sum(
                1 for e in self.events
                if e['fund_id'] == fund_id and e['event'] == 'Settled'
            ),
        }
