"""
Tests for PerformanceFeeRegistry

These tests validate the registry that:
1. Only lets the fee manager change fee state
2. Settles and updates only on the hooks the fee acts on
3. Leaves stored state untouched when a settlement fails
4. Keeps an event trail of every state change
"""

from decimal import Decimal

import pandas as pd
import pytest

from fixed_point import SHARE_UNIT, RATE_UNIT, rate_from_fraction
from fee_registry import PerformanceFeeRegistry
from performance_fee import FeeHook, FeeState, InvariantViolation, UnauthorizedCaller

FEE_MANAGER = 'fee-manager'
TEN_PERCENT = rate_from_fraction('0.10')


class TestAccessControl:
    """Only the fee manager can mutate state."""

    def test_add_fund_settings_requires_fee_manager(self):
        registry = PerformanceFeeRegistry(fee_manager=FEE_MANAGER)
        with pytest.raises(UnauthorizedCaller, match='Only the FeeManager can make this call'):
            registry.add_fund_settings('random-user', 'fund', TEN_PERCENT, 'fee-recipient')
        assert 'fund' not in registry.funds

    def test_activate_requires_fee_manager(self, registry):
        with pytest.raises(UnauthorizedCaller):
            registry.activate_for_fund('random-user', 'fund')

    def test_settle_requires_fee_manager(self, registry):
        with pytest.raises(UnauthorizedCaller):
            registry.settle('random-user', 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        assert registry.get_fee_info_for_fund('fund').high_water_mark == SHARE_UNIT

    def test_update_requires_fee_manager(self, registry):
        with pytest.raises(UnauthorizedCaller):
            registry.update('random-user', 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)


class TestFundSettings:
    """Tests for registering and activating funds."""

    def test_new_fund(self, registry):
        state = registry.get_fee_info_for_fund('fund')
        assert state.high_water_mark == SHARE_UNIT
        assert state.rate == TEN_PERCENT
        assert registry.get_recipient_for_fund('fund') == 'fee-recipient'

    def test_events(self, registry):
        assert [e['event'] for e in registry.events] == ['FundSettingsAdded', 'ActivatedForFund']
        assert registry.events[0]['rate'] == TEN_PERCENT
        assert registry.events[1]['high_water_mark'] == SHARE_UNIT

    def test_six_decimal_asset_seeds_asset_unit(self):
        registry = PerformanceFeeRegistry(fee_manager=FEE_MANAGER, asset_decimals=6)
        registry.add_fund_settings(FEE_MANAGER, 'usdc-fund', TEN_PERCENT, 'fee-recipient')
        state = registry.activate_for_fund(FEE_MANAGER, 'usdc-fund')
        assert state.high_water_mark == 10 ** 6

    def test_activate_with_gross_share_value(self):
        registry = PerformanceFeeRegistry(fee_manager=FEE_MANAGER)
        registry.add_fund_settings(FEE_MANAGER, 'fund', TEN_PERCENT, 'fee-recipient')
        state = registry.activate_for_fund(FEE_MANAGER, 'fund', gross_share_value=2 * SHARE_UNIT)
        assert state.high_water_mark == 2 * SHARE_UNIT
        assert state.activated

    def test_settings_cannot_be_replaced(self, registry):
        before = registry.get_fee_info_for_fund('fund')
        with pytest.raises(InvariantViolation, match='already added'):
            registry.add_fund_settings(FEE_MANAGER, 'fund', rate_from_fraction('0.40'), 'other')

        assert registry.get_fee_info_for_fund('fund') is before
        assert registry.get_recipient_for_fund('fund') == 'fee-recipient'
        assert len(registry.events) == 2

    def test_second_activation_rejected(self, registry):
        with pytest.raises(InvariantViolation, match='already active'):
            registry.activate_for_fund(FEE_MANAGER, 'fund', gross_share_value=2 * SHARE_UNIT)
        assert registry.get_fee_info_for_fund('fund').high_water_mark == SHARE_UNIT
        assert len(registry.events) == 2

    def test_activation_cannot_lower_hwm_after_settlement(self, registry):
        registry.settle(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        hwm = registry.get_fee_info_for_fund('fund').high_water_mark

        with pytest.raises(InvariantViolation):
            registry.activate_for_fund(FEE_MANAGER, 'fund')

        assert registry.get_fee_info_for_fund('fund').high_water_mark == hwm
        assert hwm > SHARE_UNIT
        assert registry.events[-1]['event'] == 'HighWaterMarkUpdated'

    def test_unknown_fund(self, registry):
        with pytest.raises(InvariantViolation):
            registry.get_fee_info_for_fund('missing')

    def test_invalid_rate(self):
        registry = PerformanceFeeRegistry(fee_manager=FEE_MANAGER)
        with pytest.raises(InvariantViolation):
            registry.add_fund_settings(FEE_MANAGER, 'fund', RATE_UNIT, 'fee-recipient')
        assert registry.events == []


class TestSettle:
    """Tests for settlement through the registry."""

    def test_settles_and_stores_hwm(self, registry):
        result = registry.settle(FEE_MANAGER, 'fund', FeeHook.PRE_REDEEM_SHARES, 3 * SHARE_UNIT, 2 * SHARE_UNIT)

        assert result.settled
        state = registry.get_fee_info_for_fund('fund')
        assert state.high_water_mark == result.next_high_water_mark
        assert abs(state.high_water_mark - 1_450_000_000_000_000_000) < 1000

    def test_settlement_events(self, registry):
        result = registry.settle(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)

        settled, hwm_updated = registry.events[-2:]
        assert settled['event'] == 'Settled'
        assert settled['share_price'] == 1_500_000_000_000_000_000
        assert settled['shares_due'] == result.shares_due
        assert hwm_updated['event'] == 'HighWaterMarkUpdated'
        assert hwm_updated['next_high_water_mark'] == result.next_high_water_mark

    def test_post_buy_shares_does_not_settle(self, registry):
        result = registry.settle(FEE_MANAGER, 'fund', FeeHook.POST_BUY_SHARES, 3 * SHARE_UNIT, 2 * SHARE_UNIT)

        assert result.shares_due == 0
        assert registry.get_fee_info_for_fund('fund').high_water_mark == SHARE_UNIT
        assert len(registry.events) == 2

    def test_no_fee_emits_nothing(self, registry):
        registry.settle(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 2 * SHARE_UNIT, 2 * SHARE_UNIT)
        assert len(registry.events) == 2

    def test_failed_settlement_leaves_state(self, registry):
        before = registry.get_fee_info_for_fund('fund')
        with pytest.raises(InvariantViolation):
            registry.settle(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, -1, 2 * SHARE_UNIT)
        assert registry.get_fee_info_for_fund('fund') is before
        assert len(registry.events) == 2

    def test_corrupt_rate_leaves_state(self):
        registry = PerformanceFeeRegistry(fee_manager=FEE_MANAGER)
        corrupt = FeeState(high_water_mark=SHARE_UNIT, rate=RATE_UNIT, recipient='x')
        registry.funds['fund'] = corrupt
        with pytest.raises(InvariantViolation):
            registry.settle(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        assert registry.funds['fund'] is corrupt

    def test_buy_and_redeem_at_constant_price_pays_nothing(self, registry):
        """Buying and redeeming without a value change mints no fee shares."""
        # Initial investment of 2 units
        registry.settle(FEE_MANAGER, 'fund', FeeHook.PRE_BUY_SHARES, 0, 0)
        registry.update(FEE_MANAGER, 'fund', FeeHook.POST_BUY_SHARES, 2 * SHARE_UNIT, 2 * SHARE_UNIT)
        # Buy 5 more, then redeem them
        registry.settle(FEE_MANAGER, 'fund', FeeHook.PRE_BUY_SHARES, 2 * SHARE_UNIT, 2 * SHARE_UNIT)
        registry.update(FEE_MANAGER, 'fund', FeeHook.POST_BUY_SHARES, 7 * SHARE_UNIT, 7 * SHARE_UNIT)
        result = registry.settle(FEE_MANAGER, 'fund', FeeHook.PRE_REDEEM_SHARES, 7 * SHARE_UNIT, 7 * SHARE_UNIT)

        assert result.shares_due == 0
        assert registry.get_summary('fund')['settlements'] == 0


class TestUpdate:
    """Tests for the update hook."""

    def test_records_last_share_price(self, registry):
        state = registry.update(FEE_MANAGER, 'fund', FeeHook.POST_BUY_SHARES, 3 * SHARE_UNIT, 2 * SHARE_UNIT)

        assert state.last_share_price == 1_500_000_000_000_000_000
        assert state.high_water_mark == SHARE_UNIT
        assert registry.events[-1]['event'] == 'LastSharePriceUpdated'
        assert registry.events[-1]['prev_share_price'] == 0

    def test_pre_buy_shares_does_not_update(self, registry):
        state = registry.update(FEE_MANAGER, 'fund', FeeHook.PRE_BUY_SHARES, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        assert state.last_share_price == 0
        assert len(registry.events) == 2

    def test_unchanged_price_emits_nothing(self, registry):
        registry.update(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        registry.update(FEE_MANAGER, 'fund', FeeHook.CONTINUOUS, 3 * SHARE_UNIT, 2 * SHARE_UNIT)
        assert [e['event'] for e in registry.events].count('LastSharePriceUpdated') == 1


class TestProcessSnapshots:
    """Tests for replaying snapshot DataFrames."""

    def test_replay(self, registry, snapshots_df):
        results = registry.process_snapshots(snapshots_df, 'fund')

        assert results['settlement_count'] == 1
        assert results['initial_high_water_mark'] == Decimal(1)
        # 10.5 GAV / (7 + 7/29) shares = 1.45
        assert float(results['final_high_water_mark']) == pytest.approx(1.45, abs=1e-12)
        assert float(results['total_shares_minted']) == pytest.approx(7 / 29, abs=1e-12)
        assert len(results['settlements']) == 4

    def test_replay_settlements_columns(self, registry, snapshots_df):
        settlements = registry.process_snapshots(snapshots_df, 'fund')['settlements']

        assert list(settlements['hook']) == ['Continuous', 'PreBuyShares', 'PostBuyShares', 'PreRedeemShares']
        assert settlements.iloc[3]['share_price'] == Decimal('1.5')
        assert settlements.iloc[3]['high_water_mark_before'] == Decimal(1)

    def test_replay_updates_with_post_mint_supply(self, registry, snapshots_df):
        registry.process_snapshots(snapshots_df, 'fund')
        state = registry.get_fee_info_for_fund('fund')
        # Last update saw the diluted supply, so it matches the new HWM
        assert state.last_share_price == state.high_water_mark

    def test_replay_empty(self, registry):
        empty = pd.DataFrame(columns=['hook', 'gav', 'total_shares_supply'])
        results = registry.process_snapshots(empty, 'fund')
        assert results['settlement_count'] == 0
        assert results['final_high_water_mark'] == Decimal(1)

    def test_summary(self, registry, snapshots_df):
        registry.process_snapshots(snapshots_df, 'fund')
        summary = registry.get_summary('fund')

        assert summary['recipient'] == 'fee-recipient'
        assert summary['rate'] == Decimal('0.1')
        assert summary['settlements'] == 1
