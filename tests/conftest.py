import os
import sys
from decimal import Decimal

import pandas as pd
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(0, PROJECT_ROOT)

from fixed_point import rate_from_fraction
from fee_registry import PerformanceFeeRegistry

FEE_MANAGER = 'fee-manager'
RECIPIENT = 'fee-recipient'

@pytest.fixture
def registry():
    reg = PerformanceFeeRegistry(fee_manager=FEE_MANAGER)
    reg.add_fund_settings(FEE_MANAGER, 'fund', rate_from_fraction('0.10'), RECIPIENT)
    reg.activate_for_fund(FEE_MANAGER, 'fund')
    return reg

@pytest.fixture
def snapshots_df():
    return pd.DataFrame({
        'hook': ['Continuous', 'PreBuyShares', 'PostBuyShares', 'PreRedeemShares'],
        'gav': [Decimal('2'), Decimal('2'), Decimal('7'), Decimal('10.5')],
        'total_shares_supply': [Decimal('2'), Decimal('2'), Decimal('7'), Decimal('7')],
    })
