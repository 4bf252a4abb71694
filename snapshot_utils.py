"""
Snapshot utilities for the performance fee calculator.

Provides unified handling of fund snapshot files (GAV and shares supply
readings taken at fee hooks) exported in different layouts.
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import numpy as np
import pandas as pd


# Default column names in order of preference
DEFAULT_GAV_COLUMNS = ['gav', 'GAV', 'Gross Asset Value']
DEFAULT_SUPPLY_COLUMNS = ['total_shares_supply', 'shares_supply', 'Total Supply']
DEFAULT_HOOK_COLUMN = 'hook'


def get_column(df: pd.DataFrame, candidates: List[str], label: str = 'value') -> str:
    """
    Detect and return the first matching column name from a DataFrame.

    Args:
        df: DataFrame to check
        candidates: Column names to check, in order of preference
        label: What the column holds, for the error message

    Returns:
        Name of the first matching column found

    Raises:
        ValueError: If no recognized column is found
    """
    for col in candidates:
        if col in df.columns:
            return col

    # Try case-insensitive match as fallback
    df_cols_lower = {str(c).lower(): c for c in df.columns}
    for col in candidates:
        if col.lower() in df_cols_lower:
            return df_cols_lower[col.lower()]

    raise ValueError(
        f"No recognized {label} column found. "
        f"Expected one of {candidates}, got {list(df.columns)}"
    )


def parse_decimal(value) -> Optional[Decimal]:
    """
    Parse a snapshot cell into a Decimal.

    Strips thousands separators and whitespace. Returns None for empty,
    unparseable or non-finite cells.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, np.integer)):
        return Decimal(int(value))
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            return None
        return Decimal(str(value))
    text = str(value).replace(',', '').strip()
    if not text or text.lower() == 'nan':
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def normalize_snapshot_dataframe(
    snapshots_df: pd.DataFrame,
    gav_columns: Optional[List[str]] = None,
    supply_columns: Optional[List[str]] = None,
    hook_column: str = DEFAULT_HOOK_COLUMN,
    default_hook: str = 'Continuous'
) -> pd.DataFrame:
    """
    Normalize a snapshot DataFrame to 'hook', 'gav' and 'total_shares_supply'.

    Values are converted to Decimal. Rows with a missing or unparseable GAV
    or supply are dropped with a warning. A missing hook column (or empty
    hook cells) falls back to default_hook.

    Args:
        snapshots_df: Raw snapshot data
        gav_columns: Candidate GAV column names
        supply_columns: Candidate shares supply column names
        hook_column: Name of the hook column
        default_hook: Hook used when none is given

    Returns:
        DataFrame with normalized columns, original index preserved
    """
    if snapshots_df.empty:
        return pd.DataFrame(columns=['hook', 'gav', 'total_shares_supply'])

    gav_col = get_column(snapshots_df, gav_columns or DEFAULT_GAV_COLUMNS, 'GAV')
    supply_col = get_column(snapshots_df, supply_columns or DEFAULT_SUPPLY_COLUMNS, 'shares supply')

    result = pd.DataFrame(index=snapshots_df.index)
    if hook_column in snapshots_df.columns:
        result['hook'] = snapshots_df[hook_column].where(snapshots_df[hook_column].notna(), default_hook)
        result['hook'] = result['hook'].map(lambda h: str(h).strip() or default_hook)
    else:
        result['hook'] = default_hook

    result['gav'] = snapshots_df[gav_col].map(parse_decimal)
    result['total_shares_supply'] = snapshots_df[supply_col].map(parse_decimal)

    invalid = result['gav'].isna() | result['total_shares_supply'].isna()
    if invalid.any():
        logging.warning(f"Dropped {int(invalid.sum())} snapshot rows with missing GAV or shares supply")
        result = result[~invalid]

    return result


def read_snapshots(path: str) -> pd.DataFrame:
    """
    Read a snapshot file (CSV or Excel) with every cell kept as text.

    Text keeps amounts exact until they are converted to Decimal.
    """
    if not os.path.exists(path):
        raise ValueError(f"Snapshot file {path} not found")

    logging.info(f"Reading snapshots from {path}")
    ext = os.path.splitext(path)[1].lower()
    if ext in ('.xlsx', '.xls'):
        df = pd.read_excel(path, dtype=str)
    else:
        df = pd.read_csv(path, dtype=str)

    logging.info(f"Read {len(df)} snapshot records")
    return df
