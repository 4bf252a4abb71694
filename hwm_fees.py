import argparse
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import openpyxl
import pandas as pd

import utils
from config_loader import Config, load_config, validate_config
from fee_registry import PerformanceFeeRegistry
from snapshot_utils import normalize_snapshot_dataframe, read_snapshots


def run(config: Config, snapshot_path: str, fund_id: str = 'fund') -> Dict:
    """
    Replay a snapshot file through the performance fee for one fund.

    Registers the fund with the configured rate and recipient, activates it
    at one asset unit per share, then settles and updates on every row.
    """
    raw = read_snapshots(snapshot_path)
    snapshots = normalize_snapshot_dataframe(
        raw,
        gav_columns=config.snapshots.gav_columns,
        supply_columns=config.snapshots.supply_columns,
        hook_column=config.snapshots.hook_column,
        default_hook=config.snapshots.default_hook,
    )

    registry = PerformanceFeeRegistry(
        fee_manager=config.fee_manager,
        asset_decimals=config.fee.asset_decimals,
    )
    registry.add_fund_settings(config.fee_manager, fund_id, config.fee.rate_fixed, config.fee.recipient)
    registry.activate_for_fund(config.fee_manager, fund_id)

    results = registry.process_snapshots(snapshots, fund_id)
    results['summary'] = registry.get_summary(fund_id)
    return results


def save_results(results: Dict, output_dir: str = 'results') -> List[str]:
    """
    Save settlements and summary to Excel
    """
    logging.info(f"Saving results to {output_dir}")
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    os.makedirs(output_dir, exist_ok=True)

    settlements_file = os.path.join(output_dir, f'settlements_{timestamp}.xlsx')
    summary_file = os.path.join(output_dir, f'fee_summary_{timestamp}.xlsx')

    settlements = results['settlements'].copy()
    amount_columns = ['gav', 'total_shares_supply', 'share_price', 'high_water_mark_before',
                      'value_due', 'shares_due', 'high_water_mark_after']
    for col in amount_columns:
        if col in settlements.columns:
            settlements[col] = settlements[col].map(utils.format_units)

    with pd.ExcelWriter(settlements_file, engine='openpyxl') as writer:
        settlements.to_excel(writer, index=False)
        worksheet = writer.sheets['Sheet1']
        for idx, col in enumerate(settlements.columns):
            width = 24 if col in amount_columns else 15
            worksheet.column_dimensions[chr(ord('A') + idx)].width = width

    summary = results['summary']
    summary_df = pd.DataFrame([
        {'Metric': 'Fund', 'Value': results['fund_id']},
        {'Metric': 'Fee Recipient', 'Value': summary['recipient']},
        {'Metric': 'Performance Fee Rate', 'Value': f"{summary['rate']:.2%}"},
        {'Metric': '', 'Value': ''},
        {'Metric': 'Initial High-Water-Mark', 'Value': utils.format_units(results['initial_high_water_mark'])},
        {'Metric': 'Final High-Water-Mark', 'Value': utils.format_units(results['final_high_water_mark'])},
        {'Metric': 'Last Share Price', 'Value': utils.format_units(summary['last_share_price'])},
        {'Metric': '', 'Value': ''},
        {'Metric': 'Settlements', 'Value': str(results['settlement_count'])},
        {'Metric': 'Total Fee Shares Minted', 'Value': utils.format_units(results['total_shares_minted'])},
    ])

    with pd.ExcelWriter(summary_file, engine='openpyxl') as writer:
        summary_df.to_excel(writer, index=False)
        worksheet = writer.sheets['Sheet1']
        worksheet.column_dimensions['A'].width = 30
        worksheet.column_dimensions['B'].width = 28
        for row in worksheet.iter_rows():
            for cell in row:
                cell.alignment = openpyxl.styles.Alignment(wrap_text=True)

    logging.info(f"- Settlements: {os.path.basename(settlements_file)}")
    logging.info(f"- Summary: {os.path.basename(summary_file)}")
    return [settlements_file, summary_file]


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Replay fund snapshots through a high-water-mark performance fee.')
    parser.add_argument('-c', '--config', default='config.yaml', help='Config file')
    parser.add_argument('-i', '--input', required=True, help='Snapshot file (CSV or Excel)')
    parser.add_argument('-o', '--output-dir', default=None, help='Output directory (overrides config)')
    parser.add_argument('--fund-id', default='fund', help='Fund identifier')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log no-op settlements too')
    args = parser.parse_args(argv)

    config = load_config(args.config)
    utils.setup_logging('PerformanceFee', config.paths.log_dir,
                        level=logging.DEBUG if args.verbose else logging.INFO)

    for issue in validate_config(config):
        logging.warning(issue)

    results = run(config, args.input, args.fund_id)
    save_results(results, args.output_dir or config.paths.output_dir)

    print(f"Performance fee replay completed: {results['settlement_count']} settlements, "
          f"final high-water-mark {results['final_high_water_mark']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
