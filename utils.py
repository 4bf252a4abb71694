import logging
import os
from logging.handlers import RotatingFileHandler
from datetime import datetime


def setup_logging(file_prefix, log_dir='Logs', level=logging.INFO):
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = os.path.join(log_dir, f'{file_prefix}_{timestamp}.log')

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5),
            logging.StreamHandler()
        ],
        force=True
    )
    return log_file


def format_units(value, places=6):
    """Format a Decimal amount for reports, e.g. 1.450000."""
    return f'{value:,.{places}f}'
