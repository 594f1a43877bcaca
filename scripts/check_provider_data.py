#!/usr/bin/env python3
"""
Provider data check for a CMS Doctors and Clinicians extract.

Parses the file with the same limits the app uses, normalizes the rows and
prints a short quality summary.

Usage:
    python scripts/check_provider_data.py path/to/DAC_NationalDownloadableFile.csv [--max-rows 5000]
"""

import argparse
import logging
import sys
from pathlib import Path

# Allow running from a checkout without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mediconnect.data.normalization import normalize_rows  # noqa: E402
from mediconnect.data.tabular import DEFAULT_MAX_ROWS, DEFAULT_MIN_COLUMNS, EmptyInputError, parse_tabular  # noqa: E402
from mediconnect.utils.scoring import records_to_dataframe, summarize_provider_data  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def check_file(path: Path, max_rows: int, min_columns: int) -> int:
    """Parse and summarize one file. Returns a process exit code."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            result = parse_tabular(fh, max_rows=max_rows, min_columns=min_columns)
    except FileNotFoundError:
        logger.error(f"File not found: {path}")
        return 2
    except EmptyInputError as e:
        logger.error(f"{path}: {e}")
        return 1

    records = normalize_rows(result.rows)
    df = records_to_dataframe(records)

    print(f"📄 {path}")
    print(f"   Data lines read:   {result.data_lines}")
    print(f"   Rows accepted:     {len(result.rows)}")
    print(f"   Malformed skipped: {len(result.skipped)}")
    print(f"   Providers:         {len(records)}")
    if result.truncated:
        print(f"   ⚠️ Stopped at the {max_rows}-row limit")

    valid, msg = summarize_provider_data(df)
    if msg:
        print()
        print(msg)
    return 0 if valid else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check a CMS provider CSV file")
    parser.add_argument("path", type=Path, help="CSV file to check")
    parser.add_argument("--max-rows", type=int, default=DEFAULT_MAX_ROWS, help="Maximum data lines to read")
    parser.add_argument("--min-columns", type=int, default=DEFAULT_MIN_COLUMNS, help="Minimum fields per row")
    args = parser.parse_args(argv)
    return check_file(args.path, args.max_rows, args.min_columns)


if __name__ == "__main__":
    sys.exit(main())
