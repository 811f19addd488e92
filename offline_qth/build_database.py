"""
Build the single-file SOTA summit database from the worldwide summits CSV.

Download the CSV from https://www.sotadata.org.uk/ (summitslist.csv) first.
"""
import sys
import argparse
import logging
from pathlib import Path

from offline_qth.config import DEFAULT_CSV_PATH, OUTPUT_PATH
from offline_qth.exceptions import IngestionError
from offline_qth.ingestion import build_database
from offline_qth.utils import generate_log_filename, setup_logging


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Build SOTA SQLite database from worldwide SOTA CSV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build from the default CSV location
  python -m offline_qth.build_database

  # Build from a specific CSV file
  python -m offline_qth.build_database ~/Downloads/summitslist.csv

  # Quiet mode (log to file only, no console output)
  python -m offline_qth.build_database summitslist.csv --quiet
        """
    )
    parser.add_argument(
        'csv',
        nargs='?',
        type=Path,
        default=DEFAULT_CSV_PATH,
        help=f'Path to the SOTA summits CSV (default: {DEFAULT_CSV_PATH})'
    )
    parser.add_argument(
        '-o', '--output',
        type=Path,
        default=OUTPUT_PATH,
        help=f'Output database path (default: {OUTPUT_PATH})'
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress stdout output (logs will still be written to file)'
    )
    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Do not write a log file'
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main processing function"""
    args = parse_arguments(argv)

    log_file = None if args.no_log_file else generate_log_filename(prefix="build", source=args.csv)
    setup_logging(log_file, args.quiet)

    logging.info("Building SOTA SQLite Database")
    logging.info("=" * 50)
    logging.info(f"Input CSV:  {args.csv}")
    logging.info(f"Output DB:  {args.output}")

    try:
        report = build_database(args.csv, args.output)
    except IngestionError as e:
        logging.error(str(e))
        if not args.csv.exists():
            logging.error("Please download the worldwide SOTA CSV from: https://www.sotadata.org.uk/")
        return 1

    logging.info("")
    logging.info("=== Statistics ===")
    logging.info(f"Total summits:    {report.processed:,}")
    logging.info(f"Skipped lines:    {report.skipped:,}")
    logging.info(f"Errors:           {report.errored:,}")
    logging.info(f"Database size:    {report.output_size_mb:.2f} MB")
    logging.info("Top associations:")
    for entry in report.top_associations:
        logging.info(f"  {str(entry['association']):<20} {entry['count']:,}")
    logging.info(f"Database ready at: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
