"""Shared utility functions for the database build and query scripts.

- Logging filename generation
- Logging setup
- Directory existence enforcement
- Summit reference normalisation
"""
from __future__ import annotations

import re
import sys
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

import offline_qth.config as config

__all__ = [
    "REF_PATTERN",
    "generate_log_filename",
    "setup_logging",
    "ensure_directories",
    "normalize_ref",
    "is_valid_ref",
]

# Canonical summit reference, e.g. JA/NS-001, W7O/NC-001, 3Y/BV-001
REF_PATTERN = re.compile(r'^[A-Z0-9]+/[A-Z0-9]+-\d+$')


def generate_log_filename(prefix: str = "log", source: Optional[Path] = None) -> str:
    """Generate a log filename.

    Args:
        prefix: Prefix for the log filename (default 'log')
        source: Input file path (optional); its stem is included in the name
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    if source:
        return f"{prefix}_{source.stem}_{timestamp}.txt"
    return f"{prefix}_{timestamp}.txt"


def setup_logging(log_file: Optional[str] = None, quiet: bool = False, level: int = logging.INFO):
    """Configure logging to file and optional stdout."""
    log_format = '%(asctime)s - %(levelname)s - %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    handlers = []
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    if not quiet or not handlers:
        handlers.append(logging.StreamHandler(sys.stdout))

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True,  # Ensure reconfiguration when called from multiple scripts
    )


def ensure_directories(*directories: Optional[Path]):
    """Ensure directories exist (defaults to the configured cache directory)."""
    if not directories:
        directories = (config.CACHE_DIR,)
    for directory in directories:
        if directory:
            directory.mkdir(parents=True, exist_ok=True)
            logging.debug(f"Ensured directory exists: {directory}")


def normalize_ref(raw: str) -> str:
    """Canonicalise user-typed refs: 'ja_ns-001 ' -> 'JA/NS-001'."""
    return raw.strip().upper().replace('_', '/')


def is_valid_ref(ref: str) -> bool:
    return bool(REF_PATTERN.match(ref))
