"""
Offline ingestion of the SOTA summits CSV into a single-file database blob.

The blob is a SQLite database holding the ``summits`` table, the
``summits_idx`` bounding-box table and a small ``metadata`` table. It is
written in rollback-journal mode and vacuumed so that one file is the whole
dataset.
"""
from __future__ import annotations

import os
import math
import logging
import sqlite3
from pathlib import Path
from dataclasses import astuple
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

from offline_qth.config import (
    BATCH_SIZE, HEADER_LINES, MIN_FIELDS, PROGRESS_EVERY, SCHEMA_VERSION,
    SOURCE_NAME, TOP_ASSOCIATIONS,
)
from offline_qth.exceptions import IngestionError
from offline_qth.models import IngestionReport, ParsedRow, SpatialIndexEntry
from offline_qth.utils import is_valid_ref

__all__ = [
    "SCHEMA_SQL",
    "RowRejected",
    "split_csv_line",
    "parse_row",
    "iter_source_rows",
    "build_database",
]

SCHEMA_SQL = """
CREATE TABLE summits (
    id INTEGER PRIMARY KEY,
    ref TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    altitude INTEGER NOT NULL,
    points INTEGER NOT NULL,
    activations INTEGER DEFAULT 0,
    bonus INTEGER,
    association TEXT,
    region TEXT,
    valid_from TEXT,
    valid_to TEXT
);

CREATE INDEX idx_summits_ref ON summits(ref);
CREATE INDEX idx_summits_coords ON summits(lat, lon);
CREATE INDEX idx_summits_association ON summits(association);

CREATE TABLE summits_idx (
    id INTEGER PRIMARY KEY,
    minLat REAL NOT NULL,
    maxLat REAL NOT NULL,
    minLon REAL NOT NULL,
    maxLon REAL NOT NULL
);

CREATE INDEX idx_summits_idx_bbox ON summits_idx(minLat, maxLat, minLon, maxLon);

CREATE TABLE metadata (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

INSERT_SUMMIT = """
INSERT INTO summits (id, ref, name, lat, lon, altitude, points, activations, bonus,
                     association, region, valid_from, valid_to)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

INSERT_SPATIAL_INDEX = """
INSERT INTO summits_idx (id, minLat, maxLat, minLon, maxLon)
VALUES (?, ?, ?, ?, ?)
"""


class RowRejected(ValueError):
    """A CSV row failed validation and is counted as skipped."""


def split_csv_line(line: str, separator: str = ',', quote: str = '"') -> List[str]:
    """Split one CSV line.

    A quote character toggles quoting and is dropped; a separator outside
    quotes ends the field. Fields are stripped of surrounding whitespace.
    """
    parts: List[str] = []
    current: List[str] = []
    in_quotes = False
    for char in line:
        if char == quote:
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            parts.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
    parts.append(''.join(current).strip())
    return parts


def _parse_float(value: str, field_name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise RowRejected(f"invalid {field_name}: {value!r}")
    if not math.isfinite(result):
        raise RowRejected(f"invalid {field_name}: {value!r}")
    return result


def _parse_int(value: str, field_name: str) -> int:
    """Integer coercion accepting '1234' and '1234.0'."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(_parse_float(value, field_name))


def _parse_optional_int(value: str, field_name: str) -> Optional[int]:
    if not value:
        return None
    try:
        return _parse_int(value, field_name)
    except RowRejected:
        logging.debug(f"Ignoring unparseable optional {field_name}: {value!r}")
        return None


def parse_row(parts: List[str]) -> ParsedRow:
    """Validate one split CSV row.

    SOTA column order: SummitCode, AssociationName, RegionName, SummitName,
    AltM, AltFt, GridRef1, GridRef2, Longitude, Latitude, Points, BonusPoints,
    ValidFrom, ValidTo, ActivationCount, ActivationDate, ActivationCall.

    Raises:
        RowRejected: if the row must be skipped
    """
    if len(parts) < MIN_FIELDS:
        raise RowRejected(f"expected at least {MIN_FIELDS} fields, got {len(parts)}")

    padded = parts + [''] * (15 - len(parts))
    (ref, association, region, name, alt_m, _alt_ft, _grid1, _grid2,
     longitude, latitude, points, bonus, valid_from, valid_to, activation_count) = padded[:15]

    if not ref:
        raise RowRejected("empty summit reference")
    if not is_valid_ref(ref):
        logging.debug(f"Non-canonical summit reference kept as is: {ref!r}")
    if not name:
        raise RowRejected(f"{ref}: empty summit name")

    lat = _parse_float(latitude, 'latitude')
    lon = _parse_float(longitude, 'longitude')
    altitude = _parse_int(alt_m, 'altitude')
    pts = _parse_int(points, 'points')

    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise RowRejected(f"{ref}: coordinates out of range ({lat}, {lon})")
    if altitude < 0:
        raise RowRejected(f"{ref}: negative altitude {altitude}")
    if pts < 1:
        raise RowRejected(f"{ref}: points must be >= 1, got {pts}")

    activations = _parse_optional_int(activation_count, 'activations') or 0
    bonus_value = _parse_optional_int(bonus, 'bonus')
    if activations < 0:
        raise RowRejected(f"{ref}: negative activation count {activations}")
    if bonus_value is not None and bonus_value < 0:
        raise RowRejected(f"{ref}: negative bonus {bonus_value}")

    return ParsedRow(
        ref=ref,
        name=name,
        lat=lat,
        lon=lon,
        altitude=altitude,
        points=pts,
        activations=activations,
        bonus=bonus_value,
        association=association,
        region=region,
        valid_from=valid_from or None,
        valid_to=valid_to or None,
    )


def iter_source_rows(csv_path: Path) -> Iterator[Tuple[int, List[str]]]:
    """Yield (line_number, fields) for every data line, skipping headers and blanks."""
    with open(csv_path, 'r', encoding='utf-8', errors='replace', newline='') as f:
        for line_number, line in enumerate(f, 1):
            if line_number <= HEADER_LINES:
                continue
            line = line.rstrip('\r\n')
            if not line.strip():
                continue
            yield line_number, split_csv_line(line)


class _BatchWriter:
    """Collects parsed rows and inserts them one transaction per batch.

    Each row gets its own savepoint so a failing row is rolled back without
    losing the rest of its batch.
    """

    def __init__(self, conn: sqlite3.Connection, report: IngestionReport, batch_size: int = BATCH_SIZE):
        self.conn = conn
        self.report = report
        self.batch_size = batch_size
        self.batch: List[Tuple[int, ParsedRow]] = []
        self.next_id = 1
        self._last_progress = 0

    def add(self, line_number: int, row: ParsedRow) -> None:
        self.batch.append((line_number, row))
        if len(self.batch) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self.batch:
            return
        conn = self.conn
        conn.execute("BEGIN")
        try:
            for line_number, row in self.batch:
                conn.execute("SAVEPOINT summit_row")
                try:
                    conn.execute(INSERT_SUMMIT, (
                        self.next_id, row.ref, row.name, row.lat, row.lon, row.altitude,
                        row.points, row.activations, row.bonus, row.association,
                        row.region, row.valid_from, row.valid_to,
                    ))
                    entry = SpatialIndexEntry.for_point(self.next_id, row.lat, row.lon)
                    conn.execute(INSERT_SPATIAL_INDEX, astuple(entry))
                except Exception as e:  # noqa: BLE001
                    conn.execute("ROLLBACK TO summit_row")
                    conn.execute("RELEASE summit_row")
                    self.report.errored += 1
                    logging.error(f"Line {line_number}: error inserting {row.ref}: {e}")
                    continue
                conn.execute("RELEASE summit_row")
                self.next_id += 1
                self.report.processed += 1
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            self.batch = []

        if self.report.processed - self._last_progress >= PROGRESS_EVERY:
            self._last_progress = self.report.processed
            logging.info(f"   Processed: {self.report.processed:,} summits...")


def _write_metadata(conn: sqlite3.Connection, row_count: int, source: str, csv_path: Path) -> None:
    try:
        source_date = datetime.fromtimestamp(csv_path.stat().st_mtime, timezone.utc).date().isoformat()
    except OSError:
        source_date = None
    entries = [
        ('schema_version', SCHEMA_VERSION),
        ('build_date', datetime.now(timezone.utc).isoformat(timespec='seconds')),
        ('source', source),
        ('sota_version', source_date),
        ('row_count', str(row_count)),
    ]
    with conn:
        conn.executemany("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", entries)


def _top_associations(conn: sqlite3.Connection, limit: int = TOP_ASSOCIATIONS) -> List[dict]:
    rows = conn.execute(
        """
        SELECT association, COUNT(*) AS count
        FROM summits
        GROUP BY association
        ORDER BY count DESC, association ASC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [{'association': association, 'count': count} for association, count in rows]


def _remove_if_exists(path: Path) -> None:
    for candidate in (path, path.with_name(path.name + '-journal')):
        if candidate.exists():
            candidate.unlink()


def build_database(csv_path: Path, output_path: Path, batch_size: int = BATCH_SIZE,
                   source: str = SOURCE_NAME) -> IngestionReport:
    """Ingest a SOTA summits CSV into a single-file SQLite database.

    Args:
        csv_path: SOTA summits CSV (two header lines, then one summit per line)
        output_path: Destination database file; replaced atomically on success
        batch_size: Rows per transaction
        source: Value recorded as metadata 'source'

    Returns:
        IngestionReport with processed/skipped/errored counts and output size

    Raises:
        IngestionError: if the source is missing or the output location is unusable
    """
    csv_path = Path(csv_path)
    output_path = Path(output_path)

    if not csv_path.is_file():
        raise IngestionError(f"CSV file not found: {csv_path}")

    output_dir = output_path.parent
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IngestionError(f"Cannot create output directory {output_dir}: {e}") from e
    if not os.access(output_dir, os.W_OK):
        raise IngestionError(f"Output directory is not writable: {output_dir}")

    tmp_path = output_path.with_name(output_path.name + '.tmp')
    report = IngestionReport()

    try:
        _remove_if_exists(tmp_path)
        conn = sqlite3.connect(tmp_path, isolation_level=None)
    except (OSError, sqlite3.Error) as e:
        raise IngestionError(f"Cannot create database at {tmp_path}: {e}") from e

    try:
        conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.executescript(SCHEMA_SQL)

        writer = _BatchWriter(conn, report, batch_size)
        logging.info(f"Importing summits from: {csv_path}")
        try:
            for line_number, parts in iter_source_rows(csv_path):
                try:
                    row = parse_row(parts)
                except RowRejected as e:
                    report.skipped += 1
                    logging.debug(f"Line {line_number}: skipped ({e})")
                    continue
                except Exception as e:  # noqa: BLE001
                    report.errored += 1
                    logging.error(f"Line {line_number}: parse error - {e}")
                    continue
                writer.add(line_number, row)
            writer.flush()
        except OSError as e:
            raise IngestionError(f"Error reading {csv_path}: {e}") from e

        logging.info(f"   Processed: {report.processed:,} summits")
        logging.info("Optimizing database...")
        _write_metadata(conn, report.processed, source, csv_path)
        conn.execute("ANALYZE")
        conn.execute("VACUUM")
        report.top_associations = _top_associations(conn)
    except BaseException:
        conn.close()
        _remove_if_exists(tmp_path)
        raise
    conn.close()

    try:
        os.replace(tmp_path, output_path)
    except OSError as e:
        _remove_if_exists(tmp_path)
        raise IngestionError(f"Cannot write output database {output_path}: {e}") from e

    report.output_size = output_path.stat().st_size
    logging.info(f"Database written: {output_path} ({report.output_size_mb:.2f} MB)")
    return report
