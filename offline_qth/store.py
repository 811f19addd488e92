"""
In-memory record store decoded from a database blob.

The blob's ``summits`` table becomes a pandas DataFrame (for filtered scans
and aggregates) plus a list of immutable SummitRecord objects; ``summits_idx``
becomes a SpatialIndex. Nothing is mutated after :meth:`RecordStore.load`.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from offline_qth.exceptions import CorruptBlobError
from offline_qth.models import DatabaseMetadata, FilterRanges, SummitRecord
from offline_qth.spatial_index import SpatialIndex

__all__ = ["RecordStore", "SUMMIT_COLUMNS", "INDEX_COLUMNS", "SORT_KEYS"]

SQLITE_HEADER = b"SQLite format 3\x00"

SUMMIT_COLUMNS = [
    'id', 'ref', 'name', 'lat', 'lon', 'altitude', 'points', 'activations',
    'bonus', 'association', 'region', 'valid_from', 'valid_to',
]
INDEX_COLUMNS = ['id', 'minLat', 'maxLat', 'minLon', 'maxLon']
SORT_KEYS = ('name', 'altitude', 'points', 'activations', 'ref')

Predicate = Callable[[pd.DataFrame], pd.Series]


def _table_columns(conn: sqlite3.Connection, table: str) -> List[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]


def _require_columns(conn: sqlite3.Connection, table: str, required: Sequence[str]) -> None:
    present = set(_table_columns(conn, table))
    if not present:
        raise CorruptBlobError(f"Database blob has no '{table}' table")
    missing = [c for c in required if c not in present]
    if missing:
        raise CorruptBlobError(f"Table '{table}' is missing columns: {', '.join(missing)}")


def _optional_str(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return str(value)


def _optional_int(value) -> Optional[int]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return int(value)


class RecordStore:
    """Immutable summit table plus spatial index."""

    def __init__(self, frame: pd.DataFrame, index: SpatialIndex, metadata: Optional[Dict[str, str]] = None):
        self._frame = frame.reset_index(drop=True)
        self._index = index
        self._metadata = dict(metadata or {})
        self._records: List[SummitRecord] = [
            SummitRecord(
                id=int(row.id),
                ref=row.ref,
                name=row.name,
                lat=float(row.lat),
                lon=float(row.lon),
                altitude=int(row.altitude),
                points=int(row.points),
                activations=int(row.activations),
                bonus=_optional_int(row.bonus),
                association=row.association or "",
                region=row.region or "",
                valid_from=_optional_str(row.valid_from),
                valid_to=_optional_str(row.valid_to),
            )
            for row in self._frame.itertuples(index=False)
        ]
        self._by_ref: Dict[str, SummitRecord] = {r.ref: r for r in self._records}
        self._positions = pd.Index(self._frame['id'].to_numpy())
        self._lat = self._frame['lat'].to_numpy(dtype=np.float64)
        self._lon = self._frame['lon'].to_numpy(dtype=np.float64)

    # ---------------- Loading -----------------

    @classmethod
    def load(cls, blob: bytes) -> "RecordStore":
        """Decode a database blob.

        Raises:
            CorruptBlobError: if the blob is not a summit database, lacks a
                required table/column, or its row counts disagree
        """
        if not blob or not bytes(blob[:16]) == SQLITE_HEADER:
            raise CorruptBlobError("Blob is not a SQLite database")

        conn = sqlite3.connect(':memory:')
        try:
            conn.deserialize(bytes(blob))
            _require_columns(conn, 'summits', SUMMIT_COLUMNS)
            _require_columns(conn, 'summits_idx', INDEX_COLUMNS)
            frame = pd.read_sql_query(
                f"SELECT {', '.join(SUMMIT_COLUMNS)} FROM summits ORDER BY id", conn
            )
            index_frame = pd.read_sql_query(
                f"SELECT {', '.join(INDEX_COLUMNS)} FROM summits_idx", conn
            )
            metadata: Dict[str, str] = {}
            if _table_columns(conn, 'metadata'):
                metadata = {k: v for k, v in conn.execute("SELECT key, value FROM metadata")}
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise CorruptBlobError(f"Could not decode database blob: {e}") from e
        finally:
            conn.close()

        declared = metadata.get('row_count')
        if declared is not None:
            try:
                declared_count = int(declared)
            except ValueError:
                raise CorruptBlobError(f"Invalid declared row count: {declared!r}")
            if declared_count != len(frame):
                raise CorruptBlobError(
                    f"Declared row count {declared_count} does not match decoded rows {len(frame)}"
                )
        if len(index_frame) != len(frame) or set(index_frame['id']) != set(frame['id']):
            raise CorruptBlobError(
                f"Spatial index has {len(index_frame)} entries for {len(frame)} summits"
            )

        try:
            frame['activations'] = frame['activations'].fillna(0).astype(np.int64)
            index = SpatialIndex(
                index_frame['id'].to_numpy(),
                index_frame['minLat'].to_numpy(),
                index_frame['maxLat'].to_numpy(),
                index_frame['minLon'].to_numpy(),
                index_frame['maxLon'].to_numpy(),
            )
            store = cls(frame, index, metadata)
        except (TypeError, ValueError) as e:
            raise CorruptBlobError(f"Invalid summit data in database blob: {e}") from e
        logging.info(f"Database ready with {store.count():,} summits")
        return store

    # ---------------- Access paths -----------------

    def count(self) -> int:
        return len(self._records)

    def find_by_ref(self, ref: str) -> Optional[SummitRecord]:
        """Exact, case-sensitive lookup on the canonical ref."""
        return self._by_ref.get(ref)

    def get(self, summit_id: int) -> Optional[SummitRecord]:
        pos = self._positions.get_indexer([summit_id])[0]
        if pos < 0:
            return None
        return self._records[pos]

    @property
    def spatial_index(self) -> SpatialIndex:
        return self._index

    def take(self, ids: np.ndarray) -> Tuple[List[SummitRecord], np.ndarray, np.ndarray]:
        """Records and their (lat, lon) arrays for index hits, in ``ids`` order."""
        positions = self._positions.get_indexer(np.asarray(ids))
        positions = positions[positions >= 0]
        return [self._records[p] for p in positions], self._lat[positions], self._lon[positions]

    def scan(self, predicate: Optional[Predicate] = None, sort_key: Union[str, Sequence[str]] = 'name',
             sort_direction: str = 'asc', offset: int = 0,
             limit: Optional[int] = None) -> Tuple[List[SummitRecord], int]:
        """Full-table scan with filter, sort and pagination.

        ``predicate`` receives the summit DataFrame and returns a boolean mask.
        ``sort_key`` may be one column or several (all sorted in
        ``sort_direction``); ``ref`` ascending breaks remaining ties so pages
        are stable.

        Returns:
            (page of records, total matching rows before pagination)
        """
        keys = [sort_key] if isinstance(sort_key, str) else list(sort_key)
        for key in keys:
            if key not in SORT_KEYS:
                raise ValueError(f"Unsupported sort key: {key}")
        ascending = sort_direction.lower() != 'desc'

        frame = self._frame
        if predicate is not None:
            frame = frame[predicate(frame)]
        total = len(frame)

        directions = [ascending] * len(keys)
        if 'ref' not in keys:
            keys.append('ref')
            directions.append(True)
        ordered = frame.sort_values(keys, ascending=directions, kind='mergesort')
        offset = max(offset, 0)
        end = None if limit is None else offset + max(limit, 0)
        page_ids = ordered['id'].to_numpy()[offset:end]
        positions = self._positions.get_indexer(page_ids)
        return [self._records[p] for p in positions], total

    # ---------------- Aggregates -----------------

    @property
    def metadata(self) -> DatabaseMetadata:
        row_count = self._metadata.get('row_count')
        return DatabaseMetadata(
            build_date=self._metadata.get('build_date'),
            version=self._metadata.get('sota_version') or self._metadata.get('schema_version'),
            source=self._metadata.get('source'),
            row_count=int(row_count) if row_count is not None else None,
        )

    def association_counts(self, limit: Optional[int] = None) -> List[Dict[str, object]]:
        """[{'association', 'count'}] ordered by count descending, then name."""
        counts = self._frame['association'].fillna('').value_counts()
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ordered = ordered[:limit]
        return [{'association': name, 'count': int(count)} for name, count in ordered]

    def associations(self) -> List[str]:
        values = self._frame['association'].dropna()
        return sorted(v for v in values.unique() if v)

    def regions(self, association: str) -> List[str]:
        values = self._frame.loc[self._frame['association'] == association, 'region'].dropna()
        return sorted(v for v in values.unique() if v)

    def countries(self) -> List[str]:
        """Country names, taken from the part of the association before ' - '."""
        return sorted({a.split(' - ')[0].strip() for a in self.associations()})

    def country_counts(self, limit: Optional[int] = None) -> List[Dict[str, object]]:
        countries = self._frame['association'].fillna('').str.split(' - ').str[0].str.strip()
        counts = countries[countries != ""].value_counts()
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ordered = ordered[:limit]
        return [{'country': name, 'count': int(count)} for name, count in ordered]

    def points_distribution(self) -> List[Dict[str, int]]:
        counts = self._frame['points'].value_counts().sort_index()
        return [{'points': int(points), 'count': int(count)} for points, count in counts.items()]

    def filter_ranges(self) -> FilterRanges:
        if self._frame.empty:
            return FilterRanges(0, 0, 0)
        return FilterRanges(
            min_altitude=int(self._frame['altitude'].min()),
            max_altitude=int(self._frame['altitude'].max()),
            max_activations=int(self._frame['activations'].max()),
        )
