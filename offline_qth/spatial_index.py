"""In-memory rectangle index over SpatialIndexEntry rows.

Entries are held in numpy arrays sorted by ``min_lat``. A query binary-searches
the latitude band and then applies the full rectangle-intersection test to
that band only.
"""
from __future__ import annotations

from typing import Iterable, Sequence, Tuple

import numpy as np

from offline_qth.models import SpatialIndexEntry

Rect = Tuple[float, float, float, float]


class SpatialIndex:
    """Immutable bounding-box index; safe for concurrent reads."""

    def __init__(self, ids: np.ndarray, min_lat: np.ndarray, max_lat: np.ndarray,
                 min_lon: np.ndarray, max_lon: np.ndarray):
        order = np.argsort(min_lat, kind='stable')
        self._ids = np.asarray(ids, dtype=np.int64)[order]
        self._min_lat = np.asarray(min_lat, dtype=np.float64)[order]
        self._max_lat = np.asarray(max_lat, dtype=np.float64)[order]
        self._min_lon = np.asarray(min_lon, dtype=np.float64)[order]
        self._max_lon = np.asarray(max_lon, dtype=np.float64)[order]
        # Widest latitude extent of any entry (0 for point summits)
        spans = self._max_lat - self._min_lat
        self._max_lat_span = float(spans.max()) if len(spans) else 0.0
        for arr in (self._ids, self._min_lat, self._max_lat, self._min_lon, self._max_lon):
            arr.setflags(write=False)

    @classmethod
    def from_entries(cls, entries: Iterable[SpatialIndexEntry]) -> "SpatialIndex":
        entries = list(entries)
        return cls(
            np.array([e.id for e in entries], dtype=np.int64),
            np.array([e.min_lat for e in entries], dtype=np.float64),
            np.array([e.max_lat for e in entries], dtype=np.float64),
            np.array([e.min_lon for e in entries], dtype=np.float64),
            np.array([e.max_lon for e in entries], dtype=np.float64),
        )

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> np.ndarray:
        return self._ids

    def intersecting(self, rect: Rect) -> np.ndarray:
        """Ids of entries whose box intersects ``rect`` = (min_lat, max_lat, min_lon, max_lon)."""
        q_min_lat, q_max_lat, q_min_lon, q_max_lon = rect
        lo = np.searchsorted(self._min_lat, q_min_lat - self._max_lat_span, side='left')
        hi = np.searchsorted(self._min_lat, q_max_lat, side='right')
        if hi <= lo:
            return np.empty(0, dtype=np.int64)
        band = slice(lo, hi)
        mask = (
            (self._max_lat[band] >= q_min_lat)
            & (self._min_lon[band] <= q_max_lon)
            & (self._max_lon[band] >= q_min_lon)
        )
        return self._ids[band][mask]

    def intersecting_any(self, rects: Sequence[Rect]) -> np.ndarray:
        """Union of :meth:`intersecting` over several rectangles, without duplicates."""
        if not rects:
            return np.empty(0, dtype=np.int64)
        if len(rects) == 1:
            return self.intersecting(rects[0])
        return np.unique(np.concatenate([self.intersecting(r) for r in rects]))
