"""
Query engine over a loaded RecordStore.

Three query shapes are supported:

- ``find_nearby``: summits within a radius of a point, nearest first
- ``find_by_ref``: exact lookup by summit reference
- ``search``: attribute-filtered, sorted, paginated scan

plus read-only aggregates served from the same store. Every call goes through
``DatabaseLoader.ensure_loaded``; if no store can be loaded the call raises
StoreUnavailableError instead of returning an empty result.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from offline_qth.config import (
    AZ_HEIGHT_M, AZ_MAX_HORIZONTAL_M, DEFAULT_NEARBY_LIMIT, DEFAULT_PAGE_SIZE,
    DEFAULT_RADIUS_KM, NEARBY_EXACT_RADIUS,
)
from offline_qth.geo import (
    bearing_to_cardinal, bounding_box, haversine_meters_array, initial_bearing_array,
)
from offline_qth.loader import DatabaseLoader
from offline_qth.models import (
    DashboardStats, DatabaseMetadata, DatabaseStats, DerivedSummitWithDistance,
    FilterRanges, SearchFilters, SearchResult, SummitRecord,
)
from offline_qth.store import RecordStore

__all__ = ["QueryEngine", "mark_activation_zones", "filter_mask"]


def mark_activation_zones(summits: Iterable[DerivedSummitWithDistance], observer_altitude_m: Optional[float],
                          az_height_m: float = AZ_HEIGHT_M,
                          max_horizontal_m: float = AZ_MAX_HORIZONTAL_M) -> List[DerivedSummitWithDistance]:
    """Fill ``vertical_distance`` and ``is_activation_zone`` from the observer's altitude.

    A summit counts as activated-from-here when the observer is no more than
    ``az_height_m`` below its altitude and within ``max_horizontal_m`` of it.
    With no altitude fix the summits are returned unchanged.
    """
    summits = list(summits)
    if observer_altitude_m is None:
        return summits
    marked = []
    for summit in summits:
        vertical = summit.altitude - observer_altitude_m
        in_zone = vertical <= az_height_m and summit.distance_m <= max_horizontal_m
        marked.append(replace(summit, vertical_distance=vertical, is_activation_zone=in_zone))
    return marked


def filter_mask(frame: pd.DataFrame, filters: SearchFilters) -> pd.Series:
    """Boolean mask for ``filters`` over the summit DataFrame (AND semantics)."""
    mask = pd.Series(True, index=frame.index)

    if filters.country:
        association = frame['association'].fillna('')
        mask &= (association == filters.country) | association.str.startswith(f"{filters.country} - ")
    if filters.association:
        mask &= frame['association'] == filters.association
        # Regions are only unique within an association
        if filters.region:
            mask &= frame['region'] == filters.region
    if filters.min_altitude is not None:
        mask &= frame['altitude'] >= filters.min_altitude
    if filters.max_altitude is not None:
        mask &= frame['altitude'] <= filters.max_altitude
    if filters.min_points is not None:
        mask &= frame['points'] >= filters.min_points
    if filters.max_points is not None:
        mask &= frame['points'] <= filters.max_points
    if filters.min_activations is not None:
        mask &= frame['activations'] >= filters.min_activations
    if filters.max_activations is not None:
        mask &= frame['activations'] <= filters.max_activations

    text = (filters.search_text or '').strip()
    if text:
        in_name = frame['name'].str.contains(text, case=False, regex=False, na=False)
        in_ref = frame['ref'].str.contains(text, case=False, regex=False, na=False)
        mask &= in_name | in_ref
    return mask


class QueryEngine:
    """Public query surface consumed by presentation code."""

    def __init__(self, loader: DatabaseLoader):
        self.loader = loader

    def _store(self) -> RecordStore:
        return self.loader.ensure_loaded()

    # ---------------- Q1: nearest within radius -----------------

    def find_nearby(self, lat: float, lon: float, radius_km: float = DEFAULT_RADIUS_KM,
                    limit: Optional[int] = DEFAULT_NEARBY_LIMIT,
                    exact_radius: bool = NEARBY_EXACT_RADIUS) -> List[DerivedSummitWithDistance]:
        """Summits near (lat, lon), nearest first.

        Candidates come from the spatial index using an approximate bounding
        rectangle; exact haversine distances then order them. With
        ``exact_radius`` candidates farther than ``radius_km`` are dropped;
        without it every candidate inside the rectangle is kept.

        Args:
            lat: Query latitude
            lon: Query longitude
            radius_km: Search radius in kilometers
            limit: Maximum number of results (None for all)
            exact_radius: Cut at the true circle rather than the rectangle

        Returns:
            Summits with distance (m), bearing and cardinal bearing from the
            query point. ``is_activation_zone`` is left False; see
            :func:`mark_activation_zones`.
        """
        store = self._store()
        if radius_km < 0 or (limit is not None and limit <= 0):
            return []

        rects = bounding_box(lat, lon, radius_km)
        ids = store.spatial_index.intersecting_any(rects)
        records, lats, lons = store.take(ids)
        if not records:
            return []

        distances = haversine_meters_array(lat, lon, lats, lons)
        candidates = np.arange(len(records))
        if exact_radius:
            candidates = candidates[distances <= radius_km * 1000.0]

        order = candidates[np.argsort(distances[candidates], kind='stable')]
        if limit is not None:
            order = order[:limit]

        bearings = initial_bearing_array(lat, lon, lats[order], lons[order])
        results = []
        for pos, bearing in zip(order, bearings):
            bearing = float(bearing)
            results.append(DerivedSummitWithDistance.from_record(
                records[pos],
                distance_m=float(distances[pos]),
                bearing=bearing,
                cardinal_bearing=bearing_to_cardinal(bearing),
            ))
        logging.debug(f"find_nearby({lat:.5f}, {lon:.5f}, {radius_km}km): "
                      f"{len(records)} candidates, {len(results)} results")
        return results

    # ---------------- Q2: exact lookup -----------------

    def find_by_ref(self, ref: str) -> Optional[SummitRecord]:
        """Exact lookup on the canonical ref (callers normalise case/separator)."""
        return self._store().find_by_ref(ref)

    # ---------------- Q3: filtered paginated scan -----------------

    def search(self, filters: Optional[SearchFilters] = None, page_size: int = DEFAULT_PAGE_SIZE) -> SearchResult:
        """Filtered, sorted page of summits plus the total match count."""
        filters = filters or SearchFilters()
        store = self._store()
        page = max(filters.page, 1)
        page_size = max(page_size, 1)
        summits, total = store.scan(
            predicate=lambda frame: filter_mask(frame, filters),
            sort_key=filters.sort_by,
            sort_direction=filters.sort_order,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return SearchResult(summits=summits, total=total, page=page, page_size=page_size)

    # ---------------- Aggregates -----------------

    def count(self) -> int:
        return self._store().count()

    def get_stats(self, limit: Optional[int] = 20) -> DatabaseStats:
        store = self._store()
        return DatabaseStats(total_summits=store.count(), associations=store.association_counts(limit))

    def get_metadata(self) -> DatabaseMetadata:
        return self._store().metadata

    def get_associations(self) -> List[str]:
        return self._store().associations()

    def get_regions(self, association: str) -> List[str]:
        return self._store().regions(association)

    def get_countries(self) -> List[str]:
        return self._store().countries()

    def get_filter_ranges(self) -> FilterRanges:
        return self._store().filter_ranges()

    def get_dashboard_stats(self) -> DashboardStats:
        store = self._store()
        highest, _ = store.scan(sort_key='altitude', sort_direction='desc', limit=1)
        lowest, _ = store.scan(sort_key='altitude', sort_direction='asc', limit=1)
        most_valuable, _ = store.scan(sort_key=['points', 'altitude'], sort_direction='desc', limit=5)
        most_activated, _ = store.scan(sort_key='activations', sort_direction='desc', limit=5)
        unactivated, unactivated_count = store.scan(
            predicate=lambda frame: frame['activations'] == 0,
            sort_key=['points', 'altitude'],
            sort_direction='desc',
            limit=5,
        )
        return DashboardStats(
            highest_summit=highest[0] if highest else None,
            lowest_summit=lowest[0] if lowest else None,
            most_valuable=most_valuable,
            most_activated=most_activated,
            unactivated_count=unactivated_count,
            unactivated_summits=unactivated,
            country_stats=store.country_counts(limit=10),
            points_distribution=store.points_distribution(),
        )
