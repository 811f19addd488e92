"""
Record types shared by ingestion, the record store and the query engine.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from typing import Dict, List, Optional

__all__ = [
    "SummitRecord",
    "SpatialIndexEntry",
    "ParsedRow",
    "DerivedSummitWithDistance",
    "SearchFilters",
    "SearchResult",
    "DatabaseStats",
    "DatabaseMetadata",
    "FilterRanges",
    "DashboardStats",
    "IngestionReport",
    "parse_sota_date",
]


def parse_sota_date(value: Optional[str]) -> Optional[date]:
    """Parse a SOTA CSV date (``dd/mm/yyyy``) or an ISO-8601 date/datetime.

    Returns None for blank or unparseable values.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return datetime.strptime(value, "%d/%m/%Y").date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).date()
    except ValueError:
        logging.debug(f"Unrecognised date value: {value!r}")
        return None


@dataclass(frozen=True)
class SummitRecord:
    """One immutable summit row."""
    id: int
    ref: str
    name: str
    lat: float
    lon: float
    altitude: int
    points: int
    activations: int = 0
    bonus: Optional[int] = None
    association: str = ""
    region: str = ""
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None

    def is_retired(self, on: Optional[date] = None) -> bool:
        """True when ``valid_to`` lies before ``on`` (default: today).

        Informational only; queries never filter on it.
        """
        valid_to = parse_sota_date(self.valid_to)
        if valid_to is None:
            return False
        return valid_to < (on or date.today())


@dataclass(frozen=True)
class SpatialIndexEntry:
    """Bounding box of a summit; degenerate (min == max) because summits are points."""
    id: int
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @classmethod
    def for_point(cls, summit_id: int, lat: float, lon: float) -> "SpatialIndexEntry":
        return cls(summit_id, lat, lat, lon, lon)


@dataclass(frozen=True)
class ParsedRow:
    """A validated CSV row, ready to be inserted (no id yet)."""
    ref: str
    name: str
    lat: float
    lon: float
    altitude: int
    points: int
    activations: int
    bonus: Optional[int]
    association: str
    region: str
    valid_from: Optional[str]
    valid_to: Optional[str]


@dataclass(frozen=True)
class DerivedSummitWithDistance(SummitRecord):
    """A summit seen from a query origin. Exists only for the life of one query."""
    distance_m: float = 0.0
    bearing: float = 0.0
    cardinal_bearing: str = "N"
    is_activation_zone: bool = False
    vertical_distance: Optional[float] = None

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000.0

    @classmethod
    def from_record(cls, record: SummitRecord, distance_m: float, bearing: float,
                    cardinal_bearing: str) -> "DerivedSummitWithDistance":
        return cls(**asdict(record), distance_m=distance_m, bearing=bearing,
                   cardinal_bearing=cardinal_bearing)


@dataclass(frozen=True)
class SearchFilters:
    """Independent optional filters for the paginated summit search.

    All set filters combine with AND. ``region`` only applies together with
    ``association``.
    """
    association: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    min_altitude: Optional[int] = None
    max_altitude: Optional[int] = None
    min_points: Optional[int] = None
    max_points: Optional[int] = None
    min_activations: Optional[int] = None
    max_activations: Optional[int] = None
    search_text: Optional[str] = None
    sort_by: str = "name"
    sort_order: str = "asc"
    page: int = 1

    def with_changes(self, **changes) -> "SearchFilters":
        """Return a copy with ``changes`` applied.

        Changing anything other than ``page`` sends the user back to page 1.
        """
        if not changes:
            return self
        if 'page' not in changes:
            changes['page'] = 1
        return replace(self, **changes)


@dataclass(frozen=True)
class SearchResult:
    summits: List[SummitRecord]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class DatabaseStats:
    total_summits: int
    associations: List[Dict[str, object]]  # [{"association": str, "count": int}, ...]


@dataclass(frozen=True)
class DatabaseMetadata:
    build_date: Optional[str] = None
    version: Optional[str] = None
    source: Optional[str] = None
    row_count: Optional[int] = None


@dataclass(frozen=True)
class FilterRanges:
    min_altitude: int
    max_altitude: int
    max_activations: int


@dataclass
class IngestionReport:
    """Counters and diagnostics for one ingestion run."""
    processed: int = 0
    skipped: int = 0
    errored: int = 0
    output_size: int = 0
    top_associations: List[Dict[str, object]] = field(default_factory=list)

    @property
    def output_size_mb(self) -> float:
        return self.output_size / 1024 / 1024


@dataclass(frozen=True)
class DashboardStats:
    highest_summit: Optional[SummitRecord]
    lowest_summit: Optional[SummitRecord]
    most_valuable: List[SummitRecord]
    most_activated: List[SummitRecord]
    unactivated_count: int
    unactivated_summits: List[SummitRecord]
    country_stats: List[Dict[str, object]]
    points_distribution: List[Dict[str, int]]
