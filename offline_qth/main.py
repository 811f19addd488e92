"""
Command line front end for the offline SOTA summit database.

Loads the database (cache first, then network or a local file) and answers
nearby / summit / search / stats queries.
"""
import sys
import argparse
import logging
from pathlib import Path
from typing import List

from offline_qth.config import (
    DEFAULT_BASE_URL, DEFAULT_NEARBY_LIMIT, DEFAULT_PAGE_SIZE, DEFAULT_RADIUS_KM,
)
from offline_qth.exceptions import StoreUnavailableError
from offline_qth.geo import grid_locator, to_dms
from offline_qth.loader import DatabaseLoader, LoaderConfig
from offline_qth.models import DerivedSummitWithDistance, SearchFilters, SummitRecord
from offline_qth.query import QueryEngine, mark_activation_zones
from offline_qth.store import SORT_KEYS
from offline_qth.utils import is_valid_ref, normalize_ref, setup_logging


def parse_arguments(argv=None):
    """Parse and validate command line arguments."""
    parser = argparse.ArgumentParser(
        description="Offline SOTA summit lookup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Summits within 50 km of a position, with activation zone check
  python -m offline_qth.main nearby --lat 35.6 --lon 139.7 --altitude 95

  # Look up one summit
  python -m offline_qth.main summit JA/NS-001

  # Highest summits in an association
  python -m offline_qth.main search --association Japan --sort altitude --order desc

  # Use a locally built database instead of downloading
  python -m offline_qth.main --db public/data/sota.db stats
        """
    )
    parser.add_argument('--base-url', default=DEFAULT_BASE_URL, help='Base URL serving data/sota.db')
    parser.add_argument('--db', type=Path, help='Read the database from this file instead of the network')
    parser.add_argument('--cache-dir', type=Path, help='Cache directory (default: ./cache)')
    parser.add_argument('--no-cache', action='store_true', help='Neither read nor write the local cache')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only print results')

    sub = parser.add_subparsers(dest='command', required=True)

    nearby = sub.add_parser('nearby', help='Summits near a position')
    nearby.add_argument('--lat', type=float, required=True)
    nearby.add_argument('--lon', type=float, required=True)
    nearby.add_argument('--altitude', type=float, help='Your altitude in meters (enables activation zone check)')
    nearby.add_argument('-r', '--radius', type=float, default=DEFAULT_RADIUS_KM, help='Radius in km')
    nearby.add_argument('-n', '--limit', type=int, default=DEFAULT_NEARBY_LIMIT)
    nearby.add_argument('--loose', action='store_true',
                        help='Keep every candidate inside the bounding rectangle')

    summit = sub.add_parser('summit', help='Look up a summit by reference')
    summit.add_argument('ref')

    search = sub.add_parser('search', help='Filtered summit list')
    search.add_argument('--association')
    search.add_argument('--region')
    search.add_argument('--country')
    search.add_argument('--min-altitude', type=int)
    search.add_argument('--max-altitude', type=int)
    search.add_argument('--min-points', type=int)
    search.add_argument('--max-points', type=int)
    search.add_argument('--min-activations', type=int)
    search.add_argument('--max-activations', type=int)
    search.add_argument('--text')
    search.add_argument('--sort', choices=SORT_KEYS, default='name')
    search.add_argument('--order', choices=('asc', 'desc'), default='asc')
    search.add_argument('--page', type=int, default=1)

    sub.add_parser('stats', help='Database statistics')
    sub.add_parser('clear-cache', help='Delete the cached database')

    args = parser.parse_args(argv)
    if args.command == 'nearby':
        if not -90 <= args.lat <= 90 or not -180 <= args.lon <= 180:
            parser.error("--lat must be within [-90, 90] and --lon within [-180, 180]")
    return args


def _print_progress(loaded: int, total: int) -> None:
    if total > 0:
        print(f"\rDownloading: {loaded / total * 100:.1f}%", end='', file=sys.stderr, flush=True)
    else:
        print(f"\rDownloading: {loaded / 1024 / 1024:.1f} MB", end='', file=sys.stderr, flush=True)


def format_distance(distance_m: float) -> str:
    if distance_m < 1000:
        return f"{round(distance_m)}m"
    return f"{distance_m / 1000:.1f}km"


def format_nearby(summits: List[DerivedSummitWithDistance]) -> List[str]:
    lines = []
    for s in summits:
        marker = "  * AZ" if s.is_activation_zone else ""
        lines.append(
            f"{s.ref:<12} {format_distance(s.distance_m):>8} {s.cardinal_bearing:<2} "
            f"{s.bearing:5.1f}°  {s.altitude:>5}m {s.points:>2}pt  {s.name}{marker}"
        )
    return lines


def format_summit(summit: SummitRecord) -> List[str]:
    lines = [
        f"{summit.ref}: {summit.name}",
        f"  Association: {summit.association} / {summit.region}",
        f"  Position:    {to_dms(summit.lat, True)} {to_dms(summit.lon, False)} "
        f"({grid_locator(summit.lat, summit.lon)})",
        f"  Altitude:    {summit.altitude} m",
        f"  Points:      {summit.points}" + (f" (+{summit.bonus} bonus)" if summit.bonus else ""),
        f"  Activations: {summit.activations}",
    ]
    if summit.is_retired():
        lines.append(f"  Retired:     {summit.valid_to}")
    return lines


def run(args) -> int:
    config = LoaderConfig(
        base_url=args.base_url,
        local_path=args.db,
        cache_dir=args.cache_dir,
        use_cache=not args.no_cache,
    )
    loader = DatabaseLoader(config)

    if args.command == 'clear-cache':
        loader.clear_cache()
        return 0

    engine = QueryEngine(loader)
    try:
        loader.ensure_loaded(progress=None if args.quiet else _print_progress)
    except StoreUnavailableError as e:
        print(f"\nOffline: {e}", file=sys.stderr)
        return 2
    if not args.quiet:
        print(file=sys.stderr)

    if args.command == 'nearby':
        print(f"Position: {to_dms(args.lat, True)} {to_dms(args.lon, False)}  "
              f"Grid: {grid_locator(args.lat, args.lon)}")
        summits = engine.find_nearby(args.lat, args.lon, args.radius, args.limit,
                                     exact_radius=not args.loose)
        summits = mark_activation_zones(summits, args.altitude)
        if not summits:
            print(f"No summits within {args.radius:g} km")
        for line in format_nearby(summits):
            print(line)

    elif args.command == 'summit':
        ref = normalize_ref(args.ref)
        summit = engine.find_by_ref(ref) if is_valid_ref(ref) else None
        if summit is None:
            print(f"Summit not found: {args.ref}")
            return 1
        for line in format_summit(summit):
            print(line)

    elif args.command == 'search':
        filters = SearchFilters(
            association=args.association, region=args.region, country=args.country,
            min_altitude=args.min_altitude, max_altitude=args.max_altitude,
            min_points=args.min_points, max_points=args.max_points,
            min_activations=args.min_activations, max_activations=args.max_activations,
            search_text=args.text, sort_by=args.sort, sort_order=args.order, page=args.page,
        )
        result = engine.search(filters, DEFAULT_PAGE_SIZE)
        print(f"{result.total:,} summits (page {result.page} of {result.page_count})")
        for s in result.summits:
            print(f"{s.ref:<12} {s.altitude:>5}m {s.points:>2}pt {s.activations:>4}x  {s.name}")

    elif args.command == 'stats':
        stats = engine.get_stats()
        metadata = engine.get_metadata()
        print(f"Total summits: {stats.total_summits:,}")
        if metadata.build_date:
            print(f"Built:         {metadata.build_date} (source {metadata.source})")
        for entry in stats.associations:
            print(f"  {str(entry['association']):<30} {entry['count']:,}")

    return 0


def main(argv=None) -> int:
    args = parse_arguments(argv)
    setup_logging(None, quiet=False, level=logging.WARNING if args.quiet else logging.INFO)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
