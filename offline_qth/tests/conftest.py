"""Shared fixtures: small SOTA CSV files and databases built from them."""
from pathlib import Path
from typing import Iterable, Sequence

import pytest

from offline_qth.ingestion import build_database
from offline_qth.loader import DatabaseLoader, LoaderConfig
from offline_qth.query import QueryEngine
from offline_qth.store import RecordStore

CSV_TITLE = "SOTA Summits List (Date=01/10/2026)"
CSV_HEADER = ("SummitCode,AssociationName,RegionName,SummitName,AltM,AltFt,GridRef1,GridRef2,"
              "Longitude,Latitude,Points,BonusPoints,ValidFrom,ValidTo,ActivationCount,"
              "ActivationDate,ActivationCall")


def summit_line(ref: str, lat: float, lon: float, altitude: int = 1000, points: int = 1,
                name: str = "Test Summit", association: str = "Japan - Kanto", region: str = "Kanagawa",
                bonus: str = "", activations: str = "0", valid_from: str = "01/07/2010",
                valid_to: str = "31/12/2099") -> str:
    """One SOTA CSV data line; pass a pre-quoted name to exercise quoting."""
    return ",".join([
        ref, association, region, name, str(altitude), str(round(altitude * 3.28084)),
        "", "", str(lon), str(lat), str(points), bonus, valid_from, valid_to, activations,
        "", "",
    ])


def write_sota_csv(path: Path, lines: Iterable[str]) -> Path:
    path.write_text("\n".join([CSV_TITLE, CSV_HEADER, *lines]) + "\n", encoding="utf-8")
    return path


SAMPLE_LINES: Sequence[str] = [
    summit_line("JA/KN-001", 35.0, 139.0, altitude=1200, points=4, name="Tanzawa-san",
                activations="12"),
    summit_line("JA/KN-002", 36.0, 140.0, altitude=800, points=2, name="Tsukuba-san",
                association="Japan - Kanto", region="Ibaraki", activations="40"),
    summit_line("JA/NS-001", 36.2, 138.0, altitude=2500, points=10, name="Yatsugatake",
                association="Japan - Nagano", region="Nagano", bonus="3", activations="5"),
    summit_line("JA/NS-002", 36.3, 138.1, altitude=1800, points=8, name='"Kirigamine, North"',
                association="Japan - Nagano", region="Nagano", activations="0"),
    summit_line("W7O/NC-001", 45.373, -121.696, altitude=3429, points=10, name="Mount Hood",
                association="USA - Oregon", region="North Cascades", bonus="3", activations="150"),
    summit_line("W7O/NC-002", 45.5, -121.8, altitude=1300, points=6, name="Larch Mountain",
                association="USA - Oregon", region="North Cascades", activations="0"),
    summit_line("ZL/CB-001", -43.6, 170.1, altitude=3724, points=10, name="Aoraki",
                association="New Zealand", region="Canterbury", activations="0"),
    summit_line("3D2/FJ-001", -16.8, 179.9, altitude=1000, points=8, name="East Ridge",
                association="Fiji", region="Fiji", activations="1"),
    summit_line("3D2/FJ-002", -16.8, -179.95, altitude=500, points=4, name="West Ridge",
                association="Fiji", region="Fiji", activations="2"),
]


@pytest.fixture
def sample_csv(tmp_path) -> Path:
    return write_sota_csv(tmp_path / "summitslist.csv", SAMPLE_LINES)


@pytest.fixture
def database_path(tmp_path, sample_csv) -> Path:
    output = tmp_path / "public" / "data" / "sota.db"
    build_database(sample_csv, output)
    return output


@pytest.fixture
def blob(database_path) -> bytes:
    return database_path.read_bytes()


@pytest.fixture
def store(blob) -> RecordStore:
    return RecordStore.load(blob)


@pytest.fixture
def loader(database_path, tmp_path) -> DatabaseLoader:
    config = LoaderConfig(local_path=database_path, cache_dir=tmp_path / "cache", use_cache=False)
    return DatabaseLoader(config)


@pytest.fixture
def engine(loader) -> QueryEngine:
    return QueryEngine(loader)
