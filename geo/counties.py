"""Download and cache US county outlines keyed by 5-digit FIPS.

Alerts without inline geometry also carry SAME codes (PSSCCC); dropping
the leading digit gives the county FIPS, so these outlines are a
fallback when zone geometry could not be resolved.
"""

from __future__ import annotations

import json
import os
import sys

import requests

from config import COUNTY_GEOJSON_URL, DOWNLOAD_TIMEOUT, NWS_USER_AGENT
from errors import MalformedGeometry
from geo.shapes import validate_geometry

_MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024  # 50 MB safety limit


def load_county_geometries(path: str, download: bool = True) -> dict[str, dict]:
    """Return FIPS -> geometry from the cached dataset, downloading it if needed.

    Returns an empty map when the dataset is unavailable; counties are
    only a fallback and never fail the caller.
    """
    if not os.path.exists(path):
        if not download:
            return {}
        try:
            _download_counties(path)
        except (requests.exceptions.RequestException, OSError, ValueError) as exc:
            print(f"  Cannot download county boundaries: {exc}", file=sys.stderr)
            return {}
    return _parse_county_geojson(path)


def _download_counties(dest: str) -> None:
    """Download county boundaries GeoJSON to dest path."""
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    print("  Downloading county boundaries (~25 MB)...", file=sys.stderr)

    resp = requests.get(
        COUNTY_GEOJSON_URL,
        headers={"User-Agent": NWS_USER_AGENT},
        timeout=DOWNLOAD_TIMEOUT,
        stream=True,
    )
    resp.raise_for_status()

    content_length = resp.headers.get("Content-Length")
    if content_length and int(content_length) > _MAX_DOWNLOAD_BYTES:
        raise ValueError(f"county file too large ({int(content_length)} bytes)")

    tmp = dest + ".part"
    total = 0
    try:
        with open(tmp, "wb") as f:
            for chunk in resp.iter_content(chunk_size=65536):
                total += len(chunk)
                if total > _MAX_DOWNLOAD_BYTES:
                    raise ValueError(
                        f"download exceeded {_MAX_DOWNLOAD_BYTES // (1024 * 1024)} MB limit")
                f.write(chunk)
        os.replace(tmp, dest)
    except Exception:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise

    size_mb = total / (1024 * 1024)
    print(f"  Downloaded {size_mb:.1f} MB to {dest}", file=sys.stderr)


def _parse_county_geojson(path: str) -> dict[str, dict]:
    """Parse the county GeoJSON into FIPS -> geometry."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        # Corrupted cache; remove so the next call downloads a fresh copy
        print(f"  County cache corrupted ({exc}), discarding", file=sys.stderr)
        if os.path.exists(path):
            os.remove(path)
        return {}

    counties: dict[str, dict] = {}
    skipped = 0

    for feat in data.get("features", []) if isinstance(data, dict) else []:
        fips = str(feat.get("id", "")).zfill(5)
        try:
            counties[fips] = validate_geometry(feat.get("geometry"))
        except MalformedGeometry:
            skipped += 1

    if skipped:
        print(f"  Skipped {skipped} invalid county entries", file=sys.stderr)

    return counties


if __name__ == "__main__":
    from config import Settings

    print("Loading county boundaries...", file=sys.stderr)
    counties = load_county_geometries(Settings.from_env().county_cache_path)

    states: dict[str, int] = {}
    for fips in counties:
        states[fips[:2]] = states.get(fips[:2], 0) + 1
    print(f"\n  Parsed {len(counties)} counties across {len(states)} state FIPS prefixes")
