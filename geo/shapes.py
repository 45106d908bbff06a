"""Validate GeoJSON geometry and assemble displayable geometry for alerts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Polygon, shape

from errors import MalformedGeometry

if TYPE_CHECKING:
    from sources.nws_alerts import Alert


def validate_geometry(geom_data: object) -> dict:
    """Check that geom_data is a GeoJSON Polygon or MultiPolygon.

    Returns the mapping unchanged so persisted values round-trip exactly.
    Raises MalformedGeometry for anything else.
    """
    if not isinstance(geom_data, dict):
        raise MalformedGeometry(f"geometry must be an object, got {type(geom_data).__name__}")

    try:
        geom = shape(geom_data)
    except (ValueError, TypeError, KeyError, IndexError, AttributeError, ShapelyError) as exc:
        raise MalformedGeometry(f"unparseable geometry: {exc}") from exc

    if not isinstance(geom, (Polygon, MultiPolygon)):
        raise MalformedGeometry(f"unsupported geometry type: {geom.geom_type}")
    if geom.is_empty:
        raise MalformedGeometry("empty geometry")

    return geom_data


def same_to_fips(same: str) -> str | None:
    """SAME codes are PSSCCC (P = part of county). Returns the 5-digit FIPS."""
    if len(same) != 6 or not same.isdigit():
        return None
    return same[1:]


def alert_geometry(
    alert: Alert,
    geometry_map: dict[str, dict],
    county_geometries: dict[str, dict] | None = None,
) -> dict | None:
    """Return displayable GeoJSON for an alert, or None if it has none.

    Inline geometry wins. Otherwise zone geometries referenced by the
    alert's UGC codes are combined into a GeometryCollection; failing
    that, county outlines from SAME codes when a county map is supplied.
    """
    if alert.geometry is not None:
        return alert.geometry

    parts = [geometry_map[c] for c in alert.ugc_codes if geometry_map.get(c)]

    if not parts and county_geometries:
        for same in alert.same_codes:
            fips = same_to_fips(same)
            if fips and county_geometries.get(fips):
                parts.append(county_geometries[fips])

    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return {"type": "GeometryCollection", "geometries": parts}


def spatial_alerts(
    alerts: list[Alert],
    geometry_map: dict[str, dict],
    county_geometries: dict[str, dict] | None = None,
) -> list[tuple[Alert, dict]]:
    """Pair each alert with its geometry, dropping alerts that have none."""
    paired = []
    for alert in alerts:
        geom = alert_geometry(alert, geometry_map, county_geometries)
        if geom is not None:
            paired.append((alert, geom))
    return paired
