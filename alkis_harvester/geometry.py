# -*- coding: utf-8 -*-

"""Decode WFS GML parcel geometries into (lon, lat) rings.

The NRW endpoint answers ``SRSNAME=EPSG:4326`` requests with ``posList``
values in the axis order mandated by the CRS definition, i.e. latitude
first. Every pair is swapped while decoding so all downstream code works with
GeoJSON ordering.
"""

from __future__ import annotations

import logging
import math
import typing as t
import xml.etree.ElementTree as ET

from dataclasses import dataclass


GML_NS = "http://www.opengis.net/gml/3.2"

NS = {"gml": GML_NS}

MULTI_SURFACE = f"{{{GML_NS}}}MultiSurface"
POLYGON = f"{{{GML_NS}}}Polygon"

Coordinate = t.Tuple[float, float]
Ring = t.List[Coordinate]


@dataclass(frozen=True)
class DecodedGeometry:
    rings: t.Tuple[Ring, ...]

    @property
    def is_multi(self) -> bool:
        return len(self.rings) > 1

    def to_geojson(self) -> dict[str, t.Any]:
        if not self.is_multi:
            return self.first_ring_only()

        return {
            "type": "MultiPolygon",
            "coordinates": [[_ring_to_geojson(ring)] for ring in self.rings],
        }

    def first_ring_only(self) -> dict[str, t.Any]:
        """Polygon made of the first ring only.

        Multi-part parcels lose every other part here. Callers that need the
        exact geometry use ``to_geojson``.
        """

        return {"type": "Polygon", "coordinates": [_ring_to_geojson(self.rings[0])]}


def _ring_to_geojson(ring: Ring) -> list[list[float]]:
    return [[lon, lat] for lon, lat in ring]


def parse_poslist(text: str, dimension: t.Optional[int]) -> t.Optional[Ring]:
    """Split a ``posList`` into (lon, lat) pairs.

    Returns ``None`` for non-numeric or non-finite content or a component
    count that does not divide into whole positions.
    """

    try:
        raw = [float(item) for item in text.split()]
    except ValueError:
        logging.debug("failed to parse posList: %s", text[:64])
        return None

    dim = dimension or 2

    if dim < 2:
        dim = 2

    if not all(math.isfinite(value) for value in raw):
        logging.debug("non-finite coordinate in posList: %s", text[:64])
        return None

    if not raw or len(raw) % dim != 0:
        logging.debug("unexpected coordinate count %s for dimension %s", len(raw), dim)
        return None

    # lat lon -> lon lat
    return [(raw[index + 1], raw[index]) for index in range(0, len(raw), dim)]


def parse_dimension(value: t.Optional[str]) -> t.Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logging.debug("ignoring invalid srsDimension %s", value)
        return None


def polygon_exterior(polygon: ET.Element) -> t.Optional[Ring]:
    ring = polygon.find("gml:exterior/gml:LinearRing", NS)

    if ring is None:
        logging.debug("polygon without exterior LinearRing")
        return None

    pos_list = ring.find("gml:posList", NS)

    if pos_list is None or not pos_list.text or not pos_list.text.strip():
        logging.debug("LinearRing without posList")
        return None

    dimension = pos_list.get("srsDimension") or ring.get("srsDimension") or polygon.get("srsDimension")
    return parse_poslist(pos_list.text, parse_dimension(dimension))


def surface_members(geometry: ET.Element) -> list[t.Optional[ET.Element]]:
    """Polygons of a geometry tree, one entry per surface member.

    A bare ``Polygon`` counts as a single member so single- and multi-part
    parcels share one shape. Members without a polygon yield ``None``.
    """

    if geometry.tag == POLYGON:
        return [geometry]

    multi_surface = geometry if geometry.tag == MULTI_SURFACE else geometry.find("gml:MultiSurface", NS)

    if multi_surface is None:
        polygon = geometry.find("gml:Polygon", NS)
        return [polygon] if polygon is not None else []

    members: list[t.Optional[ET.Element]] = []

    for member in multi_surface.findall("gml:surfaceMember", NS):
        members.append(member.find("gml:Polygon", NS))

    # GML 3.2 also allows the plural container form
    for container in multi_surface.findall("gml:surfaceMembers", NS):
        members.extend(container.findall("gml:Polygon", NS))

    return members


def decode_geometry(geometry: t.Optional[ET.Element]) -> t.Optional[DecodedGeometry]:
    """Decode a parcel ``geometrie`` tree; ``None`` when nothing usable is left."""

    if geometry is None:
        return None

    rings: list[Ring] = []

    for polygon in surface_members(geometry):
        if polygon is None:
            logging.debug("surfaceMember without Polygon")
            continue

        ring = polygon_exterior(polygon)

        if ring:
            rings.append(ring)

    if not rings:
        return None

    return DecodedGeometry(tuple(rings))


def centroid(geometry: t.Optional[DecodedGeometry]) -> t.Optional[Coordinate]:
    """Mean of all vertices, pooled over every ring.

    This is a vertex average, not an area-weighted centroid: it is skewed
    towards densely digitised edges and may fall outside concave parcels. Use
    it as a label or lookup point only.
    """

    if geometry is None:
        return None

    vertices = [point for ring in geometry.rings for point in ring]

    if not vertices:
        return None

    lon = sum(point[0] for point in vertices) / len(vertices)
    lat = sum(point[1] for point in vertices) / len(vertices)
    return lon, lat
