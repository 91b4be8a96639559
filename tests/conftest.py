"""
Shared fixtures: WFS response snippets shaped like the NRW ALKIS vereinfacht service.
"""
import xml.etree.ElementTree as ET

import pytest

from alkis_harvester.sink import BatchWriteError
from alkis_harvester.wfs import Page, parse_feature


NAMESPACES = (
    'xmlns:wfs="http://www.opengis.net/wfs/2.0" '
    'xmlns:gml="http://www.opengis.net/gml/3.2" '
    'xmlns:ave="http://repository.gdi-de.org/schemas/adv/produkt/alkis-vereinfacht/2.0"'
)

SQUARE = "51.0 7.0 51.0 7.1 51.1 7.1 51.1 7.0 51.0 7.0"

DEFAULT_ATTRIBUTES = {
    "idflurst": "DENW36AL10003Xzz",
    "flstkennz": "05315000100050002300000   ",
    "land": "Nordrhein-Westfalen",
    "gemarkung": "Köln",
    "gemaschl": "053150",
    "flur": "5",
    "flurschl": "053150005",
    "flstnrzae": "23",
    "regbezirk": "Köln",
    "kreis": "Köln",
    "kreisschl": "05315",
    "gemeinde": "Köln",
    "gmdschl": "05315000",
    "aktualit": "2024-03-01",
    "flaeche": "412",
    "tntxt": "Wohnbaufläche;412",
}


def polygon_xml(pos_list, dimension=None):
    dimension_attr = f' srsDimension="{dimension}"' if dimension else ""
    return (
        "<gml:Polygon><gml:exterior><gml:LinearRing>"
        f"<gml:posList{dimension_attr}>{pos_list}</gml:posList>"
        "</gml:LinearRing></gml:exterior></gml:Polygon>"
    )


def geometry_xml(*pos_lists):
    members = "".join(f"<gml:surfaceMember>{polygon_xml(pos_list)}</gml:surfaceMember>" for pos_list in pos_lists)
    return f'<gml:MultiSurface srsName="urn:ogc:def:crs:EPSG::4326">{members}</gml:MultiSurface>'


def flurstueck_xml(geometry=None, **attributes):
    values = dict(DEFAULT_ATTRIBUTES, **attributes)
    fields = "".join(f"<ave:{name}>{value}</ave:{name}>" for name, value in values.items() if value is not None)
    geometry = geometry_xml(SQUARE) if geometry is None else geometry
    return f'<ave:Flurstueck gml:id="Flurstueck.1">{fields}<ave:geometrie>{geometry}</ave:geometrie></ave:Flurstueck>'


def collection_xml(members, number_returned=None):
    returned = len(members) if number_returned is None else number_returned
    body = "".join(f"<wfs:member>{member}</wfs:member>" for member in members)
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<wfs:FeatureCollection {NAMESPACES} numberMatched="unknown" numberReturned="{returned}">'
        f"{body}</wfs:FeatureCollection>"
    ).encode("utf-8")


def gml_element(fragment):
    """Parse a GML fragment that relies on the gml prefix."""
    return ET.fromstring(f'<wrapper xmlns:gml="http://www.opengis.net/gml/3.2">{fragment}</wrapper>')[0]


def raw_feature(geometry=None, **attributes):
    element = ET.fromstring(f'<wrapper {NAMESPACES}>{flurstueck_xml(geometry, **attributes)}</wrapper>')[0]
    return parse_feature(element)


@pytest.fixture
def make_collection():
    return collection_xml


@pytest.fixture
def make_flurstueck():
    return flurstueck_xml


@pytest.fixture
def make_raw_feature():
    return raw_feature


@pytest.fixture
def make_gml():
    return gml_element


@pytest.fixture
def make_geometry():
    return geometry_xml


@pytest.fixture
def make_page():
    def _make_page(count, number_returned=None):
        features = [raw_feature(idflurst=f"DENW36AL{index:08d}") for index in range(count)]
        return Page(count if number_returned is None else number_returned, features)

    return _make_page


class FakeService:
    """Pages served by start index; records every request."""

    def __init__(self, pages, page_size):
        self.pages = list(pages)
        self.page_size = page_size
        self.requests = []

    def __call__(self, start_index):
        self.requests.append(start_index)
        index = start_index // self.page_size
        if index < len(self.pages):
            page = self.pages[index]
            if isinstance(page, Exception):
                raise page
            return page
        return Page(0, [])


class RecordingSink:
    def __init__(self, failures=()):
        self.batches = []
        self.calls = 0
        self.failures = set(failures)

    def write(self, records):
        self.calls += 1
        if self.calls in self.failures:
            raise BatchWriteError(f"insert #{self.calls} failed")
        self.batches.append(list(records))

    @property
    def records(self):
        return [record for batch in self.batches for record in batch]


@pytest.fixture
def fake_service():
    return FakeService


@pytest.fixture
def recording_sink():
    return RecordingSink
