"""
Tests for mapping WFS parcels onto storage records.
"""
import pytest

from alkis_harvester.normalize import normalize_feature


def test_normalize_full_feature(make_raw_feature):
    record = normalize_feature(make_raw_feature(flstnrnen="2"))

    assert record.gemeinde == "Köln"
    assert record.gemarkung == "Köln"
    assert record.flur == "5"
    assert record.zaehler == "23"
    assert record.nenner == "2"
    assert record.bundesland == "nrw"
    assert record.kreis == "Köln"
    assert record.nutzungsart == "Wohnbaufläche;412"
    assert record.flaeche_m2 == 412.0
    assert record.geometry["type"] == "Polygon"
    assert record.geometry["coordinates"][0][0] == [7.0, 51.0]

    raw = record.raw_data
    assert raw["source_id"] == "DENW36AL10003Xzz"
    assert raw["flstkennz"] == "05315000100050002300000"
    assert raw["gmdschl"] == "05315000"
    assert raw["kreisschl"] == "05315"
    assert raw["aktualitaet"] == "2024-03-01"
    assert raw["lagebezeichnung"] is None
    assert raw["quelle"] == "wfs_nw_alkis_vereinfacht"
    assert raw["centroid_lng"] == pytest.approx(7.04)
    assert raw["centroid_lat"] == pytest.approx(51.04)
    assert "geometry_multipolygon" not in raw


def test_identifiers_are_text(make_raw_feature):
    record = normalize_feature(make_raw_feature(gemarkung="3150", flur="12", kreis="5315"))

    assert record.gemarkung == "3150"
    assert record.flur == "12"
    assert record.kreis == "5315"


def test_optional_fields_default_to_none(make_raw_feature):
    record = normalize_feature(make_raw_feature(tntxt=None, flstnrnen=None, flaeche="unbekannt"))

    assert record.nutzungsart is None
    assert record.nenner is None
    assert record.flaeche_m2 is None


def test_zero_area_is_absent(make_raw_feature):
    assert normalize_feature(make_raw_feature(flaeche="0")).flaeche_m2 is None


def test_missing_identifiers_are_still_emitted(make_raw_feature):
    record = normalize_feature(make_raw_feature(idflurst=None, gemeinde=None, flstnrzae=None))

    assert record.gemeinde is None
    assert record.zaehler is None
    assert record.raw_data["source_id"] is None
    assert record.geometry is not None


def test_feature_without_geometry_is_kept(make_raw_feature):
    record = normalize_feature(make_raw_feature(geometry="<gml:MultiSurface/>"))

    assert record.geometry is None
    assert record.raw_data["centroid_lng"] is None
    assert record.raw_data["centroid_lat"] is None


def test_multi_part_parcel_keeps_first_ring_and_full_geometry(make_raw_feature, make_geometry):
    geometry = make_geometry("51.0 7.0 51.0 7.1 51.1 7.1", "52.0 8.0 52.0 8.1 52.1 8.1")

    record = normalize_feature(make_raw_feature(geometry=geometry))

    assert record.geometry == {
        "type": "Polygon",
        "coordinates": [[[7.0, 51.0], [7.1, 51.0], [7.1, 51.1]]],
    }
    full = record.raw_data["geometry_multipolygon"]
    assert full["type"] == "MultiPolygon"
    assert full["coordinates"][1] == [[[8.0, 52.0], [8.1, 52.0], [8.1, 52.1]]]


def test_page_with_one_broken_geometry(make_raw_feature, make_geometry):
    features = [make_raw_feature() for _ in range(9)]
    features.insert(4, make_raw_feature(geometry=make_geometry("51.0 7.0 51.0")))

    records = [normalize_feature(feature) for feature in features]

    assert len(records) == 10
    assert sum(1 for record in records if record.geometry is not None) == 9
    assert records[4].geometry is None


def test_as_row_has_storage_columns(make_raw_feature):
    row = normalize_feature(make_raw_feature()).as_row()

    assert set(row) == {
        "gemeinde", "gemarkung", "flur", "zaehler", "nenner", "bundesland",
        "kreis", "nutzungsart", "flaeche_m2", "geometry", "raw_data",
    }


@pytest.mark.parametrize("flaeche", ["NaN", "inf", "-inf"])
def test_non_finite_area_is_absent(make_raw_feature, flaeche):
    assert normalize_feature(make_raw_feature(flaeche=flaeche)).flaeche_m2 is None


def test_non_finite_coordinates_drop_only_that_geometry(make_raw_feature, make_geometry):
    record = normalize_feature(make_raw_feature(geometry=make_geometry("51.0 NaN 51.0 7.1 51.1 7.1")))

    assert record.geometry is None
    assert record.raw_data["centroid_lng"] is None
    assert record.zaehler == "23"
