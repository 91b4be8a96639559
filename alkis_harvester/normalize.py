# -*- coding: utf-8 -*-

from __future__ import annotations

import typing as t

from dataclasses import dataclass, field

from alkis_harvester.attributes import as_float, as_text
from alkis_harvester.geometry import centroid, decode_geometry
from alkis_harvester.wfs import RawFeature


BUNDESLAND = "nrw"
QUELLE = "wfs_nw_alkis_vereinfacht"


@dataclass(frozen=True)
class NormalizedRecord:
    gemeinde: t.Optional[str]
    gemarkung: t.Optional[str]
    flur: t.Optional[str]
    zaehler: t.Optional[str]
    nenner: t.Optional[str]
    bundesland: str
    kreis: t.Optional[str]
    nutzungsart: t.Optional[str]
    flaeche_m2: t.Optional[float]
    geometry: t.Optional[dict[str, t.Any]]
    raw_data: dict[str, t.Any] = field(default_factory=dict)

    def as_row(self) -> dict[str, t.Any]:
        return {
            "gemeinde": self.gemeinde,
            "gemarkung": self.gemarkung,
            "flur": self.flur,
            "zaehler": self.zaehler,
            "nenner": self.nenner,
            "bundesland": self.bundesland,
            "kreis": self.kreis,
            "nutzungsart": self.nutzungsart,
            "flaeche_m2": self.flaeche_m2,
            "geometry": self.geometry,
            "raw_data": self.raw_data,
        }


def parse_area(feature: RawFeature) -> t.Optional[float]:
    area = as_float(feature.get("flaeche"))
    # upstream treats a zero area as unknown
    return area or None


def normalize_feature(feature: RawFeature) -> NormalizedRecord:
    """Map one WFS parcel onto the storage row.

    Nothing in here raises: unparseable values become ``None`` and a parcel
    without usable geometry is still emitted with ``geometry=None``.
    """

    decoded = decode_geometry(feature.geometry)
    center = centroid(decoded)

    flstkennz = as_text(feature.get("flstkennz"))

    raw_data: dict[str, t.Any] = {
        "source_id": as_text(feature.get("idflurst")),
        "flstkennz": flstkennz.strip() if flstkennz else None,
        "gemaschl": as_text(feature.get("gemaschl")),
        "gmdschl": as_text(feature.get("gmdschl")),
        "kreisschl": as_text(feature.get("kreisschl")),
        "flurschl": as_text(feature.get("flurschl")),
        "land": as_text(feature.get("land")),
        "regbezirk": as_text(feature.get("regbezirk")),
        "lagebezeichnung": as_text(feature.get("lagebeztxt")),
        "aktualitaet": as_text(feature.get("aktualit")),
        "centroid_lng": center[0] if center else None,
        "centroid_lat": center[1] if center else None,
        "quelle": QUELLE,
    }

    if decoded is not None and decoded.is_multi:
        raw_data["geometry_multipolygon"] = decoded.to_geojson()

    return NormalizedRecord(
        gemeinde=as_text(feature.get("gemeinde")),
        gemarkung=as_text(feature.get("gemarkung")),
        flur=as_text(feature.get("flur")),
        zaehler=as_text(feature.get("flstnrzae")),
        nenner=as_text(feature.get("flstnrnen")),
        bundesland=BUNDESLAND,
        kreis=as_text(feature.get("kreis")),
        nutzungsart=as_text(feature.get("tntxt")),
        flaeche_m2=parse_area(feature),
        geometry=decoded.first_ring_only() if decoded is not None else None,
        raw_data=raw_data,
    )
