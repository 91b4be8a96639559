"""Harvest NRW ALKIS parcels (Flurstücke) from the state WFS into PostGIS."""

__version__ = "0.1.0"
