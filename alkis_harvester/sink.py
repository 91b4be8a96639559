# -*- coding: utf-8 -*-

"""Batch sinks for normalized parcels."""

from __future__ import annotations

import json
import logging
import os
import typing as t

from pathlib import Path

import click
import psycopg2
from dotenv import load_dotenv
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.extensions import cursor as PsycopgCursor
from psycopg2.extras import Json, execute_values
from psycopg2.sql import SQL, Identifier

from alkis_harvester.normalize import NormalizedRecord
from alkis_harvester.wfs import HarvestError


TABLE = "geo_fluerstuecke"

COLUMNS = (
    "gemeinde", "gemarkung", "flur", "zaehler", "nenner", "bundesland",
    "kreis", "nutzungsart", "flaeche_m2", "geometry", "raw_data",
)

TEMPLATE = (
    "(%(gemeinde)s, %(gemarkung)s, %(flur)s, %(zaehler)s, %(nenner)s, %(bundesland)s,"
    " %(kreis)s, %(nutzungsart)s, %(flaeche_m2)s,"
    " ST_SetSRID(ST_GeomFromGeoJSON(%(geometry)s::text), 4326), %(raw_data)s)"
)


class BatchWriteError(HarvestError):
    pass


class BatchSink(t.Protocol):
    def write(self, records: t.Sequence[NormalizedRecord]) -> None:
        ...


def connect_database(env_path: Path) -> PsycopgConnection:
    """Load a .env file and return a Postgres connection."""

    if not env_path.exists():
        raise FileNotFoundError(f".env file not found: {env_path}")

    load_dotenv(dotenv_path=env_path)

    conn = psycopg2.connect(
        database=os.getenv("DB_NAME"),
        user=os.getenv("DB_USER"),
        password=os.getenv("DB_PASS"),
        host=os.getenv("DB_HOST"),
        port=os.getenv("DB_PORT"),
    )

    conn.autocommit = False
    logging.info("database connection established")
    return conn


def to_row(record: NormalizedRecord) -> dict[str, t.Any]:
    row = record.as_row()
    row["geometry"] = json.dumps(row["geometry"]) if row["geometry"] is not None else None
    row["raw_data"] = Json(row["raw_data"])
    return row


def insert_batch(cursor: PsycopgCursor, table: str, rows: list[dict[str, t.Any]]) -> None:
    if not rows:
        return

    sql = SQL("INSERT INTO {table} ({columns}) VALUES %s").format(
        table=Identifier(table),
        columns=SQL(", ").join(Identifier(column) for column in COLUMNS),
    )

    execute_values(cursor, sql.as_string(cursor), rows, template=TEMPLATE, page_size=len(rows))


class PostgisSink:
    """Insert each batch in its own transaction."""

    def __init__(self, conn: PsycopgConnection, table: str = TABLE):
        self.conn = conn
        self.table = table

    def write(self, records: t.Sequence[NormalizedRecord]) -> None:
        if not records:
            return

        rows = [to_row(record) for record in records]
        cursor: t.Optional[PsycopgCursor] = None

        try:
            cursor = self.conn.cursor()
            insert_batch(cursor, self.table, rows)
            self.conn.commit()
        except psycopg2.Error as error:
            try:
                self.conn.rollback()
            except psycopg2.Error as rollback_error:
                logging.error("rollback after failed batch failed: %s", rollback_error)

            raise BatchWriteError(f"failed to insert batch ({len(rows)} rows) into {self.table}: {error}") from error
        finally:
            if cursor is not None:
                cursor.close()

        logging.info("inserted %s rows into %s", len(rows), self.table)


class DryRunSink:
    """Write nothing, print the first record of every batch."""

    def __init__(self, echo: t.Callable[[str], t.Any] = click.echo, sample_chars: int = 500):
        self.echo = echo
        self.sample_chars = sample_chars
        self.records_seen = 0

    def write(self, records: t.Sequence[NormalizedRecord]) -> None:
        self.records_seen += len(records)

        if not records:
            return

        sample = json.dumps(records[0].as_row(), indent=2, ensure_ascii=False)
        self.echo(f"Sample: {sample[:self.sample_chars]}")
