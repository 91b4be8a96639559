#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Command line tool to harvest NRW ALKIS parcels from the state WFS.

The NRW "ALKIS vereinfacht" WFS serves roughly 17 million ``ave:Flurstueck``
features. The tool pages through them with ``STARTINDEX``/``COUNT``, converts
the GML geometry to GeoJSON and inserts each page into the
``geo_fluerstuecke`` table (see ``sql/geo_fluerstuecke.sql``).

Usage example::

    harvest-nrw-flurstuecke --env ../.env --gemeinde 05315000 --limit 5000 -v

Do not run it against the whole state without ``--limit`` or ``--gemeinde``
unless the target database is sized for it.
"""

from __future__ import annotations

import logging
import sys
import traceback
import typing as t

from functools import partial
from pathlib import Path

import click
from dotenv import load_dotenv

from alkis_harvester.harvest import CursorCheckpoint, Harvester, HarvestCursor, HarvestState, PageResult, resumable
from alkis_harvester.policy import make_policy
from alkis_harvester.sink import TABLE, BatchSink, DryRunSink, PostgisSink, connect_database
from alkis_harvester.wfs import FEATURE_TYPE, GEMEINDE_PATTERN, PAGE_SIZE, fetch_page, open_client, wfs_url


def log_exceptions(exc_type, exc_value, exc_traceback):
    """Log unhandled exceptions before letting Python terminate."""

    for line in traceback.TracebackException(exc_type, exc_value, exc_traceback).format(chain=True):
        logging.exception(line)

    logging.exception(exc_value)
    sys.__excepthook__(exc_type, exc_value, exc_traceback)


def configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(format="%(levelname)s: %(message)s", level=level)


def validate_gemeinde(ctx, param, value: t.Optional[str]) -> t.Optional[str]:
    if value is not None and not GEMEINDE_PATTERN.match(value):
        raise click.BadParameter("expected an 8 digit Gemeindeschlüssel, e.g. 05315000")
    return value


def report_progress(pages: t.Iterable[PageResult]) -> t.Iterator[PageResult]:
    for result in pages:
        click.echo(f"startIndex={result.offset}: {len(result.records)} parcel(s), total {result.cursor.fetched}", err=True)
        yield result


@click.command()
@click.option("--gemeinde", "-g", type=str, callback=validate_gemeinde, help="Only harvest parcels of this 8 digit Gemeindeschlüssel")
@click.option("--limit", type=click.IntRange(min=1), help="Stop after this many parcels")
@click.option("--dry-run", is_flag=True, help="Run the full pipeline but print a sample record instead of writing")
@click.option("--env", "env_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Path to .env with database credentials")
@click.option("--start-index", "-s", default=0, show_default=True, type=click.IntRange(min=0), help="STARTINDEX of the first page")
@click.option("--page-size", default=PAGE_SIZE, show_default=True, type=click.IntRange(min=1), help="Features requested per page")
@click.option("--timeout", default=60.0, show_default=True, type=float, help="HTTP timeout in seconds")
@click.option("--table", default=TABLE, show_default=True, help="Target table")
@click.option("--checkpoint", "checkpoint_path", type=click.Path(dir_okay=False, path_type=Path), help="Resume from and save progress to this JSON file")
@click.option("--on-batch-error", type=click.Choice(["continue", "fail", "retry"]), default="continue", show_default=True, help="What to do when a batch insert fails")
@click.option("--retries", default=3, show_default=True, type=click.IntRange(min=1), help="Attempts per batch with --on-batch-error retry")
@click.option("--verbose", "-v", is_flag=True, help="Enable INFO log output")
@click.option("--debug", "-d", is_flag=True, help="Enable DEBUG log output")
def main(
    gemeinde: t.Optional[str],
    limit: t.Optional[int],
    dry_run: bool,
    env_path: t.Optional[Path],
    start_index: int,
    page_size: int,
    timeout: float,
    table: str,
    checkpoint_path: t.Optional[Path],
    on_batch_error: str,
    retries: int,
    verbose: bool,
    debug: bool,
) -> None:
    """Harvest NRW ALKIS Flurstücke into the geo_fluerstuecke table."""

    configure_logging(verbose, debug)

    if not dry_run and env_path is None:
        raise click.UsageError("--env is required unless --dry-run is given")

    if env_path is not None:
        load_dotenv(dotenv_path=env_path)

    url = wfs_url()

    logging.info("WFS: %s", url)
    logging.info("feature type: %s", FEATURE_TYPE)
    if gemeinde:
        logging.info("Gemeinde: %s", gemeinde)
    if limit:
        logging.info("limit: %s", limit)
    if dry_run:
        logging.info("dry run, no database writes")

    checkpoint = CursorCheckpoint(checkpoint_path, {"gemeinde": gemeinde, "dry_run": dry_run}) if checkpoint_path else None

    if checkpoint is not None:
        saved_offset = checkpoint.load()
        if saved_offset is not None:
            logging.info("resuming at startIndex=%s from %s", saved_offset, checkpoint.path)
            start_index = saved_offset

    conn = None
    sink: BatchSink

    if dry_run:
        sink = DryRunSink()
    else:
        try:
            conn = connect_database(env_path)
        except Exception as error:
            logging.error("failed to connect to database: %s", error)
            sys.exit(1)

        sink = PostgisSink(conn, table)

    try:
        with open_client(timeout) as client:
            harvester = Harvester(
                partial(fetch_page, client, gemeinde=gemeinde, page_size=page_size, url=url),
                sink,
                policy=make_policy(on_batch_error, retries=retries),
                page_size=page_size,
                cursor=HarvestCursor(offset=start_index, limit=limit),
            )

            pages = resumable(harvester, checkpoint) if checkpoint is not None else harvester.iter_pages()
            result = harvester.run(report_progress(pages))
    finally:
        if conn is not None:
            conn.close()

    click.echo(f"Done. Total fetched: {result.cursor.fetched}")

    if result.state is HarvestState.FAILED:
        click.echo(f"Harvest aborted at startIndex={result.cursor.offset}: {result.error}", err=True)
        sys.exit(1)


def run() -> None:
    sys.excepthook = log_exceptions
    main()


if __name__ == "__main__":
    run()
