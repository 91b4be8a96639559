# -*- coding: utf-8 -*-

"""Page-by-page harvest loop.

One page is fetched, normalized and written before the next request goes
out. Only fetch and envelope errors end a harvest early; parcels without
geometry and, with the default policy, failed batches are counted and
skipped.
"""

from __future__ import annotations

import enum
import json
import logging
import typing as t

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from alkis_harvester.normalize import NormalizedRecord, normalize_feature
from alkis_harvester.policy import BatchFailurePolicy, ContinueOnBatchFailure
from alkis_harvester.sink import BatchSink
from alkis_harvester.wfs import PAGE_SIZE, HarvestError, Page


class HarvestState(enum.Enum):
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class HarvestCursor:
    offset: int = 0
    fetched: int = 0
    limit: t.Optional[int] = None

    @property
    def remaining(self) -> t.Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.fetched, 0)

    @property
    def cap_reached(self) -> bool:
        return self.limit is not None and self.fetched >= self.limit

    def take(self, count: int) -> HarvestCursor:
        return replace(self, fetched=self.fetched + count)

    def next_page(self, step: int) -> HarvestCursor:
        return replace(self, offset=self.offset + step)


@dataclass
class HarvestStats:
    pages_fetched: int = 0
    parcels_seen: int = 0
    parcels_written: int = 0
    geometries_missing: int = 0
    batches_failed: int = 0


@dataclass(frozen=True)
class PageResult:
    offset: int
    number_returned: int
    records: t.Tuple[NormalizedRecord, ...]
    written: bool
    cursor: HarvestCursor
    state: HarvestState


@dataclass
class HarvestResult:
    state: HarvestState
    cursor: HarvestCursor
    stats: HarvestStats
    error: t.Optional[HarvestError] = None


class Harvester:
    """Drive ``fetch`` → ``normalize_feature`` → ``sink`` until done.

    ``fetch`` takes a start index and returns a ``Page``; in production it is
    ``fetch_page`` bound to an HTTP client. A page is assumed to be the last
    one as soon as the server returns fewer features than ``page_size``.
    """

    def __init__(
        self,
        fetch: t.Callable[[int], Page],
        sink: BatchSink,
        policy: t.Optional[BatchFailurePolicy] = None,
        page_size: int = PAGE_SIZE,
        cursor: t.Optional[HarvestCursor] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        self.fetch = fetch
        self.sink = sink
        self.policy = policy or ContinueOnBatchFailure()
        self.page_size = page_size
        self.cursor = cursor or HarvestCursor()
        self.stats = HarvestStats()
        self.state = HarvestState.FETCHING
        self.error: t.Optional[HarvestError] = None

    def _fail(self, error: HarvestError) -> None:
        logging.error("harvest failed at startIndex=%s: %s", self.cursor.offset, error)
        self.error = error
        self.state = HarvestState.FAILED

    def iter_pages(self) -> t.Iterator[PageResult]:
        self.state = HarvestState.FETCHING

        if self.cursor.cap_reached:
            self.state = HarvestState.DONE
            return

        while self.state is HarvestState.FETCHING:
            offset = self.cursor.offset

            try:
                page = self.fetch(offset)
            except HarvestError as error:
                self._fail(error)
                return

            self.stats.pages_fetched += 1

            if page.number_returned == 0:
                logging.info("no more features")
                self.state = HarvestState.DONE
                return

            self.state = HarvestState.NORMALIZING

            features = page.features
            remaining = self.cursor.remaining

            if remaining is not None:
                features = features[:remaining]

            records = tuple(normalize_feature(feature) for feature in features)

            self.stats.parcels_seen += len(records)
            self.stats.geometries_missing += sum(1 for record in records if record.geometry is None)

            self.state = HarvestState.WRITING

            try:
                written = self.policy.write(self.sink, records) if records else True
            except HarvestError as error:
                self._fail(error)
                return

            if written:
                self.stats.parcels_written += len(records)
            else:
                self.stats.batches_failed += 1

            self.cursor = self.cursor.take(len(records))

            logging.info("startIndex=%s: parsed %s features (total: %s)", offset, len(records), self.cursor.fetched)

            if self.cursor.cap_reached:
                logging.info("limit reached (%s parcels)", self.cursor.fetched)
                self.state = HarvestState.DONE
            elif page.number_returned < self.page_size:
                logging.info("last page reached")
                self.state = HarvestState.DONE
            else:
                self.cursor = self.cursor.next_page(page.number_returned)
                self.state = HarvestState.FETCHING

            yield PageResult(offset, page.number_returned, records, written, self.cursor, self.state)

    def run(self, pages: t.Optional[t.Iterable[PageResult]] = None) -> HarvestResult:
        for _ in pages if pages is not None else self.iter_pages():
            pass

        logging.info(
            "%s: fetched %s page(s); seen %s parcel(s); written %s; without geometry %s; failed batches %s",
            self.state.value,
            self.stats.pages_fetched,
            self.stats.parcels_seen,
            self.stats.parcels_written,
            self.stats.geometries_missing,
            self.stats.batches_failed,
        )

        return HarvestResult(self.state, self.cursor, self.stats, self.error)


@dataclass
class CursorCheckpoint:
    """Next start index of an interrupted harvest, kept in a small JSON file."""

    path: Path
    extra: dict[str, t.Any] = field(default_factory=dict)

    def load(self) -> t.Optional[int]:
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as file_handle:
                data = json.load(file_handle)
            offset = int(data["offset"])
        except (OSError, ValueError, KeyError, TypeError) as error:
            logging.warning("ignoring unreadable checkpoint %s: %s", self.path, error)
            return None

        for key, value in self.extra.items():
            if data.get(key) != value:
                logging.warning("ignoring checkpoint %s written for %s=%s", self.path, key, data.get(key))
                return None

        return offset

    def save(self, cursor: HarvestCursor) -> None:
        data = {
            "offset": cursor.offset,
            "fetched": cursor.fetched,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            **self.extra,
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        with open(tmp_path, "w", encoding="utf-8") as file_handle:
            json.dump(data, file_handle)

        tmp_path.replace(self.path)
        logging.debug("saved checkpoint offset=%s to %s", cursor.offset, self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logging.debug("removed checkpoint %s", self.path)


def resumable(harvester: Harvester, checkpoint: CursorCheckpoint) -> t.Iterator[PageResult]:
    """Save the cursor after every page; drop the checkpoint once done."""

    for result in harvester.iter_pages():
        checkpoint.save(result.cursor)
        yield result

    if harvester.state is HarvestState.DONE:
        checkpoint.clear()
