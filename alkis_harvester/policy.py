# -*- coding: utf-8 -*-

"""What the harvest loop does when a batch cannot be written."""

from __future__ import annotations

import logging
import time
import typing as t

from alkis_harvester.normalize import NormalizedRecord
from alkis_harvester.sink import BatchSink, BatchWriteError


class BatchFailurePolicy(t.Protocol):
    def write(self, sink: BatchSink, records: t.Sequence[NormalizedRecord]) -> bool:
        """Return ``True`` if the batch was stored, ``False`` if it was dropped."""
        ...


class ContinueOnBatchFailure:
    """Log and drop a failed batch; the harvest goes on with the next page."""

    def write(self, sink: BatchSink, records: t.Sequence[NormalizedRecord]) -> bool:
        try:
            sink.write(records)
        except BatchWriteError as error:
            logging.error("dropping batch of %s record(s): %s", len(records), error)
            return False

        return True


class FailFast:
    def write(self, sink: BatchSink, records: t.Sequence[NormalizedRecord]) -> bool:
        sink.write(records)
        return True


class RetryWithBackoff:
    """Retry a failed batch with linear backoff, then drop it."""

    def __init__(self, retries: int = 3, backoff: float = 2.0, sleep: t.Callable[[float], None] = time.sleep):
        if retries < 1:
            raise ValueError("retries must be at least 1")

        self.retries = retries
        self.backoff = backoff
        self.sleep = sleep

    def write(self, sink: BatchSink, records: t.Sequence[NormalizedRecord]) -> bool:
        for attempt in range(1, self.retries + 1):
            try:
                sink.write(records)
                return True
            except BatchWriteError as error:
                logging.warning("attempt %s/%s failed for batch of %s record(s): %s", attempt, self.retries, len(records), error)

                if attempt < self.retries:
                    self.sleep(self.backoff * attempt)

        logging.error("dropping batch of %s record(s) after %s attempts", len(records), self.retries)
        return False


def make_policy(name: str, retries: int = 3, backoff: float = 2.0) -> BatchFailurePolicy:
    if name == "continue":
        return ContinueOnBatchFailure()
    if name == "fail":
        return FailFast()
    if name == "retry":
        return RetryWithBackoff(retries=retries, backoff=backoff)
    raise ValueError(f"unknown batch failure policy: {name}")
