"""Metric sinks.

An accumulator receives records and reported errors from every concurrent
pattern task of a gather cycle. Implementations only ever append, under a
lock, so unordered writes from several tasks are safe.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Optional, TextIO

from vsphere_metrics.models import FieldValue, MetricRecord
from vsphere_metrics.utils.logging import get_logger

logger = get_logger(__name__)


class Accumulator:
    """Write-only sink interface."""

    def __init__(self):
        self._lock = threading.Lock()

    def emit(self, measurement: str, fields: dict[str, FieldValue],
             tags: dict[str, str], timestamp: Optional[float] = None) -> MetricRecord:
        record = MetricRecord(
            measurement=measurement,
            tags=dict(tags),
            fields=dict(fields),
            timestamp=time.time() if timestamp is None else timestamp,
        )
        with self._lock:
            self.add_record(record)
        return record

    def report_error(self, error: Exception) -> None:
        with self._lock:
            self.add_error(error)

    # Subclasses implement these; they are always called under the lock.

    def add_record(self, record: MetricRecord) -> None:
        raise NotImplementedError

    def add_error(self, error: Exception) -> None:
        logger.warning(str(error))


class MemoryAccumulator(Accumulator):
    """Keeps everything in memory (CLI table/json output, tests)."""

    def __init__(self):
        super().__init__()
        self.records: list[MetricRecord] = []
        self.errors: list[Exception] = []

    def add_record(self, record: MetricRecord) -> None:
        self.records.append(record)

    def add_error(self, error: Exception) -> None:
        self.errors.append(error)
        super().add_error(error)

    def by_measurement(self, measurement: str) -> list[MetricRecord]:
        return [r for r in self.records if r.measurement == measurement]


class StreamAccumulator(Accumulator):
    """Writes each record to a text stream as soon as it is emitted.

    Formats:
      line - InfluxDB line protocol
      json - one JSON object per line
    """

    def __init__(self, stream: TextIO, fmt: str = "line"):
        super().__init__()
        if fmt not in ("line", "json"):
            raise ValueError(f"Unknown output format: {fmt}")
        self.stream = stream
        self.fmt = fmt
        self.record_count = 0
        self.error_count = 0

    def add_record(self, record: MetricRecord) -> None:
        if self.fmt == "line":
            if not record.fields:
                logger.warning(f"Skipping {record.measurement} record {record.tags}: no fields")
                return
            line = record.to_line_protocol()
        else:
            line = json.dumps(record.to_dict(), sort_keys=True)
        self.stream.write(line + "\n")
        self.stream.flush()
        self.record_count += 1

    def add_error(self, error: Exception) -> None:
        self.error_count += 1
        super().add_error(error)
