"""Data models shared by the resolver, fetcher, extractors and sinks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

FieldValue = Union[int, float, bool, str]


class ObjectKind(str, Enum):
    """Inventory object kinds. The value is also the measurement name."""
    HOST = "host"
    DATASTORE = "datastore"
    VIRTUAL_MACHINE = "virtual_machine"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class ManagedObjectRef:
    """Kind-tagged reference to one inventory object (e.g. host-42)."""
    kind: ObjectKind
    moid: str
    name: str = field(default="", compare=False)

    def __str__(self) -> str:
        if self.name:
            return f"{self.kind.value} '{self.name}' ({self.moid})"
        return f"{self.kind.value} {self.moid}"


@dataclass
class PropertyBag:
    """Raw property values retrieved for one object, keyed by property path."""
    ref: ManagedObjectRef
    properties: dict[str, Any] = field(default_factory=dict)

    def get(self, path: str, default: Any = None) -> Any:
        value = self.properties.get(path)
        return default if value is None else value

    def __getitem__(self, path: str) -> Any:
        return self.properties[path]

    def __contains__(self, path: str) -> bool:
        return path in self.properties


@dataclass
class MetricRecord:
    """One emitted measurement."""
    measurement: str
    tags: dict[str, str]
    fields: dict[str, FieldValue]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "measurement": self.measurement,
            "tags": dict(self.tags),
            "fields": dict(self.fields),
            "timestamp": self.timestamp,
        }

    def to_line_protocol(self) -> str:
        """Render as an InfluxDB line protocol line (nanosecond timestamp).

        Raises:
            ValueError: The record has no fields, which line protocol cannot express
        """
        if not self.fields:
            raise ValueError(f"{self.measurement} record {self.tags} has no fields")
        parts = [_escape_key(self.measurement, measurement=True)]
        for key in sorted(self.tags):
            value = self.tags[key]
            if value == "":
                continue
            parts.append(f"{_escape_key(key)}={_escape_key(value)}")
        head = ",".join(parts)
        body = ",".join(
            f"{_escape_key(key)}={_format_field(self.fields[key])}"
            for key in sorted(self.fields)
        )
        return f"{head} {body} {int(self.timestamp * 1_000_000_000)}"


def _escape_key(value: str, measurement: bool = False) -> str:
    value = value.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ").replace("\n", "\\n")
    if not measurement:
        value = value.replace("=", "\\=")
    return value


def _format_field(value: FieldValue) -> str:
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'

