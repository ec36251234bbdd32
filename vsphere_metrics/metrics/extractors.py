"""Property bag to metric record mapping.

One extractor per object kind, registered in EXTRACTORS. Each extractor
declares the property paths it needs and a pure function turning a
PropertyBag into (tags, fields).

Schema:
  host             tags: name
                   fields: connection_state, health_status, cpu_cores,
                           cpu_speed (MHz/core), cpu_usage (MHz),
                           memory_granted (MB), memory_usage (MB)
  datastore        tags: name
                   fields: type, health_status, capacity, free_space,
                           uncommitted_space (bytes)
  virtual_machine  tags: name, hostname
                   fields: guest_os_name, guest_os_id, ip_address,
                           connection_state, health_status, guest_tools_running,
                           cpu_sockets, cpu_cores_per_socket, cpu_entitlement,
                           cpu_usage, cpu_demand (MHz), memory_granted,
                           memory_entitlement, memory_host_consumed,
                           memory_guest_active, memory_swapped,
                           memory_ballooned (MB), storage_committed,
                           storage_uncommitted (bytes)

Values the endpoint does not report are left out of the record rather than
zero-filled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from vsphere_metrics.errors import ExtractionError
from vsphere_metrics.models import FieldValue, ObjectKind, PropertyBag

Tags = dict[str, str]
Fields = dict[str, FieldValue]

BYTES_PER_MB = 1024 * 1024

TOOLS_RUNNING = "guestToolsRunning"

HOST_PROPERTIES = (
    "name",
    "summary.overallStatus",
    "summary.runtime.connectionState",
    "summary.hardware",
    "summary.quickStats",
)

DATASTORE_PROPERTIES = (
    "summary",
    "overallStatus",
)

VM_PROPERTIES = (
    "name",
    "config.guestFullName",
    "config.guestId",
    "config.hardware.numCPU",
    "config.hardware.numCoresPerSocket",
    "config.hardware.memoryMB",
    "summary.overallStatus",
    "summary.runtime",
    "summary.guest",
    "summary.quickStats",
    "summary.storage",
)


# ─── helpers ──────────────────────────────────────────────────────

def _require(bag: PropertyBag, path: str) -> Any:
    value = bag.get(path)
    if value is None:
        raise ExtractionError(bag.ref, f"property '{path}' is missing")
    return value


def _check_kind(bag: PropertyBag, kind: ObjectKind) -> None:
    if bag.ref.kind != kind:
        raise ExtractionError(bag.ref, f"expected a {kind.label}, got a {bag.ref.kind.label}")


def _label(value: Any) -> Optional[str]:
    """Enum members (pyVmomi enums are str subclasses) to their plain label."""
    if value is None:
        return None
    return str(value)


def _int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _attr(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    return getattr(obj, name, None)


def _compact(fields: dict[str, Any]) -> Fields:
    return {key: value for key, value in fields.items() if value is not None}


# ─── host ─────────────────────────────────────────────────────────

def extract_host(bag: PropertyBag) -> tuple[Tags, Fields]:
    _check_kind(bag, ObjectKind.HOST)
    name = _require(bag, "name")
    hardware = _require(bag, "summary.hardware")
    quick_stats = bag.get("summary.quickStats")

    memory_size = _int(_attr(hardware, "memorySize"))

    tags = {"name": str(name)}
    fields = _compact({
        "connection_state": _label(bag.get("summary.runtime.connectionState")),
        "health_status": _label(bag.get("summary.overallStatus")),
        "cpu_cores": _int(_attr(hardware, "numCpuCores")),
        "cpu_speed": _int(_attr(hardware, "cpuMhz")),
        "cpu_usage": _int(_attr(quick_stats, "overallCpuUsage")),
        "memory_granted": memory_size // BYTES_PER_MB if memory_size is not None else None,
        "memory_usage": _int(_attr(quick_stats, "overallMemoryUsage")),
    })
    return tags, fields


# ─── datastore ────────────────────────────────────────────────────

def extract_datastore(bag: PropertyBag) -> tuple[Tags, Fields]:
    _check_kind(bag, ObjectKind.DATASTORE)
    summary = _require(bag, "summary")

    name = _attr(summary, "name") or bag.ref.name
    if not name:
        raise ExtractionError(bag.ref, "datastore summary has no name")

    tags = {"name": str(name)}
    fields = _compact({
        "type": _attr(summary, "type"),
        "health_status": _label(bag.get("overallStatus")),
        "capacity": _int(_attr(summary, "capacity")),
        "free_space": _int(_attr(summary, "freeSpace")),
        "uncommitted_space": _int(_attr(summary, "uncommitted")),
    })
    return tags, fields


# ─── virtual machine ──────────────────────────────────────────────

def extract_virtual_machine(bag: PropertyBag) -> tuple[Tags, Fields]:
    _check_kind(bag, ObjectKind.VIRTUAL_MACHINE)
    name = _require(bag, "name")
    runtime = _require(bag, "summary.runtime")
    num_cpu = _require(bag, "config.hardware.numCPU")
    memory_mb = _require(bag, "config.hardware.memoryMB")

    guest = bag.get("summary.guest")
    quick_stats = bag.get("summary.quickStats")
    storage = bag.get("summary.storage")

    tools_status = _label(_attr(guest, "toolsRunningStatus"))
    tools_running = tools_status == TOOLS_RUNNING

    tags = {"name": str(name)}
    # Guest-reported identity is only meaningful while tools are running.
    hostname = _attr(guest, "hostName") if tools_running else None
    if hostname:
        tags["hostname"] = str(hostname)

    fields = _compact({
        "guest_os_name": bag.get("config.guestFullName"),
        "guest_os_id": bag.get("config.guestId"),
        "ip_address": _attr(guest, "ipAddress") if tools_running else None,
        "connection_state": _label(_attr(runtime, "connectionState")),
        "health_status": _label(bag.get("summary.overallStatus")),
        "guest_tools_running": tools_status,
        "cpu_sockets": _int(num_cpu),
        "cpu_cores_per_socket": _int(bag.get("config.hardware.numCoresPerSocket")),
        "cpu_entitlement": _int(_attr(runtime, "maxCpuUsage")),
        "cpu_usage": _int(_attr(quick_stats, "overallCpuUsage")),
        "cpu_demand": _int(_attr(quick_stats, "overallCpuDemand")),
        "memory_granted": _int(memory_mb),
        "memory_entitlement": _int(_attr(runtime, "maxMemoryUsage")),
        "memory_host_consumed": _int(_attr(quick_stats, "hostMemoryUsage")),
        "memory_guest_active": _int(_attr(quick_stats, "guestMemoryUsage")),
        "memory_swapped": _int(_attr(quick_stats, "swappedMemory")),
        "memory_ballooned": _int(_attr(quick_stats, "balloonedMemory")),
        "storage_committed": _int(_attr(storage, "committed")),
        "storage_uncommitted": _int(_attr(storage, "uncommitted")),
    })
    return tags, fields


# ─── strategy table ───────────────────────────────────────────────

@dataclass(frozen=True)
class Extractor:
    """Property paths and transform for one object kind."""
    kind: ObjectKind
    properties: tuple[str, ...]
    extract: Callable[[PropertyBag], tuple[Tags, Fields]]

    @property
    def measurement(self) -> str:
        return self.kind.value

    def __call__(self, bag: PropertyBag) -> tuple[Tags, Fields]:
        """Extract one bag. Any malformed value fails that object only."""
        try:
            return self.extract(bag)
        except (TypeError, ValueError) as e:
            raise ExtractionError(bag.ref, f"malformed property value: {e}") from e


EXTRACTORS: dict[ObjectKind, Extractor] = {
    ObjectKind.HOST: Extractor(ObjectKind.HOST, HOST_PROPERTIES, extract_host),
    ObjectKind.DATASTORE: Extractor(ObjectKind.DATASTORE, DATASTORE_PROPERTIES, extract_datastore),
    ObjectKind.VIRTUAL_MACHINE: Extractor(
        ObjectKind.VIRTUAL_MACHINE, VM_PROPERTIES, extract_virtual_machine,
    ),
}


def get_extractor(kind: ObjectKind) -> Extractor:
    return EXTRACTORS[kind]
