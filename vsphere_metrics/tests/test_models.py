"""Tests for records, sinks and error messages."""

import io
import json

import pytest


# ═══════════════════════════════════════════════════════════════════
#  Line Protocol
# ═══════════════════════════════════════════════════════════════════

class TestLineProtocol:
    def test_basic_record(self):
        from vsphere_metrics.models import MetricRecord
        record = MetricRecord(
            measurement="host",
            tags={"name": "esxi1.domain.com"},
            fields={"memory_granted": 32768, "health_status": "green"},
            timestamp=1700000000.0,
        )
        assert record.to_line_protocol() == (
            'host,name=esxi1.domain.com health_status="green",memory_granted=32768i 1700000000000000000'
        )

    def test_escaping(self):
        from vsphere_metrics.models import MetricRecord
        record = MetricRecord(
            measurement="virtual_machine",
            tags={"name": "web 01,a=b", "hostname": ""},
            fields={"guest_os_name": 'Microsoft "Windows"', "ok": True, "ratio": 0.5},
            timestamp=1.0,
        )
        line = record.to_line_protocol()
        assert line.startswith("virtual_machine,name=web\\ 01\\,a\\=b ")
        assert "hostname" not in line
        assert 'guest_os_name="Microsoft \\"Windows\\""' in line
        assert "ok=true" in line
        assert "ratio=0.5" in line

    def test_newlines_escaped(self):
        from vsphere_metrics.models import MetricRecord
        record = MetricRecord(
            measurement="virtual_machine",
            tags={"name": "web\n01"},
            fields={"guest_os_name": "line one\nline two"},
            timestamp=1.0,
        )
        line = record.to_line_protocol()
        assert "\n" not in line
        assert line == 'virtual_machine,name=web\\n01 guest_os_name="line one\\nline two" 1000000000'

    def test_no_fields_rejected(self):
        from vsphere_metrics.models import MetricRecord
        with pytest.raises(ValueError, match="no fields"):
            MetricRecord("host", {"name": "x"}, {}, timestamp=1.0).to_line_protocol()

    def test_to_dict(self):
        from vsphere_metrics.models import MetricRecord
        record = MetricRecord("datastore", {"name": "ds1"}, {"capacity": 10}, timestamp=5.0)
        assert record.to_dict() == {
            "measurement": "datastore",
            "tags": {"name": "ds1"},
            "fields": {"capacity": 10},
            "timestamp": 5.0,
        }


# ═══════════════════════════════════════════════════════════════════
#  References
# ═══════════════════════════════════════════════════════════════════

class TestManagedObjectRef:
    def test_identity_ignores_name(self):
        from vsphere_metrics.models import ManagedObjectRef, ObjectKind
        a = ManagedObjectRef(ObjectKind.HOST, "host-10", "esxi1")
        b = ManagedObjectRef(ObjectKind.HOST, "host-10", "renamed")
        assert a == b
        assert hash(a) == hash(b)

    def test_str(self):
        from vsphere_metrics.models import ManagedObjectRef, ObjectKind
        assert str(ManagedObjectRef(ObjectKind.VIRTUAL_MACHINE, "vm-1", "web")) == "virtual_machine 'web' (vm-1)"
        assert str(ManagedObjectRef(ObjectKind.DATASTORE, "datastore-2")) == "datastore datastore-2"


# ═══════════════════════════════════════════════════════════════════
#  Accumulators
# ═══════════════════════════════════════════════════════════════════

class TestAccumulators:
    def test_memory(self):
        from vsphere_metrics.metrics.accumulator import MemoryAccumulator
        acc = MemoryAccumulator()
        record = acc.emit("host", {"cpu_cores": 8}, {"name": "h1"}, timestamp=2.0)
        acc.report_error(RuntimeError("boom"))

        assert acc.records == [record]
        assert acc.by_measurement("host") == [record]
        assert acc.by_measurement("datastore") == []
        assert [str(e) for e in acc.errors] == ["boom"]

    def test_emit_copies_inputs(self):
        from vsphere_metrics.metrics.accumulator import MemoryAccumulator
        acc = MemoryAccumulator()
        tags = {"name": "h1"}
        acc.emit("host", {"cpu_cores": 8}, tags)
        tags["name"] = "changed"
        assert acc.records[0].tags == {"name": "h1"}

    def test_stream_line(self):
        from vsphere_metrics.metrics.accumulator import StreamAccumulator
        out = io.StringIO()
        acc = StreamAccumulator(out)
        acc.emit("host", {"cpu_cores": 8}, {"name": "h1"}, timestamp=1.0)
        acc.report_error(RuntimeError("boom"))

        assert out.getvalue() == "host,name=h1 cpu_cores=8i 1000000000\n"
        assert acc.record_count == 1
        assert acc.error_count == 1

    def test_stream_line_skips_record_without_fields(self):
        from vsphere_metrics.metrics.accumulator import StreamAccumulator
        out = io.StringIO()
        acc = StreamAccumulator(out)
        acc.emit("host", {}, {"name": "h1"}, timestamp=1.0)
        acc.emit("host", {"cpu_cores": 8}, {"name": "h2"}, timestamp=1.0)

        assert out.getvalue() == "host,name=h2 cpu_cores=8i 1000000000\n"
        assert acc.record_count == 1

    def test_stream_json(self):
        from vsphere_metrics.metrics.accumulator import StreamAccumulator
        out = io.StringIO()
        StreamAccumulator(out, fmt="json").emit("datastore", {"capacity": 1}, {"name": "ds"}, timestamp=3.0)

        data = json.loads(out.getvalue())
        assert data["measurement"] == "datastore"
        assert data["fields"] == {"capacity": 1}

    def test_stream_unknown_format(self):
        from vsphere_metrics.metrics.accumulator import StreamAccumulator
        with pytest.raises(ValueError):
            StreamAccumulator(io.StringIO(), fmt="csv")


# ═══════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════

class TestErrors:
    def test_describe_fault_with_title(self):
        from pyVmomi import vim
        from vsphere_metrics.errors import describe_fault
        fault = vim.fault.NoPermission(msg="Permission to perform this operation was denied.")
        assert describe_fault(fault) == "Permission denied: Permission to perform this operation was denied."

    def test_describe_fault_plain_exception(self):
        from vsphere_metrics.errors import describe_fault
        assert describe_fault(TimeoutError("timed out")) == "timed out"
        assert describe_fault(TimeoutError()) == "TimeoutError"

    def test_pattern_error_messages(self):
        from vsphere_metrics.errors import GatherCancelledError, ResolutionError
        from vsphere_metrics.models import ObjectKind

        err = ResolutionError(ObjectKind.VIRTUAL_MACHINE, "web-*", RuntimeError("socket closed"))
        assert str(err) == "Cannot read virtual machine list for 'web-*': socket closed"
        assert str(GatherCancelledError(ObjectKind.HOST, "*")) == "Collection of host list for '*' was cancelled"

    def test_extraction_error_message(self):
        from vsphere_metrics.errors import ExtractionError
        from vsphere_metrics.models import ManagedObjectRef, ObjectKind

        ref = ManagedObjectRef(ObjectKind.HOST, "host-10", "esxi1")
        err = ExtractionError(ref, "property 'name' is missing", pattern="esxi*")
        assert str(err) == "Cannot extract metrics for host 'esxi1' (host-10) (pattern 'esxi*'): property 'name' is missing"

    def test_connection_error_is_builtin_connection_error(self):
        from vsphere_metrics.errors import CollectorError, VSphereConnectionError
        err = VSphereConnectionError("refused")
        assert isinstance(err, ConnectionError)
        assert isinstance(err, CollectorError)
