"""CLI for vsphere_metrics.

Commands:
  vsphere-metrics gather         Run one gather cycle (or poll with --interval)
  vsphere-metrics sample-config  Print an annotated configuration file
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from vsphere_metrics import __version__
from vsphere_metrics.config import DESCRIPTION, SAMPLE_CONFIG, AppConfig
from vsphere_metrics.errors import CollectorError
from vsphere_metrics.metrics.accumulator import MemoryAccumulator, StreamAccumulator
from vsphere_metrics.models import MetricRecord
from vsphere_metrics.pipeline.collector import CycleStatus, GatherReport, MetricsCollector
from vsphere_metrics.utils.logging import get_logger, set_log_level

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


def load_config(config_path: str | None, overrides: dict) -> AppConfig:
    """Load configuration from file or environment, then apply CLI overrides."""
    try:
        if config_path:
            config = AppConfig.from_yaml(config_path)
            data = config.model_dump()
            for section, values in overrides.items():
                data[section].update(values)
            return AppConfig(**data)
        return AppConfig.from_env_and_args(**overrides)
    except Exception as e:
        err_console.print(f"[red]Error loading config: {e}[/red]")
        err_console.print("Provide a --config file, --server options or VSPHERE_* environment variables.")
        sys.exit(1)


def _build_overrides(server, username, password, password_file, insecure,
                     datacenter, hosts, datastores, vms, timeout) -> dict:
    vsphere: dict = {}
    collection: dict = {}
    if server:
        vsphere["server"] = server
    if username:
        vsphere["username"] = username
    if password_file:
        password = Path(password_file).read_text().strip()
    if password:
        vsphere["password"] = password
    if insecure is not None:
        vsphere["insecure"] = insecure
    if datacenter:
        vsphere["datacenter"] = datacenter
    if hosts:
        collection["hosts"] = list(hosts)
    if datastores:
        collection["datastores"] = list(datastores)
    if vms:
        collection["virtual_machines"] = list(vms)
    if timeout:
        collection["timeout_seconds"] = timeout
    return {"vsphere": vsphere, "collection": collection}


def print_table(records: list[MetricRecord]) -> None:
    """Render records grouped by measurement as rich tables."""
    for measurement in ("host", "datastore", "virtual_machine"):
        rows = [r for r in records if r.measurement == measurement]
        if not rows:
            continue
        field_names = sorted({key for r in rows for key in r.fields})
        table = Table(title=f"{measurement} ({len(rows)})")
        table.add_column("name", style="cyan", no_wrap=True)
        if measurement == "virtual_machine":
            table.add_column("hostname", style="magenta")
        for name in field_names:
            table.add_column(name, justify="right")
        for r in sorted(rows, key=lambda rec: rec.tags.get("name", "")):
            cells = [r.tags.get("name", "")]
            if measurement == "virtual_machine":
                cells.append(r.tags.get("hostname", ""))
            cells += [str(r.fields.get(name, "")) for name in field_names]
            table.add_row(*cells)
        console.print(table)


def print_summary(report: GatherReport) -> None:
    style = {"complete": "green", "partial": "yellow"}.get(report.status.value, "red")
    err_console.print(
        f"[{style}]{report.status.value.upper()}[/{style}] "
        f"{report.records_emitted} records, {report.errors_reported} errors, "
        f"{report.duration_s:.1f}s"
    )


def run_cycle(collector: MetricsCollector, fmt: str) -> GatherReport | None:
    """Run one cycle and print its output. Returns None on a fatal error."""
    try:
        if fmt == "table":
            acc = MemoryAccumulator()
            report = collector.run_once(acc)
            print_table(acc.records)
        else:
            report = collector.run_once(StreamAccumulator(sys.stdout, fmt=fmt))
    except CollectorError as e:
        err_console.print(f"[red]{e}[/red]")
        return None
    print_summary(report)
    return report


@click.group()
@click.version_option(version=__version__, prog_name="vsphere-metrics")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def main(log_level: str):
    """Collect metrics from VMware vSphere.

    Polls a vCenter Server or ESXi host for hosts, datastores and virtual
    machines matched by name patterns and prints one metric record per object.
    """
    set_log_level(log_level)


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--server", help="vCenter/ESXi hostname, host:port or URL")
@click.option("--username", help="vSphere username")
@click.option("--password-file", type=click.Path(exists=True), help="File containing the password")
@click.option("--password", help="vSphere password (prefer --password-file)")
@click.option("--insecure/--secure", default=None, help="Skip SSL verification")
@click.option("--datacenter", help="Datacenter name when the endpoint has several")
@click.option("--host", "hosts", multiple=True, help="Host name pattern (repeatable)")
@click.option("--datastore", "datastores", multiple=True, help="Datastore name pattern (repeatable)")
@click.option("--vm", "vms", multiple=True, help="Virtual machine name pattern (repeatable)")
@click.option("--timeout", type=float, help="Deadline for one cycle, in seconds")
@click.option("--interval", type=float, help="Poll every N seconds instead of running once")
@click.option("--format", "fmt", type=click.Choice(["line", "json", "table"]), default="line")
def gather(config_path, server, username, password_file, password, insecure, datacenter,
           hosts, datastores, vms, timeout, interval, fmt):
    """Gather host, datastore and virtual machine metrics."""
    overrides = _build_overrides(server, username, password, password_file, insecure,
                                 datacenter, hosts, datastores, vms, timeout)
    config = load_config(config_path, overrides)
    collector = MetricsCollector(config)

    try:
        while True:
            started = time.monotonic()
            report = run_cycle(collector, fmt)
            if interval is None:
                failed = report is None or report.status == CycleStatus.FAILED
                sys.exit(1 if failed else 0)
            time.sleep(max(0.0, interval - (time.monotonic() - started)))
    except KeyboardInterrupt:
        logger.info("Polling stopped")


@main.command("sample-config")
@click.option("--output", "-o", type=click.Path(), help="Write to file instead of stdout")
def sample_config(output: str | None):
    """Print an annotated sample configuration."""
    if output:
        Path(output).write_text(SAMPLE_CONFIG)
        err_console.print(f"[green]Sample configuration saved to {output}[/green]")
    else:
        click.echo(f"# {DESCRIPTION}\n{SAMPLE_CONFIG}", nl=False)


if __name__ == "__main__":
    main()
