"""
Rich formatting utilities for CLI output.
"""

from typing import Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from netdash.core.detector import IperfServerInfo, SystemInfo, ToolStatus
from netdash.modules.bandwidth import SpeedResult
from netdash.modules.connectivity import PingResult, TracerouteResult
from netdash.modules.full import FullResult


def _mbps(bits_per_second: float) -> str:
    return f"{bits_per_second / 1_000_000:.2f} Mbps"


def _size(num_bytes: int) -> str:
    for unit, factor in (("GB", 10**9), ("MB", 10**6), ("KB", 10**3)):
        if num_bytes >= factor:
            return f"{num_bytes / factor:.2f} {unit}"
    return f"{num_bytes} B"


def print_system_info(system_info: SystemInfo, console: Console) -> None:
    """Print detected system information."""
    table = Table(title="System Information", show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Operating System", system_info.os_type)
    table.add_row("Platform", system_info.platform)
    table.add_row("Python Version", system_info.python_version)
    table.add_row("Hostname", system_info.hostname)

    console.print()
    console.print(table)
    console.print()


def print_tool_status(tools: Iterable[ToolStatus], console: Console) -> None:
    """Print availability of the external diagnostic tools."""
    table = Table(title="Diagnostic Tools")
    table.add_column("Tool", style="cyan")
    table.add_column("Executable")
    table.add_column("Status")
    table.add_column("Path / Suggestion", style="dim")

    for tool in tools:
        if tool.available:
            table.add_row(tool.name, tool.executable, "[green]✓ found[/green]", tool.path)
        else:
            table.add_row(tool.name, tool.executable, "[red]✗ missing[/red]", tool.suggestion)

    console.print(table)


def format_speed_result(result: SpeedResult, console: Console) -> None:
    table = Table(title="Speed Test")
    table.add_column("Direction", style="cyan")
    table.add_column("Bandwidth", justify="right")
    table.add_column("Transferred", justify="right")
    table.add_column("Duration", justify="right")

    for name, totals in (("Download", result.download), ("Upload", result.upload)):
        table.add_row(
            name,
            _mbps(totals.bandwidth_bps),
            _size(totals.bytes),
            f"{totals.duration_sec:.2f}s",
        )
    console.print(table)

    extras = []
    if result.jitter_ms is not None:
        extras.append(f"Jitter: {result.jitter_ms:.3f} ms")
    if result.packet_loss_pct is not None:
        extras.append(f"Packet loss: {result.packet_loss_pct:g}%")
    if extras:
        console.print("[dim]" + "  ".join(extras) + "[/dim]")


def format_ping_result(result: PingResult, console: Console) -> None:
    loss_color = "green" if result.packet_loss_pct == 0 else "yellow"
    if result.packet_loss_pct >= 100:
        loss_color = "red"
    content = [
        f"[bold]Host:[/bold] {result.host}",
        f"[bold]Packets:[/bold] {result.packets_received}/{result.packets_transmitted} received "
        f"([{loss_color}]{result.packet_loss_pct:g}% loss[/{loss_color}])",
        f"[bold]RTT min/avg/max/stddev:[/bold] {result.times.min:.3f}/{result.times.avg:.3f}/"
        f"{result.times.max:.3f}/{result.times.stddev:.3f} ms",
    ]
    console.print(Panel("\n".join(content), title="Ping Test", border_style="cyan", expand=False))


def format_traceroute_result(result: TracerouteResult, console: Console) -> None:
    table = Table(title=f"Traceroute to {result.host}")
    table.add_column("Hop", justify="right", style="cyan")
    table.add_column("Address")
    table.add_column("Hostname", style="dim")
    table.add_column("RTT (ms)")

    for hop in result.hops:
        times = "  ".join("*" if t < 0 else f"{t:.3f}" for t in hop.round_trip_times_ms)
        table.add_row(str(hop.hop_index), hop.address, hop.hostname or "", times)
    console.print(table)


def format_result(result, console: Console) -> None:
    """Render any test result."""
    if isinstance(result, FullResult):
        format_ping_result(result.ping, console)
        format_speed_result(result.speed, console)
        format_traceroute_result(result.traceroute, console)
    elif isinstance(result, SpeedResult):
        format_speed_result(result, console)
    elif isinstance(result, PingResult):
        format_ping_result(result, console)
    elif isinstance(result, TracerouteResult):
        format_traceroute_result(result, console)
    else:
        console.print(result)


def format_error(target: str, error: str, console: Console) -> None:
    console.print(
        Panel(
            error,
            title=f"✗ {target}",
            border_style="red",
            expand=False,
        )
    )


def print_iperf_server_status(info: IperfServerInfo, console: Console) -> None:
    """Print whether a local iperf3 server is running."""
    if not info.running:
        console.print("[yellow]No local iperf3 server running[/yellow] [dim](start one with: iperf3 -s)[/dim]")
        return
    port = str(info.port) if info.port is not None else "unknown port"
    console.print(f"[green]✓ Local iperf3 server running[/green] (pid {info.pid}, port {port})")
