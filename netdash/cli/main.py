"""
Main CLI application using Typer.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TaskProgressColumn, TextColumn

from netdash.cli.formatters import (
    format_error,
    format_result,
    print_iperf_server_status,
    print_system_info,
    print_tool_status,
)
from netdash.core.config import AppConfig, EngineSettings, load_config_file
from netdash.core.detector import SystemDetector
from netdash.core.emitter import TEST_COMPLETE, ProgressEmitter, ProgressMessage
from netdash.core.runner import ProcessRunner
from netdash.engine import TestEngine
from netdash.parallel.executor import ParallelTestConfig, ParallelTestExecutor, TargetOutcome
from netdash.storage.logger import setup_logging

app = typer.Typer(
    name="netdash",
    help="Network diagnostics with live progress: iperf3, ping and traceroute",
    add_completion=False,
)

console = Console()

TestFactory = Callable[[TestEngine], Callable[[str], Awaitable[Any]]]


class ProgressRenderer:
    """
    Emitter sink that drives a rich progress display.

    Progress events update the current bar; test_complete records are
    collected so the command can save them once all targets have finished.
    """

    def __init__(self, progress: Progress, total_targets: int):
        self.progress = progress
        self.records: List[Any] = []
        self.current: TaskID = progress.add_task("Starting…", total=100)
        self.targets: Optional[TaskID] = None
        if total_targets > 1:
            self.targets = progress.add_task("Targets", total=total_targets)

    def __call__(self, message: ProgressMessage) -> None:
        if message.type == TEST_COMPLETE:
            self.records.append(message.data)
            return
        event = message.data
        description = event.message
        if event.current_speed_mbps is not None:
            description = f"{description} [cyan]{event.current_speed_mbps:.1f} Mbps[/cyan]"
        self.progress.update(self.current, description=description, completed=event.percent)

    def on_target_done(self, completed: int, total: int) -> None:
        if self.targets is not None:
            self.progress.update(self.targets, completed=completed)


def _init_context(output_dir: Optional[Path], verbose: bool):
    """
    Initialize shared objects: config, engine settings and logger.
    Uses optional config file (~/.netdash.yaml or ./.netdash.yaml) for defaults when CLI does not set values.
    """
    file_cfg = load_config_file()
    resolved_output = output_dir if output_dir is not None else file_cfg.get("output_dir") or Path("output")
    resolved_verbose = verbose or file_cfg.get("verbose", False)
    config = AppConfig(output_dir=resolved_output, verbose=resolved_verbose)
    settings = EngineSettings.from_file_config(file_cfg)
    app_logger = setup_logging(config.output_dir, config.verbose)
    return config, settings, app_logger


def _run_tests(
    test_name: str,
    targets: List[str],
    factory: TestFactory,
    output_dir: Optional[Path],
    verbose: bool,
    output_format: str,
    workers: int,
) -> None:
    """Run one kind of test against every target and report the outcomes."""
    config, settings, app_logger = _init_context(output_dir, verbose)
    executor = ParallelTestExecutor(ParallelTestConfig(max_workers=workers), app_logger=app_logger)

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
        disable=output_format == "json",
    ) as progress:
        renderer = ProgressRenderer(progress, len(targets))
        engine = TestEngine(ProgressEmitter(renderer), settings, app_logger=app_logger)
        outcomes = asyncio.run(
            executor.execute_parallel(factory(engine), targets, renderer.on_target_done)
        )

    if output_format == "json":
        _output_outcomes_json(outcomes)
    else:
        for outcome in outcomes:
            if outcome.error is not None:
                format_error(outcome.target, outcome.error, console)
            else:
                console.print(f"\n[bold cyan]{outcome.target}[/bold cyan] [dim]({outcome.duration:.1f}s)[/dim]")
                format_result(outcome.result, console)

    if renderer.records:
        run_dir = config.create_test_run_dir(test_name)
        results_file = config.save_results(
            run_dir,
            [record.model_dump(mode="json", by_alias=True) for record in renderer.records],
        )
        app_logger.info(f"Saved {len(renderer.records)} result(s) to {results_file}")
        if output_format != "json":
            console.print(f"[dim]Results saved to {results_file}[/dim]")

    if any(outcome.error is not None for outcome in outcomes):
        raise typer.Exit(1)


def _output_outcomes_json(outcomes: List[TargetOutcome]) -> None:
    payload: List[Dict[str, Any]] = []
    for outcome in outcomes:
        entry: Dict[str, Any] = {"target": outcome.target, "status": outcome.status}
        if outcome.error is not None:
            entry["error"] = outcome.error
        else:
            entry["results"] = outcome.result.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload.append(entry)
    console.print_json(json.dumps(payload[0] if len(payload) == 1 else payload))


TARGETS_ARG = typer.Argument(..., help="Target host(s), optionally host:port")
OUTPUT_OPT = typer.Option(None, "--output", "-o", help="Output directory for results and logs")
VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
FORMAT_OPT = typer.Option("rich", "--format", "-f", help="Output format: 'rich' (default) or 'json'")
WORKERS_OPT = typer.Option(4, "--workers", "-w", min=1, help="Targets tested concurrently")


@app.command()
def speed(
    targets: List[str] = TARGETS_ARG,
    duration: Optional[int] = typer.Option(None, "--duration", "-t", min=1, help="Seconds per direction"),
    reverse: bool = typer.Option(False, "--reverse", "-R", help="Run the download phase in reverse mode"),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-P", min=1, help="Parallel iperf3 streams"),
    output_dir: Optional[Path] = OUTPUT_OPT,
    verbose: bool = VERBOSE_OPT,
    output_format: str = FORMAT_OPT,
    workers: int = WORKERS_OPT,
):
    """
    Run an iperf3 download + upload speed test.
    """
    _run_tests(
        "speed_test",
        targets,
        lambda engine: lambda target: engine.run_speed_test(target, duration, reverse, parallel),
        output_dir,
        verbose,
        output_format,
        workers,
    )


@app.command()
def ping(
    targets: List[str] = TARGETS_ARG,
    count: Optional[int] = typer.Option(None, "--count", "-c", min=1, help="Number of echo requests"),
    output_dir: Optional[Path] = OUTPUT_OPT,
    verbose: bool = VERBOSE_OPT,
    output_format: str = FORMAT_OPT,
    workers: int = WORKERS_OPT,
):
    """
    Run a ping test.
    """
    _run_tests(
        "ping_test",
        targets,
        lambda engine: lambda target: engine.run_ping_test(target, count),
        output_dir,
        verbose,
        output_format,
        workers,
    )


@app.command()
def traceroute(
    targets: List[str] = TARGETS_ARG,
    max_hops: Optional[int] = typer.Option(None, "--max-hops", "-m", min=1, max=255, help="Maximum hops"),
    output_dir: Optional[Path] = OUTPUT_OPT,
    verbose: bool = VERBOSE_OPT,
    output_format: str = FORMAT_OPT,
    workers: int = WORKERS_OPT,
):
    """
    Run a traceroute test.
    """
    _run_tests(
        "traceroute_test",
        targets,
        lambda engine: lambda target: engine.run_traceroute_test(target, max_hops),
        output_dir,
        verbose,
        output_format,
        workers,
    )


@app.command()
def full(
    targets: List[str] = TARGETS_ARG,
    duration: Optional[int] = typer.Option(None, "--duration", "-t", min=1, help="Seconds per speed test direction"),
    count: Optional[int] = typer.Option(None, "--count", "-c", min=1, help="Number of echo requests"),
    reverse: bool = typer.Option(False, "--reverse", "-R", help="Run the download phase in reverse mode"),
    max_hops: Optional[int] = typer.Option(None, "--max-hops", "-m", min=1, max=255, help="Maximum hops"),
    output_dir: Optional[Path] = OUTPUT_OPT,
    verbose: bool = VERBOSE_OPT,
    output_format: str = FORMAT_OPT,
    workers: int = WORKERS_OPT,
):
    """
    Run ping, speed and traceroute tests in sequence.
    """
    _run_tests(
        "full_test",
        targets,
        lambda engine: lambda target: engine.run_full_test(target, duration, count, reverse, max_hops),
        output_dir,
        verbose,
        output_format,
        workers,
    )


@app.command()
def check(
    target: Optional[str] = typer.Argument(None, help="Also check this host's iperf3 server"),
    verbose: bool = VERBOSE_OPT,
):
    """
    Show system information, check the diagnostic tools and look for a local iperf3 server.
    """
    file_cfg = load_config_file()
    settings = EngineSettings.from_file_config(file_cfg)
    app_logger = setup_logging(None, verbose)
    detector = SystemDetector(settings)

    print_system_info(detector.detect_system(), console)
    tools = detector.check_tools()
    print_tool_status(tools, console)
    server = asyncio.run(detector.iperf_server_status(ProcessRunner(app_logger=app_logger)))
    print_iperf_server_status(server, console)

    if target is not None:
        engine = TestEngine(settings=settings, app_logger=app_logger)
        reachable = asyncio.run(engine.check_connectivity(target))
        if reachable:
            console.print(f"\n[green]✓ iperf3 server at {target} is reachable[/green]")
        else:
            console.print(f"\n[red]✗ iperf3 server at {target} is not reachable[/red]")
            raise typer.Exit(1)

    if any(not tool.available for tool in tools):
        raise typer.Exit(1)
