"""CLI interface for the log analysis pipeline."""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from pathlib import Path

import typer
from loguru import logger

from .analyzer import analyze, merge_results
from .config import Settings
from .ingest import SourceIOError, parse
from .logging import configure_logging
from .models import AnalysisResult
from .report import format_summary
from .streaming import analyze_stream, watch

app = typer.Typer(
    help="Analyze AI-assistant interaction logs stored as JSONL.",
    pretty_exceptions_enable=True,
)


def _setup_logging(verbose: bool) -> None:
    configure_logging(verbose)
    if verbose:
        logger.enable("logstream")
    else:
        logger.disable("logstream")


def _echo_lines(lines: list[str]) -> None:
    for line in lines:
        typer.echo(line)


@app.command("analyze")
def analyze_command(
    file: Path = typer.Argument(..., help="JSONL log file to analyze"),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the full analysis result as JSON instead of the text summary",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Also write the full analysis result as JSON to this path",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Parse a log file and print its analysis."""
    settings = Settings()
    _setup_logging(verbose or settings.verbose)

    path = file.expanduser()
    logger.info("Processing log file: {path}", path=path)
    try:
        records = parse(path)
    except SourceIOError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1)

    result = analyze(
        records,
        expensive_session_limit=settings.expensive_session_limit,
        cost_alert_factor=settings.cost_alert_factor,
    )

    if output is not None:
        write_result(result, output.expanduser())
        typer.echo(f"Wrote analysis to {output}", err=as_json)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _echo_lines(format_summary(result))


@app.command("stream")
def stream_command(
    file: Path = typer.Argument(..., help="JSONL log file to stream"),
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Records per analyzed batch (defaults to LOGSTREAM_BATCH_SIZE or 100)",
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between refreshes while waiting for the next batch",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Analyze a log file batch by batch, then print the merged total."""
    settings = Settings()
    _setup_logging(verbose or settings.verbose)

    size = batch_size if batch_size is not None else settings.batch_size
    if size < 1:
        raise typer.BadParameter("--batch-size must be a positive integer.")
    refresh = interval if interval is not None else settings.refresh_interval
    if refresh <= 0:
        raise typer.BadParameter("--interval must be a positive number of seconds.")

    path = file.expanduser()
    logger.info("Streaming log file: {path}", path=path)
    try:
        batches = asyncio.run(_stream_batches(path, size, refresh, settings))
    except SourceIOError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1)

    if not batches:
        typer.echo("No records found to analyze.")
        raise typer.Exit(code=0)

    total = merge_results(
        batches,
        expensive_session_limit=settings.expensive_session_limit,
        cost_alert_factor=settings.cost_alert_factor,
    )
    _echo_lines(format_summary(total, title=f"Stream Total ({len(batches)} batches)"))


async def _stream_batches(
    path: Path,
    batch_size: int,
    interval: float,
    settings: Settings,
) -> list[AnalysisResult]:
    batches: list[AnalysisResult] = []

    def _render(result: AnalysisResult) -> None:
        if batches and batches[-1] is result:
            title = f"Batch {len(batches)} (refresh)"
        else:
            batches.append(result)
            title = f"Batch {len(batches)}"
        _echo_lines(format_summary(result, title=title))
        typer.echo("")

    stream = analyze_stream(
        path,
        batch_size,
        analysis_fn=lambda records: analyze(
            records,
            expensive_session_limit=settings.expensive_session_limit,
            cost_alert_factor=settings.cost_alert_factor,
        ),
        capacity=settings.channel_capacity,
    )
    async with aclosing(stream) as results:
        await watch(results, _render, interval=interval)
    return batches


def write_result(result: AnalysisResult, output_path: Path) -> None:
    """Write one analysis result as indented JSON."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = result.model_dump(mode="json")
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")


def main() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
