"""Ingestion of JSONL sources into classified records."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import closing, contextmanager
from pathlib import Path

from loguru import logger

from .models import LogRecord
from .normalize import normalize_line

Source = str | Path | Iterable[str]


class SourceIOError(OSError):
    """Raised when a log source cannot be opened or read."""

    def __init__(self, source: object, reason: str) -> None:
        super().__init__(f"Cannot read log source {source}: {reason}")
        self.source = source
        self.reason = reason


@contextmanager
def _open_lines(source: Source) -> Iterator[Iterable[str]]:
    """Yield an iterable of lines; paths are opened here and always closed.

    Undecodable bytes are replaced with U+FFFD so one bad byte only affects
    its own line.
    """
    if not isinstance(source, (str, Path)):
        yield source
        return

    path = Path(source).expanduser()
    try:
        handle = path.open(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise SourceIOError(path, exc.strerror or str(exc)) from exc

    with handle:
        yield handle


def iter_records(
    source: Source,
    *,
    stop: threading.Event | None = None,
) -> Iterator[LogRecord]:
    """Yield one classified record per non-blank line of ``source``.

    Line numbers are 1-based and count blank lines. Setting ``stop`` ends the
    iteration before the next line is read.
    """
    with _open_lines(source) as lines:
        line_iter = iter(lines)
        line_number = 0
        while stop is None or not stop.is_set():
            try:
                line = next(line_iter)
            except StopIteration:
                break
            except OSError as exc:
                raise SourceIOError(source, str(exc)) from exc

            line_number += 1
            record = normalize_line(line, line_number)
            if record is not None:
                yield record


def parse(source: Source) -> list[LogRecord]:
    """Read the whole source and return its records in line order."""
    logger.info("Parsing JSONL source: {source}", source=source)
    records = list(iter_records(source))
    _log_counts(records)
    return records


def parse_incremental(
    source: Source,
    on_record: Callable[[LogRecord], None],
    *,
    stop: threading.Event | None = None,
) -> int:
    """Feed each record of ``source`` to ``on_record`` without buffering.

    Returns the number of records delivered.
    """
    delivered = 0
    invalid = 0
    with closing(iter_records(source, stop=stop)) as records:
        for record in records:
            on_record(record)
            delivered += 1
            if not record.valid:
                invalid += 1

    logger.info("Delivered {count} records", count=delivered)
    if invalid > 0:
        logger.warning("Invalid records: {count}", count=invalid)
    return delivered


def _log_counts(records: list[LogRecord]) -> None:
    valid_count = sum(1 for record in records if record.valid)
    invalid_count = len(records) - valid_count
    logger.info("Parsed {count} records", count=len(records))
    logger.info("Valid records: {count}", count=valid_count)
    if invalid_count > 0:
        logger.warning("Invalid records: {count}", count=invalid_count)
