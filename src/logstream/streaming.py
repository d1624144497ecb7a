"""Batching stream processors built on bounded asyncio queues.

One producer (``broadcast``) feeds any number of ``StreamingProcessor``
instances. Each processor owns its buffer and its input and output queues.
End of stream is a close sentinel: closing the input flushes a non-empty
partial buffer once, then the output is closed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import aclosing, closing
from pathlib import Path
from typing import Any, Final

from loguru import logger

from .analyzer import analyze
from .ingest import iter_records
from .models import AnalysisResult, LogRecord

AnalysisFn = Callable[[list[LogRecord]], AnalysisResult]
RecordSource = str | Path | Iterable[LogRecord] | AsyncIterable[LogRecord]

DEFAULT_BATCH_SIZE: Final[int] = 100

_CLOSED: Final = object()


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size}")


class StreamingProcessor:
    """Accumulate records into fixed-size batches and analyze each batch.

    Batches are emitted in the order records were sent. ``capacity`` bounds
    both queues and defaults to ``batch_size``.
    """

    def __init__(
        self,
        analysis_fn: AnalysisFn = analyze,
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        name: str = "default",
        capacity: int | None = None,
    ) -> None:
        _check_batch_size(batch_size)
        size = capacity if capacity is not None else batch_size
        if size < 1:
            raise ValueError(f"capacity must be a positive integer, got {size}")
        self.analysis_fn = analysis_fn
        self.batch_size = batch_size
        self.name = name
        self._input: asyncio.Queue[Any] = asyncio.Queue(maxsize=size)
        self._output: asyncio.Queue[Any] = asyncio.Queue(maxsize=size)
        self.batches_emitted = 0

    async def send(self, record: LogRecord) -> None:
        """Queue a record, waiting while the input queue is full."""
        await self._input.put(record)

    def offer(self, record: LogRecord) -> bool:
        """Queue a record without waiting; False when the input queue is full."""
        try:
            self._input.put_nowait(record)
        except asyncio.QueueFull:
            return False
        return True

    async def close(self) -> None:
        """Signal end of input. Records already sent are still processed."""
        await self._input.put(_CLOSED)

    async def run(self) -> None:
        """Consume the input queue until closed, emitting one result per batch."""
        buffer: list[LogRecord] = []
        try:
            while True:
                item = await self._input.get()
                if item is _CLOSED:
                    break
                buffer.append(item)
                if len(buffer) >= self.batch_size:
                    await self._emit(buffer)
                    buffer = []

            if buffer:
                await self._emit(buffer)
        finally:
            await self._output.put(_CLOSED)
            logger.debug(
                "Processor {name} closed after {batches} batches",
                name=self.name,
                batches=self.batches_emitted,
            )

    async def _emit(self, batch: list[LogRecord]) -> None:
        result = self.analysis_fn(batch)
        self.batches_emitted += 1
        logger.debug(
            "Processor {name} emitted batch {batch} ({size} records)",
            name=self.name,
            batch=self.batches_emitted,
            size=len(batch),
        )
        await self._output.put(result)

    async def results(self) -> AsyncIterator[AnalysisResult]:
        """Yield batch results until the processor closes its output."""
        while True:
            item = await self._output.get()
            if item is _CLOSED:
                return
            yield item


async def _iterate(source: RecordSource) -> AsyncIterator[LogRecord]:
    if isinstance(source, AsyncIterable):
        async for record in source:
            yield record
        return

    if isinstance(source, (str, Path)):
        with closing(iter_records(source)) as records:
            for record in records:
                yield record
                await asyncio.sleep(0)
        return

    for record in source:
        yield record
        # Give consumers and stop setters a turn between synchronous reads.
        await asyncio.sleep(0)


async def _deliver(processor: StreamingProcessor, record: LogRecord, stop: asyncio.Event | None) -> bool:
    """Send a record, giving up if ``stop`` is set while the queue is full."""
    if processor.offer(record):
        return True
    if stop is None:
        await processor.send(record)
        return True
    if stop.is_set():
        return False

    send_task = asyncio.ensure_future(processor.send(record))
    stop_task = asyncio.ensure_future(stop.wait())
    done, pending = await asyncio.wait({send_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    if send_task in done:
        send_task.result()
        return True
    return False


async def broadcast(
    record_source: RecordSource,
    processors: Sequence[StreamingProcessor],
    *,
    stop: asyncio.Event | None = None,
) -> int:
    """Feed every record of ``record_source`` to each processor, then close them.

    ``stop`` is checked between records and while waiting on a full queue.
    Processors are closed on every exit path. Returns the number of records
    delivered to all processors.
    """
    delivered = 0
    try:
        async with aclosing(_iterate(record_source)) as records:
            async for record in records:
                if stop is not None and stop.is_set():
                    break
                if not await _deliver_all(processors, record, stop):
                    break
                delivered += 1
    finally:
        for processor in processors:
            await processor.close()

    if stop is not None and stop.is_set():
        logger.info("Stream stopped after {count} records", count=delivered)
    else:
        logger.debug("Stream exhausted after {count} records", count=delivered)
    return delivered


async def _deliver_all(
    processors: Sequence[StreamingProcessor],
    record: LogRecord,
    stop: asyncio.Event | None,
) -> bool:
    """Deliver one record to every processor, or to none of them.

    ``stop`` can only cancel the first send. Once a processor holds the
    record the remaining sends wait for room, so all processors end on the
    same record set.
    """
    if not processors:
        return True
    first, *rest = processors
    if not await _deliver(first, record, stop):
        return False
    for processor in rest:
        await _deliver(processor, record, None)
    return True


async def analyze_stream(
    record_source: RecordSource,
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    analysis_fn: AnalysisFn = analyze,
    capacity: int | None = None,
    stop: asyncio.Event | None = None,
) -> AsyncIterator[AnalysisResult]:
    """Yield one analysis result per batch of ``batch_size`` records.

    The trailing partial batch is analyzed when the source ends or ``stop``
    is set. Errors from the source or from ``analysis_fn`` are re-raised
    after the results already produced have been yielded.
    """
    processor = StreamingProcessor(analysis_fn, batch_size, name="stream", capacity=capacity)
    runner = asyncio.create_task(processor.run())
    producer = asyncio.create_task(broadcast(record_source, [processor], stop=stop))
    try:
        async for result in processor.results():
            yield result
        await runner
        await producer
    finally:
        for task in (producer, runner):
            if not task.done():
                task.cancel()


def iter_batches(
    records: Iterable[LogRecord],
    batch_size: int = DEFAULT_BATCH_SIZE,
    analysis_fn: AnalysisFn = analyze,
) -> Iterator[AnalysisResult]:
    """Synchronous batching with the same flush rule as ``StreamingProcessor``."""
    _check_batch_size(batch_size)
    buffer: list[LogRecord] = []
    for record in records:
        buffer.append(record)
        if len(buffer) >= batch_size:
            yield analysis_fn(buffer)
            buffer = []
    if buffer:
        yield analysis_fn(buffer)


async def run_analyzers(
    record_source: RecordSource,
    analyzers: Mapping[str, tuple[AnalysisFn, int]],
    *,
    stop: asyncio.Event | None = None,
) -> dict[str, list[AnalysisResult]]:
    """Run several named analyzers side by side over one record stream.

    ``analyzers`` maps a name to an ``(analysis_fn, batch_size)`` pair.
    Returns every batch result, keyed by analyzer name.
    """
    processors = [
        StreamingProcessor(analysis_fn, batch_size, name=name)
        for name, (analysis_fn, batch_size) in analyzers.items()
    ]
    collected: dict[str, list[AnalysisResult]] = {processor.name: [] for processor in processors}

    async def _collect(processor: StreamingProcessor) -> None:
        async for result in processor.results():
            collected[processor.name].append(result)

    logger.info(
        "Starting analyzers: {names}",
        names=", ".join(processor.name for processor in processors),
    )
    await asyncio.gather(
        broadcast(record_source, processors, stop=stop),
        *(processor.run() for processor in processors),
        *(_collect(processor) for processor in processors),
    )
    return collected


async def _next_or_closed(iterator: AsyncIterator[AnalysisResult]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _CLOSED


async def watch(
    results: AsyncIterable[AnalysisResult],
    render: Callable[[AnalysisResult], None],
    *,
    interval: float,
    stop: asyncio.Event | None = None,
) -> AnalysisResult | None:
    """Render each new result, and re-render the last one on every idle tick.

    Nothing is rendered before the first result arrives. Returns the last
    result once the stream ends or ``stop`` is set.
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")

    iterator = aiter(results)
    last: AnalysisResult | None = None
    pending_result = asyncio.ensure_future(_next_or_closed(iterator))
    stop_task = asyncio.ensure_future(stop.wait()) if stop is not None else None
    try:
        while True:
            waiters = {pending_result} if stop_task is None else {pending_result, stop_task}
            done, _ = await asyncio.wait(waiters, timeout=interval, return_when=asyncio.FIRST_COMPLETED)
            if stop_task is not None and stop_task in done:
                break
            if pending_result in done:
                item = pending_result.result()
                if item is _CLOSED:
                    break
                last = item
                render(last)
                pending_result = asyncio.ensure_future(_next_or_closed(iterator))
            elif last is not None:
                render(last)
    finally:
        leftovers = [task for task in (pending_result, stop_task) if task is not None and not task.done()]
        for task in leftovers:
            task.cancel()
        # Let cancelled reads unwind before the caller closes the result stream.
        await asyncio.gather(*leftovers, return_exceptions=True)
    return last
