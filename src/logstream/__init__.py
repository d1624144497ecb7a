"""Parse, validate and aggregate AI-assistant interaction logs."""

from .analyzer import analyze, merge_results
from .ingest import SourceIOError, iter_records, parse, parse_incremental
from .models import AnalysisResult, IssueKind, LogRecord, MessageType, RecordIssue
from .streaming import (
    StreamingProcessor,
    analyze_stream,
    broadcast,
    iter_batches,
    run_analyzers,
    watch,
)

__all__ = [
    "parse",
    "parse_incremental",
    "iter_records",
    "analyze",
    "merge_results",
    "analyze_stream",
    "iter_batches",
    "run_analyzers",
    "broadcast",
    "watch",
    "StreamingProcessor",
    "SourceIOError",
    "AnalysisResult",
    "LogRecord",
    "MessageType",
    "IssueKind",
    "RecordIssue",
]
