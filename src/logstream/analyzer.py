"""Aggregation engine for classified log records.

``analyze`` is a pure function of its input: valid records are grouped by
session, conversation, message type, tool and model, and every derived
metric is computed fresh. Divisions never raise; a zero or unknown divisor
yields ``None``.

``merge_results`` combines per-batch results from the streaming processor.
Counts, sums, min/max and frequency tables merge exactly; averages, rates,
the expensive-session ranking, recommendations and cluster buckets are
recomputed from the merged sums.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Final, TypeVar

from loguru import logger

from .models import (
    AnalysisResult,
    ConversationFeatures,
    ConversationFlow,
    ConversationStats,
    CostRecommendation,
    CostStats,
    LogRecord,
    MessageType,
    ModelCost,
    ProductivityMetrics,
    SessionCost,
    SessionStats,
    Summary,
    TemporalStats,
    TokenStats,
    ToolEffectiveness,
    ToolStats,
    ToolUsagePattern,
)

DEFAULT_EXPENSIVE_SESSION_LIMIT: Final[int] = 10
DEFAULT_COST_ALERT_FACTOR: Final[float] = 1.5
TRANSITION_SEPARATOR: Final[str] = "->"
HOUR_BUCKET_FORMAT: Final[str] = "%Y-%m-%d-%H"

_UNDATED: Final[datetime] = datetime.max.replace(tzinfo=UTC)

K = TypeVar("K", bound=Hashable)


# --- Grouping ---


def group_by(records: Iterable[LogRecord], key: Callable[[LogRecord], K | None]) -> dict[K, list[LogRecord]]:
    """Partition records by ``key`` in first-seen order, skipping None keys."""
    groups: dict[K, list[LogRecord]] = {}
    for record in records:
        value = key(record)
        if value is None:
            continue
        groups.setdefault(value, []).append(record)
    return groups


def valid_records(records: Iterable[LogRecord]) -> list[LogRecord]:
    return [record for record in records if record.valid]


def group_by_session(records: Iterable[LogRecord]) -> dict[str, list[LogRecord]]:
    return group_by(valid_records(records), lambda record: record.session_id)


def group_by_conversation(records: Iterable[LogRecord]) -> dict[str, list[LogRecord]]:
    return group_by(valid_records(records), lambda record: record.conversation_id)


def group_by_message_type(records: Iterable[LogRecord]) -> dict[MessageType, list[LogRecord]]:
    return group_by(valid_records(records), lambda record: record.message_type)


def group_by_tool(records: Iterable[LogRecord]) -> dict[str, list[LogRecord]]:
    return group_by(_tool_usages(valid_records(records)), lambda record: record.tool_name)


def sort_records(records: Iterable[LogRecord]) -> list[LogRecord]:
    """Order by timestamp; undated records go last; ties keep line order."""
    return sorted(
        records,
        key=lambda record: (record.timestamp or _UNDATED, record.line_number),
    )


def _tool_usages(records: Iterable[LogRecord]) -> list[LogRecord]:
    return [
        record
        for record in records
        if record.message_type == MessageType.TOOL_USAGE and record.tool_name is not None
    ]


# --- Small numeric helpers ---


def _ratio(numerator: float, denominator: float | None) -> float | None:
    if not denominator:
        return None
    return numerator / denominator


def _time_bounds(records: Iterable[LogRecord]) -> tuple[datetime | None, datetime | None]:
    timestamps = [record.timestamp for record in records if record.timestamp is not None]
    if not timestamps:
        return None, None
    return min(timestamps), max(timestamps)


def _min_optional(*values: datetime | None) -> datetime | None:
    present = [value for value in values if value is not None]
    return min(present) if present else None


def _max_optional(*values: datetime | None) -> datetime | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None


def _span(start: datetime | None, end: datetime | None) -> timedelta | None:
    if start is None or end is None:
        return None
    return end - start


def _sum_counts(left: Mapping[str, int], right: Mapping[str, int]) -> dict[str, int]:
    merged = dict(left)
    for key, count in right.items():
        merged[key] = merged.get(key, 0) + count
    return merged


def _distinct(values: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value is not None))


# --- Sessions and conversations ---


def session_duration(records: Iterable[LogRecord]) -> timedelta | None:
    """Latest minus earliest timestamp; None when no record has a timestamp."""
    return _span(*_time_bounds(records))


def _flow_label(record: LogRecord) -> str:
    return record.role or str(record.message_type)


def conversation_flow(records: Iterable[LogRecord]) -> ConversationFlow:
    """Role-transition and tool frequency tables for one record group."""
    ordered = sort_records(records)
    labels = [_flow_label(record) for record in ordered]

    transitions: dict[str, int] = {}
    for previous, current in zip(labels, labels[1:]):
        key = f"{previous}{TRANSITION_SEPARATOR}{current}"
        transitions[key] = transitions.get(key, 0) + 1

    tool_patterns: dict[str, int] = {}
    for record in _tool_usages(ordered):
        tool_patterns[record.tool_name] = tool_patterns.get(record.tool_name, 0) + 1

    first, last = _time_bounds(ordered)
    return ConversationFlow(
        message_count=len(ordered),
        unique_tools=len(tool_patterns),
        role_transitions=transitions,
        tool_usage_patterns=tool_patterns,
        first_timestamp=first,
        last_timestamp=last,
    )


def _whole_minutes(duration: timedelta | None) -> int | None:
    if duration is None:
        return None
    return int(duration.total_seconds() // 60)


def _productivity(
    duration: timedelta | None,
    *,
    tool_usages: int,
    assistant_messages: int,
    user_messages: int,
) -> ProductivityMetrics:
    minutes = _whole_minutes(duration)
    return ProductivityMetrics(
        duration_minutes=minutes,
        tools_per_minute=_ratio(tool_usages, minutes),
        responses_per_minute=_ratio(assistant_messages, minutes),
        interaction_ratio=_ratio(assistant_messages, user_messages),
        tool_usage_count=tool_usages,
        assistant_message_count=assistant_messages,
        user_message_count=user_messages,
        total_interactions=user_messages + assistant_messages,
    )


def productivity_metrics(records: Iterable[LogRecord]) -> ProductivityMetrics:
    """Tool and response rates per whole minute of session time."""
    records = list(records)
    return _productivity(
        session_duration(records),
        tool_usages=sum(1 for record in records if record.message_type == MessageType.TOOL_USAGE),
        assistant_messages=sum(1 for record in records if record.role == "assistant"),
        user_messages=sum(1 for record in records if record.role == "user"),
    )


def session_stats(session_id: str, records: list[LogRecord]) -> SessionStats:
    start, end = _time_bounds(records)
    return SessionStats(
        session_id=session_id,
        message_count=len(records),
        start_time=start,
        end_time=end,
        duration=_span(start, end),
        productivity=productivity_metrics(records),
        conversation_flow=conversation_flow(records),
    )


def conversation_features(conversation_id: str, flow: ConversationFlow) -> ConversationFeatures:
    return ConversationFeatures(
        conversation_id=conversation_id,
        tool_count=flow.unique_tools,
        message_count=flow.message_count,
        tools_used=list(flow.tool_usage_patterns),
        duration=_span(flow.first_timestamp, flow.last_timestamp),
    )


def cluster_conversations(flows: Mapping[str, ConversationFlow]) -> dict[int, list[ConversationFeatures]]:
    """Bucket conversations by their distinct tool count.

    This is a baseline heuristic rather than a similarity measure; the bucket
    key is always the integer tool count.
    """
    clusters: dict[int, list[ConversationFeatures]] = {}
    for conversation_id, flow in flows.items():
        features = conversation_features(conversation_id, flow)
        clusters.setdefault(features.tool_count, []).append(features)
    return dict(sorted(clusters.items()))


# --- Tools ---


def _effectiveness(
    tool_name: str,
    *,
    usage: int,
    successes: int,
    sessions: int,
    first_used: datetime | None,
    last_used: datetime | None,
) -> ToolEffectiveness:
    return ToolEffectiveness(
        tool_name=tool_name,
        total_usage=usage,
        success_count=successes,
        unique_sessions=sessions,
        success_rate=_ratio(successes, usage),
        average_per_session=_ratio(usage, sessions),
        first_used=first_used,
        last_used=last_used,
    )


def tool_effectiveness(records: Iterable[LogRecord]) -> list[ToolEffectiveness]:
    """Per-tool usage, session spread and success rate (non-null output)."""
    results: list[ToolEffectiveness] = []
    for tool_name, usages in group_by_tool(records).items():
        first, last = _time_bounds(usages)
        results.append(
            _effectiveness(
                tool_name,
                usage=len(usages),
                successes=sum(1 for usage in usages if usage.tool_output is not None),
                sessions=len(_distinct(usage.session_id for usage in usages)),
                first_used=first,
                last_used=last,
            )
        )
    return results


def tool_usage_patterns(records: Iterable[LogRecord]) -> list[ToolUsagePattern]:
    patterns: list[ToolUsagePattern] = []
    for tool_name, usages in group_by_tool(records).items():
        first, last = _time_bounds(usages)
        patterns.append(
            ToolUsagePattern(
                tool_name=tool_name,
                usage_count=len(usages),
                sessions=_distinct(usage.session_id for usage in usages),
                first_used=first,
                last_used=last,
            )
        )
    return patterns


# --- Tokens ---


def _token_stats(total: int, count: int, max_tokens: int, min_tokens: int) -> TokenStats:
    if count == 0:
        return TokenStats()
    return TokenStats(
        total_tokens=total,
        average_tokens=total / count,
        max_tokens=max_tokens,
        min_tokens=min_tokens,
        message_count=count,
    )


def token_stats(records: Iterable[LogRecord]) -> TokenStats:
    """Totals over valid records that carry a token count; zeros when none do."""
    counts = [record.token_count for record in valid_records(records) if record.token_count is not None]
    if not counts:
        return TokenStats()
    return _token_stats(sum(counts), len(counts), max(counts), min(counts))


# --- Costs ---


def _cost_stats(
    model_totals: Mapping[str | None, tuple[float, int]],
    session_totals: Mapping[str, tuple[float, int]],
    *,
    expensive_session_limit: int,
    cost_alert_factor: float,
) -> CostStats:
    total_cost = sum(cost for cost, _ in model_totals.values())
    costed_count = sum(count for _, count in model_totals.values())
    average_cost = _ratio(total_cost, costed_count)

    cost_by_model = [
        ModelCost(
            model=model,
            cost=cost,
            message_count=count,
            average_cost_per_message=_ratio(cost, count),
        )
        for model, (cost, count) in model_totals.items()
    ]
    cost_by_session = {
        session_id: SessionCost(session_id=session_id, cost=cost, message_count=count)
        for session_id, (cost, count) in session_totals.items()
    }
    # sorted() is stable, so equal costs keep first-seen order.
    expensive_sessions = sorted(
        cost_by_session.values(), key=lambda session: session.cost, reverse=True
    )[:expensive_session_limit]

    recommendations: list[CostRecommendation] = []
    if average_cost is not None:
        threshold = cost_alert_factor * average_cost
        for model_cost in cost_by_model:
            per_message = model_cost.average_cost_per_message
            if per_message is not None and per_message > threshold:
                recommendations.append(
                    CostRecommendation(
                        model=model_cost.model,
                        average_cost_per_message=per_message,
                        global_average_cost=average_cost,
                    )
                )

    return CostStats(
        total_cost=total_cost,
        costed_message_count=costed_count,
        average_cost=average_cost,
        cost_by_model=cost_by_model,
        cost_by_session=cost_by_session,
        expensive_sessions=expensive_sessions,
        recommendations=recommendations,
    )


def _accumulate(
    totals: dict[K, tuple[float, int]],
    key: K,
    cost: float,
    count: int,
) -> None:
    current_cost, current_count = totals.get(key, (0.0, 0))
    totals[key] = (current_cost + cost, current_count + count)


def cost_stats(
    records: Iterable[LogRecord],
    *,
    expensive_session_limit: int = DEFAULT_EXPENSIVE_SESSION_LIMIT,
    cost_alert_factor: float = DEFAULT_COST_ALERT_FACTOR,
) -> CostStats:
    """Cost totals per model and per session, with over-average model alerts."""
    model_totals: dict[str | None, tuple[float, int]] = {}
    session_totals: dict[str, tuple[float, int]] = {}
    for record in valid_records(records):
        if record.cost_usd is None:
            continue
        _accumulate(model_totals, record.model, record.cost_usd, 1)
        if record.session_id is not None:
            _accumulate(session_totals, record.session_id, record.cost_usd, 1)

    return _cost_stats(
        model_totals,
        session_totals,
        expensive_session_limit=expensive_session_limit,
        cost_alert_factor=cost_alert_factor,
    )


# --- Temporal ---


def hour_bucket(timestamp: datetime) -> str:
    """Return the UTC ``YYYY-MM-DD-HH`` key for an instant."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC).strftime(HOUR_BUCKET_FORMAT)


def temporal_stats(records: Iterable[LogRecord]) -> TemporalStats:
    valid = valid_records(records)
    distribution: dict[str, int] = {}
    for record in valid:
        if record.timestamp is None:
            continue
        key = hour_bucket(record.timestamp)
        distribution[key] = distribution.get(key, 0) + 1

    first, last = _time_bounds(valid)
    return TemporalStats(
        first_message=first,
        last_message=last,
        time_distribution=dict(sorted(distribution.items())),
    )


# --- Entry points ---


def analyze(
    records: Iterable[LogRecord],
    *,
    expensive_session_limit: int = DEFAULT_EXPENSIVE_SESSION_LIMIT,
    cost_alert_factor: float = DEFAULT_COST_ALERT_FACTOR,
) -> AnalysisResult:
    """Compute every statistic for a record collection.

    Invalid records count toward the total and invalid counts only.
    """
    records = list(records)
    valid = valid_records(records)
    logger.info("Starting log analysis for {count} records", count=len(records))

    sessions = group_by_session(valid)
    conversations = group_by_conversation(valid)
    message_types = group_by_message_type(valid)
    flows = {
        conversation_id: conversation_flow(members)
        for conversation_id, members in conversations.items()
    }

    logger.info(
        "Found {sessions} sessions and {conversations} conversations",
        sessions=len(sessions),
        conversations=len(conversations),
    )

    return AnalysisResult(
        summary=Summary(
            total_messages=len(records),
            valid_messages=len(valid),
            invalid_messages=len(records) - len(valid),
            unique_sessions=len(sessions),
            unique_conversations=len(conversations),
            message_types={str(kind): len(members) for kind, members in message_types.items()},
        ),
        sessions=[session_stats(session_id, members) for session_id, members in sessions.items()],
        conversations=ConversationStats(
            clusters=cluster_conversations(flows),
            flow_patterns=flows,
        ),
        tools=ToolStats(
            effectiveness=tool_effectiveness(valid),
            usage_patterns=tool_usage_patterns(valid),
        ),
        tokens=token_stats(valid),
        costs=cost_stats(
            valid,
            expensive_session_limit=expensive_session_limit,
            cost_alert_factor=cost_alert_factor,
        ),
        temporal=temporal_stats(valid),
    )


def _merge_flow(left: ConversationFlow, right: ConversationFlow) -> ConversationFlow:
    tool_patterns = _sum_counts(left.tool_usage_patterns, right.tool_usage_patterns)
    return ConversationFlow(
        message_count=left.message_count + right.message_count,
        unique_tools=len(tool_patterns),
        role_transitions=_sum_counts(left.role_transitions, right.role_transitions),
        tool_usage_patterns=tool_patterns,
        first_timestamp=_min_optional(left.first_timestamp, right.first_timestamp),
        last_timestamp=_max_optional(left.last_timestamp, right.last_timestamp),
    )


def _merge_session(left: SessionStats, right: SessionStats) -> SessionStats:
    start = _min_optional(left.start_time, right.start_time)
    end = _max_optional(left.end_time, right.end_time)
    duration = _span(start, end)
    return SessionStats(
        session_id=left.session_id,
        message_count=left.message_count + right.message_count,
        start_time=start,
        end_time=end,
        duration=duration,
        productivity=_productivity(
            duration,
            tool_usages=left.productivity.tool_usage_count + right.productivity.tool_usage_count,
            assistant_messages=(
                left.productivity.assistant_message_count + right.productivity.assistant_message_count
            ),
            user_messages=left.productivity.user_message_count + right.productivity.user_message_count,
        ),
        conversation_flow=_merge_flow(left.conversation_flow, right.conversation_flow),
    )


def merge_results(
    results: Iterable[AnalysisResult],
    *,
    expensive_session_limit: int = DEFAULT_EXPENSIVE_SESSION_LIMIT,
    cost_alert_factor: float = DEFAULT_COST_ALERT_FACTOR,
) -> AnalysisResult:
    """Combine batch results into one result for the whole stream.

    Role transitions that straddle two batches are not reconstructed.
    """
    total = valid = 0
    message_types: dict[str, int] = {}
    sessions: dict[str, SessionStats] = {}
    flows: dict[str, ConversationFlow] = {}
    patterns: dict[str, ToolUsagePattern] = {}
    successes: dict[str, int] = {}
    token_total = token_count = 0
    token_max: int | None = None
    token_min: int | None = None
    model_totals: dict[str | None, tuple[float, int]] = {}
    session_totals: dict[str, tuple[float, int]] = {}
    distribution: dict[str, int] = {}
    first_message: datetime | None = None
    last_message: datetime | None = None

    for result in results:
        total += result.summary.total_messages
        valid += result.summary.valid_messages
        message_types = _sum_counts(message_types, result.summary.message_types)

        for session in result.sessions:
            existing = sessions.get(session.session_id)
            sessions[session.session_id] = session if existing is None else _merge_session(existing, session)

        for conversation_id, flow in result.conversations.flow_patterns.items():
            existing_flow = flows.get(conversation_id)
            flows[conversation_id] = flow if existing_flow is None else _merge_flow(existing_flow, flow)

        for pattern in result.tools.usage_patterns:
            existing_pattern = patterns.get(pattern.tool_name)
            if existing_pattern is None:
                patterns[pattern.tool_name] = pattern
                continue
            patterns[pattern.tool_name] = ToolUsagePattern(
                tool_name=pattern.tool_name,
                usage_count=existing_pattern.usage_count + pattern.usage_count,
                sessions=_distinct([*existing_pattern.sessions, *pattern.sessions]),
                first_used=_min_optional(existing_pattern.first_used, pattern.first_used),
                last_used=_max_optional(existing_pattern.last_used, pattern.last_used),
            )
        for tool in result.tools.effectiveness:
            successes[tool.tool_name] = successes.get(tool.tool_name, 0) + tool.success_count

        tokens = result.tokens
        if tokens.message_count > 0:
            token_total += tokens.total_tokens
            token_count += tokens.message_count
            token_max = tokens.max_tokens if token_max is None else max(token_max, tokens.max_tokens)
            token_min = tokens.min_tokens if token_min is None else min(token_min, tokens.min_tokens)

        for model_cost in result.costs.cost_by_model:
            _accumulate(model_totals, model_cost.model, model_cost.cost, model_cost.message_count)
        for session_cost in result.costs.cost_by_session.values():
            _accumulate(session_totals, session_cost.session_id, session_cost.cost, session_cost.message_count)

        distribution = _sum_counts(distribution, result.temporal.time_distribution)
        first_message = _min_optional(first_message, result.temporal.first_message)
        last_message = _max_optional(last_message, result.temporal.last_message)

    effectiveness = [
        _effectiveness(
            tool_name,
            usage=pattern.usage_count,
            successes=successes.get(tool_name, 0),
            sessions=len(pattern.sessions),
            first_used=pattern.first_used,
            last_used=pattern.last_used,
        )
        for tool_name, pattern in patterns.items()
    ]

    return AnalysisResult(
        summary=Summary(
            total_messages=total,
            valid_messages=valid,
            invalid_messages=total - valid,
            unique_sessions=len(sessions),
            unique_conversations=len(flows),
            message_types=message_types,
        ),
        sessions=list(sessions.values()),
        conversations=ConversationStats(
            clusters=cluster_conversations(flows),
            flow_patterns=flows,
        ),
        tools=ToolStats(effectiveness=effectiveness, usage_patterns=list(patterns.values())),
        tokens=_token_stats(token_total, token_count, token_max or 0, token_min or 0),
        costs=_cost_stats(
            model_totals,
            session_totals,
            expensive_session_limit=expensive_session_limit,
            cost_alert_factor=cost_alert_factor,
        ),
        temporal=TemporalStats(
            first_message=first_message,
            last_message=last_message,
            time_distribution=dict(sorted(distribution.items())),
        ),
    )
