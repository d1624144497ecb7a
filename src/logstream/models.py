"""Pydantic models for classified log records and analysis results."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class MessageType(StrEnum):
    """Variant a record is classified as."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_USAGE = "tool-usage"
    SUMMARY = "summary"
    UNKNOWN = "unknown"


class IssueKind(StrEnum):
    """Kind of problem attached to a record."""

    PARSE = "parse-error"
    MISSING = "missing"
    MISTYPED = "mistyped"
    UNKNOWN_TYPE = "unknown-type"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True, slots=True)
class RecordIssue:
    """A single parse, validation or timestamp problem for one input line."""

    kind: IssueKind
    message: str
    field: str | None = None


def _canonical_alias(name: str) -> str:
    return name.replace("_", "-")


class LogRecord(BaseModel):
    """One normalized, classified unit derived from one input line."""

    line_number: int
    message_type: MessageType = MessageType.UNKNOWN
    valid: bool = False

    timestamp: datetime | None = None
    session_id: str | None = None
    message_id: str | None = None
    conversation_id: str | None = None
    role: str | None = None
    content: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_output: Any | None = None
    token_count: int | None = None
    model: str | None = None
    cost_usd: float | None = None

    errors: tuple[RecordIssue, ...] = ()
    warnings: tuple[RecordIssue, ...] = ()
    raw_line: str | None = None

    model_config = {
        "frozen": True,
        "extra": "ignore",
        "populate_by_name": True,
        "alias_generator": _canonical_alias,
    }

    @property
    def is_parse_error(self) -> bool:
        return any(issue.kind == IssueKind.PARSE for issue in self.errors)

    @property
    def missing_fields(self) -> list[str]:
        return [
            issue.field
            for issue in self.errors
            if issue.kind == IssueKind.MISSING and issue.field is not None
        ]


# --- Analysis results ---


class Summary(BaseModel):
    """Record counts for a run."""

    total_messages: int = 0
    valid_messages: int = 0
    invalid_messages: int = 0
    unique_sessions: int = 0
    unique_conversations: int = 0
    message_types: dict[str, int] = Field(default_factory=dict)


class ConversationFlow(BaseModel):
    """Ordered role transitions and tool frequencies for a group of records."""

    message_count: int = 0
    unique_tools: int = 0
    role_transitions: dict[str, int] = Field(default_factory=dict)
    tool_usage_patterns: dict[str, int] = Field(default_factory=dict)
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None


class ProductivityMetrics(BaseModel):
    """Per-session rates; rates are None whenever the divisor is zero or unknown."""

    duration_minutes: int | None = None
    tools_per_minute: float | None = None
    responses_per_minute: float | None = None
    interaction_ratio: float | None = None
    tool_usage_count: int = 0
    assistant_message_count: int = 0
    user_message_count: int = 0
    total_interactions: int = 0


class SessionStats(BaseModel):
    """Aggregated view of all valid records sharing a session id."""

    session_id: str
    message_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: timedelta | None = None
    productivity: ProductivityMetrics = Field(default_factory=ProductivityMetrics)
    conversation_flow: ConversationFlow = Field(default_factory=ConversationFlow)


class ConversationFeatures(BaseModel):
    """Features used to bucket a conversation into a cluster."""

    conversation_id: str
    tool_count: int = 0
    message_count: int = 0
    tools_used: list[str] = Field(default_factory=list)
    duration: timedelta | None = None


class ConversationStats(BaseModel):
    """Cluster buckets (keyed by distinct tool count) and per-conversation flows."""

    clusters: dict[int, list[ConversationFeatures]] = Field(default_factory=dict)
    flow_patterns: dict[str, ConversationFlow] = Field(default_factory=dict)


class ToolEffectiveness(BaseModel):
    """Usage and success statistics for a single tool."""

    tool_name: str
    total_usage: int = 0
    success_count: int = 0
    unique_sessions: int = 0
    success_rate: float | None = None
    average_per_session: float | None = None
    first_used: datetime | None = None
    last_used: datetime | None = None


class ToolUsagePattern(BaseModel):
    """Where and when a tool was used."""

    tool_name: str
    usage_count: int = 0
    sessions: list[str] = Field(default_factory=list)
    first_used: datetime | None = None
    last_used: datetime | None = None


class ToolStats(BaseModel):
    effectiveness: list[ToolEffectiveness] = Field(default_factory=list)
    usage_patterns: list[ToolUsagePattern] = Field(default_factory=list)


class TokenStats(BaseModel):
    """Token totals over records carrying a token count."""

    total_tokens: int = 0
    average_tokens: float = 0.0
    max_tokens: int = 0
    min_tokens: int = 0
    message_count: int = 0


class ModelCost(BaseModel):
    model: str | None = None
    cost: float = 0.0
    message_count: int = 0
    average_cost_per_message: float | None = None


class SessionCost(BaseModel):
    session_id: str
    cost: float = 0.0
    message_count: int = 0


class CostRecommendation(BaseModel):
    """A model whose per-message cost is well above the global average."""

    model: str | None = None
    average_cost_per_message: float
    global_average_cost: float


class CostStats(BaseModel):
    total_cost: float = 0.0
    costed_message_count: int = 0
    average_cost: float | None = None
    cost_by_model: list[ModelCost] = Field(default_factory=list)
    cost_by_session: dict[str, SessionCost] = Field(default_factory=dict)
    expensive_sessions: list[SessionCost] = Field(default_factory=list)
    recommendations: list[CostRecommendation] = Field(default_factory=list)


class TemporalStats(BaseModel):
    """First/last instants and an hourly histogram keyed ``YYYY-MM-DD-HH``."""

    first_message: datetime | None = None
    last_message: datetime | None = None
    time_distribution: dict[str, int] = Field(default_factory=dict)


class AnalysisResult(BaseModel):
    """All statistics computed for one record collection."""

    summary: Summary = Field(default_factory=Summary)
    sessions: list[SessionStats] = Field(default_factory=list)
    conversations: ConversationStats = Field(default_factory=ConversationStats)
    tools: ToolStats = Field(default_factory=ToolStats)
    tokens: TokenStats = Field(default_factory=TokenStats)
    costs: CostStats = Field(default_factory=CostStats)
    temporal: TemporalStats = Field(default_factory=TemporalStats)

    def get_session(self, session_id: str) -> SessionStats | None:
        for session in self.sessions:
            if session.session_id == session_id:
                return session
        return None

    def get_tool(self, tool_name: str) -> ToolEffectiveness | None:
        for tool in self.tools.effectiveness:
            if tool.tool_name == tool_name:
                return tool
        return None
