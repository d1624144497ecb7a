"""Plain-text rendering of analysis results."""

from __future__ import annotations

from .models import AnalysisResult

TOP_TOOLS = 10


def _percent(value: float | None) -> str:
    return "n/a" if value is None else f"{value * 100:.1f}%"


def format_summary(result: AnalysisResult, *, title: str = "Log Analysis Report") -> list[str]:
    """Return the report lines for one result.

    Sections: counts, tokens, costs (only when any cost was recorded) and the
    most used tools.
    """
    summary = result.summary
    lines = [f"=== {title} ===", "", "Summary:"]
    lines.append(f"  Total Messages: {summary.total_messages}")
    valid_share = summary.valid_messages / summary.total_messages if summary.total_messages else None
    lines.append(f"  Valid Messages: {summary.valid_messages} ({_percent(valid_share)})")
    lines.append(f"  Invalid Messages: {summary.invalid_messages}")
    lines.append(f"  Sessions: {summary.unique_sessions}")
    lines.append(f"  Conversations: {summary.unique_conversations}")
    lines.append("")

    tokens = result.tokens
    lines.append("Token Usage:")
    lines.append(f"  Total Tokens: {tokens.total_tokens}")
    lines.append(f"  Average per Message: {tokens.average_tokens:.1f}")
    lines.append(f"  Max Tokens: {tokens.max_tokens}")
    lines.append("")

    costs = result.costs
    if costs.total_cost > 0:
        lines.append("Cost Analysis:")
        lines.append(f"  Total Cost: ${costs.total_cost:.2f}")
        lines.append("  By Model:")
        for model_cost in costs.cost_by_model:
            lines.append(
                f"    {model_cost.model or 'unknown'}: ${model_cost.cost:.2f} "
                f"({model_cost.message_count} messages)"
            )
        for recommendation in costs.recommendations:
            lines.append(
                f"  Consider alternatives to {recommendation.model or 'unknown'}: "
                f"${recommendation.average_cost_per_message:.4f}/message vs "
                f"${recommendation.global_average_cost:.4f} average"
            )
        lines.append("")

    tools = result.tools.effectiveness
    lines.append("Tool Usage:")
    lines.append(f"  Unique Tools: {len(tools)}")
    for tool in sorted(tools, key=lambda item: item.total_usage, reverse=True)[:TOP_TOOLS]:
        lines.append(
            f"    {tool.tool_name}: {tool.total_usage} uses across {tool.unique_sessions} sessions "
            f"({_percent(tool.success_rate)} success)"
        )
    return lines
