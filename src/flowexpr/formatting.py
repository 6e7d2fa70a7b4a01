"""Shared formatting utilities for MCP tool responses.

Markdown is for humans reading tool output; JSON-compatible dicts are for
programmatic access.
"""

from typing import Any

from .engine import EvaluationResult, ValidationResult
from .engine.completion import CompletionItem
from .engine.resolver.values import to_json_compatible


def evaluation_to_json(result: EvaluationResult) -> dict[str, Any]:
    """EvaluationResult as a dict whose value survives json.dumps (dates as ISO strings)."""
    data = result.to_dict()
    if "value" in data:
        data["value"] = to_json_compatible(data["value"])
    return data


# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def format_evaluation_markdown(template: str, result: EvaluationResult) -> str:
    lines = [f"## Evaluation: `{template}`", ""]
    if result.success:
        lines.append(f"- **Type**: {result.type}")
        lines.append(f"- **Value**: `{to_json_compatible(result.value)!r}`")
    else:
        assert result.error is not None
        lines.append(f"- **Error** ({type(result.error).__name__}): {result.error.message}")
        if result.error.description:
            lines.append(f"- **Details**: {result.error.description}")
        if result.position is not None:
            start, end = result.position
            lines.append(f"- **Position**: {start}-{end} (`{template[start:end]}`)")
    lines.append(f"- **Time**: {result.execution_time_ms:.2f} ms{' (cached)' if result.cached else ''}")
    return "\n".join(lines)


def format_validation_markdown(result: ValidationResult) -> str:
    """Format validation issues as markdown, errors first.

    Args:
        result: Merged validation result

    Returns:
        Markdown with one section per severity
    """
    header = "## Valid" if result.is_valid else f"## Invalid ({len(result.errors)} errors)"
    lines = [header, f"**Layers run**: {', '.join(result.layers_run) or 'none'}"]

    for title, issues in (("Errors", result.errors), ("Warnings", result.warnings)):
        if not issues:
            continue
        lines.append("")
        lines.append(f"### {title}")
        for issue in issues:
            position = issue.position
            line = (
                f"- **{issue.code}** [{issue.layer}] line {position.line}, "
                f"column {position.column}: {issue.message}"
            )
            if issue.suggestion:
                line += f" (suggestion: {issue.suggestion})"
            lines.append(line)
    return "\n".join(lines)


def format_completions_markdown(items: list[CompletionItem]) -> str:
    if not items:
        return "No completions"
    lines = [f"## Completions ({len(items)})", ""]
    for item in items:
        detail = f" - {item.detail}" if item.detail else ""
        lines.append(f"- `{item.label}` ({item.kind}){detail}")
    return "\n".join(lines)


def format_functions_markdown(described: dict[str, Any]) -> str:
    """Format ExpressionEngine.describe_functions() output as markdown."""
    lines = ["# Expression Functions"]

    for type_name, methods in described.get("methods", {}).items():
        lines.append("")
        lines.append(f"## {type_name}")
        for method in methods:
            kind = " (property)" if method["isProperty"] else ""
            lines.append(f"- `{method['signature']}`{kind}: {method['description']}")

    if described.get("functions"):
        lines.append("")
        lines.append("## $-functions")
        for function in described["functions"]:
            lines.append(f"- `{function['signature']}`: {function['description']}")

    if described.get("namespaces"):
        lines.append("")
        lines.append("## Globals")
        for name, members in described["namespaces"].items():
            lines.append(f"- **{name}**: {', '.join(members)}")

    return "\n".join(lines)
