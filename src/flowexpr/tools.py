"""MCP tool implementations for template expressions.

Each tool is a thin adapter over the shared ExpressionEngine held in the
lifespan context:
- evaluate_expression: Evaluate a {{ }} template against a context
- validate_expression: Layered static validation
- complete_expression: Completion items at a cursor
- list_extension_methods: Catalogue of extension methods and $-functions
"""

import json
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .formatting import (
    evaluation_to_json,
    format_completions_markdown,
    format_evaluation_markdown,
    format_functions_markdown,
    format_validation_markdown,
)
from .server import mcp

CONTEXT_DESCRIPTION = (
    "Evaluation context: json, binary, node (name of the current node), nodes "
    "({name: {json, items, parameter, context}}), env, vars, execution, workflow"
)


def _no_context_error() -> dict[str, Any]:
    return {
        "success": False,
        "error": "Server context not available. Tool requires context to access resources.",
    }


# =============================================================================
# MCP Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Evaluate Expression",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=False,  # $now and $today change between calls
        openWorldHint=False,
    )
)
async def evaluate_expression(
    template: Annotated[
        str,
        Field(description="Template text, e.g. 'Hello {{ $json.name }}'", max_length=100000),
    ],
    context: Annotated[
        dict[str, Any] | None,
        Field(description=CONTEXT_DESCRIPTION),
    ] = None,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Evaluate a {{ }} template. Required: template. Optional: context, format (json|markdown)."""
    if ctx is None:
        return _no_context_error()

    engine = ctx.request_context.lifespan_context.engine
    result = await engine.evaluate_async(template, context)

    if format == "markdown":
        return format_evaluation_markdown(template, result)
    return evaluation_to_json(result)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Validate Expression",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def validate_expression(
    template: Annotated[
        str,
        Field(description="Template text to validate without evaluating it", max_length=100000),
    ],
    context: Annotated[
        dict[str, Any] | None,
        Field(description=f"Optional. Enables property checks. {CONTEXT_DESCRIPTION}"),
    ] = None,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Validate a template (syntax, semantic, security, performance, business). Required: template."""
    if ctx is None:
        return _no_context_error()

    engine = ctx.request_context.lifespan_context.engine
    result = await engine.validate_async(template, context)

    if format == "markdown":
        return format_validation_markdown(result)
    return result.to_dict()


@mcp.tool(
    annotations=ToolAnnotations(
        title="Complete Expression",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def complete_expression(
    template: Annotated[
        str,
        Field(description="Template text being edited", max_length=100000),
    ],
    cursor: Annotated[
        int | None,
        Field(description="Cursor offset into template (default: end of template)", ge=0),
    ] = None,
    context: Annotated[
        dict[str, Any] | None,
        Field(description=f"Optional. Enables property completion. {CONTEXT_DESCRIPTION}"),
    ] = None,
    limit: Annotated[
        int,
        Field(description="Maximum number of items", ge=1, le=500),
    ] = 50,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> str:
    """Completion items at a cursor inside {{ }}. Required: template. Optional: cursor, context."""
    if ctx is None:
        return json.dumps(_no_context_error())

    engine = ctx.request_context.lifespan_context.engine
    items = (await engine.complete_async(template, cursor, context))[:limit]

    if format == "markdown":
        return format_completions_markdown(items)
    return json.dumps([item.to_dict() for item in items])


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Extension Methods",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_extension_methods(
    type_name: Annotated[
        Literal["string", "number", "boolean", "array", "object", "date"] | None,
        Field(description="Only methods for this value type. Omit for everything."),
    ] = None,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """List extension methods, $-functions and globals. Optional: type_name, format (json|markdown)."""
    if ctx is None:
        return _no_context_error()

    engine = ctx.request_context.lifespan_context.engine
    described = engine.describe_functions(type_name)

    if format == "markdown":
        return format_functions_markdown(described)
    return described
