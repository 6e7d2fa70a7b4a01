"""FastMCP server initialization for flowexpr.

This module initializes the MCP server and builds the shared expression
engine in the lifespan context. All tool implementations are in the tools
module.

Environment Variables:
    FLOWEXPR_CONFIG: Path to an engine config YAML file
    FLOWEXPR_LOG_LEVEL: Logging level (default: INFO)
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import ExpressionEngine, load_engine_config

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# =============================================================================
# Engine lifecycle
# =============================================================================


def create_engine() -> ExpressionEngine:
    """Build the shared engine from FLOWEXPR_CONFIG, ~/.flowexpr/config.yml or defaults.

    Raises:
        RuntimeError: If the configured file is missing or invalid
    """
    try:
        config = load_engine_config()
    except Exception as e:
        raise RuntimeError(
            f"Failed to load engine config: {e}\n"
            "Check FLOWEXPR_CONFIG or ~/.flowexpr/config.yml."
        ) from e
    return ExpressionEngine(config)


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Create the expression engine on startup and release its cache on shutdown.

    Args:
        _server: The FastMCP app being started (the engine does not need it)

    Yields:
        AppContext holding the shared engine
    """
    logger.info("Initializing expression engine...")
    engine = create_engine()
    logger.info(
        f"Cache: {'enabled' if engine.config.cache.enabled else 'disabled'} "
        f"(max {engine.config.cache.max_size} entries, ttl {engine.config.cache.ttl:.0f} ms)"
    )

    try:
        yield AppContext(engine=engine)
    finally:
        stats = engine.cache_stats()
        logger.info(f"Shutting down (cache hits: {stats['hits']}, misses: {stats['misses']})")
        engine.clear_cache()


mcp = FastMCP("flowexpr", lifespan=app_lifespan)


def configure_logging(level_name: str | None = None) -> str:
    """Send engine and server logs to stderr; stdout carries the MCP protocol.

    Returns:
        The level actually applied (INFO when level_name is not a known level)
    """
    requested = (level_name or os.getenv("FLOWEXPR_LOG_LEVEL") or "INFO").upper()
    level = requested if requested in VALID_LOG_LEVELS else "INFO"
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )
    if level != requested:
        logger.warning(
            f"Ignoring FLOWEXPR_LOG_LEVEL={requested!r}; expected one of {sorted(VALID_LOG_LEVELS)}"
        )
    return level


def main() -> None:
    """Run the flowexpr MCP server over stdio until the client disconnects."""
    configure_logging()
    logger.info("flowexpr MCP server starting on stdio")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping flowexpr MCP server")
    except Exception as e:
        logger.exception(f"flowexpr MCP server crashed: {e}")
        sys.exit(1)
    else:
        logger.info("flowexpr MCP server stopped")


__all__ = [
    "AppContext",
    "AppContextType",
    "configure_logging",
    "create_engine",
    "main",
    "mcp",
]
