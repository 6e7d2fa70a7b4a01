"""
Sandboxed template-expression engine for workflow hosts.

Public API:
    - ExpressionEngine: evaluate / validate / complete facade
    - EngineConfig, load_engine_config: Configuration models and YAML loader
    - ExpressionContext, ContextManager: Per-item evaluation context and its builder
    - Workflow, Node, Connection: Host node graph
    - RunExecutionData, TaskRun, ItemRecord, PairedItem, SourceRef: Run data and lineage
    - EvaluationResult, ValidationResult, ValidationIssue, Position: Result objects
    - BusinessRule: Host-defined validation rule
"""

from .completion import CompletionItem, CompletionProvider
from .config import (
    CacheConfig,
    DebugConfig,
    EngineConfig,
    OutputConfig,
    PerformanceThresholds,
    SecurityConfig,
    ValidationConfig,
    load_engine_config,
)
from .context_manager import ContextManager, ExpressionContext
from .engine import ExpressionEngine
from .exceptions import (
    ApplicationError,
    EvaluationError,
    EvaluationTimeoutError,
    ExecutionBaseError,
    ExecutionCancelledError,
    ExpressionError,
    ExpressionSyntaxError,
    InvalidDateError,
    NodeOperationError,
    NotDefinedError,
    NullReceiverError,
    PairedItemError,
    ParseError,
    QueryError,
    ResourceLimitError,
    SecurityError,
    UnknownMethodError,
    VariableAssignmentError,
    WorkflowOperationError,
)
from .execution_data import ItemRecord, PairedItem, RunExecutionData, SourceRef, TaskRun
from .extensions import ExtensionRegistry, create_default_registry
from .paired_items import PairedItemResolver, resolvable_state
from .results import EvaluationResult, Position, ValidationIssue, ValidationResult
from .template_parser import ParsedExpression, ParsedTemplate, Segment, parse_template
from .validation import BusinessRule, ValidationEngine
from .workflow import Connection, Node, Workflow

__all__ = [
    # Facade
    "ExpressionEngine",
    # Configuration
    "CacheConfig",
    "DebugConfig",
    "EngineConfig",
    "OutputConfig",
    "PerformanceThresholds",
    "SecurityConfig",
    "ValidationConfig",
    "load_engine_config",
    # Context and host data
    "Connection",
    "ContextManager",
    "ExpressionContext",
    "ItemRecord",
    "Node",
    "PairedItem",
    "PairedItemResolver",
    "RunExecutionData",
    "SourceRef",
    "TaskRun",
    "Workflow",
    "resolvable_state",
    # Parsing
    "ParsedExpression",
    "ParsedTemplate",
    "Segment",
    "parse_template",
    # Results
    "CompletionItem",
    "CompletionProvider",
    "EvaluationResult",
    "Position",
    "ValidationIssue",
    "ValidationResult",
    # Validation and extensions
    "BusinessRule",
    "ExtensionRegistry",
    "ValidationEngine",
    "create_default_registry",
    # Errors
    "ApplicationError",
    "EvaluationError",
    "EvaluationTimeoutError",
    "ExecutionBaseError",
    "ExecutionCancelledError",
    "ExpressionError",
    "ExpressionSyntaxError",
    "InvalidDateError",
    "NodeOperationError",
    "NotDefinedError",
    "NullReceiverError",
    "PairedItemError",
    "ParseError",
    "QueryError",
    "ResourceLimitError",
    "SecurityError",
    "UnknownMethodError",
    "VariableAssignmentError",
    "WorkflowOperationError",
]
