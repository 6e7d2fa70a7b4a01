"""
Expression resolver package.

Evaluates one resolvable span: a JavaScript-flavoured expression is parsed,
checked by rule-based transformations, translated to a Jinja2 expression and
run inside a sandboxed environment; a JMESPath query is routed to the query
library instead.

The pipeline:
1. Expression classification for routing
2. Rule-based transformation pipeline (parse -> static security -> translate)
3. Context bindings wrapped in read-only proxies
4. Sandboxed Jinja2 evaluation under an execution guard
5. Output normalization and caching

Public API (the evaluator and sandbox live in their own modules):
    - ExpressionClassifier: Expression kind detection for routing
    - TransformRule: Base class for custom transformation rules
    - SecurityPolicy: Blocked patterns, allowed globals and methods
    - ReadOnlyMapping: Proxy for bindings that reject writes
"""

from .classifier import ExpressionClassifier, ExpressionKind
from .proxies import ProxyBase, ReadOnlyMapping, is_read_only
from .rules import RuleContext, RuleType, TransformRule
from .security_rules import BlockedMatch, SecurityPolicy

__all__ = [
    "ExpressionClassifier",
    "ExpressionKind",
    "TransformRule",
    "RuleType",
    "RuleContext",
    "ProxyBase",
    "ReadOnlyMapping",
    "is_read_only",
    "BlockedMatch",
    "SecurityPolicy",
]
