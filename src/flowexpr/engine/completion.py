"""
Completion suggestions for a cursor position in a template.

    "Hello {{ $js|"            -> $json, ...            ($-variables and functions)
    "{{ $json.name.to|"        -> toUpperCase(), ...    (string methods)
    "{{ Math.ro|"              -> round()               (namespace members)
    "{{ |"                     -> $json, $input, ...    (blank expression)
    "plain text|"              -> {{ }}                 (expression snippet)

Receiver types come from literals, $now / $today, namespace names or, when
a context is supplied, a static walk of the $-path against its bindings.
Mapping roots such as $json are objects even without a context. Other unknown
receivers offer the methods of every type, most common types first.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .context_manager import ExpressionContext, NodeAccessor
from .exceptions import ExecutionBaseError
from .extensions.registry import TYPE_NAMES, ExtensionMethod, ExtensionRegistry
from .resolver.builtins import NAMESPACES, create_globals, dollar_functions
from .resolver.values import HostObject, is_undefined, type_name_of

logger = logging.getLogger(__name__)

KIND_ORDER = {
    "variable": 0,
    "node": 1,
    "property": 2,
    "method": 3,
    "function": 4,
    "global": 5,
    "keyword": 6,
    "snippet": 7,
}

DOLLAR_VARIABLES = {
    "$json": "The current item's JSON data",
    "$binary": "The current item's binary data (deprecated, use $input.item.binary)",
    "$input": "The current node's input items: .item, .first(), .last(), .all()",
    "$node": "Outputs of executed nodes by name: $node[\"Name\"].json",
    "$prevNode": "The node feeding the current node's main input",
    "$env": "Environment variables (read-only)",
    "$vars": "Workflow variables (read-only)",
    "$parameter": "The current node's parameters",
    "$workflow": "Workflow metadata: id, name, active",
    "$execution": "Execution metadata: id, mode",
    "$runIndex": "Index of the current run of this node",
    "$itemIndex": "Index of the current item",
    "$now": "The current date and time",
    "$today": "The current date at midnight",
}

NODE_ACCESSOR_MEMBERS = {
    "item": ("property", "The item linked to the current item by paired-item lineage"),
    "first": ("method", "The node's first output item"),
    "last": ("method", "The node's last output item"),
    "all": ("method", "All of the node's output items"),
    "params": ("property", "The node's parameters"),
    "isExecuted": ("property", "Whether the node has run"),
    "pairedItem": ("method", "The linked item for a given item index"),
}

KEYWORDS = ("true", "false", "null", "undefined", "typeof", "new")

MAPPING_ROOTS = frozenset({"$json", "$binary", "$env", "$vars", "$parameter", "$workflow", "$execution"})

# Unknown receivers list member groups in this order
COMMON_TYPES = ("object", "string", "array", "number", "boolean", "date")

_DOLLAR_WORD_RE = re.compile(r"(?<![\w.$])\$[\w$]*$")
_WORD_RE = re.compile(r"(?<![\w.$])[A-Za-z_][\w]*$|^$|(?<=[\s(,\[{!?:+\-*/%<>=&|])$")
_MEMBER_RE = re.compile(r"\.([A-Za-z_$][\w$]*)?$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_PATH_RE = re.compile(r"\.([A-Za-z_$][\w$]*)|\[\s*(\d+)\s*\]|\[\s*([\"'])(.*?)\3\s*\]")
_NODE_CALL_RE = re.compile(r"^\$\(\s*([\"'])(.*?)\1\s*\)")
_STOP_CHARS = set(" \t\n+-*/%,!?:<>=&|;{")
_CLOSERS = {")": "(", "]": "["}


@dataclass(frozen=True)
class CompletionItem:
    label: str
    kind: str
    detail: str = ""
    insert_text: str = ""
    documentation: str = ""
    sort_text: str = ""
    group: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = {
            "label": self.label,
            "kind": self.kind,
            "detail": self.detail,
            "insertText": self.insert_text or self.label,
            "sortText": self.sort_text,
        }
        if self.documentation:
            data["documentation"] = self.documentation
        return data


def _enclosing_span_start(template: str, cursor: int) -> int | None:
    """Offset of the inner text of the {{ span containing the cursor, if any."""
    opening = template.rfind("{{", 0, cursor)
    if opening == -1:
        return None
    if "}}" in template[opening + 2 : cursor]:
        return None
    return opening + 2


def _receiver_before(text: str) -> str:
    """The receiver expression that ends at the end of text (balanced brackets and quotes)."""
    pos = len(text) - 1
    stack: list[str] = []
    while pos >= 0:
        char = text[pos]
        if char in "\"'`":
            start = text.rfind(char, 0, pos)
            if start == -1:
                break
            pos = start - 1
            continue
        if char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in "([":
            if not stack or stack.pop() != char:
                break
        elif not stack and char in _STOP_CHARS:
            break
        pos -= 1
    return text[pos + 1 :].strip()


def _method_item(method: ExtensionMethod) -> CompletionItem:
    documentation = method.description
    if method.example:
        documentation = f"{documentation}\n\nExample: {method.example}"
    return CompletionItem(
        label=method.name,
        kind="property" if method.is_property else "method",
        detail=method.signature,
        insert_text=method.name if method.is_property else f"{method.name}()",
        documentation=documentation,
    )


class CompletionProvider:
    """
    Rank completion items for a cursor position.

    Example:
        provider = CompletionProvider(create_default_registry())
        provider.complete("{{ 'abc'.to", 11)  # toUpperCase, toLowerCase, ...
    """

    def __init__(self, registry: ExtensionRegistry, libraries: Mapping[str, bool] | None = None):
        self.registry = registry
        self.libraries = dict(libraries or {"datetime": True, "jmespath": True})
        self.global_names = sorted(create_globals(include_datetime=self.libraries.get("datetime", False)))

    def complete(
        self,
        template: str,
        cursor: int | None = None,
        context: ExpressionContext | None = None,
    ) -> list[CompletionItem]:
        try:
            return self._complete(template, len(template) if cursor is None else cursor, context)
        except Exception:
            logger.exception(f"Completion failed at offset {cursor}")
            return []

    def _complete(
        self,
        template: str,
        cursor: int,
        context: ExpressionContext | None,
    ) -> list[CompletionItem]:
        cursor = max(0, min(cursor, len(template)))
        inner_start = _enclosing_span_start(template, cursor)
        if inner_start is None:
            return [
                CompletionItem(
                    label="{{ }}",
                    kind="snippet",
                    detail="Expression",
                    insert_text="{{ $json }}",
                    documentation="Insert an expression evaluated against the current item",
                    sort_text="0",
                )
            ]
        before = template[inner_start:cursor]

        member = _MEMBER_RE.search(before)
        if member is not None:
            receiver = _receiver_before(before[: member.start()])
            if receiver:
                prefix = member.group(1) or ""
                return self._rank(self._member_items(receiver, context), prefix)

        dollar = _DOLLAR_WORD_RE.search(before)
        if dollar is not None:
            return self._rank(self._dollar_items(context), dollar.group(0))

        word = _WORD_RE.search(before)
        if word is not None:
            prefix = word.group(0)
            items = self._global_items()
            if not prefix:
                items = self._dollar_items(context) + items
            return self._rank(items, prefix)
        return []

    # -- sources ----------------------------------------------------------------

    def _dollar_items(self, context: ExpressionContext | None) -> list[CompletionItem]:
        items = [
            CompletionItem(label=name, kind="variable", detail="variable", documentation=doc)
            for name, doc in DOLLAR_VARIABLES.items()
        ]
        for name, fn in dollar_functions(self.libraries).items():
            items.append(
                CompletionItem(
                    label=name,
                    kind="function",
                    detail=fn.signature,
                    insert_text=f"{name}()",
                    documentation=fn.description,
                )
            )
        if context is not None and context.node_source is not None:
            for node in context.node_source.node_names():
                label = f"$(\"{node}\")"
                items.append(
                    CompletionItem(
                        label=label,
                        kind="node",
                        detail="Node",
                        documentation=f"Output data of node '{node}'",
                    )
                )
        return items

    def _global_items(self) -> list[CompletionItem]:
        items = [
            CompletionItem(label=name, kind="global", detail="global")
            for name in self.global_names
        ]
        items.extend(CompletionItem(label=k, kind="keyword", detail="keyword") for k in KEYWORDS)
        return items

    def _member_items(self, receiver: str, context: ExpressionContext | None) -> list[CompletionItem]:
        namespace = NAMESPACES.get(receiver)
        if namespace is not None and receiver in self.global_names:
            return [
                CompletionItem(
                    label=name,
                    kind="method" if callable(value) else "property",
                    detail=f"{receiver}.{name}",
                    insert_text=f"{name}()" if callable(value) else name,
                    documentation=namespace.docs.get(name, ""),
                )
                for name, value in namespace.members.items()
            ]

        type_name, value = self._infer(receiver, context)
        if isinstance(value, NodeAccessor):
            return [
                CompletionItem(
                    label=name,
                    kind=kind,
                    detail=f"$(\"{value.name}\").{name}",
                    insert_text=f"{name}()" if kind == "method" else name,
                    documentation=doc,
                )
                for name, (kind, doc) in NODE_ACCESSOR_MEMBERS.items()
            ]

        items: list[CompletionItem] = []
        if isinstance(value, Mapping):
            items.extend(
                CompletionItem(label=str(key), kind="property", detail=type_name_of(value[key]))
                for key in value
            )
        if type_name in TYPE_NAMES:
            items.extend(_method_item(m) for m in self.registry.methods_for(type_name))
            return items

        seen: set[str] = set()
        for group, name in enumerate(COMMON_TYPES):
            for method in self.registry.methods_for(name):
                if method.name not in seen:
                    seen.add(method.name)
                    items.append(replace(_method_item(method), group=group))
        return items

    def _infer(self, receiver: str, context: ExpressionContext | None) -> tuple[str | None, Any]:
        """Static type (and value, when a context is available) of a receiver."""
        if receiver[0] in "\"'`" and receiver[-1] == receiver[0]:
            return "string", None
        if _NUMBER_RE.match(receiver):
            return "number", None
        if receiver in ("true", "false"):
            return "boolean", None
        if receiver.startswith("["):
            return "array", None
        if receiver in ("$now", "$today") or receiver.startswith("DateTime."):
            return "date", None
        if context is None and receiver in MAPPING_ROOTS:
            return "object", None
        if context is None or not receiver.startswith("$"):
            return None, None

        value = self._walk(receiver, context)
        if value is None or is_undefined(value):
            return None, None
        if isinstance(value, HostObject):
            return None, value
        return type_name_of(value), value

    @staticmethod
    def _walk(receiver: str, context: ExpressionContext) -> Any:
        bindings = context.bindings()
        node_call = _NODE_CALL_RE.match(receiver)
        if node_call is not None:
            name = node_call.group(2)
            if context.node_source is None or not context.node_source.has_node(name):
                return None
            value: Any = NodeAccessor(context.node_source, name)
            rest = receiver[node_call.end() :]
        else:
            root = re.match(r"^\$[\w$]*", receiver)
            if root is None or root.group(0) not in bindings:
                return None
            value = bindings[root.group(0)]
            rest = receiver[root.end() :]

        for match in _PATH_RE.finditer(rest):
            name, index, _, quoted = match.groups()
            key = name if name is not None else quoted
            if isinstance(value, NodeAccessor):
                if key != "item":
                    return None
                try:
                    value = value.js_member("item")
                except ExecutionBaseError:
                    return None
            elif key is not None and isinstance(value, Mapping):
                value = value.get(key)
            elif index is not None and isinstance(value, list) and int(index) < len(value):
                value = value[int(index)]
            else:
                return None
        return value

    # -- ranking ----------------------------------------------------------------

    @staticmethod
    def _rank(items: list[CompletionItem], prefix: str) -> list[CompletionItem]:
        lowered = prefix.lower()
        matching = [item for item in items if lowered in item.label.lower()]

        def sort_key(item: CompletionItem) -> tuple[int, int, int, str]:
            exact = 0 if item.label.startswith(prefix) else 1
            return exact, item.group, KIND_ORDER.get(item.kind, len(KIND_ORDER)), item.label.lower()

        ranked = sorted(matching, key=sort_key)
        return [
            CompletionItem(
                label=item.label,
                kind=item.kind,
                detail=item.detail,
                insert_text=item.insert_text or item.label,
                documentation=item.documentation,
                sort_text=f"{index:04d}",
            )
            for index, item in enumerate(ranked)
        ]
