"""
Validation engine: runs the layers in order and merges their issues.

    syntax -> semantic -> security -> performance -> business

Merge rules:
    - Issues are concatenated in layer order, then validator order
    - Once errors reach validation.maxErrors the list is truncated, a
      TOO_MANY_ERRORS warning is added and no further validator runs
    - Unless validation.strict is set, layers after a layer that reported
      errors are skipped
    - A validator that raises is reported as a VALIDATOR_ERROR error

validate() never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..config import VALIDATION_LAYERS, EngineConfig
from ..context_manager import ExpressionContext
from ..exceptions import ParseError
from ..extensions.registry import ExtensionRegistry, create_default_registry
from ..resolver.classifier import ExpressionClassifier
from ..resolver.security_rules import SecurityPolicy
from ..results import ValidationIssue, ValidationResult
from ..template_parser import ParsedTemplate, offset_to_position, parse_template
from .base import BaseValidator, ValidationContext
from .business import BusinessRule, BusinessRuleValidator
from .performance import ExpensiveOperationValidator, ThresholdValidator
from .security import BlockedPatternValidator, InjectionValidator
from .semantic import FunctionCallValidator, TypeCompatibilityValidator, VariableValidator
from .syntax import ExpressionSyntaxValidator, TemplateSyntaxValidator

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Layered static validation of templates.

    Example:
        engine = ValidationEngine()
        result = engine.validate("{{ $json.name.toUpperCase( }}")
        result.is_valid  # False
        result.errors[0].code  # "SYNTAX_ERROR"
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ExtensionRegistry | None = None,
        policy: SecurityPolicy | None = None,
        business_rules: list[BusinessRule] | None = None,
        register_defaults: bool = True,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or create_default_registry()
        if policy is None:
            library_globals = {"DateTime"} if self.config.library_enabled("datetime") else set()
            policy = SecurityPolicy(self.config.security, library_globals=library_globals)
        self.policy = policy
        self.validators: dict[str, list[BaseValidator]] = {layer: [] for layer in VALIDATION_LAYERS}
        self.business = BusinessRuleValidator(business_rules)
        if register_defaults:
            self._register_defaults()

    def _register_defaults(self) -> None:
        classifier = ExpressionClassifier()
        for validator in (
            TemplateSyntaxValidator(),
            ExpressionSyntaxValidator(classifier),
            VariableValidator(self.policy, self.registry),
            FunctionCallValidator(self.registry),
            TypeCompatibilityValidator(),
            BlockedPatternValidator(self.policy),
            InjectionValidator(),
            ThresholdValidator(),
            ExpensiveOperationValidator(),
            self.business,
        ):
            self.register_validator(validator)

    def register_validator(self, validator: BaseValidator) -> None:
        if validator.layer not in self.validators:
            raise ValueError(
                f"Unknown validation layer '{validator.layer}'. Valid layers: {list(VALIDATION_LAYERS)}"
            )
        self.validators[validator.layer].append(validator)

    def add_business_rule(self, rule: BusinessRule) -> None:
        self.business.add_rule(rule)

    def get_validator_info(self) -> list[dict[str, Any]]:
        return [
            {"layer": layer, "validators": [v.name for v in validators]}
            for layer, validators in self.validators.items()
        ]

    # -- validation -------------------------------------------------------------

    def build_context(
        self,
        template: str,
        context: ExpressionContext | Mapping[str, Any] | None = None,
        parsed: ParsedTemplate | None = None,
    ) -> ValidationContext:
        """
        Segment the template (unless already parsed) and coerce the context.

        Raises:
            ApplicationError: If the context is neither an ExpressionContext nor a mapping
        """
        parse_error: ParseError | None = None
        if parsed is None:
            try:
                parsed = parse_template(template)
            except ParseError as e:
                parse_error = e
        expression_context = ExpressionContext.coerce(context) if context is not None else None
        return ValidationContext(
            template=template,
            config=self.config,
            parsed=parsed,
            parse_error=parse_error,
            context=expression_context,
        )

    def validate(
        self,
        template: str,
        context: ExpressionContext | Mapping[str, Any] | None = None,
        parsed: ParsedTemplate | None = None,
    ) -> ValidationResult:
        result = ValidationResult()
        try:
            validation_context = self.build_context(template, context, parsed)
        except Exception as e:
            logger.debug(f"Could not build validation context: {e}")
            result.errors.append(self._whole_template_error(template, "INVALID_CONTEXT", f"Invalid context: {e}"))
            return result

        settings = self.config.validation
        for layer in settings.layers:
            if result.errors and not settings.strict:
                logger.debug(f"Skipping validation layer '{layer}' after earlier errors")
                break
            result.layers_run.append(layer)
            if self._run_layer(layer, validation_context, result):
                break
        return result

    def validate_layer(
        self,
        layer: str,
        template: str,
        context: ExpressionContext | Mapping[str, Any] | None = None,
    ) -> ValidationResult:
        """Run a single layer regardless of the configured layer switches."""
        result = ValidationResult(layers_run=[layer])
        try:
            validation_context = self.build_context(template, context)
        except Exception as e:
            result.errors.append(self._whole_template_error(template, "INVALID_CONTEXT", f"Invalid context: {e}"))
            return result
        self._run_layer(layer, validation_context, result)
        return result

    def _run_layer(self, layer: str, context: ValidationContext, result: ValidationResult) -> bool:
        """Run one layer's validators into result; True once the error limit is reached."""
        max_errors = self.config.validation.max_errors
        for validator in self.validators.get(layer, []):
            try:
                issues = validator.validate(context)
            except Exception as e:
                logger.exception(f"Validator {validator.name} failed")
                issues = [
                    self._whole_template_error(
                        context.template,
                        "VALIDATOR_ERROR",
                        f"Validator {validator.name} failed: {e}",
                        layer=layer,
                    )
                ]
            for issue in issues:
                if issue.severity == "error":
                    result.errors.append(issue)
                else:
                    result.warnings.append(issue)

            if len(result.errors) >= max_errors:
                del result.errors[max_errors:]
                result.warnings.append(
                    ValidationIssue(
                        code="TOO_MANY_ERRORS",
                        message=f"Validation stopped after reaching the limit of {max_errors} errors",
                        severity="warning",
                        layer=layer,
                        position=offset_to_position(context.template, 0, len(context.template)),
                    )
                )
                return True
        return False

    @staticmethod
    def _whole_template_error(template: str, code: str, message: str, layer: str = "syntax") -> ValidationIssue:
        return ValidationIssue(
            code=code,
            message=message,
            severity="error",
            layer=layer,
            position=offset_to_position(template, 0, len(template)),
        )
