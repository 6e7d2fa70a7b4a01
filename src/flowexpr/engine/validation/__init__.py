"""
Layered static validation of templates.

Public API:
    - ValidationEngine: Runs syntax, semantic, security, performance and
      business layers and merges their issues
    - BaseValidator / ValidationContext: Extension point for custom validators
    - BusinessRule: Host-defined regex or predicate rule
"""

from .base import BaseValidator, ValidationContext
from .business import BusinessRule, BusinessRuleValidator
from .engine import ValidationEngine

__all__ = [
    "BaseValidator",
    "BusinessRule",
    "BusinessRuleValidator",
    "ValidationContext",
    "ValidationEngine",
]
