"""Validation service for target records."""

import re
import logging
from typing import Any, Callable, Dict, List, Optional
from datetime import date, datetime
from urllib.parse import urlparse

from dateutil import parser as date_parser

from ..models.record import ValidationError, ValidationRule

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_empty(value: Any) -> bool:
    """None, empty strings and empty lists count as missing."""
    return value is None or value == "" or (isinstance(value, (list, tuple)) and len(value) == 0)


class DataValidator:
    """
    Validator applying declarative per-field rules to a record.

    For each rule the checks run in order: required, type, length, range,
    pattern, custom. The first failing check ends that field's checks; the
    remaining fields are still validated, so one call reports every failing
    field.
    """

    def __init__(self, rules: Optional[List[ValidationRule]] = None):
        """
        Initialize the validator.

        Args:
            rules: Rules to apply, in order
        """
        self.rules: List[ValidationRule] = list(rules or [])
        self._type_checks: Dict[str, Callable[[Any], bool]] = {
            "string": lambda v: isinstance(v, str),
            "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
            "boolean": lambda v: isinstance(v, bool),
            "date": self._is_date,
            "email": lambda v: isinstance(v, str) and bool(EMAIL_PATTERN.match(v)),
            "url": self._is_url,
            "array": lambda v: isinstance(v, (list, tuple)),
        }

    def add_rule(self, rule: ValidationRule) -> None:
        """Append a rule."""
        self.rules.append(rule)

    def validate(self, record: Dict[str, Any], row: Optional[int] = None) -> List[ValidationError]:
        """
        Validate a record against every rule.

        Args:
            record: Target data to validate
            row: Source row number, attached to each error

        Returns:
            List of validation errors (empty if the record is valid)
        """
        errors = []
        for rule in self.rules:
            error = self._validate_field(rule, record.get(rule.field), record)
            if error:
                error.row = row
                errors.append(error)
        return errors

    def is_valid(self, record: Dict[str, Any]) -> bool:
        return not self.validate(record)

    def _validate_field(
        self,
        rule: ValidationRule,
        value: Any,
        record: Dict[str, Any]
    ) -> Optional[ValidationError]:
        """Validate a single field, returning the first failure."""
        name = rule.field

        if is_empty(value):
            if rule.required:
                return ValidationError(name, f"{name} is required", "required", value=value)
            return None

        if rule.type:
            check = self._type_checks.get(rule.type)
            if check is None:
                raise ValueError(f"Unknown validation type: {rule.type}")
            if not check(value):
                return ValidationError(name, f"{name} must be of type {rule.type}", "type", value=value)

        if isinstance(value, str):
            if rule.min_length is not None and len(value) < rule.min_length:
                return ValidationError(
                    name, f"{name} must be at least {rule.min_length} characters", "min_length", value=value
                )
            if rule.max_length is not None and len(value) > rule.max_length:
                return ValidationError(
                    name, f"{name} must be at most {rule.max_length} characters", "max_length", value=value
                )

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if rule.min is not None and value < rule.min:
                return ValidationError(name, f"{name} must be at least {rule.min}", "min", value=value)
            if rule.max is not None and value > rule.max:
                return ValidationError(name, f"{name} must be at most {rule.max}", "max", value=value)

        if rule.pattern and isinstance(value, str) and not re.search(rule.pattern, value):
            return ValidationError(name, f"{name} has invalid format", "pattern", value=value)

        if rule.custom:
            message = rule.custom(value, record)
            if message:
                return ValidationError(name, message, "custom", value=value)

        return None

    @staticmethod
    def _is_date(value: Any) -> bool:
        if isinstance(value, (datetime, date)):
            return True
        if not isinstance(value, str):
            return False
        try:
            date_parser.parse(value)
            return True
        except (ValueError, OverflowError):
            return False

    @staticmethod
    def _is_url(value: Any) -> bool:
        if not isinstance(value, str):
            return False
        parsed = urlparse(value)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
