"""
Unit tests for the data validator

Tests rule evaluation including:
- Required fields and empty values
- Type, length, range and pattern checks
- Per-field short-circuit with accumulation across fields
- Custom predicates
"""

import unittest

from cms_migrate.models.record import ValidationRule
from cms_migrate.services.validator import DataValidator, is_empty


class TestDataValidator(unittest.TestCase):
    """Test DataValidator rule chains"""

    def test_required_and_pattern_on_same_field_yield_one_error(self):
        """A missing field reports only the required failure"""
        validator = DataValidator([ValidationRule(field="slug", required=True, pattern=r"^[a-z-]+$")])

        errors = validator.validate({"slug": ""}, row=7)

        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].field, "slug")
        self.assertEqual(errors[0].message, "slug is required")
        self.assertEqual(errors[0].error_type, "required")
        self.assertEqual(errors[0].row, 7)

    def test_errors_accumulate_across_fields(self):
        """Every failing field is reported"""
        validator = DataValidator([
            ValidationRule(field="title", required=True),
            ValidationRule(field="duration", type="number"),
            ValidationRule(field="slug", pattern=r"^[a-z-]+$"),
        ])

        errors = validator.validate({"duration": "long", "slug": "Not A Slug"})

        self.assertEqual(
            [e.message for e in errors],
            ["title is required", "duration must be of type number", "slug has invalid format"],
        )

    def test_optional_empty_value_is_skipped(self):
        validator = DataValidator([ValidationRule(field="credit", type="string", min_length=3)])

        self.assertTrue(validator.is_valid({"credit": None}))
        self.assertTrue(validator.is_valid({}))

    def test_length_checks(self):
        validator = DataValidator([ValidationRule(field="title", min_length=3, max_length=5)])

        self.assertEqual(validator.validate({"title": "ab"})[0].message, "title must be at least 3 characters")
        self.assertEqual(validator.validate({"title": "abcdef"})[0].message, "title must be at most 5 characters")
        self.assertEqual(validator.validate({"title": "abcd"}), [])

    def test_range_checks(self):
        validator = DataValidator([ValidationRule(field="duration", type="number", min=0, max=60)])

        self.assertEqual(validator.validate({"duration": -1})[0].message, "duration must be at least 0")
        self.assertEqual(validator.validate({"duration": 61})[0].message, "duration must be at most 60")
        self.assertTrue(validator.is_valid({"duration": 30.5}))

    def test_type_checks(self):
        """Test each supported type"""
        cases = [
            ("boolean", True, "yes"),
            ("date", "2024-01-15T10:00:00", "not a date"),
            ("email", "someone@example.com", "someone@"),
            ("url", "https://example.com/a.jpg", "example.com/a.jpg"),
            ("array", ["a"], "a"),
        ]
        for type_name, good, bad in cases:
            with self.subTest(type=type_name):
                validator = DataValidator([ValidationRule(field="value", type=type_name)])
                self.assertTrue(validator.is_valid({"value": good}))
                self.assertEqual(
                    validator.validate({"value": bad})[0].message,
                    f"value must be of type {type_name}",
                )

    def test_booleans_are_not_numbers(self):
        validator = DataValidator([ValidationRule(field="count", type="number")])

        self.assertFalse(validator.is_valid({"count": True}))

    def test_type_failure_short_circuits_custom(self):
        """The custom predicate doesn't run after an earlier failure"""
        calls = []

        def custom(value, record):
            calls.append(value)
            return "custom failure"

        validator = DataValidator([ValidationRule(field="frames", type="array", custom=custom)])
        errors = validator.validate({"frames": "not a list"})

        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].error_type, "type")
        self.assertEqual(calls, [])

    def test_custom_predicate_sees_record(self):
        def shorter_than_total(value, record):
            if value > record["total"]:
                return "part exceeds total"
            return None

        validator = DataValidator([ValidationRule(field="part", custom=shorter_than_total)])

        self.assertEqual(validator.validate({"part": 5, "total": 3})[0].message, "part exceeds total")
        self.assertEqual(validator.validate({"part": 2, "total": 3}), [])

    def test_unknown_type_raises(self):
        validator = DataValidator([ValidationRule(field="value", type="uuid")])

        with self.assertRaises(ValueError):
            validator.validate({"value": "x"})

    def test_is_empty(self):
        self.assertTrue(is_empty(None))
        self.assertTrue(is_empty(""))
        self.assertTrue(is_empty([]))
        self.assertFalse(is_empty(0))
        self.assertFalse(is_empty(False))
