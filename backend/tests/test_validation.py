"""Tests for per-record validation."""

import unittest
from datetime import date

from easyshift.services.ai.common.validation import (
    LINE_ITEM_SCHEMA,
    TRANSACTION_SCHEMA,
    clamp_confidence,
    is_number,
    parse_iso_date,
    validate_record,
    validate_records,
)


class HelperTests(unittest.TestCase):
    def test_is_number(self):
        self.assertTrue(is_number(3))
        self.assertTrue(is_number(-2.5))
        self.assertFalse(is_number("4.99"))
        self.assertFalse(is_number(True))
        self.assertFalse(is_number(float("nan")))
        self.assertFalse(is_number(float("inf")))
        self.assertFalse(is_number(None))

    def test_clamp_confidence(self):
        self.assertEqual(clamp_confidence(1.4), 1.0)
        self.assertEqual(clamp_confidence(-0.2), 0.0)
        self.assertEqual(clamp_confidence(0.85), 0.85)
        self.assertEqual(clamp_confidence("high"), 0.0)
        self.assertEqual(clamp_confidence(None), 0.0)

    def test_parse_iso_date(self):
        self.assertEqual(parse_iso_date("2024-02-29"), date(2024, 2, 29))
        self.assertIsNone(parse_iso_date("2023-02-29"))
        self.assertIsNone(parse_iso_date("02/03/2024"))
        self.assertIsNone(parse_iso_date(None))


class LineItemValidationTests(unittest.TestCase):
    def test_valid_line_item(self):
        record, warnings = validate_record(
            {
                "rawText": "MILK 1 GAL $4.99",
                "parsedName": "Whole Milk",
                "parsedQuantity": 1,
                "parsedUnit": "gal",
                "parsedPrice": 4.99,
                "confidenceScore": 0.92,
                "category": "Dairy",
            },
            1,
            LINE_ITEM_SCHEMA,
        )
        self.assertEqual(warnings, [])
        self.assertFalse(record.has_validation_error)
        self.assertIsNone(record.validation_errors)
        self.assertEqual(record.raw_text, "MILK 1 GAL $4.99")
        self.assertEqual(
            record.normalized_fields,
            {"name": "Whole Milk", "price": 4.99, "quantity": 1.0, "unit": "gal", "category": "Dairy"},
        )
        self.assertEqual(record.confidence_score, 0.92)

    def test_string_price_is_flagged_not_coerced(self):
        record, warnings = validate_record(
            {"parsedName": "Eggs", "parsedQuantity": 2, "parsedPrice": "3.50"},
            4,
            LINE_ITEM_SCHEMA,
        )
        self.assertTrue(record.has_validation_error)
        self.assertIn("price", record.validation_errors)
        self.assertIsNone(record.normalized_fields["price"])
        self.assertEqual(warnings, ['Line item #4 "Eggs" - invalid price: 3.50'])

    def test_missing_quantity_and_name(self):
        record, warnings = validate_record({"parsedPrice": 2.0}, 2, LINE_ITEM_SCHEMA)
        self.assertEqual(set(record.validation_errors), {"name", "quantity"})
        self.assertEqual(len(warnings), 2)
        self.assertIn("Unknown", warnings[1])

    def test_confidence_is_clamped(self):
        high, _ = validate_record(
            {"parsedName": "A", "parsedQuantity": 1, "parsedPrice": 1, "confidenceScore": 1.4}, 1, LINE_ITEM_SCHEMA
        )
        low, _ = validate_record(
            {"parsedName": "B", "parsedQuantity": 1, "parsedPrice": 1, "confidenceScore": -0.2}, 2, LINE_ITEM_SCHEMA
        )
        self.assertEqual(high.confidence_score, 1.0)
        self.assertEqual(low.confidence_score, 0.0)

    def test_non_object_record(self):
        record, warnings = validate_record("just text", 3, LINE_ITEM_SCHEMA)
        self.assertTrue(record.has_validation_error)
        self.assertEqual(record.raw_text, '"just text"')
        self.assertEqual(len(warnings), 1)


class TransactionValidationTests(unittest.TestCase):
    def test_valid_transaction(self):
        record, warnings = validate_record(
            {
                "date": "2024-03-01",
                "description": "SYSCO FOODS",
                "amount": -250.0,
                "transactionType": "debit",
                "balance": 1000.5,
                "confidenceScore": 0.9,
            },
            1,
            TRANSACTION_SCHEMA,
        )
        self.assertEqual(warnings, [])
        fields = record.normalized_fields
        self.assertEqual(fields["date"], date(2024, 3, 1))
        self.assertEqual(fields["amount"], -250.0)
        self.assertEqual(fields["balance"], 1000.5)
        self.assertEqual(fields["transaction_type"], "debit")

    def test_nan_amount_flagged(self):
        record, warnings = validate_record(
            {"date": "2024-03-01", "description": "FEE", "amount": float("nan")},
            7,
            TRANSACTION_SCHEMA,
        )
        self.assertIn("amount", record.validation_errors)
        self.assertIsNone(record.normalized_fields["amount"])
        self.assertTrue(warnings[0].startswith('Transaction #7 "FEE" - invalid amount'))

    def test_null_amount_flagged_with_unknown_type(self):
        record, warnings = validate_record(
            {"date": "2024-03-01", "description": "OD Interest Charge", "amount": None},
            2,
            TRANSACTION_SCHEMA,
        )
        self.assertEqual(record.validation_errors, {"amount": "Missing or null amount"})
        self.assertEqual(record.normalized_fields["transaction_type"], "unknown")
        self.assertEqual(warnings, ['Transaction #2 "OD Interest Charge" - no amount found'])

    def test_bad_date_flagged(self):
        record, warnings = validate_record(
            {"date": "03/01/2024", "description": "DEPOSIT", "amount": 10},
            1,
            TRANSACTION_SCHEMA,
        )
        self.assertIn("date", record.validation_errors)
        self.assertIsNone(record.normalized_fields["date"])
        self.assertIn("invalid date format", warnings[0])

    def test_type_inferred_from_sign(self):
        credit, _ = validate_record({"date": "2024-01-01", "description": "D", "amount": 5}, 1, TRANSACTION_SCHEMA)
        debit, _ = validate_record({"date": "2024-01-01", "description": "W", "amount": -5}, 2, TRANSACTION_SCHEMA)
        self.assertEqual(credit.normalized_fields["transaction_type"], "credit")
        self.assertEqual(debit.normalized_fields["transaction_type"], "debit")

    def test_invalid_balance_flagged(self):
        record, _ = validate_record(
            {"date": "2024-01-01", "description": "D", "amount": 5, "balance": "n/a"}, 1, TRANSACTION_SCHEMA
        )
        self.assertIn("balance", record.validation_errors)


class ValidateRecordsTests(unittest.TestCase):
    def test_records_never_dropped_and_ordinals_kept(self):
        raw = [
            {"date": "2024-01-01", "description": "A", "amount": 1},
            {"date": "2024-01-02", "description": "B", "amount": "ten"},
            None,
            {"date": "2024-01-04", "description": "D", "amount": -4},
        ]
        report = validate_records(raw, TRANSACTION_SCHEMA)

        self.assertEqual(len(report.records), 4)
        self.assertEqual([r.ordinal for r in report.records], [1, 2, 3, 4])
        self.assertEqual(report.valid_count, 2)
        self.assertEqual(report.invalid_count, 2)
        self.assertEqual([r.ordinal for r in report.valid_records], [1, 4])
        self.assertEqual([r.ordinal for r in report.invalid_records], [2, 3])
        self.assertEqual(len(report.warnings), 2)
