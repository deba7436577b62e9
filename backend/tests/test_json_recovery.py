"""Tests for easyshift.services.ai.common.json_tools."""

import json
import unittest

from easyshift.services.ai.common.errors import ExtractionParseError
from easyshift.services.ai.common.json_tools import (
    extract_outer_object,
    quote_bare_keys,
    recover,
    remove_trailing_commas,
    strip_code_fences,
    trim_truncated_array,
)
from easyshift.services.ai.common.validation import LINE_ITEM_SCHEMA, validate_records


class RepairPassTests(unittest.TestCase):
    def test_strip_code_fences_with_language_tag(self):
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')

    def test_strip_code_fences_without_language_tag(self):
        self.assertEqual(strip_code_fences('```\n{"a": 1}\n```'), '{"a": 1}')

    def test_strip_code_fences_leaves_plain_text(self):
        self.assertEqual(strip_code_fences('  {"a": 1}  '), '{"a": 1}')

    def test_extract_outer_object_drops_prose(self):
        text = 'Here is the data you asked for: {"a": {"b": 1}} Hope this helps!'
        self.assertEqual(extract_outer_object(text), '{"a": {"b": 1}}')

    def test_extract_outer_object_without_brace_raises(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            extract_outer_object("I could not read this receipt.")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.NO_STRUCTURE)

    def test_extract_outer_object_keeps_unclosed_object(self):
        self.assertEqual(extract_outer_object('ok {"lineItems": [{"a'), '{"lineItems": [{"a')

    def test_remove_trailing_commas(self):
        self.assertEqual(remove_trailing_commas('{"a": [1, 2,], "b": 3,}'), '{"a": [1, 2], "b": 3}')

    def test_remove_trailing_commas_ignores_strings(self):
        text = '{"note": "a,]", "b": 1}'
        self.assertEqual(remove_trailing_commas(text), text)

    def test_quote_bare_keys(self):
        repaired = quote_bare_keys('{vendor: "Sysco", lineItems: [{parsedName: "Eggs", parsedPrice: 3}]}')
        self.assertEqual(
            json.loads(repaired),
            {"vendor": "Sysco", "lineItems": [{"parsedName": "Eggs", "parsedPrice": 3}]},
        )

    def test_quote_bare_keys_leaves_quoted_keys_and_strings(self):
        text = '{"description": "PAYMENT, ref: 12", "amount": -5}'
        self.assertEqual(quote_bare_keys(text), text)

    def test_trim_leaves_terminated_array(self):
        text = '{"lineItems": [{"a": 1}, {"b": 2}]}'
        self.assertEqual(trim_truncated_array(text, "lineItems"), text)

    def test_trim_cuts_back_to_last_complete_element(self):
        text = '{"lineItems": [{"a": 1}, {"b": 2}, {"c": 3'
        self.assertEqual(
            json.loads(trim_truncated_array(text, "lineItems")),
            {"lineItems": [{"a": 1}, {"b": 2}]},
        )

    def test_trim_ignores_braces_inside_strings(self):
        text = '{"lineItems": [{"name": "Bag {large}"}, {"name": "Box ] {x'
        self.assertEqual(
            json.loads(trim_truncated_array(text, "lineItems")),
            {"lineItems": [{"name": "Bag {large}"}]},
        )

    def test_trim_recloses_enclosing_objects(self):
        text = '{"data": {"transactions": [{"amount": 1}, {"amount": 2}, {"amo'
        self.assertEqual(
            json.loads(trim_truncated_array(text, "transactions")),
            {"data": {"transactions": [{"amount": 1}, {"amount": 2}]}},
        )

    def test_trim_without_list_field_is_noop(self):
        text = '{"other": [1, 2'
        self.assertEqual(trim_truncated_array(text, "lineItems"), text)


class RecoverTests(unittest.TestCase):
    def test_fenced_response_with_trailing_commas(self):
        raw = (
            "```json\n"
            '{"vendor": "Corner Market", "totalAmount": 4.99, "lineItems": ['
            '{"parsedName": "Milk", "parsedPrice": 4.99, "parsedQuantity": 1,},'
            "]}\n"
            "```"
        )
        parsed = recover(raw, "lineItems")
        self.assertEqual(parsed["vendor"], "Corner Market")
        self.assertEqual(len(parsed["lineItems"]), 1)
        self.assertEqual(parsed["lineItems"][0]["parsedName"], "Milk")
        self.assertEqual(parsed["lineItems"][0]["parsedPrice"], 4.99)

    def test_truncated_mid_array_keeps_complete_records_only(self):
        raw = (
            '{"bankName": "First Bank", "transactions": ['
            '{"date": "2024-01-02", "description": "DEPOSIT", "amount": 100.0},'
            '{"date": "2024-01-03", "description": "CHECK #12", "amount": -25.5},'
            '{"date": "2024-01-04", "descrip'
        )
        parsed = recover(raw, "transactions")
        self.assertEqual(parsed["bankName"], "First Bank")
        self.assertEqual([t["description"] for t in parsed["transactions"]], ["DEPOSIT", "CHECK #12"])

    def test_truncated_inside_string_with_brace(self):
        raw = '{"lineItems": [{"parsedName": "A", "parsedPrice": 1}, {"parsedName": "Bag {x}'
        parsed = recover(raw, "lineItems")
        self.assertEqual(parsed["lineItems"], [{"parsedName": "A", "parsedPrice": 1}])

    def test_prose_around_object(self):
        raw = 'Sure! {"categorizations": [{"transaction_id": "t1", "account_code": "5000"}]} Let me know.'
        parsed = recover(raw, "categorizations")
        self.assertEqual(parsed["categorizations"][0]["account_code"], "5000")

    def test_empty_text_is_no_structure(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            recover("   ", "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.NO_STRUCTURE)

    def test_missing_list_field_is_wrong_shape(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            recover('{"vendor": "X"}', "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.WRONG_SHAPE)
        self.assertEqual(ctx.exception.status_code, 422)

    def test_list_field_not_a_list_is_wrong_shape(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            recover('{"lineItems": {"a": 1}}', "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.WRONG_SHAPE)

    def test_empty_list_is_empty_result(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            recover('{"lineItems": []}', "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.EMPTY_RESULT)

    def test_truncated_before_first_record_is_empty_result(self):
        with self.assertRaises(ExtractionParseError) as ctx:
            recover('{"vendor": "X", "lineItems": [{"parsedName": "Mi', "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.EMPTY_RESULT)

    def test_unrepairable_text_is_no_structure_with_preview(self):
        raw = "{this is : not [ json at all}" + "x" * 600
        with self.assertRaises(ExtractionParseError) as ctx:
            recover(raw, "lineItems")
        self.assertEqual(ctx.exception.reason, ExtractionParseError.NO_STRUCTURE)
        self.assertLessEqual(len(ctx.exception.preview), 500)
        body = ctx.exception.to_body()
        self.assertEqual(body["error"], "Failed to parse extracted data")
        self.assertEqual(body["details"]["reason"], "no_structure")

    def test_non_finite_literals_become_null(self):
        raw = (
            '{"totalAmount": Infinity, "lineItems": ['
            '{"parsedName": "Milk", "parsedQuantity": 1, "parsedPrice": NaN},'
            '{"parsedName": "Eggs", "parsedQuantity": 1, "parsedPrice": -Infinity}]}'
        )
        parsed = recover(raw, "lineItems")

        self.assertIsNone(parsed["totalAmount"])
        self.assertIsNone(parsed["lineItems"][0]["parsedPrice"])
        self.assertIsNone(parsed["lineItems"][1]["parsedPrice"])
        # The archived reply must serialize as strict JSON.
        json.dumps(parsed, allow_nan=False)

        report = validate_records(parsed["lineItems"], LINE_ITEM_SCHEMA)
        self.assertEqual(report.invalid_count, 2)
        self.assertEqual(report.records[0].validation_errors, {"price": "Missing or null price"})
