"""Receipt extraction: service and POST /api/v1/receipts/process."""

import asyncio
import json
import os
import unittest
import uuid
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from easyshift.core.auth import CurrentUser, get_current_user
from easyshift.core.dependencies import get_db
from easyshift.main import app
from easyshift.models.restaurant import AuditLog, Base, ReceiptImport, ReceiptLineItem, Supplier
from easyshift.services.ai.common.errors import RecordsRejected
from easyshift.services.ai.common.providers import MockProvider, ScriptedResponse
from easyshift.services.ai.receipt_extract.service import find_or_create_supplier, process_receipt
from tests.conftest import DATA_URI_JPEG, _make_sqlite_engine, _seed_restaurant

DEEPSEEK = "deepseek/deepseek-chat-v3.1:free"
MISTRAL = "mistralai/mistral-small-3.2-24b-instruct:free"

MILK = {
    "rawText": "MILK 1 GAL $4.99",
    "parsedName": "Whole Milk",
    "parsedQuantity": 1,
    "parsedUnit": "gal",
    "parsedPrice": 4.99,
    "confidenceScore": 0.93,
    "category": "Dairy",
}
CHICKEN = {
    "rawText": "CHKN BRST BNLS 5LB $32.45",
    "parsedName": "Chicken Breast, Boneless",
    "parsedQuantity": 5,
    "parsedUnit": "lb",
    "parsedPrice": 32.45,
    "confidenceScore": 0.81,
    "category": "Meat",
}


def _receipt_json(items, vendor="Sysco", total=37.44):
    return "```json\n" + json.dumps({"vendor": vendor, "totalAmount": total, "lineItems": items}) + "\n```"


class ReceiptEndpointTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.SessionLocal = _make_sqlite_engine()
        db = self.SessionLocal()
        try:
            restaurant, user_id = _seed_restaurant(db, role="chef")
            receipt = ReceiptImport(restaurant_id=restaurant.id, file_name="r.jpg", file_size=2048)
            db.add(receipt)
            db.commit()
            self.restaurant_id = restaurant.id
            self.receipt_id = receipt.id
        finally:
            db.close()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.current_user = CurrentUser(id=str(user_id), email="chef@example.com")

        def override_get_current_user():
            return self.current_user

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_get_current_user
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _post(self, provider, **body):
        payload = {"documentId": str(self.receipt_id), "documentRef": DATA_URI_JPEG}
        payload.update(body)
        with patch("easyshift.services.ai.receipt_extract.service.get_provider", return_value=provider):
            return self.client.post("/api/v1/receipts/process", json=payload)

    def _db_state(self):
        db = self.SessionLocal()
        try:
            receipt = db.get(ReceiptImport, self.receipt_id)
            items = db.execute(
                select(ReceiptLineItem)
                .where(ReceiptLineItem.receipt_id == self.receipt_id)
                .order_by(ReceiptLineItem.line_sequence)
            ).scalars().all()
            audits = db.execute(select(AuditLog).where(AuditLog.entity_id == self.receipt_id)).scalars().all()
            db.expunge_all()
            return receipt, items, audits
        finally:
            db.close()

    def test_summary_write_failure_marks_receipt_failed(self):
        overflow = OperationalError("UPDATE receipt_imports", {}, Exception("numeric field overflow"))
        provider = MockProvider([ScriptedResponse(content=_receipt_json([MILK, CHICKEN]))])
        with patch(
            "easyshift.services.ai.common.persistence.PersistenceWriter.update_parent",
            side_effect=overflow,
        ):
            resp = self._post(provider)

        self.assertEqual(resp.status_code, 500, resp.text)
        body = resp.json()
        self.assertEqual(body["insertedCount"], 0)
        self.assertEqual(body["totalRecords"], 2)
        self.assertIn("extraction summary", body["error"])

        receipt, items, audits = self._db_state()
        self.assertEqual(receipt.status, "error")
        self.assertIn("none of 2 records", receipt.error_message)
        self.assertEqual(items, [])
        self.assertEqual(audits[0].audit_meta["outcome"], "persistence_error")

    def test_success_inserts_line_items_and_links_supplier(self):
        provider = MockProvider([ScriptedResponse(content=_receipt_json([MILK, CHICKEN]))])
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 200, resp.text)
        data = resp.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["status"], "processed")
        self.assertEqual(data["vendor"], "Sysco")
        self.assertEqual(data["lineItemsCount"], 2)
        self.assertEqual(data["skippedCount"], 0)
        self.assertEqual(data["modelUsed"], DEEPSEEK)
        self.assertEqual(data["attemptedModels"], [DEEPSEEK])
        self.assertIsNotNone(data["supplierId"])

        receipt, items, audits = self._db_state()
        self.assertEqual(receipt.status, "processed")
        self.assertEqual(receipt.vendor_name, "Sysco")
        self.assertEqual(str(receipt.supplier_id), data["supplierId"])
        self.assertIsNotNone(receipt.processed_at)
        self.assertEqual([i.parsed_name for i in items], ["Whole Milk", "Chicken Breast, Boneless"])
        self.assertEqual([i.line_sequence for i in items], [1, 2])
        self.assertEqual(len(audits), 1)
        self.assertEqual(audits[0].action, "AI_RECEIPT_EXTRACTED")
        self.assertEqual(audits[0].audit_meta["model"], DEEPSEEK)
        self.assertNotIn("response_raw", audits[0].audit_meta)

        sent = provider.requests[0]
        self.assertEqual(sent["model"], DEEPSEEK)
        self.assertEqual(sent["messages"][1]["content"][1]["image_url"]["url"], DATA_URI_JPEG)

    def test_rate_limited_primary_falls_back_to_second_model(self):
        provider = MockProvider(
            [ScriptedResponse(status_code=429)] * 3 + [ScriptedResponse(content=_receipt_json([MILK]))]
        )
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 200, resp.text)
        data = resp.json()
        self.assertEqual(data["attemptedModels"], [DEEPSEEK, MISTRAL])
        self.assertEqual(data["modelUsed"], MISTRAL)
        self.assertEqual(provider.requested_models, [DEEPSEEK] * 3 + [MISTRAL])

    def test_partial_success_skips_invalid_items(self):
        bad = dict(CHICKEN, parsedPrice="32,45")
        provider = MockProvider([ScriptedResponse(content=_receipt_json([bad, MILK]))])
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 200, resp.text)
        data = resp.json()
        self.assertEqual(data["status"], "partial_success")
        self.assertEqual(data["lineItemsCount"], 1)
        self.assertEqual(data["skippedCount"], 1)
        self.assertEqual(len(data["warnings"]), 1)
        self.assertIn("invalid price", data["warnings"][0])

        receipt, items, _ = self._db_state()
        self.assertEqual(receipt.status, "partial_success")
        self.assertIn("1 line item(s) have validation errors", receipt.error_message)
        self.assertEqual([i.line_sequence for i in items], [2])

    def test_all_items_invalid_returns_422(self):
        items = [dict(MILK, parsedPrice=None), dict(CHICKEN, parsedQuantity="five")]
        provider = MockProvider([ScriptedResponse(content=_receipt_json(items))])
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(len(resp.json()["details"]["warnings"]), 2)
        receipt, rows, _ = self._db_state()
        self.assertEqual(receipt.status, "error")
        self.assertEqual(rows, [])

    def test_all_models_failing_returns_503_without_rows(self):
        provider = MockProvider()
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 503)
        body = resp.json()
        self.assertEqual(body["details"]["attemptedModels"], [DEEPSEEK, MISTRAL])
        self.assertIn("All AI models failed", body["error"])

        receipt, items, audits = self._db_state()
        self.assertEqual(receipt.status, "error")
        self.assertEqual(items, [])
        self.assertEqual(audits[0].audit_meta["outcome"], "all_exhausted")

    def test_unparseable_output_returns_422(self):
        provider = MockProvider([ScriptedResponse(content="Sorry, I cannot read this receipt.")])
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["details"]["reason"], "no_structure")
        receipt, _, audits = self._db_state()
        self.assertEqual(receipt.status, "error")
        self.assertEqual(audits[0].audit_meta["outcome"], "parse_error")
        self.assertIn("response_hash", audits[0].audit_meta)

    def test_empty_line_items_returns_422(self):
        provider = MockProvider([ScriptedResponse(content='{"vendor": "Sysco", "lineItems": []}')])
        resp = self._post(provider)
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["details"]["reason"], "empty_result")

    def test_oversized_receipt_rejected_before_model_call(self):
        db = self.SessionLocal()
        try:
            db.get(ReceiptImport, self.receipt_id).file_size = 6 * 1024 * 1024
            db.commit()
        finally:
            db.close()
        provider = MockProvider([ScriptedResponse(content=_receipt_json([MILK]))])
        resp = self._post(provider)

        self.assertEqual(resp.status_code, 413)
        self.assertEqual(provider.requests, [])

    def test_unknown_receipt_returns_404(self):
        resp = self._post(MockProvider(), documentId=str(uuid.uuid4()))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "Receipt not found")

    def test_invalid_document_id_returns_400(self):
        resp = self._post(MockProvider(), documentId="not-a-uuid")
        self.assertEqual(resp.status_code, 400)

    def test_missing_document_id_returns_400(self):
        resp = self.client.post("/api/v1/receipts/process", json={"documentRef": DATA_URI_JPEG})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Invalid request body")

    def test_non_member_forbidden(self):
        self.current_user = CurrentUser(id=str(uuid.uuid4()))
        provider = MockProvider([ScriptedResponse(content=_receipt_json([MILK]))])
        resp = self._post(provider)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(provider.requests, [])

    @patch.dict(os.environ, {"ENABLE_AI_EXTRACTION": "false"}, clear=False)
    def test_disabled_returns_404(self):
        resp = self._post(MockProvider())
        self.assertEqual(resp.status_code, 404)


class ReceiptServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.SessionLocal = _make_sqlite_engine()
        self.db = self.SessionLocal()
        self.restaurant, self.user_id = _seed_restaurant(self.db)

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_supplier_reused_by_exact_name(self):
        first = find_or_create_supplier(self.db, self.restaurant.id, "US Foods")
        self.db.commit()
        second = find_or_create_supplier(self.db, self.restaurant.id, "US Foods")
        self.assertEqual(first.id, second.id)
        self.assertIsNone(find_or_create_supplier(self.db, self.restaurant.id, None))
        self.assertEqual(len(self.db.execute(select(Supplier)).scalars().all()), 1)

    def test_records_rejected_raised_when_nothing_valid(self):
        receipt = ReceiptImport(restaurant_id=self.restaurant.id)
        self.db.add(receipt)
        self.db.commit()
        provider = MockProvider([ScriptedResponse(content=_receipt_json([{"parsedName": "?"}]))])

        with self.assertRaises(RecordsRejected):
            asyncio.run(
                process_receipt(
                    self.db,
                    receipt,
                    media_kind="image",
                    document_ref=DATA_URI_JPEG,
                    provider=provider,
                    actor_id=str(self.user_id),
                )
            )
        self.db.refresh(receipt)
        self.assertEqual(receipt.status, "error")

    def test_pdf_receipt_sent_with_parser_plugin(self):
        receipt = ReceiptImport(restaurant_id=self.restaurant.id)
        self.db.add(receipt)
        self.db.commit()
        provider = MockProvider([ScriptedResponse(content=_receipt_json([MILK]))])

        result = asyncio.run(
            process_receipt(
                self.db,
                receipt,
                media_kind="pdf",
                document_ref="data:application/pdf;base64,JVBERi0xLjcK",
                provider=provider,
            )
        )
        self.assertTrue(result.success)
        self.assertEqual(provider.requests[0]["plugins"][0]["id"], "file-parser")
        self.assertEqual(provider.requests[0]["messages"][1]["content"][1]["type"], "file")
