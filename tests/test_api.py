"""End-to-end tests through the HTTP API."""
from __future__ import annotations

from datetime import date

import pytest

from ledgermatch.config.settings import settings
from tests.builders import build_ofx, company_ledger_with_gap, ten_line_statement


def upload(client, kind: str, filename: str, content: bytes):
    return client.post(
        f"/api/v1/upload/{kind}",
        files={"file": (filename, content, "application/octet-stream")},
    )


@pytest.fixture
def matching_uploads(client):
    """A bank statement and a company ledger sharing two transactions."""
    statement = build_ofx([
        (date(2026, 9, 1), "1500.00", "Venda consultoria", "A1"),
        (date(2026, 9, 2), "-2000.00", "Aluguel escritorio", "A2"),
    ])
    bank = upload(client, "bank", "extrato.ofx", statement)
    company = upload(client, "company", "razao.csv", company_ledger_with_gap())
    assert bank.status_code == 201
    assert company.status_code == 201
    return bank.json()["data"], company.json()["data"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "ok"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Correlation-ID" in response.headers
        assert response.headers["Cache-Control"] == "no-store"


class TestUploadEndpoints:
    def test_bank_upload_then_duplicate(self, client):
        content = ten_line_statement()

        first = upload(client, "bank", "extrato.ofx", content)
        assert first.status_code == 201
        body = first.json()
        assert body["success"] is True
        assert body["data"]["items_imported"] == 10
        assert body["data"]["total_entries_processed"] == 10

        second = upload(client, "bank", "extrato.ofx", content)
        assert second.status_code == 409
        error = second.json()
        assert error["success"] is False
        assert error["error_code"] == "DUPLICATE_FILE"
        assert error["details"]["batch_id"] == body["data"]["batch_id"]
        assert error["correlation_id"]

        history = client.get("/api/v1/upload/history").json()["data"]["uploads"]
        assert sorted(item["status"] for item in history) == ["duplicate", "processed"]

    def test_company_upload_with_correction(self, client):
        response = upload(client, "company", "razao.csv", company_ledger_with_gap())

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["items_imported"] == 5
        assert data["items_incomplete"] == 1
        incomplete = data["incomplete_items"][0]
        assert incomplete["row_number"] == 5

        incomplete["description"] = "Taxa de entrega"
        corrected = client.post("/api/v1/upload/corrected", json={
            "entries": [incomplete],
            "source_kind": "company",
            "batch_id": data["batch_id"],
        })

        assert corrected.status_code == 201
        assert corrected.json()["data"]["items_imported"] == 1
        entries = client.get("/api/v1/company-entries").json()["data"]
        assert entries["total"] == 6

    def test_nothing_to_save(self, client):
        response = client.post("/api/v1/upload/corrected", json={
            "entries": [{"description": "x", "corrected": False}],
        })

        assert response.status_code == 400
        assert response.json()["error_code"] == "NOTHING_TO_SAVE"
        assert response.json()["message"] == "No corrections were made"

    def test_company_rejects_ofx(self, client):
        response = upload(client, "company", "extrato.ofx", ten_line_statement())

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_size_ceiling(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)

        response = upload(client, "bank", "extrato.ofx", ten_line_statement())

        assert response.status_code == 413

    def test_missing_file(self, client):
        response = client.post("/api/v1/upload/bank")

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestReconciliationEndpoints:
    def test_review_cycle(self, client, matching_uploads):
        started = client.post("/api/v1/reconciliation/start")
        assert started.status_code == 200
        assert started.json()["data"]["matches_created"] == 2

        pending = client.get("/api/v1/reconciliation/pending").json()
        assert len(pending["records"]) == 2
        first_id, second_id = (record["id"] for record in pending["records"])
        assert pending["records"][0]["bank_transaction"]["description"]

        confirmed = client.post(f"/api/v1/reconciliation/{first_id}/confirm")
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["status"] == "confirmed"

        conflict = client.post(f"/api/v1/reconciliation/{first_id}/reject")
        assert conflict.status_code == 409
        assert conflict.json()["error_code"] == "CONFLICT"
        assert conflict.json()["details"]["current_status"] == "confirmed"

        batch = client.post("/api/v1/reconciliation/batch-reject", json={"ids": [second_id, 999]})
        assert batch.status_code == 200
        assert batch.json()["data"]["succeeded"] == 1
        assert batch.json()["data"]["failed"] == 1

        rerun = client.post("/api/v1/reconciliation/start")
        assert rerun.json()["data"]["matches_created"] == 0

        report = client.get("/api/v1/reconciliation/report").json()["data"]
        assert report["summary"]["confirmed"] == 1
        assert report["summary"]["rejected"] == 1
        assert report["summary"]["total_records"] == 2

    def test_unknown_match(self, client):
        response = client.post("/api/v1/reconciliation/4242/confirm")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_batch_requires_ids(self, client):
        response = client.post("/api/v1/reconciliation/batch-confirm", json={"ids": []})

        assert response.status_code == 422
        error = response.json()
        assert error["error_code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["field"] == "body.ids"

    def test_anomaly_run(self, client, matching_uploads):
        response = client.post("/api/v1/reconciliation/start-with-anomaly-detection")

        assert response.status_code == 200
        assert response.json()["data"]["mode"] == "anomaly_aware"

    def test_anomaly_run_with_inverted_window(self, client):
        response = client.post(
            "/api/v1/reconciliation/start-with-anomaly-detection",
            json={"start_date": "2026-09-30", "end_date": "2026-09-01"},
        )

        assert response.status_code == 400

    def test_anomaly_listing(self, client):
        listing = client.get("/api/v1/reconciliation/anomalies", params={"severity": "high"})
        assert listing.status_code == 200
        assert listing.json()["data"]["total"] == 0

        invalid = client.get("/api/v1/reconciliation/anomalies", params={"severity": "bogus"})
        assert invalid.status_code == 422


class TestLedgerEndpoints:
    def test_transaction_listing_and_edit(self, client, matching_uploads):
        listing = client.get("/api/v1/transactions").json()["data"]
        assert listing["total"] == 2

        debits = client.get("/api/v1/transactions", params={"transaction_type": "debit"}).json()["data"]
        assert debits["total"] == 1
        rent = debits["transactions"][0]
        assert rent["amount"] == -2000.0

        edited = client.put(f"/api/v1/transactions/{rent['id']}", json={"justification": "Contrato 2026"})
        assert edited.status_code == 200
        assert edited.json()["data"]["justification"] == "Contrato 2026"
        assert edited.json()["data"]["amount"] == -2000.0

        recategorized = client.put(f"/api/v1/transactions/{rent['id']}", json={"amount": "1.950,00"})
        assert recategorized.status_code == 200
        assert recategorized.json()["data"]["amount"] == 1950.0
        assert recategorized.json()["data"]["transaction_type"] == "credit"

    def test_invalid_edit(self, client, matching_uploads):
        txn_id = client.get("/api/v1/transactions").json()["data"]["transactions"][0]["id"]

        assert client.put(f"/api/v1/transactions/{txn_id}", json={"amount": "abc"}).status_code == 400
        assert client.put(f"/api/v1/transactions/{txn_id}", json={}).status_code == 400
        assert client.put("/api/v1/transactions/9999", json={"justification": "x"}).status_code == 404

    def test_company_summary(self, client, matching_uploads):
        summary = client.get("/api/v1/company-entries/summary").json()["data"]

        assert summary["entry_count"] == 5
        assert summary["total_income"] == 2480.0
        assert summary["total_expense"] == 2440.3
        assert summary["net"] == pytest.approx(39.7)


class TestTestDataEndpoint:
    def test_three_step_sequence(self, client):
        preview = client.get("/api/v1/test-data", params={"mode": "preview", "days_old": 7})
        assert preview.status_code == 200
        token = preview.json()["data"]["token"]

        skipped = client.get("/api/v1/test-data", params={
            "mode": "execution", "days_old": 7, "token": token, "force": True, "confirm_text": "DELETE",
        })
        assert skipped.status_code == 409

        confirmation = client.get("/api/v1/test-data", params={
            "mode": "confirmation", "days_old": 7, "token": token,
        })
        assert confirmation.status_code == 200
        assert confirmation.json()["data"]["confirmation_phrase"] == "DELETE"

        executed = client.get("/api/v1/test-data", params={
            "mode": "execution", "days_old": 7, "token": token, "force": True, "confirm_text": "DELETE",
        })
        assert executed.status_code == 200
        assert executed.json()["data"]["total_deleted"] == 0

        replay = client.get("/api/v1/test-data", params={
            "mode": "execution", "days_old": 7, "token": token, "force": True, "confirm_text": "DELETE",
        })
        assert replay.status_code == 409

    def test_disabled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ENABLE_TEST_DATA_DELETION", False)

        response = client.get("/api/v1/test-data", params={"mode": "preview", "days_old": 7})

        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    def test_days_old_below_minimum(self, client):
        response = client.get("/api/v1/test-data", params={"mode": "preview", "days_old": 0})

        assert response.status_code == 400

    def test_unknown_mode(self, client):
        response = client.get("/api/v1/test-data", params={"mode": "purge", "days_old": 7})

        assert response.status_code == 422
