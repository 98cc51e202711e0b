"""Integration tests for invoice compliance, archive and signing endpoints."""

from datetime import datetime


INVOICE = {"invoice_number": "RE-2024-0042", "customer": "ACME", "total": 1190.0}


class TestComplianceRouter:
    async def _invoice(self, client, admin_headers, invoice_id="42"):
        resp = await client.post("/compliance/invoices", json={
            "invoice_id": invoice_id, "payload": INVOICE,
        }, headers=admin_headers)
        assert resp.status_code == 201
        return resp.json()

    async def test_health_carries_compliance_headers(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-GoBD-Compliant"] == "true"
        assert resp.headers["X-Retention-Policy"] == "active"

    async def test_invoice_is_archived_for_ten_years_and_signed(self, client, admin_headers):
        data = await self._invoice(client, admin_headers)
        record = data["record"]

        assert data["digitally_signed"] is True
        assert record["document_type"] == "invoice"
        archived = datetime.fromisoformat(record["archive_date"])
        retained = datetime.fromisoformat(record["retention_date"])
        assert retained.year == archived.year + 10

        resp = await client.get(
            f"/archive/records/{record['id']}/verify", headers=admin_headers,
        )
        assert resp.json() == {
            "record_id": record["id"],
            "integrity_valid": True,
            "signature_valid": True,
        }

    async def test_invoice_round_trip(self, client, admin_headers):
        await self._invoice(client, admin_headers)
        resp = await client.get("/archive/invoice/42", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["original_data"] == (
            '{"customer":"ACME","invoice_number":"RE-2024-0042","total":1190.0}'
        )

    async def test_invoice_steps_are_on_the_chain(self, client, admin_headers):
        await self._invoice(client, admin_headers)

        resp = await client.get("/audit/events?object_type=system", headers=admin_headers)
        assert resp.json()["events"][0]["action"] == "invoice_compliance"

        resp = await client.get("/audit/verify", headers=admin_headers)
        assert resp.json()["valid"] is True
        assert resp.json()["events_checked"] == 2

    async def test_unknown_archive_document(self, client, admin_headers):
        resp = await client.get("/archive/invoice/missing", headers=admin_headers)
        assert resp.status_code == 404

    async def test_invalid_operation(self, client, admin_headers):
        resp = await client.post("/compliance/invoices", json={
            "invoice_id": "42", "payload": INVOICE, "operation": "delete",
        }, headers=admin_headers)
        assert resp.status_code == 422

    async def test_cleanup_with_nothing_expired(self, client, admin_headers):
        await self._invoice(client, admin_headers)
        resp = await client.post("/compliance/cleanup", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["purged_records"] == 0
        assert resp.json()["expired_records"] == 0

    async def test_daily_checks_and_status(self, client, admin_headers):
        await self._invoice(client, admin_headers)

        resp = await client.post("/compliance/daily-checks", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["compliance_status"] == "compliant"
        assert resp.json()["chain_valid"] is True

        resp = await client.get("/compliance/status", headers=admin_headers)
        status = resp.json()
        assert status["audit_trail"]["chain_intact"] is True
        assert status["counters"]["archived_documents"] == 1


class TestSigningRouter:
    async def test_public_key_is_open(self, client):
        resp = await client.get("/signing/public-key")
        assert resp.status_code == 200
        assert resp.json()["public_key"].startswith("-----BEGIN PUBLIC KEY-----")
        assert resp.json()["signing_method"] == "RSA-SHA256"

    async def test_sign_and_verify(self, client, admin_headers):
        resp = await client.post("/signing/sign", json={
            "document_type": "contract",
            "document_id": "C-9",
            "payload": {"term": 12},
            "signed_by": "alice",
        }, headers=admin_headers)
        assert resp.status_code == 201
        signature_id = resp.json()["id"]

        ok = await client.post(
            f"/signing/{signature_id}/verify", json={"payload": {"term": 12}},
            headers=admin_headers,
        )
        tampered = await client.post(
            f"/signing/{signature_id}/verify", json={"payload": {"term": 24}},
            headers=admin_headers,
        )
        assert ok.json()["valid"] is True
        assert tampered.json()["valid"] is False

    async def test_signing_is_audited(self, client, admin_headers):
        resp = await client.post("/signing/sign", json={
            "document_type": "contract",
            "document_id": "C-9",
            "payload": {"term": 12},
            "signed_by": "alice",
        }, headers={**admin_headers, "X-User-ID": "7", "X-Username": "alice"})
        signature_id = resp.json()["id"]

        trail = await client.get("/audit/trail/contract/C-9", headers=admin_headers)
        events = trail.json()
        assert [e["event_type"] for e in events] == ["SIGN"]
        assert events[0]["username"] == "alice"
        assert signature_id in events[0]["new_values"]

    async def test_verify_unknown_signature(self, client, admin_headers):
        resp = await client.post(
            "/signing/missing/verify", json={"payload": {}}, headers=admin_headers,
        )
        assert resp.status_code == 404
