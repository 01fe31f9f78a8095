"""Integration tests for mutual verification endpoints."""

from tests.helpers import bearer


def _create_body(counterparty: str, **overrides) -> dict:
    body = {
        "counterparty": counterparty,
        "item": "Denim jacket",
        "amount": 35.0,
        "currency": "gbp",
        "role": "seller",
        "transaction_date": "2026-09-01T10:00:00Z",
    }
    body.update(overrides)
    return body


class TestVerificationRouter:
    async def test_create(self, client, login):
        sam = await login("sam@example.com")
        jo = await login("jo@example.com")
        resp = await client.post("/verifications", json=_create_body("jo"), headers=bearer(sam))
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["user_b_id"] == jo["user_id"]
        assert data["role_b"] == "buyer"
        assert data["currency"] == "GBP"

    async def test_self_verification(self, client, login):
        sam = await login("sam@example.com")
        resp = await client.post(
            "/verifications", json=_create_body("sam@example.com"), headers=bearer(sam),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "self_verification"

    async def test_unknown_counterparty(self, client, login):
        sam = await login("sam@example.com")
        resp = await client.post("/verifications", json=_create_body("ghost"), headers=bearer(sam))
        assert resp.status_code == 404

    async def test_non_positive_amount(self, client, login):
        sam = await login("sam@example.com")
        await login("jo@example.com")
        resp = await client.post(
            "/verifications", json=_create_body("jo", amount=0), headers=bearer(sam),
        )
        assert resp.status_code == 422

    async def test_confirm(self, client, login):
        sam = await login("sam@example.com")
        jo = await login("jo@example.com")
        created = (await client.post(
            "/verifications", json=_create_body("jo"), headers=bearer(sam),
        )).json()

        resp = await client.post(
            f"/verifications/{created['id']}/respond",
            json={"decision": "confirm", "role": "buyer"},
            headers=bearer(jo),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["fraud_detected"] is False
        assert body["verification"]["status"] == "confirmed"

        again = await client.post(
            f"/verifications/{created['id']}/respond",
            json={"decision": "reject"},
            headers=bearer(jo),
        )
        assert again.status_code == 409

    async def test_only_counterparty_responds(self, client, login):
        sam = await login("sam@example.com")
        await login("jo@example.com")
        created = (await client.post(
            "/verifications", json=_create_body("jo"), headers=bearer(sam),
        )).json()
        resp = await client.post(
            f"/verifications/{created['id']}/respond",
            json={"decision": "confirm"},
            headers=bearer(sam),
        )
        assert resp.status_code == 403

    async def test_role_correction(self, client, login):
        sam = await login("sam@example.com")
        jo = await login("jo@example.com")
        created = (await client.post(
            "/verifications", json=_create_body("jo"), headers=bearer(sam),
        )).json()
        resp = await client.post(
            f"/verifications/{created['id']}/respond",
            json={"decision": "confirm", "role": "seller"},
            headers=bearer(jo),
        )
        assert resp.status_code == 200
        assert resp.json()["verification"]["role_b"] == "seller"

        stored = (await client.get(f"/verifications/{created['id']}", headers=bearer(sam))).json()
        assert stored["role_b"] == "seller"

    async def test_unknown_role_is_unprocessable(self, client, login):
        sam = await login("sam@example.com")
        jo = await login("jo@example.com")
        created = (await client.post(
            "/verifications", json=_create_body("jo"), headers=bearer(sam),
        )).json()
        resp = await client.post(
            f"/verifications/{created['id']}/respond",
            json={"decision": "confirm", "role": "broker"},
            headers=bearer(jo),
        )
        assert resp.status_code == 422

    async def test_incoming_and_mine(self, client, login):
        sam = await login("sam@example.com")
        jo = await login("jo@example.com")
        ali = await login("ali@example.com")
        created = (await client.post(
            "/verifications", json=_create_body("jo"), headers=bearer(sam),
        )).json()

        incoming = (await client.get("/verifications/incoming", headers=bearer(jo))).json()
        assert [v["id"] for v in incoming] == [created["id"]]
        assert (await client.get("/verifications/incoming", headers=bearer(sam))).json() == []

        mine = (await client.get("/verifications/mine", headers=bearer(sam))).json()
        assert [v["id"] for v in mine] == [created["id"]]
        confirmed = (await client.get(
            "/verifications/mine?status=confirmed", headers=bearer(sam),
        )).json()
        assert confirmed == []

        resp = await client.get(f"/verifications/{created['id']}", headers=bearer(jo))
        assert resp.status_code == 200
        resp = await client.get(f"/verifications/{created['id']}", headers=bearer(ali))
        assert resp.status_code == 404
