"""Integration tests for staff endpoints: risk, audit, trust score and accounts."""

from tests.helpers import bearer


class TestStaffAuth:
    async def test_missing_key(self, client, login):
        tokens = await login("sam@example.com")
        resp = await client.get(f"/admin/risk/{tokens['user_id']}")
        assert resp.status_code == 401

    async def test_wrong_key(self, client, login):
        tokens = await login("sam@example.com")
        resp = await client.get(
            f"/admin/risk/{tokens['user_id']}", headers={"X-Passport-Api-Key": "nope"},
        )
        assert resp.status_code == 403

    async def test_reviewer_cannot_read_audit(self, client, login, reviewer_headers):
        tokens = await login("sam@example.com")
        resp = await client.get(f"/admin/audit/{tokens['user_id']}", headers=reviewer_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"


class TestRiskRouter:
    async def test_signal_lifecycle(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        user_id = tokens["user_id"]

        resp = await client.post("/admin/risk/signals", json={
            "user_id": user_id,
            "signal_type": "abnormal_activity",
            "severity": 4,
            "message": "Burst of listings",
        }, headers=admin_headers)
        assert resp.status_code == 201
        signal = resp.json()
        assert signal["resolved"] is False

        summary = (await client.get(f"/admin/risk/{user_id}", headers=admin_headers)).json()
        assert signal["id"] in [s["id"] for s in summary["signals"]]
        assert summary["account_status"] == "active"
        before = summary["score"]

        resp = await client.post(
            f"/admin/risk/signals/{signal['id']}/resolve", headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["resolved_by"] == "staff:admin"

        summary = (await client.get(f"/admin/risk/{user_id}", headers=admin_headers)).json()
        assert signal["id"] not in [s["id"] for s in summary["signals"]]
        assert summary["score"] < before

    async def test_severity_out_of_range(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        resp = await client.post("/admin/risk/signals", json={
            "user_id": tokens["user_id"], "signal_type": "ip_risk", "severity": 11,
        }, headers=admin_headers)
        assert resp.status_code == 422

    async def test_evaluate(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        resp = await client.post(
            f"/admin/risk/{tokens['user_id']}/evaluate", headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["user_id"] == tokens["user_id"]
        assert resp.json()["moved_to_review"] is False

    async def test_unknown_user(self, client, admin_headers):
        resp = await client.get("/admin/risk/no-such-user", headers=admin_headers)
        assert resp.status_code == 404


class TestAuditRouter:
    async def test_events_and_verify(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        user_id = tokens["user_id"]

        events = (await client.get(f"/admin/audit/{user_id}", headers=admin_headers)).json()
        assert events
        assert all(e["user_id"] == user_id for e in events)
        sequences = [e["sequence"] for e in events]
        assert sequences == sorted(sequences, reverse=True)

        resp = await client.get(f"/admin/audit/{user_id}/verify", headers=admin_headers)
        assert resp.status_code == 200
        result = resp.json()
        assert result["valid"] is True
        assert result["events_checked"] == len(events)
        assert result["break_at"] is None


class TestTrustScoreRouter:
    async def test_me_endpoints(self, client, login):
        tokens = await login("sam@example.com")
        resp = await client.get("/me/trustscore", headers=bearer(tokens))
        assert resp.status_code == 200
        current = resp.json()
        assert current["user_id"] == tokens["user_id"]
        assert current["identity_score"] == 50

        history = (await client.get("/me/trustscore/history?months=3", headers=bearer(tokens))).json()
        assert len(history) >= 1

        breakdown = (await client.get("/me/trustscore/breakdown", headers=bearer(tokens))).json()
        assert breakdown["total"] == breakdown["identity"] + breakdown["evidence"] + breakdown["behaviour"]

    async def test_admin_recalculate(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        resp = await client.post(
            f"/admin/trustscore/{tokens['user_id']}/recalculate", headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["skipped"] is False
        assert body["snapshot"]["trigger"] == "manual"

    async def test_run_weekly(self, client, login, admin_headers):
        await login("sam@example.com")
        resp = await client.post(
            "/admin/trustscore/run-weekly?period_key=2020-W01", headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"period_key": "2020-W01", "processed": 1, "skipped": 0, "failed": 0}

        again = await client.post(
            "/admin/trustscore/run-weekly?period_key=2020-W01", headers=admin_headers,
        )
        assert again.json()["skipped"] == 1

    async def test_run_weekly_bad_period(self, client, admin_headers):
        resp = await client.post(
            "/admin/trustscore/run-weekly?period_key=last-week", headers=admin_headers,
        )
        assert resp.status_code == 422


class TestAccountAdmin:
    async def test_suspension_signs_user_out(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        resp = await client.patch(
            f"/admin/users/{tokens['user_id']}/status",
            json={"status": "suspended", "reason": "chargeback fraud"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["account_status"] == "suspended"
        assert (await client.get("/me", headers=bearer(tokens))).status_code == 401

    async def test_reviewer_cannot_manage_accounts(self, client, login, reviewer_headers):
        tokens = await login("sam@example.com")
        resp = await client.patch(
            f"/admin/users/{tokens['user_id']}/status",
            json={"status": "suspended"},
            headers=reviewer_headers,
        )
        assert resp.status_code == 403

    async def test_phone_verified(self, client, login, admin_headers):
        tokens = await login("sam@example.com")
        resp = await client.post(
            f"/admin/users/{tokens['user_id']}/phone-verified", headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["phone_verified"] is True


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["database"] == "ok"

    async def test_scheduler_disabled(self, client):
        resp = await client.get("/health/scheduler")
        assert resp.json() == {"running": False, "jobs": []}
