"""Rule configuration, pending orders, scheduled sync and health endpoints."""
from urllib.parse import quote

import pytest

from multipack_hub.services.ledger import OrderLedger
from multipack_hub.settings import settings

from fakes import SHOP, vid

pytestmark = pytest.mark.api


def _rule_url(variant_id, shop=SHOP):
    return f"/shops/{shop}/rules/{quote(variant_id, safe='')}"


class TestRules:
    async def test_save_runs_reconciliation(self, api, gateway, add_session):
        await add_session()
        gateway.add_variant("V", 0)
        gateway.add_variant("A", 10)
        gateway.add_variant("B", 3)

        resp = await api.put(_rule_url(vid("V")), json={
            "deductionMappings": [
                {"targetVariantId": vid("A"), "multiplier": 2},
                {"targetVariantId": vid("B"), "multiplier": 1},
            ],
            "calculateInventoryForSelfMapping": True,
        })

        assert resp.status_code == 200
        assert resp.json()["variant_id"] == vid("V")
        assert gateway.qty("V") == 3

        listed = await api.get(f"/shops/{SHOP}/rules")
        assert [r["variant_id"] for r in listed.json()] == [vid("V")]

    async def test_validation_errors_are_400(self, api):
        resp = await api.put(_rule_url(vid("V")), json={
            "deductionMappings": [{"targetVariantId": vid("A"), "multiplier": 0}],
        })
        assert resp.status_code == 400
        assert "multiplier >= 1" in resp.json()["detail"]

        resp = await api.put(_rule_url(vid("V")), json={"deductionMappings": []})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "At least one deduction mapping is required"

    async def test_save_succeeds_when_reconciliation_cannot_run(self, api, gateway):
        # no shop session: reconciliation fails, the save does not
        resp = await api.put(_rule_url(vid("V")), json={
            "deductionMappings": [{"targetVariantId": vid("A"), "multiplier": 2}],
            "calculateInventoryForSelfMapping": True,
        })
        assert resp.status_code == 200
        assert gateway.batches == []
        assert len((await api.get(f"/shops/{SHOP}/rules")).json()) == 1

    async def test_delete(self, api, add_rule, add_session):
        await add_session()
        await add_rule(vid("V"), [(vid("A"), 2)])

        assert (await api.delete(_rule_url(vid("V")))).status_code == 200
        assert (await api.delete(_rule_url(vid("V")))).status_code == 404
        assert (await api.get(f"/shops/{SHOP}/rules")).json() == []


async def test_pending_orders(api):
    ledger = OrderLedger()
    await ledger.claim(SHOP, "77")
    await ledger.claim(SHOP, "78")
    await ledger.mark_applied(SHOP, "78")

    resp = await api.get(f"/shops/{SHOP}/orders/pending")

    assert resp.status_code == 200
    assert [(o["order_id"], o["status"]) for o in resp.json()] == [("77", "pending")]


class TestScheduledSync:
    async def test_reports_per_shop(self, api, gateway, add_rule, add_session):
        await add_session()
        gateway.add_variant("V", 0)
        gateway.add_variant("A", 9)
        await add_rule(vid("V"), [(vid("A"), 3)])
        await add_rule(vid("V"), [(vid("A"), 3)], shop="no-session.myshopify.com")

        resp = await api.get("/cron/sync-multipack-inventory")

        body = resp.json()
        assert resp.status_code == 200
        assert body["shopsProcessed"] == 2
        assert body["successful"] == 1
        assert body["failed"] == 1
        failed = [r for r in body["results"] if not r["success"]]
        assert failed[0]["shop"] == "no-session.myshopify.com"
        assert gateway.qty("V") == 3
        ok = [r for r in body["results"] if r["success"]]
        assert ok[0]["updated"] == 1

    async def test_rejected_writes_fail_the_shop(self, api, gateway, add_rule, add_session):
        await add_session()
        gateway.add_variant("V", 0)
        gateway.add_variant("A", 9)
        gateway.user_errors = [{"field": ["input"], "message": "compareQuantity mismatch"}]
        await add_rule(vid("V"), [(vid("A"), 3)])

        body = (await api.get("/cron/sync-multipack-inventory")).json()

        assert body["successful"] == 0
        assert body["failed"] == 1
        assert body["results"][0]["error"] == "1 multipack updates failed"
        assert gateway.qty("V") == 0

    async def test_production_requires_secret(self, api, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(settings, "CRON_SECRET", "letmein")

        assert (await api.get("/cron/sync-multipack-inventory")).status_code == 401
        assert (await api.get("/cron/sync-multipack-inventory", params={"secret": "nope"})).status_code == 401
        assert (await api.get("/cron/sync-multipack-inventory", params={"secret": "letmein"})).status_code == 200

    async def test_production_without_configured_secret_is_closed(self, api, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(settings, "CRON_SECRET", "")
        assert (await api.get("/cron/sync-multipack-inventory", params={"secret": ""})).status_code == 401


async def test_health(api):
    resp = await api.get("/health")
    assert resp.json()["db"]["status"] == "healthy"
