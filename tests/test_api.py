"""Tests for the management API."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api import deps
from api.server import app
from config.settings import settings
from core.monitoring import MetricsCollector
from detection.flow import FlowAggregator, ledger_key, parse_ddmm
from detection.holders import HolderReconciler, holders_key
from enrichment.luminex import AddressHoldings, TokenHolding
from models.holders import BalanceChangeRecord, HolderAction, HolderLedger
from storage.state_store import FileStateStore
from storage.token_lists import TickerRegistry, TokenListStore

POOL_A = "02" + "aa" * 32
POOL_B = "03" + "bb" * 32
TODAY = "2024-06-15"


@pytest.fixture
def components(tmp_path):
    (tmp_path / "tickers").mkdir()
    (tmp_path / "tickers" / "registry.json").write_text(json.dumps({
        "tickets": {POOL_A: "ASTY:Asty Token"},
    }))

    store = FileStateStore(str(tmp_path))
    balances = MagicMock()
    balances.get_address_holdings = AsyncMock()
    flow = FlowAggregator(store, tickers=["ASTY"])
    reconciler = HolderReconciler(
        store, balances, flow,
        tickers=["ASTY"], min_balance=10.0, epsilon=0.0001,
        today=lambda: TODAY,
    )
    health = MagicMock()
    health.check_health.return_value = {"healthy": True, "issues": []}

    parts = {
        "store": store,
        "token_lists": TokenListStore(store),
        "registry": TickerRegistry(store),
        "flow": flow,
        "reconciler": reconciler,
        "balances": balances,
        "health": health,
    }
    deps.bind(
        store=store,
        token_lists=parts["token_lists"],
        registry=parts["registry"],
        flow=flow,
        reconciler=reconciler,
        metrics=MetricsCollector(),
        health=health,
        stats_provider=lambda: {"processor": {"cycles": 3}},
    )
    yield parts
    deps.unbind()


@pytest.fixture
def client(components):
    with TestClient(app) as client:
        yield client


class TestTokenLists:
    """Tests for allow/block list endpoints."""

    def test_add_by_ticker(self, client):
        response = client.post("/api/tokens/allow", json={"ticker": "asty"})

        assert response.status_code == 200
        assert response.json() == {
            "list_name": "allow",
            "pool_id": POOL_A,
            "ticker": "ASTY",
            "status": "added",
        }

    def test_add_is_idempotent(self, client):
        client.post("/api/tokens/block", json={"pool_id": POOL_B})
        response = client.post("/api/tokens/block", json={"pool_id": POOL_B})

        assert response.json()["status"] == "already present"
        listing = client.get("/api/tokens/block").json()
        assert listing["count"] == 1
        assert listing["tokens"] == [{"pool_id": POOL_B, "ticker": None, "name": None}]

    def test_unknown_ticker(self, client):
        response = client.post("/api/tokens/allow", json={"ticker": "NOPE"})
        assert response.status_code == 404

    def test_empty_request(self, client):
        assert client.post("/api/tokens/allow", json={}).status_code == 400

    def test_unknown_list(self, client):
        assert client.get("/api/tokens/grey").status_code == 422

    def test_remove(self, client, components):
        client.post("/api/tokens/allow", json={"pool_id": POOL_A})

        response = client.delete("/api/tokens/allow/ASTY")

        assert response.status_code == 200
        assert response.json()["status"] == "removed"
        assert client.get("/api/tokens/allow").json()["tokens"] == []

    def test_remove_missing(self, client):
        assert client.delete(f"/api/tokens/allow/{POOL_B}").status_code == 404
        assert client.delete("/api/tokens/allow/NOPE").status_code == 404

    def test_listing_shows_known_ticker(self, client):
        client.post("/api/tokens/allow", json={"pool_id": POOL_A})

        [entry] = client.get("/api/tokens/allow").json()["tokens"]

        assert entry == {"pool_id": POOL_A, "ticker": "ASTY", "name": "Asty Token"}


class TestFlowReport:
    """Tests for the flow report endpoint."""

    def test_report(self, client, components):
        year = parse_ddmm("0503").year
        asyncio.run(components["flow"].record_event("ASTY", f"{year}-03-05", HolderAction.INVESTED, 0.002))

        response = client.get("/api/flow/asty/0503")

        assert response.status_code == 200
        body = response.json()
        assert body["ticker"] == "ASTY"
        assert body["date"] == f"{year}-03-05"
        assert body["flow"]["buy_count"] == 1
        assert body["report"].startswith("ASTY for 05 Mar:")

    def test_untracked_ticker(self, client):
        assert client.get("/api/flow/BITTY/0503").status_code == 404

    def test_bad_date(self, client):
        assert client.get("/api/flow/ASTY/3113").status_code == 400
        assert client.get("/api/flow/ASTY/5").status_code == 400


class TestHolders:
    """Tests for holder endpoints."""

    def test_list_holders(self, client, components):
        asyncio.run(components["store"].save(holders_key("ASTY"), {"holders": {"pk1": "12.50000000"}}))

        body = client.get("/api/holders/asty").json()

        assert body == {"ticker": "ASTY", "count": 1, "last_sweep_date": "", "holders": {"pk1": 12.5}}

    def test_sweep(self, client, components):
        asyncio.run(components["store"].save(holders_key("ASTY"), {"holders": {"pk1": "100.00000000"}}))
        components["balances"].get_address_holdings.return_value = AddressHoldings(
            public_key="pk1",
            tokens=[TokenHolding(ticker="ASTY", decimals=8, balance_raw="5000000000")],
        )

        response = client.post("/api/holders/ASTY/sweep")

        assert response.status_code == 200
        body = response.json()
        assert body["checked"] == 1
        assert body["transitions"] == [
            {"address": "pk1", "action": "sold", "previous": 100.0, "current": 50.0},
        ]

        again = client.post("/api/holders/ASTY/sweep").json()
        assert again["skipped"] is True

    def test_sweep_untracked(self, client):
        assert client.post("/api/holders/BITTY/sweep").status_code == 404

    def test_holders_report(self, client, components):
        day = f"{parse_ddmm('0503').year}-03-05"
        ledger = HolderLedger(ticker="ASTY")
        ledger.append("pkaaa111", BalanceChangeRecord(
            amount=80.0, delta=-20.0, action=HolderAction.SOLD, value=0.001, date=day,
        ))
        asyncio.run(components["store"].save(ledger_key("ASTY"), ledger.to_dict()))
        asyncio.run(components["store"].save(holders_key("ASTY"), {"holders": {"pkaaa111": "80.00000000"}}))
        balances = components["balances"]
        balances.get_pool_metadata = AsyncMock(return_value=None)
        balances.get_username = AsyncMock(return_value=None)
        balances.get_address_holdings.return_value = AddressHoldings(public_key="pkaaa111")

        response = client.get("/api/holders/asty/0503")

        assert response.status_code == 200
        body = response.json()
        assert body["date"] == day
        assert body["report"].startswith(f"Report for {day} (ASTY):")
        assert body["entries"] == [{
            "address": "pkaaa111",
            "action": "sold",
            "changes": 1,
            "value": 0.001,
            "balance": 80.0,
            "share": None,
            "first_buy": None,
            "username": None,
            "spark_address": "",
        }]

    def test_holders_report_errors(self, client):
        assert client.get("/api/holders/BITTY/0503").status_code == 404
        assert client.get("/api/holders/ASTY/9999").status_code == 400


class TestStats:
    """Tests for health and stats endpoints."""

    def test_health_ok(self, client):
        assert client.get("/api/health").json() == {"status": "ok", "issues": []}

    def test_health_degraded(self, client, components):
        components["health"].check_health.return_value = {
            "healthy": False,
            "issues": ["Circuit flashnet is open"],
        }

        body = client.get("/api/health").json()

        assert body == {"status": "degraded", "issues": ["Circuit flashnet is open"]}

    def test_stats(self, client):
        body = client.get("/api/stats").json()

        assert body["components"] == {"processor": {"cycles": 3}}
        assert body["summary"]["polls"] == 0


class TestAPIToken:
    """Tests for the mutating-request token check."""

    def test_token_required_when_configured(self, client):
        with patch.object(settings, "api_token", "secret"):
            denied = client.post("/api/tokens/block", json={"pool_id": POOL_B})
            allowed = client.post(
                "/api/tokens/block",
                json={"pool_id": POOL_B},
                headers={"X-API-Token": "secret"},
            )
            listing = client.get("/api/tokens/block")

        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert listing.status_code == 200


class TestRoot:
    """Tests for the info endpoint."""

    def test_root_lists_tracked_tickers(self, client):
        body = client.get("/").json()
        assert body["name"] == "Sparkwatch API"
        assert body["tracked_tickers"] == ["ASTY"]
