"""Tests for the ledger HTTP API."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api.main import _configure_services, app
from core.ledger import LedgerConfig
from core.storage import InMemoryLedgerStore


@pytest.fixture(autouse=True)
def services(oracle):
    """Fresh in-memory services for every test."""
    return _configure_services(store=InMemoryLedgerStore(), price_oracle=oracle, config=LedgerConfig())


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _buy(client, user_id="alice", **overrides):
    body = {"asset_id": "bitcoin", "trade_type": "buy", "quantity": "0.1", "reference_price": "50000"}
    body.update(overrides)
    return client.post("/trades", json=body, headers=_as(user_id))


def test_app_configuration():
    assert app.title == "Paper Trading Ledger API"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": {"type": "memory", "connected": True}}


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/wallet"),
        ("post", "/wallet/bonus"),
        ("get", "/holdings"),
        ("get", "/trades"),
        ("get", "/addresses"),
        ("get", "/admin/wallets"),
    ],
)
def test_requests_without_user_are_rejected(client, method, path):
    response = getattr(client, method)(path)

    assert response.status_code == 401
    assert response.json()["detail"]["message"] == "Please sign in to trade."


class TestWalletEndpoints:
    def test_wallet_created_with_starting_balance(self, client):
        response = client.get("/wallet", headers=_as("alice"))

        assert response.status_code == 200
        wallet = response.json()["wallet"]
        assert wallet["user_id"] == "alice"
        assert Decimal(wallet["balance_usd"]) == Decimal("10000")
        assert wallet["last_bonus_claim_at"] is None

    def test_bonus_claim_then_rejection(self, client):
        first = client.post("/wallet/bonus", headers=_as("alice"))

        assert first.status_code == 200
        data = first.json()
        assert data["success"] is True
        assert Decimal(data["amount"]) == Decimal("1000")
        assert Decimal(data["new_balance"]) == Decimal("11000")

        second = client.post("/wallet/bonus", headers=_as("alice"))

        assert second.status_code == 400
        detail = second.json()["detail"]
        assert detail["error"] == "bonus_not_available"
        assert detail["message"] == "Already claimed today"
        assert detail["hours_until_next"] == 24


class TestTradeEndpoints:
    def test_buy_updates_wallet_and_holdings(self, client):
        response = _buy(client, asset_symbol="btc", asset_name="Bitcoin")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["trade"]["trade_type"] == "buy"
        assert data["trade"]["asset_symbol"] == "btc"
        assert Decimal(data["trade"]["total_usd"]) == Decimal("5000")
        assert Decimal(data["wallet"]["balance_usd"]) == Decimal("5000")

        holdings = client.get("/holdings", headers=_as("alice")).json()["holdings"]
        assert {k: Decimal(v) for k, v in holdings.items()} == {"bitcoin": Decimal("0.1")}

    def test_market_order_uses_oracle(self, client, oracle):
        response = client.post(
            "/trades",
            json={"asset_id": "ethereum", "trade_type": "buy", "quantity": "1"},
            headers=_as("alice"),
        )

        assert response.status_code == 200
        assert Decimal(response.json()["trade"]["price_usd"]) == Decimal("3000")
        assert oracle.calls == ["ethereum"]

    def test_insufficient_funds(self, client):
        response = _buy(client, quantity="1")

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "insufficient_funds"
        assert detail["message"] == "Insufficient funds: need $50000.00 but only have $10000.00"
        assert Decimal(detail["required"]) == Decimal("50000")

    def test_insufficient_holdings(self, client):
        response = _buy(client, trade_type="sell")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "insufficient_holdings"

    def test_invalid_quantity(self, client):
        response = _buy(client, quantity="0")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_input"

    def test_invalid_trade_type(self, client):
        response = _buy(client, trade_type="hold")

        assert response.status_code == 422

    def test_trade_history(self, client):
        _buy(client)
        _buy(client, asset_id="ethereum", reference_price="3000", quantity="0.5")

        trades = client.get("/trades", headers=_as("alice")).json()["trades"]
        assert len(trades) == 2
        assert client.get("/trades", headers=_as("bob")).json()["trades"] == []

        limited = client.get("/trades", params={"limit": 1}, headers=_as("alice")).json()["trades"]
        assert len(limited) == 1

    def test_stale_price_returns_503(self, client):
        response = client.post(
            "/trades",
            json={"asset_id": "dogecoin", "trade_type": "buy", "quantity": "1"},
            headers=_as("alice"),
        )

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "stale_price_data"

    def test_consistency_error_returns_generic_500(self, client, services):
        with patch.object(services.store, "append_trade", side_effect=RuntimeError("disk full")):
            response = _buy(client)

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail == {"error": "consistency_error", "message": "Failed to execute trade. Please try again."}


class TestAddressEndpoints:
    def test_all_addresses(self, client):
        first = client.get("/addresses", headers=_as("alice")).json()["addresses"]
        second = client.get("/addresses", headers=_as("alice")).json()["addresses"]

        assert set(first) == {"bitcoin", "ethereum", "solana", "tether"}
        assert first == second

    def test_single_address_is_stable(self, client):
        first = client.get("/addresses/bitcoin", headers=_as("alice")).json()
        second = client.get("/addresses/bitcoin", headers=_as("alice")).json()

        assert first["asset_id"] == "bitcoin"
        assert first["address"].startswith("bc1q")
        assert first == second

    def test_unsupported_currency(self, client):
        response = client.get("/addresses/dogecoin", headers=_as("alice"))

        assert response.status_code == 400
        assert response.json()["detail"]["message"].startswith("Unsupported currency: dogecoin")


class TestPriceEndpoints:
    def test_price(self, client):
        response = client.get("/prices/bitcoin")

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["usd"]) == Decimal("50000")
        assert data["stale"] is False

    def test_unknown_price(self, client):
        assert client.get("/prices/dogecoin").status_code == 503


class TestAdminEndpoints:
    def test_non_admin_is_forbidden(self, client):
        assert client.get("/admin/wallets", headers=_as("alice")).status_code == 403
        assert client.get("/admin/trades", headers=_as("alice")).status_code == 403
        response = client.put(
            "/admin/wallets/bob/balance",
            json={"balance_usd": "1"},
            headers=_as("alice"),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "unauthorized"

    def test_redeem_code_then_admin_access(self, client, services):
        services.admin_codes.create("ADMIN2024")

        response = client.post("/admin-codes/redeem", json={"code": "admin2024"}, headers=_as("root"))
        assert response.status_code == 200
        assert response.json()["success"] is True

        reused = client.post("/admin-codes/redeem", json={"code": "ADMIN2024"}, headers=_as("eve"))
        assert reused.status_code == 400
        assert reused.json()["detail"]["error"] == "invalid_admin_code"

        client.get("/wallet", headers=_as("alice"))
        _buy(client, user_id="bob")

        wallets = client.get("/admin/wallets", headers=_as("root")).json()["wallets"]
        assert [w["user_id"] for w in wallets] == ["alice", "bob"]

        trades = client.get("/admin/trades", headers=_as("root")).json()["trades"]
        assert [t["user_id"] for t in trades] == ["bob"]

        updated = client.put("/admin/wallets/bob/balance", json={"balance_usd": "250.5"}, headers=_as("root"))
        assert updated.status_code == 200
        assert Decimal(updated.json()["wallet"]["balance_usd"]) == Decimal("250.5")

    def test_negative_balance_is_rejected(self, client, services):
        services.store.grant_role(user_id="root", role="admin")

        response = client.put("/admin/wallets/alice/balance", json={"balance_usd": "-5"}, headers=_as("root"))

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Please enter a valid positive number"

    def test_credit_wallet(self, client, services):
        forbidden = client.post("/admin/wallets/bob/credit", json={"amount": "100"}, headers=_as("alice"))
        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["error"] == "unauthorized"

        services.store.grant_role(user_id="root", role="admin")
        client.get("/wallet", headers=_as("alice"))

        credited = client.post("/admin/wallets/alice/credit", json={"amount": "250.5"}, headers=_as("root"))
        assert credited.status_code == 200
        assert credited.json()["success"] is True
        assert Decimal(credited.json()["wallet"]["balance_usd"]) == Decimal("10250.5")

        own = client.post("/admin/wallets/root/credit", json={"amount": "1"}, headers=_as("root"))
        assert Decimal(own.json()["wallet"]["balance_usd"]) == Decimal("10001")

    @pytest.mark.parametrize("amount", ["0", "-5", "0.000000001"])
    def test_credit_rejects_invalid_amounts(self, client, services, amount):
        services.store.grant_role(user_id="root", role="admin")

        response = client.post("/admin/wallets/alice/credit", json={"amount": amount}, headers=_as("root"))

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_input"
        wallet = client.get("/wallet", headers=_as("alice")).json()["wallet"]
        assert Decimal(wallet["balance_usd"]) == Decimal("10000")
