"""Tests for the HTTP API over FastAPI's TestClient.

Tests verify:
- Payment intake returns 200, 400 for bad JSON or fields, 429 with Retry-After
- The first X-Forwarded-For hop is used as the rate limit identity
- The webhook route maps bad signatures to 401, store outages to 500 and GET to 405
- Position lookups return 404 for unknown payments and never expose email
- Admin routes require the bearer token and drive wallet registration, the
  failed payment listing and resume
- Health reports a degraded store with 503
"""

import time
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr

from onramp.config import AppSettings
from onramp.custody.signer import CustodialSigner
from onramp.exceptions import (
    MappingMissing,
    RateLimited,
    SignatureInvalid,
    StoreUnavailable,
    ValidationError,
)
from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.intake.service import PaymentIntake
from onramp.ledger import PositionLedger
from onramp.models import (
    Claimant,
    ExecutionClaim,
    ExecutionResult,
    PositionStatus,
    StepResult,
    StepStatus,
)
from onramp.monitoring.tracker import Monitor
from onramp.server.app import create_app
from onramp.store.memory_store import MemoryStore
from onramp.webhook.reconciler import WebhookReconciler

WALLET = "0x1111111111111111111111111111111111111111"
MIXED_CASE_WALLET = "0xAbCdEf0123456789abcdef0123456789ABCDEF01"
ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def mocks() -> dict[str, AsyncMock]:
    intake = AsyncMock(spec=PaymentIntake)
    intake.process.return_value = {"success": True, "payment_id": "pay_1"}
    reconciler = AsyncMock(spec=WebhookReconciler)
    reconciler.handle.return_value = {"received": True, "status": "active"}
    return {
        "intake": intake,
        "reconciler": reconciler,
        "orchestrator": AsyncMock(spec=ExecutionOrchestrator),
        "ledger": AsyncMock(spec=PositionLedger),
        "signer": AsyncMock(spec=CustodialSigner),
        "monitor": AsyncMock(spec=Monitor),
    }


@pytest.fixture
def app(settings: AppSettings, store: MemoryStore, mocks: dict[str, AsyncMock]) -> FastAPI:
    app = create_app()
    app.state.settings = settings
    app.state.store = store
    for name, mock in mocks.items():
        setattr(app.state, name, mock)
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


class TestPayments:
    def test_success(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        response = client.post(
            "/api/payments", json={"amount": 50}, headers={"X-Forwarded-For": "5.6.7.8, 10.0.0.1"}
        )

        assert response.status_code == 200
        assert response.json()["payment_id"] == "pay_1"
        body, ip = mocks["intake"].process.call_args.args
        assert body == {"amount": 50}
        assert ip == "5.6.7.8"

    def test_invalid_json(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        response = client.post(
            "/api/payments", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"
        mocks["intake"].process.assert_not_called()

    def test_validation_errors_listed(
        self, client: TestClient, mocks: dict[str, AsyncMock]
    ) -> None:
        mocks["intake"].process.side_effect = ValidationError(["a", "b"])

        response = client.post("/api/payments", json={})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": {"code": "validation_error", "message": "a; b", "errors": ["a", "b"]},
        }

    def test_rate_limited(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["intake"].process.side_effect = RateLimited(
            reset_at=time.time() + 30, retry_after=30
        )

        response = client.post("/api/payments", json={"amount": 50})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert "reset_at" in response.json()["error"]


class TestWebhook:
    def test_acknowledged(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        response = client.post(
            "/api/webhooks/square",
            content=b'{"type":"payment.updated"}',
            headers={"x-square-hmacsha256-signature": "sig"},
        )

        assert response.status_code == 200
        raw, signature = mocks["reconciler"].handle.call_args.args
        assert raw == b'{"type":"payment.updated"}'
        assert signature == "sig"

    def test_bad_signature(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["reconciler"].handle.side_effect = SignatureInvalid()

        response = client.post("/api/webhooks/square", content=b"{}")

        assert response.status_code == 401

    def test_store_outage_requests_redelivery(
        self, client: TestClient, mocks: dict[str, AsyncMock]
    ) -> None:
        mocks["reconciler"].handle.side_effect = StoreUnavailable()

        response = client.post("/api/webhooks/square", content=b"{}")

        assert response.status_code == 500

    def test_get_not_allowed(self, client: TestClient) -> None:
        assert client.get("/api/webhooks/square").status_code == 405


class TestPositions:
    def test_unknown_payment(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["ledger"].get_by_internal_id.return_value = None

        response = client.get("/api/positions/pay_missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_lookup_hides_email(
        self, client: TestClient, mocks: dict[str, AsyncMock], make_position
    ) -> None:
        mocks["ledger"].get_by_internal_id.return_value = make_position(
            user_email="user@example.com"
        )

        response = client.get("/api/positions/pay_test")

        assert response.status_code == 200
        position = response.json()["position"]
        assert position["payment_id"] == "pay_test"
        assert position["deposit_amount"] == "50"
        assert "user_email" not in position

    def test_wallet_positions(
        self, client: TestClient, mocks: dict[str, AsyncMock], make_position
    ) -> None:
        mocks["ledger"].list_wallet_positions.return_value = [make_position()]

        response = client.get(f"/api/wallets/{MIXED_CASE_WALLET}/positions")

        assert response.status_code == 200
        assert response.json()["wallet_address"] == MIXED_CASE_WALLET.lower()
        assert [p["payment_id"] for p in response.json()["positions"]] == ["pay_test"]

    def test_bad_wallet(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        assert client.get("/api/wallets/0x123/positions").status_code == 400
        mocks["ledger"].list_wallet_positions.assert_not_called()


class TestAdmin:
    def test_requires_token(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        response = client.post(
            "/api/admin/wallets", json={"wallet_address": WALLET, "wallet_id": "w1"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"
        mocks["signer"].register_wallet.assert_not_called()

    def test_wrong_token(self, client: TestClient) -> None:
        response = client.get("/api/admin/errors", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_disabled_without_configured_token(
        self, client: TestClient, settings: AppSettings
    ) -> None:
        settings.server.admin_token = SecretStr("")

        response = client.get("/api/admin/errors", headers={"Authorization": "Bearer "})

        assert response.status_code == 401

    def test_register_wallet(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        response = client.post(
            "/api/admin/wallets",
            json={"wallet_address": MIXED_CASE_WALLET, "wallet_id": "user-wallet-id"},
            headers=_admin_headers(),
        )

        assert response.status_code == 200
        assert response.json()["wallet_address"] == MIXED_CASE_WALLET.lower()
        mocks["signer"].register_wallet.assert_awaited_once_with(
            MIXED_CASE_WALLET, "user-wallet-id"
        )

    def test_register_wallet_rejects_bad_address(self, client: TestClient) -> None:
        response = client.post(
            "/api/admin/wallets",
            json={"wallet_address": "0x123", "wallet_id": "w1"},
            headers=_admin_headers(),
        )

        assert response.status_code == 422

    def test_resume(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["orchestrator"].resume.return_value = ExecutionResult(
            payment_id="pay_test",
            success=True,
            status=PositionStatus.ACTIVE,
            steps=[StepResult(name="supply", status=StepStatus.CONFIRMED, tx_hash="0xabc")],
        )

        response = client.post("/api/admin/payments/pay_test/resume", headers=_admin_headers())

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["tx_hashes"] == {"supply": "0xabc"}
        mocks["orchestrator"].resume.assert_awaited_once_with("pay_test")

    def test_resume_unknown(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["orchestrator"].resume.side_effect = MappingMissing(payment_id="pay_missing")

        response = client.post(
            "/api/admin/payments/pay_missing/resume", headers=_admin_headers()
        )

        assert response.status_code == 404

    def test_failed_payments(
        self,
        client: TestClient,
        mocks: dict[str, AsyncMock],
        settings: AppSettings,
        make_position,
    ) -> None:
        ledger = mocks["ledger"]
        ledger.list_failed.return_value = [
            make_position(payment_id="pay_failed", status=PositionStatus.FAILED)
        ]
        ledger.list_stuck.return_value = [
            make_position(payment_id="pay_stuck", status=PositionStatus.EXECUTING)
        ]
        ledger.get_claim.return_value = ExecutionClaim(claimed_by=Claimant.WEBHOOK)

        response = client.get("/api/admin/payments/failed", headers=_admin_headers())

        assert response.status_code == 200
        body = response.json()
        assert [p["payment_id"] for p in body["failed"]] == ["pay_failed"]
        assert [p["payment_id"] for p in body["stuck"]] == ["pay_stuck"]
        assert body["stuck"][0]["claim"]["claimed_by"] == "webhook"
        ledger.list_stuck.assert_awaited_once_with(settings.execution.stuck_after_seconds)

    def test_failed_payments_threshold_override(
        self, client: TestClient, mocks: dict[str, AsyncMock]
    ) -> None:
        mocks["ledger"].list_failed.return_value = []
        mocks["ledger"].list_stuck.return_value = []

        response = client.get(
            "/api/admin/payments/failed?stuck_after=60", headers=_admin_headers()
        )

        assert response.json() == {"failed": [], "stuck": []}
        mocks["ledger"].list_stuck.assert_awaited_once_with(60)

    def test_failed_payments_requires_token(self, client: TestClient) -> None:
        assert client.get("/api/admin/payments/failed").status_code == 401

    def test_error_feed(self, client: TestClient, mocks: dict[str, AsyncMock]) -> None:
        mocks["monitor"].recent_errors.return_value = []
        mocks["monitor"].recent_alerts.return_value = [
            {"ts": 1.0, "message": "Hub balance low", "context": {"required": str(Decimal("50"))}}
        ]

        response = client.get("/api/admin/errors?limit=5", headers=_admin_headers())

        assert response.status_code == 200
        assert response.json()["alerts"][0]["message"] == "Hub balance low"
        mocks["monitor"].recent_alerts.assert_awaited_once_with(5)


class TestHealth:
    def test_ok(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok", "store": True}

    def test_degraded(self, client: TestClient, store: MemoryStore) -> None:
        store.ping = AsyncMock(return_value=False)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
