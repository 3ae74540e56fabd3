"""Shared test fixtures for the card onramp executor."""

import itertools
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from onramp.chain.client import ChainClient
from onramp.chain.prices import IndexPrice, PriceFeed
from onramp.config import (
    AppSettings,
    CustodySettings,
    ExecutionSettings,
    GatewaySettings,
    MonitoringSettings,
    ServerSettings,
    StoreSettings,
)
from onramp.custody.service import CustodyService
from onramp.custody.signer import CustodialSigner
from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.execution.steps import StepRunner
from onramp.execution.strategies import ConservativeStrategy, LeveragedStrategy
from onramp.ledger import PositionLedger
from onramp.models import Position, StrategyType, TxReceipt
from onramp.monitoring.tracker import Monitor
from onramp.store.memory_store import MemoryStore

USER_WALLET = "0x1111111111111111111111111111111111111111"
HUB_WALLET = "0x2222222222222222222222222222222222222222"
HUB_WALLET_ID = "hub-wallet-id"
USER_WALLET_ID = "user-wallet-id"
WEBHOOK_KEY = "test-webhook-key"
WEBHOOK_URL = "https://onramp.example/api/webhooks/square"
ADMIN_TOKEN = "test-admin-token"


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def settings() -> AppSettings:
    """AppSettings with a configured gateway, hub wallet and instant retries."""
    return AppSettings(
        log_level="DEBUG",
        store=StoreSettings(backend="memory"),
        gateway=GatewaySettings(
            access_token="sq-test-token",  # type: ignore[arg-type]
            location_id="LOC123",
            webhook_signature_key=WEBHOOK_KEY,  # type: ignore[arg-type]
            webhook_notification_url=WEBHOOK_URL,
        ),
        custody=CustodySettings(
            app_id="test-app",
            app_secret="test-secret",  # type: ignore[arg-type]
            hub_wallet_address=HUB_WALLET,
            hub_wallet_id=HUB_WALLET_ID,
        ),
        execution=ExecutionSettings(max_attempts=3, retry_base_delay=0.0),
        monitoring=MonitoringSettings(error_sample_rate=1.0),
        server=ServerSettings(admin_token=ADMIN_TOKEN),  # type: ignore[arg-type]
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger(store: MemoryStore) -> PositionLedger:
    return PositionLedger(store)


@pytest.fixture
def monitor(store: MemoryStore, settings: AppSettings) -> Monitor:
    return Monitor(store, settings.monitoring, rng=lambda: 0.0)


@pytest.fixture
def make_position():
    """Factory for Position records with sensible defaults."""

    def _make(**overrides: Any) -> Position:
        values: dict[str, Any] = {
            "position_id": "pos_1700000000000_abcdef123",
            "payment_id": "pay_test",
            "wallet_address": USER_WALLET,
            "strategy_type": StrategyType.CONSERVATIVE,
            "deposit_amount": Decimal("50"),
        }
        values.update(overrides)
        return Position(**values)

    return _make


@pytest.fixture
def mock_chain() -> AsyncMock:
    """ChainClient with funded wallets, ample allowance and successful receipts."""
    chain = AsyncMock(spec=ChainClient)
    chain.get_native_balance.return_value = 10**20
    chain.get_token_balance.return_value = 10**12
    chain.get_allowance.return_value = 10**30
    chain.get_transaction_count.return_value = 7
    chain.get_gas_price.return_value = 25 * 10**9
    chain.estimate_gas.return_value = 100_000

    async def _receipt(tx_hash: str, timeout: float) -> TxReceipt:
        return TxReceipt(tx_hash=tx_hash, succeeded=True, block_number=1, gas_used=21_000)

    chain.wait_for_receipt.side_effect = _receipt
    return chain


@pytest.fixture
def mock_custody() -> AsyncMock:
    """CustodyService returning a fresh hash for every broadcast."""
    custody = AsyncMock(spec=CustodyService)
    counter = itertools.count(1)

    async def _send(wallet_id: str, tx: dict, chain_id: int) -> str:
        return "0x" + f"{next(counter):064x}"

    custody.send_transaction.side_effect = _send
    return custody


@pytest.fixture
def mock_price_feed() -> AsyncMock:
    feed = AsyncMock(spec=PriceFeed)
    # $60,000 BTC in 30 - 8 = 22 decimal fixed point
    feed.get_price.return_value = IndexPrice(
        symbol="BTC",
        min_price=59_990 * 10**22,
        max_price=60_000 * 10**22,
        token_decimals=8,
    )
    return feed


@pytest.fixture
def signer(
    mock_chain: AsyncMock,
    mock_custody: AsyncMock,
    store: MemoryStore,
    settings: AppSettings,
) -> CustodialSigner:
    return CustodialSigner(mock_chain, mock_custody, store, settings.chain, settings.custody)


@pytest.fixture
def runner(
    ledger: PositionLedger,
    signer: CustodialSigner,
    mock_chain: AsyncMock,
    settings: AppSettings,
) -> StepRunner:
    return StepRunner(
        ledger, signer, mock_chain, settings.chain, settings.execution, sleep=_no_sleep
    )


@pytest.fixture
def orchestrator(
    ledger: PositionLedger,
    signer: CustodialSigner,
    runner: StepRunner,
    monitor: Monitor,
    mock_price_feed: AsyncMock,
    settings: AppSettings,
) -> ExecutionOrchestrator:
    """Real orchestrator over mocked chain, custody and price feed."""
    strategies = {
        StrategyType.CONSERVATIVE: ConservativeStrategy(
            runner, ledger, settings.chain, settings.strategy
        ),
        StrategyType.LEVERAGED: LeveragedStrategy(
            runner, ledger, settings.chain, settings.strategy, mock_price_feed
        ),
    }
    return ExecutionOrchestrator(
        ledger=ledger,
        signer=signer,
        runner=runner,
        strategies=strategies,
        monitor=monitor,
        chain_settings=settings.chain,
        custody_settings=settings.custody,
    )
