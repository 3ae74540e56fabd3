"""Entry point for the card onramp executor.

Wires all components together and serves the FastAPI app with uvicorn's
programmatic API. Components are built once and shared by the intake and
webhook paths; the shared store is the only coordination point between
instances.

Component wiring order (in _build_components):
1. Shared store (Redis or in-memory)
2. PositionLedger
3. Monitor and RateLimiter
4. ChainClient and PriceFeed
5. Custody service and CustodialSigner
6. StepRunner and strategies
7. ExecutionOrchestrator
8. Payment gateway, PaymentIntake and WebhookReconciler
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from onramp.chain.prices import TickerPriceFeed
from onramp.chain.web3_client import Web3ChainClient
from onramp.config import AppSettings
from onramp.custody.service import HttpCustodyService
from onramp.custody.signer import CustodialSigner
from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.execution.steps import StepRunner
from onramp.execution.strategies import ConservativeStrategy, LeveragedStrategy
from onramp.gateway.square_client import SquareGateway
from onramp.intake.service import PaymentIntake
from onramp.ledger import PositionLedger
from onramp.logging import get_logger, setup_logging
from onramp.models import StrategyType
from onramp.monitoring.rate_limiter import RateLimiter
from onramp.monitoring.sentry import init_sentry
from onramp.monitoring.tracker import Monitor
from onramp.server.app import create_app
from onramp.store import create_store
from onramp.webhook.reconciler import WebhookReconciler


def _build_components(settings: AppSettings, sentry_enabled: bool = False) -> dict[str, Any]:
    """Build all service components from settings.

    Does not open any connections; clients connect lazily on first use.

    Args:
        settings: Application-wide settings.
        sentry_enabled: Whether init_sentry succeeded.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("onramp.main")

    # 1-2. Store and ledger
    store = create_store(settings.store)
    ledger = PositionLedger(store)

    # 3. Monitoring
    monitor = Monitor(store, settings.monitoring, sentry_enabled=sentry_enabled)
    rate_limiter = RateLimiter(store)

    # 4. Chain access
    chain = Web3ChainClient(settings.chain)
    price_feed = TickerPriceFeed(
        settings.strategy.price_api_url,
        settings.strategy.index_token_decimals,
        settings.strategy.price_timeout_seconds,
    )

    # 5. Custody
    custody = HttpCustodyService(settings.custody)
    signer = CustodialSigner(chain, custody, store, settings.chain, settings.custody)
    if not settings.custody.hub_wallet_address or not settings.custody.hub_wallet_id:
        logger.warning("hub_wallet_not_configured", note="Executions will fail until set.")

    # 6. Steps and strategies
    runner = StepRunner(ledger, signer, chain, settings.chain, settings.execution)
    strategies = {
        StrategyType.CONSERVATIVE: ConservativeStrategy(
            runner, ledger, settings.chain, settings.strategy
        ),
        StrategyType.LEVERAGED: LeveragedStrategy(
            runner, ledger, settings.chain, settings.strategy, price_feed
        ),
    }

    # 7. Orchestrator
    orchestrator = ExecutionOrchestrator(
        ledger=ledger,
        signer=signer,
        runner=runner,
        strategies=strategies,
        monitor=monitor,
        chain_settings=settings.chain,
        custody_settings=settings.custody,
    )

    # 8. Payment paths
    gateway = SquareGateway(settings.gateway)
    if not settings.gateway.is_configured:
        logger.warning("gateway_not_configured", note="Payments will return 500.")

    intake = PaymentIntake(
        settings=settings.intake,
        gateway_settings=settings.gateway,
        store=store,
        ledger=ledger,
        gateway=gateway,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
        monitor=monitor,
    )
    reconciler = WebhookReconciler(
        settings=settings.gateway,
        store=store,
        ledger=ledger,
        orchestrator=orchestrator,
        monitor=monitor,
    )

    return {
        "store": store,
        "ledger": ledger,
        "monitor": monitor,
        "rate_limiter": rate_limiter,
        "chain": chain,
        "price_feed": price_feed,
        "custody": custody,
        "signer": signer,
        "runner": runner,
        "orchestrator": orchestrator,
        "gateway": gateway,
        "intake": intake,
        "reconciler": reconciler,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Expose components on app.state and close outbound sessions on shutdown."""
    logger = get_logger("onramp.main")
    components = app.state.components

    app.state.store = components["store"]
    app.state.ledger = components["ledger"]
    app.state.monitor = components["monitor"]
    app.state.signer = components["signer"]
    app.state.orchestrator = components["orchestrator"]
    app.state.intake = components["intake"]
    app.state.reconciler = components["reconciler"]

    store_ok = await components["store"].ping()
    logger.info("lifespan_started", store_ok=store_ok)

    yield

    await components["gateway"].close()
    await components["custody"].close()
    await components["store"].close()

    logger.info("card_onramp_stopped")


async def run() -> None:
    """Run the API server until interrupted."""
    # Settings and logging
    settings = AppSettings()
    setup_logging(settings.log_level)
    logger = get_logger("onramp.main")

    sentry_enabled = init_sentry(settings.monitoring)
    components = _build_components(settings, sentry_enabled=sentry_enabled)

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_server",
        host=settings.server.host,
        port=settings.server.port,
        store_backend=settings.store.backend,
        gateway_environment=settings.gateway.environment,
        chain_id=settings.chain.chain_id,
    )

    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
