"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Shared key-value store connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    backend: Literal["redis", "memory"] = "redis"
    url: str = "redis://localhost:6379/0"
    max_connections: int = 20
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0


class GatewaySettings(BaseSettings):
    """Square payment gateway credentials and webhook verification."""

    model_config = SettingsConfigDict(env_prefix="SQUARE_")

    access_token: SecretStr = SecretStr("")
    location_id: str = ""
    environment: Literal["sandbox", "production"] = "sandbox"
    api_version: str = "2024-10-16"
    webhook_signature_key: SecretStr = SecretStr("")
    # Square signs notification_url + body; leave empty to sign the body alone
    webhook_notification_url: str = ""
    timeout_seconds: float = 10.0

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token.get_secret_value() and self.location_id)


class IntakeSettings(BaseSettings):
    """Payment intake validation bounds, fees and rate limits."""

    model_config = SettingsConfigDict(env_prefix="INTAKE_")

    min_amount: Decimal = Decimal("1")
    max_amount: Decimal = Decimal("1000000")
    currency: str = "USD"
    platform_fee_rate: Decimal = Decimal("0.05")  # 5% on top of the deposit
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: int = 60
    idempotency_window_seconds: int = 3600


class ChainSettings(BaseSettings):
    """EVM chain connection (Avalanche C-Chain by default)."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_")

    rpc_url: str = "https://api.avax.network/ext/bc/C/rpc"
    chain_id: int = 43114
    rpc_timeout_seconds: float = 10.0
    receipt_timeout_seconds: float = 60.0
    stablecoin_address: str = "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"
    stablecoin_decimals: int = 6
    max_gas_price_gwei: Decimal = Decimal("0")  # 0 disables the cap
    default_gas_limit: int = 500_000
    gas_limit_buffer: Decimal = Decimal("1.2")


class CustodySettings(BaseSettings):
    """Custodial signing service (server wallets) and the hub wallet."""

    model_config = SettingsConfigDict(env_prefix="CUSTODY_")

    api_url: str = "https://api.privy.io"
    app_id: str = ""
    app_secret: SecretStr = SecretStr("")
    timeout_seconds: float = 15.0
    hub_wallet_address: str = ""
    hub_wallet_id: str = ""


class StrategySettings(BaseSettings):
    """Protocol addresses and sizing for the conservative and leveraged strategies."""

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    # Conservative: lending pool supply
    lending_pool_address: str = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
    min_supply_usd: Decimal = Decimal("0.5")
    conservative_gas_amount: Decimal = Decimal("0.005")  # native token sent with funding

    # Leveraged: perpetuals exchange
    exchange_router_address: str = "0x8f550E53DFe96C055D5Bdb267c21F268fCAF63B2"
    router_spender_address: str = "0x820F5FfC5b525cD4d88Cd91aCf2c28F16530Cc68"
    order_vault_address: str = "0xD3D60D22d415aD43b7e64b510D86A30f19B1B12C"
    market_address: str = "0xFb02132333A79C8B5Bd0b64E3AbccA5f7fAf2937"
    index_token_symbol: str = "BTC"
    index_token_decimals: int = 8
    leverage: Decimal = Decimal("2.5")
    slippage: Decimal = Decimal("0.01")  # 1% over index price
    execution_fee: Decimal = Decimal("0.02")  # native token
    leveraged_gas_amount: Decimal = Decimal("0.06")
    min_collateral_usd: Decimal = Decimal("5")
    min_size_usd: Decimal = Decimal("10")
    price_api_url: str = "https://avalanche-api.gmxinfra.io/prices/tickers"
    price_timeout_seconds: float = 10.0


class ExecutionSettings(BaseSettings):
    """Orchestrator retry behaviour."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    max_attempts: int = 3
    retry_base_delay: float = 1.0
    approval_retries: int = 1
    stuck_after_seconds: int = 15 * 60


class MonitoringSettings(BaseSettings):
    """Operation metrics, error reports and Sentry forwarding."""

    model_config = SettingsConfigDict(env_prefix="MONITORING_")

    error_sample_rate: float = 1.0
    max_error_reports: int = 200
    max_samples_per_endpoint: int = 100
    metrics_ttl_seconds: int = 7 * 24 * 3600
    sentry_dsn: str = ""
    environment: str = "development"
    traces_sample_rate: float = 0.0


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8080
    admin_token: SecretStr = SecretStr("")
    trust_forwarded_for: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    store: StoreSettings = StoreSettings()
    gateway: GatewaySettings = GatewaySettings()
    intake: IntakeSettings = IntakeSettings()
    chain: ChainSettings = ChainSettings()
    custody: CustodySettings = CustodySettings()
    strategy: StrategySettings = StrategySettings()
    execution: ExecutionSettings = ExecutionSettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    server: ServerSettings = ServerSettings()
