"""PharmaTrace configuration via pydantic-settings."""

import logging
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}


class PharmaTraceSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PHARMATRACE_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/pharmatrace.db"

    # API
    api_title: str = "PharmaTrace"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Ledger
    rpc_url: str = "http://127.0.0.1:8545"
    rpc_timeout: float = 30.0
    contract_address: str = ""
    contract_abi_path: str = "./artifacts/contracts/PharmaChainV2.sol/PharmaChainV2.json"

    # Deployment block per chain id, e.g. '{"31337": 0, "11155111": 5120000}'
    deployment_blocks: dict[int, int] = {}
    # Chains that may be wiped and restarted (hardhat, ganache)
    disposable_chain_ids: list[int] = [31337, 1337]

    # Sync
    sync_batch_size: int = 1000  # blocks per range query
    poll_interval: float = 5.0  # seconds
    sync_on_startup: bool = False

    # Metadata gateway
    metadata_gateway_url: str = "https://gateway.pinata.cloud/ipfs/"
    metadata_timeout: float = 15.0
    metadata_max_attempts: int = 5
    metadata_initial_backoff: float = 2.0

    # Traceability
    trace_max_depth: int = 50

    # Alerts
    alert_max_attempts: int = 3
    alert_batch_limit: int = 100
    notification_webhook_url: str = ""
    notification_webhook_secret: str = ""

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    def deployment_block_for(self, chain_id: int) -> int:
        """Return the contract deployment block for a chain, 0 if unknown."""
        block = self.deployment_blocks.get(chain_id)
        if block is None:
            logger.warning(
                "No deployment block configured for chain %s, starting from block 0",
                chain_id,
            )
            return 0
        return block

    def is_disposable_chain(self, chain_id: int) -> bool:
        return chain_id in self.disposable_chain_ids

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"PHARMATRACE_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default admin key; set PHARMATRACE_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> PharmaTraceSettings:
    settings = PharmaTraceSettings()
    settings.validate_for_production()
    return settings
