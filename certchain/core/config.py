"""
Application settings for CertChain Backend.
Values are read from the environment (or a local .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the API, the store and the ledger client"""

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "certchain"
    mongodb_timeout_ms: int = 5000

    # Public front-end used in verification links and QR payloads
    client_url: str = "http://localhost:3000"

    # Ledger (live mode needs rpc url, private key and contract address)
    blockchain_network: str = "amoy"
    blockchain_rpc_url: Optional[str] = None
    blockchain_chain_id: int = 80002
    blockchain_private_key: Optional[str] = None
    contract_address: Optional[str] = None
    blockchain_gas_limit: int = 500000
    ledger_timeout_seconds: float = 30.0

    # Issuance
    issuance_max_attempts: int = 5

    # Deferred anchoring
    enable_anchor_worker: bool = True
    anchor_retry_interval_seconds: float = 60.0
    anchor_retry_batch_size: int = 25
    anchor_max_attempts: int = 8
    anchor_backoff_base_seconds: float = 30.0
    anchor_backoff_max_seconds: float = 6 * 60 * 60

    # Identity collaborator
    secret_key: str = "change-me"
    algorithm: str = "HS256"

    # HTTP
    rate_limit_calls: int = 100
    rate_limit_period: int = 10
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def ledger_configured(self) -> bool:
        """True when every value the live ledger client needs is present"""
        placeholder = "your_private_key_without_0x_prefix"
        return bool(
            self.blockchain_rpc_url
            and self.blockchain_private_key
            and self.blockchain_private_key != placeholder
            and self.contract_address
        )


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings()
