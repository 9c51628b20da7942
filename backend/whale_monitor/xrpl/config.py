"""
XRPL Integration Configuration

Settings for talking to public XRPL JSON-RPC servers.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class XrplSettings(BaseSettings):
    """XRP Ledger client configuration"""

    # JSON-RPC endpoints, tried in order (comma separated)
    ENDPOINTS: str = "https://xrplcluster.com,https://s1.ripple.com:51234,https://s2.ripple.com:51234"
    REQUEST_TIMEOUT_SECONDS: float = 20.0

    # account_tx paging
    PAGE_SIZE: int = 50
    MAX_PAGES_PER_SCAN: int = 10

    # Retries (bounded exponential backoff per endpoint)
    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Minimum spacing between two ledger calls (shared by all scans)
    REQUEST_DELAY_SECONDS: float = 0.25

    model_config = SettingsConfigDict(
        env_prefix="XRPL_",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def endpoint_list(self) -> list[str]:
        return [e.strip() for e in self.ENDPOINTS.split(",") if e.strip()]


@lru_cache
def get_xrpl_settings() -> XrplSettings:
    """Get cached XRPL settings instance"""
    return XrplSettings()


# Convenience export
xrpl_settings = get_xrpl_settings()
