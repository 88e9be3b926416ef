"""
Server configuration for Docflow.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Set


@dataclass
class ServerConfig:
    """Configuration for the Docflow server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    api_keys: Set[str] = field(
        default_factory=lambda: {
            "dev-user-key",
            "signature-provider-key",
            "carrier-gateway-key",
        }
    )

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    # YAML carrier catalog; the catalog bundled with the package when unset
    carrier_catalog: Optional[str] = None

    default_expiry_days: int = 7

    # Seconds between expiry sweeps; 0 disables the background sweep
    sweep_interval: float = 300.0

    # Delivery gateways; logging stand-ins are used when unset
    contact_gateway_url: Optional[str] = None
    carrier_gateway_url: Optional[str] = None
    gateway_api_key: Optional[str] = None

    signature_link_base_url: str = "http://localhost:8000/sign"

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./docflow.db")

        env_keys = os.environ.get("DOCFLOW_API_KEYS")
        if env_keys:
            self.api_keys = set(env_keys.split(","))

        if self.carrier_catalog is None:
            self.carrier_catalog = os.environ.get("DOCFLOW_CARRIER_CATALOG")

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("DOCFLOW_HOST", "0.0.0.0"),
            port=int(os.environ.get("DOCFLOW_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            debug=os.environ.get("DOCFLOW_DEBUG", "").lower() == "true",
            log_level=os.environ.get("DOCFLOW_LOG_LEVEL", "info"),
            carrier_catalog=os.environ.get("DOCFLOW_CARRIER_CATALOG"),
            default_expiry_days=int(os.environ.get("DOCFLOW_DEFAULT_EXPIRY_DAYS", "7")),
            sweep_interval=float(os.environ.get("DOCFLOW_SWEEP_INTERVAL", "300")),
            contact_gateway_url=os.environ.get("DOCFLOW_CONTACT_GATEWAY_URL"),
            carrier_gateway_url=os.environ.get("DOCFLOW_CARRIER_GATEWAY_URL"),
            gateway_api_key=os.environ.get("DOCFLOW_GATEWAY_API_KEY"),
        )
