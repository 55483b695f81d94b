"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Telegram
    # ======================
    telegram_bot_token: str = Field(default="", description="Telegram bot token from BotFather")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/solkeeper.db",
        description="Database connection URL",
    )

    # ======================
    # Solana RPC
    # ======================
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    sol_commitment: str = Field(default="confirmed", description="RPC commitment level")
    chain_request_timeout: float = Field(
        default=30.0, description="Timeout for a single RPC request (seconds)"
    )
    chain_submit_timeout: float = Field(
        default=60.0, description="Upper bound for submit + confirmation poll (seconds)"
    )
    chain_confirm_delay: float = Field(
        default=2.0, description="Delay before the single confirmation poll (seconds)"
    )

    # ======================
    # Key encryption
    # ======================
    # Defaults must match the parameters existing records were encrypted with
    key_derivation_salt: str = Field(default="salt", description="Static scrypt salt")
    scrypt_n: int = Field(default=16384, description="scrypt CPU/memory cost")
    scrypt_r: int = Field(default=8, description="scrypt block size")
    scrypt_p: int = Field(default=1, description="scrypt parallelism")

    # ======================
    # Sessions
    # ======================
    withdrawal_session_ttl: float = Field(
        default=600.0, description="Idle lifetime of a withdrawal session (seconds)"
    )
    user_lock_timeout: float = Field(
        default=30.0, description="Maximum wait for a per-user lock (seconds)"
    )
    export_autodelete_seconds: float = Field(
        default=300.0, description="Delay before an exported key message is deleted"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
            "solana": {
                "rpc": self._redact_url(self.sol_rpc_url),
                "commitment": self.sol_commitment,
                "request_timeout": self.chain_request_timeout,
                "submit_timeout": self.chain_submit_timeout,
            },
            "kdf": {
                "salt": "***",
                "n": self.scrypt_n,
                "r": self.scrypt_r,
                "p": self.scrypt_p,
            },
            "sessions": {
                "withdrawal_ttl": self.withdrawal_session_ttl,
                "lock_timeout": self.user_lock_timeout,
                "export_autodelete": self.export_autodelete_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials and api-key query strings from a URL."""
        if "api-key=" in url or "api_key=" in url:
            url = url.split("?", 1)[0] + "?***"
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
