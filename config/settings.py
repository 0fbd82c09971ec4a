"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Twitter (OAuth2 + PKCE) ─────────────────────────────────────────
    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    twitter_redirect_uri: str = ""      # falls back to oauth_redirect_base

    # ── Reddit ──────────────────────────────────────────────────────────
    reddit_client_id: str = ""
    reddit_client_secret: str = ""
    reddit_redirect_uri: str = ""
    reddit_user_agent: str = "socialbridge/1.0"

    # ── Discord ─────────────────────────────────────────────────────────
    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_redirect_uri: str = ""

    # ── Telegram (bot token, no OAuth) ──────────────────────────────────
    telegram_bot_token: str = ""

    # ── OAuth broker ────────────────────────────────────────────────────
    oauth_redirect_base: str = "http://localhost:8000"  # base URL for OAuth callbacks
    oauth_session_ttl_seconds: int = 600                # pending login lifetime
    token_refresh_skew_seconds: int = 120               # refresh this early
    client_pool_max_idle_seconds: int = 900             # drop idle platform clients
    maintenance_interval_seconds: int = 60              # sweep cadence
    provider_http_timeout: float = 15.0
    frontend_url: str = "http://localhost:3000"         # callback redirect target

    # ── Security Secrets ────────────────────────────────────────────────
    jwt_secret: str = "change-me-jwt-secret-key"       # HMAC secret for owner tokens
    jwt_expiry_seconds: int = 604800                    # 7 days
    token_encryption_key: str = ""                       # Fernet key for tokens at rest

    # ── Database ────────────────────────────────────────────────────────
    database_url: Optional[str] = None                  # None → in-memory account store

    # ── Server ──────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    def provider_credentials(self, provider: str) -> dict:
        """
        Return ``client_id``, ``client_secret`` and ``redirect_uri`` for a
        provider slug ('twitter', 'reddit', 'discord').
        """
        client_id = getattr(self, f"{provider}_client_id", "")
        client_secret = getattr(self, f"{provider}_client_secret", "")
        redirect_uri = getattr(self, f"{provider}_redirect_uri", "")
        if not redirect_uri and self.oauth_redirect_base:
            redirect_uri = (
                f"{self.oauth_redirect_base.rstrip('/')}/api/v1/connectors/{provider}/callback"
            )
        return {
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
        }


config = Settings()
