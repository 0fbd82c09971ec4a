"""
Closed set of OAuth providers and their static endpoint configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple

from broker.errors import UnknownProviderError


class Provider(str, Enum):
    TWITTER = "twitter"
    REDDIT = "reddit"
    DISCORD = "discord"

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        """Return the member for *value*; raises ``UnknownProviderError``."""
        if isinstance(value, Provider):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnknownProviderError(f"Provider '{value}' is not supported") from None


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoints, scopes and quirks of one provider."""

    display_name: str
    authorization_url: str
    token_url: str
    profile_url: str
    api_base_url: str
    scopes: Tuple[str, ...]
    revoke_url: str = ""
    # Extra query parameters on the authorization URL.
    auth_params: Dict[str, str] = field(default_factory=dict)
    # Send client_id/secret as HTTP Basic auth on the token endpoint.
    basic_auth: bool = True
    default_expires_in: int = 3600


PROVIDER_CONFIGS: Dict[Provider, ProviderConfig] = {
    Provider.TWITTER: ProviderConfig(
        display_name="Twitter",
        authorization_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        revoke_url="https://api.twitter.com/2/oauth2/revoke",
        profile_url="https://api.twitter.com/2/users/me",
        api_base_url="https://api.twitter.com/2/",
        scopes=(
            "tweet.read",
            "tweet.write",
            "users.read",
            "follows.read",
            "follows.write",
            "offline.access",   # needed for a refresh_token
        ),
        default_expires_in=7200,
    ),
    Provider.REDDIT: ProviderConfig(
        display_name="Reddit",
        authorization_url="https://www.reddit.com/api/v1/authorize",
        token_url="https://www.reddit.com/api/v1/access_token",
        revoke_url="https://www.reddit.com/api/v1/revoke_token",
        profile_url="https://oauth.reddit.com/api/v1/me",
        api_base_url="https://oauth.reddit.com/",
        scopes=("identity", "edit", "submit", "read", "history"),
        auth_params={"duration": "permanent"},
    ),
    Provider.DISCORD: ProviderConfig(
        display_name="Discord",
        authorization_url="https://discord.com/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        revoke_url="https://discord.com/api/oauth2/token/revoke",
        profile_url="https://discord.com/api/users/@me",
        api_base_url="https://discord.com/api/",
        scopes=("identify", "guilds"),
        basic_auth=False,
        default_expires_in=604800,
    ),
}


def check_exhaustive(mapping: Dict[Provider, object], what: str) -> None:
    """Raise if *mapping* does not cover every :class:`Provider` member."""
    missing = [p.value for p in Provider if p not in mapping]
    if missing:
        raise RuntimeError(f"{what} missing providers: {', '.join(missing)}")


check_exhaustive(PROVIDER_CONFIGS, "PROVIDER_CONFIGS")
