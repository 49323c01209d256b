"""OAuth provider clients (Google, GitHub, Facebook) on top of Authlib.

Routes talk to an `OAuthGateway` so the provider round trip can be swapped
out through FastAPI's dependency overrides.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx
from authlib.integrations.starlette_client import OAuth, OAuthError
from starlette.requests import Request

from app import config

logger = logging.getLogger(__name__)

PROVIDER_SETTINGS = {
    "google": {
        "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
        "client_kwargs": {"scope": "openid email profile"},
    },
    "github": {
        "access_token_url": "https://github.com/login/oauth/access_token",
        "authorize_url": "https://github.com/login/oauth/authorize",
        "api_base_url": "https://api.github.com/",
        "client_kwargs": {"scope": "read:user user:email"},
    },
    "facebook": {
        "access_token_url": "https://graph.facebook.com/v19.0/oauth/access_token",
        "authorize_url": "https://www.facebook.com/v19.0/dialog/oauth",
        "api_base_url": "https://graph.facebook.com/v19.0/",
        # email needs app review, public_profile does not
        "client_kwargs": {"scope": "public_profile"},
    },
}


@dataclass(frozen=True)
class OAuthIdentity:
    provider: str
    account_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None


class OAuthFlowError(Exception):
    """The provider round trip failed (denied consent, bad state, token error)."""


class OAuthGateway:
    def __init__(self, clients: Optional[dict] = None):
        self.oauth = OAuth()
        self.enabled: list[str] = []
        for name, (client_id, client_secret) in (clients or config.OAUTH_CLIENTS).items():
            if not (client_id and client_secret) or name not in PROVIDER_SETTINGS:
                continue
            self.oauth.register(
                name=name,
                client_id=client_id,
                client_secret=client_secret,
                **PROVIDER_SETTINGS[name],
            )
            self.enabled.append(name)
        logger.info("OAuth providers enabled: %s", ", ".join(self.enabled) or "none")

    def is_enabled(self, provider: str) -> bool:
        return provider in self.enabled

    async def authorize_redirect(self, request: Request, provider: str, redirect_uri: str):
        client = self.oauth.create_client(provider)
        return await client.authorize_redirect(request, redirect_uri)

    async def fetch_identity(self, request: Request, provider: str) -> OAuthIdentity:
        client = self.oauth.create_client(provider)
        try:
            token = await client.authorize_access_token(request)
            if provider == "google":
                info = token.get("userinfo") or await client.userinfo(token=token)
                return OAuthIdentity(
                    provider=provider,
                    account_id=str(info["sub"]),
                    name=info.get("name"),
                    email=info.get("email"),
                    image=info.get("picture"),
                )
            if provider == "github":
                resp = await client.get("user", token=token)
                resp.raise_for_status()
                info = resp.json()
                return OAuthIdentity(
                    provider=provider,
                    account_id=str(info["id"]),
                    name=info.get("name") or info.get("login"),
                    email=info.get("email"),
                    image=info.get("avatar_url"),
                )
            resp = await client.get("me", params={"fields": "id,name,email,picture"}, token=token)
            resp.raise_for_status()
            info = resp.json()
            picture = (info.get("picture") or {}).get("data") or {}
            return OAuthIdentity(
                provider=provider,
                account_id=str(info["id"]),
                name=info.get("name"),
                email=info.get("email"),
                image=picture.get("url"),
            )
        except (OAuthError, httpx.HTTPError) as e:
            raise OAuthFlowError(str(e)) from e
        except (KeyError, ValueError) as e:
            raise OAuthFlowError(f"unexpected profile payload from {provider}: {e}") from e


@lru_cache
def get_oauth_gateway() -> OAuthGateway:
    return OAuthGateway()
