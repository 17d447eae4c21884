"""
Token Exchanger
Trades a short-lived Meta token (or an OAuth code) for a long-lived token
"""

from typing import Optional

from pydantic import BaseModel

from services.channelServices.meta_graph_client import MetaGraphClient
from utils.errors import (
    InvalidToken,
    ProviderRequestError,
    ProviderUnavailable,
    TokenExchangeFailed,
)
from utils.logger import logger


class ExchangedToken(BaseModel):
    access_token: str
    expires_in: Optional[int] = None  # seconds; None when Meta does not say
    token_type: Optional[str] = None


class TokenExchanger:
    """
    Stateless wrapper around GET /oauth/access_token

    One provider call per exchange and no retries. A rejected token raises
    TokenExchangeFailed; an unreachable provider raises ProviderUnavailable.
    """

    def __init__(self, graph: MetaGraphClient):
        self.graph = graph

    async def exchange(self, short_lived_token: str) -> ExchangedToken:
        """Exchange a short-lived user token for a long-lived one"""
        if not short_lived_token:
            raise TokenExchangeFailed("A short-lived access token is required")

        config = self.graph.config
        logger.info("🔄 Exchanging short-lived token for long-lived token")
        return await self._request({
            "grant_type": "fb_exchange_token",
            "client_id": config.app_id,
            "client_secret": config.app_secret,
            "fb_exchange_token": short_lived_token,
        })

    async def exchange_code(self, code: str) -> ExchangedToken:
        """Exchange an OAuth authorization code (redirect flow) for an access token"""
        if not code:
            raise TokenExchangeFailed("An authorization code is required")

        config = self.graph.config
        logger.info("🔄 Exchanging authorization code for access token")
        return await self._request({
            "client_id": config.app_id,
            "client_secret": config.app_secret,
            "redirect_uri": config.redirect_uri,
            "code": code,
        })

    async def _request(self, params: dict) -> ExchangedToken:
        try:
            data = await self.graph.get("oauth/access_token", params=params)
        except ProviderUnavailable:
            logger.error("❌ Token exchange failed: provider unavailable")
            raise
        except (InvalidToken, ProviderRequestError) as e:
            logger.error(f"❌ Token exchange rejected: {e.message}")
            raise TokenExchangeFailed(f"Token exchange failed: {e.message}", e.details) from e

        access_token = data.get("access_token")
        if not access_token:
            logger.error("❌ Token exchange response did not contain an access token")
            raise TokenExchangeFailed("Token exchange returned no access token")

        expires_in = data.get("expires_in")
        logger.info(f"✅ Token exchange successful - expires in: {expires_in if expires_in is not None else 'unknown'} seconds")
        return ExchangedToken(
            access_token=access_token,
            expires_in=int(expires_in) if expires_in is not None else None,
            token_type=data.get("token_type"),
        )
