"""
Meta Graph API client
Thin httpx wrapper shared by the exchanger, resolver and verifier
"""

from typing import Any, Dict, Optional

import httpx

from config.settings import ProviderConfig
from utils.errors import InvalidToken, ProviderRequestError, ProviderUnavailable
from utils.logger import logger

# Graph error codes that mean the token itself is bad
AUTH_ERROR_CODES = {102, 190, 463, 467}
# Throttling codes; retrying later is the right answer
THROTTLE_ERROR_CODES = {4, 17, 32, 613}


class MetaGraphClient:
    """
    Issues GET requests against the versioned Graph API

    Every call is bounded by the configured timeout. Failures are classified as
    transient (ProviderUnavailable), authentication-class (InvalidToken) or
    other (ProviderRequestError) so callers can apply their own contract.
    """

    def __init__(self, config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a Graph API path

        Args:
            path: Path below the API version, e.g. "me" or "{waba_id}/phone_numbers"
            params: Query parameters (access_token included by the caller)

        Returns:
            Decoded JSON body
        """
        url = f"{self.config.versioned_base_url}/{path.lstrip('/')}"

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"⏱️ Graph API timeout on /{path}")
            raise ProviderUnavailable(f"Timed out calling /{path}") from e
        except httpx.TransportError as e:
            logger.warning(f"🌐 Graph API network error on /{path}: {type(e).__name__}")
            raise ProviderUnavailable(f"Network error calling /{path}") from e

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as e:
                raise ProviderRequestError(f"Invalid JSON from /{path}", response.status_code) from e

        self._raise_for_error(path, response)

    def _raise_for_error(self, path: str, response: httpx.Response) -> None:
        error = self._error_payload(response)
        code = error.get("code")
        message = error.get("message") or f"HTTP {response.status_code}"
        details = {"path": path, "status_code": response.status_code, "graph_code": code}

        logger.warning(f"⚠️ Graph API /{path} failed: status={response.status_code} code={code} type={error.get('type')}")

        if response.status_code >= 500 or code in THROTTLE_ERROR_CODES:
            raise ProviderUnavailable(message, details)
        if response.status_code == 401 or code in AUTH_ERROR_CODES:
            raise InvalidToken(message, details)
        raise ProviderRequestError(message, response.status_code, details)

    @staticmethod
    def _error_payload(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"]
        return {}
