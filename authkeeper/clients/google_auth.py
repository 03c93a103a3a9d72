"""
Google OAuth utilities.

Builds consent URLs, exchanges authorization codes and redeems refresh
tokens. Every failure leaves this module as a :class:`ProviderError` whose
``kind`` says whether it is worth retrying, means the grant is gone, or is
something else entirely.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlencode

import httpx

from authkeeper.core.errors import ProviderError, ProviderErrorKind, TokenResponseError
from authkeeper.models.credential import TokenGrant, normalize_scopes
from authkeeper.models.registration import ClientRegistration

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_REVOKED_ERROR_CODES = frozenset({"invalid_grant", "invalid_token", "unauthorized_client"})


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("status") or error.get("message")
        return error
    return None


def classify_response(response: httpx.Response) -> ProviderError:
    """Turn a non-200 token endpoint response into a tagged error."""
    code = _error_code(response)
    message = f"Token endpoint returned {response.status_code}: {code or response.text[:200]}"
    if response.status_code == 401 or (code and code.lower() in _REVOKED_ERROR_CODES):
        kind = ProviderErrorKind.AUTHORIZATION_REVOKED
    elif response.status_code in _TRANSIENT_STATUS_CODES:
        kind = ProviderErrorKind.NETWORK_TRANSIENT
    else:
        kind = ProviderErrorKind.OTHER
    return ProviderError(message, kind, status_code=response.status_code)


def classify_transport_error(exc: httpx.HTTPError) -> ProviderError:
    """Connection resets, refusals, DNS failures and timeouts are transient."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        kind = ProviderErrorKind.NETWORK_TRANSIENT
    else:
        kind = ProviderErrorKind.OTHER
    return ProviderError(f"{type(exc).__name__}: {exc}", kind)


class GoogleOAuthClient:
    """Build Google authorization URLs and talk to the token endpoint."""

    def __init__(
        self,
        registration: ClientRegistration,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registration = registration
        self._timeout = timeout
        self._transport = transport

    @property
    def registration(self) -> ClientRegistration:
        return self._registration

    @property
    def token_url(self) -> str:
        return self._registration.token_uri

    def build_authorization_url(
        self,
        scopes: Iterable[str],
        *,
        redirect_uri: str,
        state: str,
        access_type: str = "offline",
    ) -> str:
        """Construct the consent URL.

        ``prompt=consent`` makes the provider show the full consent screen
        even when the user granted a subset of these scopes before; without
        it the provider may silently return a token limited to the old grant.
        """
        params = {
            "client_id": self._registration.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(normalize_scopes(scopes)),
            "access_type": access_type,
            "prompt": "consent",
            "state": state,
        }
        separator = "&" if "?" in self._registration.auth_uri else "?"
        return f"{self._registration.auth_uri}{separator}{urlencode(params)}"

    async def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.token_url, data=payload)
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc) from exc

        if response.status_code != httpx.codes.OK:
            raise classify_response(response)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise ProviderError("Token endpoint returned malformed JSON.", status_code=response.status_code) from exc
        if not isinstance(token_payload, dict):
            raise ProviderError("Token endpoint returned an unexpected payload.", status_code=response.status_code)
        return token_payload

    @staticmethod
    def _to_grant(token_payload: Dict[str, Any], context: str) -> TokenGrant:
        access_token = token_payload.get("access_token")
        if not access_token:
            raise TokenResponseError(f"No access token received from {context}.")
        expires_in = token_payload.get("expires_in")
        return TokenGrant(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            scopes=token_payload.get("scope"),
        )

    async def exchange_authorization_code(self, code: str, *, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for a fresh grant."""
        payload = {
            "code": code,
            "client_id": self._registration.client_id,
            "client_secret": self._registration.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        token_payload = await self._post_token(payload)
        return self._to_grant(token_payload, "authorization code exchange")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Redeem a refresh token for a renewed access token."""
        payload = {
            "client_id": self._registration.client_id,
            "client_secret": self._registration.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        token_payload = await self._post_token(payload)
        logger.debug("Refreshed access token via %s", self.token_url)
        return self._to_grant(token_payload, "token refresh")


__all__ = [
    "GoogleOAuthClient",
    "classify_response",
    "classify_transport_error",
]
