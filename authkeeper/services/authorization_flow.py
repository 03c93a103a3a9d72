"""
Interactive authorization: a one-shot loopback listener that captures the
provider's redirect and trades the authorization code for a grant.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import secrets
import webbrowser
from typing import Callable, Iterable, Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

from authkeeper.clients.google_auth import GoogleOAuthClient
from authkeeper.core.errors import (
    AuthorizationDeniedError,
    AuthorizationFlowError,
    AuthorizationTimeoutError,
    ConfigurationError,
    MissingAuthorizationCodeError,
)
from authkeeper.models.credential import TokenGrant

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = "Authentication successful! Please return to the console."
_DENIED_PAGE = "Authorization rejected."
_NO_CODE_PAGE = "No authentication code provided."


def _loopback_bind_host(hostname: Optional[str]) -> str:
    """Return the address to bind for a redirect host, or raise if it is not loopback."""
    if not hostname:
        raise ConfigurationError("redirect_uri has no host; it must point to localhost.")
    if hostname.lower() == "localhost":
        return "127.0.0.1"
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        address = None
    if address is None or not address.is_loopback:
        raise ConfigurationError(
            f"redirect_uri must point to localhost for local authentication (got {hostname!r})."
        )
    return str(address)


async def _read_request_head(reader: asyncio.StreamReader) -> bytes:
    """Return the request line after consuming the headers."""
    request_line = await reader.readline()
    while (await reader.readline()) not in (b"\r\n", b"\n", b""):
        pass
    return request_line


def _http_response(status: str, body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        "Content-Type: text/plain; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n\r\n"
    )
    return head.encode("ascii") + payload


class AuthorizationFlowRunner:
    """Runs the browser consent flow when no reusable credential exists."""

    def __init__(
        self,
        *,
        timeout: float = 300.0,
        opener: Callable[[str], object] = webbrowser.open,
    ) -> None:
        self._timeout = timeout
        self._opener = opener

    async def run(self, oauth_client: GoogleOAuthClient, scopes: Iterable[str]) -> TokenGrant:
        """Obtain a brand-new grant for exactly ``scopes``.

        Raises :class:`ConfigurationError` before opening any socket when the
        registered redirect target is not a loopback address.
        """
        redirect = urlsplit(oauth_client.registration.redirect_uri)
        bind_host = _loopback_bind_host(redirect.hostname)
        callback_path = redirect.path or "/"
        state = secrets.token_urlsafe(16)
        loop = asyncio.get_running_loop()
        code_future: asyncio.Future[str] = loop.create_future()
        connections: set[asyncio.StreamWriter] = set()

        async def handle_callback(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            connections.add(writer)
            try:
                try:
                    request_line = await asyncio.wait_for(_read_request_head(reader), timeout=self._timeout)
                except asyncio.TimeoutError:
                    logger.debug("Dropping idle connection to the OAuth callback listener")
                    return
                if not request_line:
                    return
                parts = request_line.decode("latin-1").split(" ")
                if len(parts) < 2:
                    writer.write(_http_response("400 Bad Request", "Malformed request."))
                elif urlsplit(parts[1]).path != callback_path or code_future.done():
                    writer.write(_http_response("404 Not Found", "Invalid callback URL"))
                else:
                    page = self._resolve(code_future, urlsplit(parts[1]).query, state)
                    writer.write(_http_response("200 OK", page))
                await writer.drain()
            except ConnectionError as exc:
                logger.debug("OAuth callback connection dropped: %s", exc)
            except Exception as exc:
                logger.error("Error in OAuth callback handler: %s", exc)
                if not code_future.done():
                    code_future.set_exception(AuthorizationFlowError(f"OAuth callback failed: {exc}"))
            finally:
                connections.discard(writer)
                writer.close()

        server = await asyncio.start_server(handle_callback, bind_host, redirect.port or 0)
        try:
            port = server.sockets[0].getsockname()[1]
            netloc = f"[{redirect.hostname}]:{port}" if ":" in redirect.hostname else f"{redirect.hostname}:{port}"
            redirect_uri = urlunsplit((redirect.scheme or "http", netloc, callback_path, "", ""))

            authorization_url = oauth_client.build_authorization_url(
                scopes, redirect_uri=redirect_uri, state=state
            )
            logger.info("Open this URL to authenticate: %s", authorization_url)
            try:
                self._opener(authorization_url)
            except Exception as exc:
                logger.warning("Failed to open browser automatically: %s", exc)

            try:
                code = await asyncio.wait_for(code_future, timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise AuthorizationTimeoutError(
                    f"No authorization callback received within {self._timeout:g}s."
                ) from exc

            return await oauth_client.exchange_authorization_code(code, redirect_uri=redirect_uri)
        finally:
            server.close()
            # wait_closed() also waits for open client connections on 3.12+.
            for writer in list(connections):
                writer.close()
            await server.wait_closed()

    @staticmethod
    def _resolve(code_future: "asyncio.Future[str]", query: str, state: str) -> str:
        """Settle the pending future from the callback query; return the page text."""
        params = parse_qs(query)
        if "error" in params:
            reason = params["error"][0] or "access_denied"
            code_future.set_exception(AuthorizationDeniedError(f"Authorization denied: {reason}"))
            return _DENIED_PAGE
        if params.get("state", [None])[0] != state:
            code_future.set_exception(AuthorizationFlowError("OAuth state mismatch in callback"))
            return "State mismatch."
        code = params.get("code", [""])[0]
        if not code:
            code_future.set_exception(MissingAuthorizationCodeError("No authentication code in OAuth callback"))
            return _NO_CODE_PAGE
        code_future.set_result(code)
        return _SUCCESS_PAGE


__all__ = ["AuthorizationFlowRunner"]
