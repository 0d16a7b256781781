"""
HTTP / JSON-RPC Transport

Shared requests.Session wrapper used by the non-EVM chain and bank clients.
Maps transport failures onto ProviderError kinds so every client reports
errors the same way.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from .errors import ProviderError, ProviderErrorKind, is_rate_limit_message
from .models import ProviderKind

logger = logging.getLogger(__name__)

USER_AGENT = "balancebook/0.1"


def kind_for_status(status_code: int) -> ProviderErrorKind:
    """Map an HTTP error status onto a ProviderError kind."""
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ProviderErrorKind.UNAUTHORIZED
    if status_code in (400, 404, 422):
        return ProviderErrorKind.INVALID_IDENTIFIER
    if status_code >= 500:
        return ProviderErrorKind.UNREACHABLE
    return ProviderErrorKind.MALFORMED_RESPONSE


def kind_for_rpc_message(message: str) -> ProviderErrorKind:
    """Map a JSON-RPC error message onto a ProviderError kind."""
    lowered = message.lower()
    if is_rate_limit_message(lowered):
        return ProviderErrorKind.RATE_LIMITED
    if "invalid" in lowered or "does not exist" in lowered or "not found" in lowered:
        return ProviderErrorKind.INVALID_IDENTIFIER
    return ProviderErrorKind.MALFORMED_RESPONSE


class HttpTransport:
    """requests.Session wrapper with timeouts, one connection retry and error mapping."""

    def __init__(
        self,
        provider_kind: ProviderKind,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
        retries: int = 1,
        backoff: float = 0.5,
    ):
        self.provider_kind = provider_kind
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        if headers:
            self.session.headers.update(headers)
        self._request_id = 0

    def error(self, kind: ProviderErrorKind, message: str) -> ProviderError:
        return ProviderError(kind, message, provider_kind=self.provider_kind.value)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Send an HTTP request, retrying connection failures.

        Returns:
            Response with a 2xx status

        Raises:
            ProviderError: On timeout, connection failure or error status
        """
        kwargs.setdefault("timeout", self.timeout)
        attempt = 0
        while True:
            try:
                response = self.session.request(method, url, **kwargs)
                break
            except requests.exceptions.Timeout:
                raise self.error(ProviderErrorKind.TIMEOUT, f"{method} {url} timed out") from None
            except requests.exceptions.ConnectionError as e:
                if attempt < self.retries:
                    attempt += 1
                    logger.debug(f"Connection to {url} failed, retrying ({attempt}/{self.retries}): {e}")
                    time.sleep(self.backoff * attempt)
                    continue
                raise self.error(ProviderErrorKind.UNREACHABLE, f"{method} {url} failed: {e}") from None
            except requests.exceptions.RequestException as e:
                raise self.error(ProviderErrorKind.UNREACHABLE, f"{method} {url} failed: {e}") from None

        if response.status_code >= 400:
            detail = response.text[:200] if response.text else response.reason
            raise self.error(kind_for_status(response.status_code), f"HTTP {response.status_code}: {detail}")
        return response

    def get_json(self, url: str, **kwargs) -> Any:
        return self._decode(self.request("GET", url, **kwargs))

    def post_json(self, url: str, payload: Any, **kwargs) -> Any:
        return self._decode(self.request("POST", url, json=payload, **kwargs))

    def rpc(self, url: str, method: str, params: Any) -> Any:
        """
        Make a JSON-RPC 2.0 call and return its result field.

        Raises:
            ProviderError: On transport failure, an RPC error object or a missing result
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        body = self.post_json(url, payload)
        if not isinstance(body, dict):
            raise self.error(ProviderErrorKind.MALFORMED_RESPONSE, f"{method}: response is not an object")

        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            data = error.get("data") if isinstance(error, dict) else None
            if data:
                message = f"{message} ({data})"
            raise self.error(kind_for_rpc_message(message), f"{method}: {message}")

        if "result" not in body:
            raise self.error(ProviderErrorKind.MALFORMED_RESPONSE, f"{method}: missing result")
        return body["result"]

    def _decode(self, response: requests.Response) -> Any:
        try:
            return response.json(parse_float=Decimal)
        except ValueError:
            raise self.error(
                ProviderErrorKind.MALFORMED_RESPONSE,
                f"Invalid JSON from {response.url}: {response.text[:200]!r}",
            ) from None


def dig(payload: Any, path: List[Any], transport: HttpTransport, what: str) -> Any:
    """
    Walk nested dict/list keys, raising a malformed_response error on the first miss.

    Args:
        payload: Decoded JSON
        path: Keys and indexes to follow
        transport: Transport used to tag the error with its provider kind
        what: Human-readable name of the value for the error message
    """
    current = payload
    for key in path:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            raise transport.error(ProviderErrorKind.MALFORMED_RESPONSE, f"Missing {what} in response") from None
    return current
