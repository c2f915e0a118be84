"""HTTP client for the OpenRouter-compatible chat-completions API.

The client turns the transport into a small typed failure taxonomy so the
pipeline can decide what is retryable without knowing about ``requests``:

- ``TransientNetworkError``: connection refused/reset, name resolution,
  TLS handshake, socket timeouts.  Retryable.
- ``CompletionHTTPError``: the server answered with a non-2xx status.
  Carries ``status_code``; never retried.
- ``CompletionFormatError``: a 2xx answer whose body is not the expected
  JSON shape.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import requests
from pydantic import ValidationError

from pwaforge.models.completion import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)


class TransientNetworkError(RuntimeError):
    """Network-level failure that is worth retrying."""


class CompletionHTTPError(RuntimeError):
    """Non-2xx response from the completion API."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")


class CompletionFormatError(RuntimeError):
    """2xx response whose body could not be understood."""


@runtime_checkable
class CompletionClient(Protocol):
    """Anything that can run a chat completion with a bearer credential."""

    def complete(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        ...


def _error_message(response: requests.Response) -> str:
    """Best-effort extraction of ``error.message`` from an error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text[:200]


class OpenRouterClient:
    """Blocking chat-completions client backed by a ``requests.Session``.

    Parameters
    ----------
    api_url:
        Full URL of the ``chat/completions`` endpoint.
    timeout_seconds:
        Applied to connect and read.
    site_url / site_title:
        Sent as ``HTTP-Referer`` and ``X-Title`` for attribution.
    session:
        Optional session to reuse (tests inject a fake).
    """

    def __init__(
        self,
        api_url: str,
        *,
        timeout_seconds: float = 120.0,
        site_url: str = "",
        site_title: str = "",
        session: requests.Session | None = None,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout_seconds
        self._site_url = site_url
        self._site_title = site_title
        self._session = session or requests.Session()

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self._site_url:
            headers["HTTP-Referer"] = self._site_url
        if self._site_title:
            headers["X-Title"] = self._site_title
        return headers

    def complete(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        """POST *request* and return the parsed response.

        Raises
        ------
        TransientNetworkError
            Connection, DNS, TLS or timeout failure.
        CompletionHTTPError
            Non-2xx status.
        CompletionFormatError
            Body is not a JSON completion response.
        """
        try:
            response = self._session.post(
                self._api_url,
                json=request.model_dump(mode="json"),
                headers=self._headers(api_key),
                timeout=self._timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            # SSLError and ConnectTimeout are ConnectionError subclasses
            raise TransientNetworkError(str(exc) or exc.__class__.__name__) from exc

        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "Completion API returned %d for model %s: %s",
                response.status_code, request.model, message,
            )
            raise CompletionHTTPError(response.status_code, message)

        try:
            return CompletionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise CompletionFormatError(f"Unexpected completion body: {exc}") from exc

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "OpenRouterClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"OpenRouterClient(api_url={self._api_url!r})"
