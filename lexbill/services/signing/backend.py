"""HTTP client for the delegated signing service.

The signing service holds the cryptographic machinery; this client only
asks it to inspect a credential and to sign a PDF. Transport errors and
5xx responses are retried with exponential backoff via tenacity. A 4xx
response means the service refused the credential and is not retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lexbill.core.exceptions import CredentialInvalidError, SigningBackendUnavailableError
from lexbill.models.domain import CredentialInfo

if TYPE_CHECKING:
    from lexbill.models.domain import SigningCredential

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class SignerBackend(Protocol):
    """What the delegated strategy needs from an external signer."""

    async def inspect_credential(self, credential: SigningCredential) -> CredentialInfo: ...

    async def sign(self, data: bytes, credential: SigningCredential) -> bytes: ...


class _ServerError(Exception):
    """A 5xx answer from the signing service; retried."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Signing service returned HTTP {status_code}")


class HttpSignerBackend:
    """Async client for the signing service REST API."""

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        *,
        max_attempts: int = 3,
        backoff_max_seconds: float = 8.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None
        self._max_attempts = max_attempts
        self._backoff_max = backoff_max_seconds

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        """POST with retry. Raises typed signing errors."""
        url = f"{self._base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.5, max=self._backoff_max),
            ):
                with attempt:
                    logger.debug(
                        "signer_request",
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self._client.post(url, **kwargs)
                    if response.status_code >= 500:
                        raise _ServerError(response.status_code)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            logger.warning("signer_unavailable", url=url, error=str(cause))
            raise SigningBackendUnavailableError(
                "Signing service is unavailable",
                details={"url": url, "error": str(cause)},
            ) from cause

        if response.status_code >= 400:
            raise CredentialInvalidError(
                "Signing service rejected the credential",
                details={"status_code": response.status_code, "body": response.text[:200]},
            )
        return response

    async def inspect_credential(self, credential: SigningCredential) -> CredentialInfo:
        response = await self._post(
            "/credentials/inspect",
            json={"path": credential.path, "passphrase": credential.passphrase},
        )
        return CredentialInfo.model_validate(response.json())

    async def sign(self, data: bytes, credential: SigningCredential) -> bytes:
        response = await self._post(
            "/sign",
            data={"credential_path": credential.path, "passphrase": credential.passphrase},
            files={"document": ("document.pdf", data, "application/pdf")},
        )
        return response.content
