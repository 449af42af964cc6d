"""
Relay Service Client

An ``httpx.AsyncClient`` that speaks the LSP-15 relayer API: submit a
signed relay call for gasless execution and query an account's remaining
quota. Every failure, whether an HTTP status or a transport error, is
turned into a classified ``RelayError`` before it leaves the client.
"""

import asyncio
import logging
from typing import Optional, Union

import httpx

from ..adapters.bases import SubmissionPath
from ..adapters.evm.schemas import SignedEnvelope
from ..adapters.evm.signatures import sign_quota_request
from ..engine.exceptions import (
    MalformedRelayRequestError,
    NetworkUnavailableError,
    QuotaExceededError,
    RelayError,
    RelayUnauthorizedError,
    UnknownOutcomeError,
)
from ..schemas.bases import ExecutionOutcome, ExecutionPath, ExecutionResult
from ..schemas.https import (
    ClientRequestHeader,
    RelayErrorResponse,
    RelayExecuteRequest,
    RelayExecuteResponse,
    RelayQuotaRequest,
    RelayQuotaResponse,
    RelayTransaction,
)

logger = logging.getLogger(__name__)

_UNAUTHORIZED_MARKERS = ("invalid signature", "unauthorized", "unauthorised", "not authorised", "not authorized")


class RelayClient(httpx.AsyncClient, SubmissionPath):
    """
    Extended httpx.AsyncClient for a relay service.

    Fully compatible with httpx.AsyncClient: supports all methods and
    properties, and can be used as an async context manager.

    Failure classification:
        - 401 / 403, or a body mentioning an invalid signature or missing
          authorisation -> ``RelayUnauthorizedError``
        - 429, or a body mentioning quota -> ``QuotaExceededError``
        - other 4xx -> ``MalformedRelayRequestError``
        - 5xx -> ``UnknownOutcomeError`` (the relay received the call and
          may have broadcast it before failing)
        - connection failure before the request was sent -> ``NetworkUnavailableError``
        - timeout after the request was sent -> ``UnknownOutcomeError``

    Usage:
        ```python
        async with RelayClient("https://relayer.mainnet.lukso.network/api") as relay:
            result = await relay.submit(signed)
            quota = await relay.get_quota(profile, private_key=key)
        ```
    """

    path = ExecutionPath.RELAY

    def __init__(self, relayer_url: str, **kwargs):
        """
        Initialize client for one relay service.

        Args:
            relayer_url: Relay API base URL; ``/execute`` and ``/quota``
                are resolved relative to it.
            **kwargs: All standard httpx.AsyncClient arguments (timeout,
                transport, etc.)
        """
        kwargs.setdefault("timeout", 30.0)
        headers = ClientRequestHeader().model_dump(by_alias=True)
        headers.update(kwargs.pop("headers", None) or {})
        super().__init__(base_url=relayer_url.rstrip("/"), headers=headers, **kwargs)

    # =========================================================================
    # Execute
    # =========================================================================

    async def execute(self, signed: SignedEnvelope) -> RelayExecuteResponse:
        """
        ``POST /execute`` with the signed envelope.

        Returns:
            Parsed response carrying the transaction hash.

        Raises:
            RelayError: Classified failure.
        """
        request = RelayExecuteRequest(
            address=signed.identity.account_address,
            transaction=RelayTransaction(
                abi=signed.envelope.payload_hex(),
                signature=signed.signature.to_hex(),
                nonce=signed.nonce,
                validity_timestamps=signed.envelope.validity_window.to_hex(),
            ),
        )
        response = await self._post_classified("/execute", request.model_dump(mode="json", by_alias=True))

        try:
            return RelayExecuteResponse(**response.json())
        except ValueError as e:
            raise UnknownOutcomeError(
                f"Relay accepted the call ({response.status_code}) but returned no transaction hash: {response.text[:200]}"
            ) from e

    async def submit(self, signed: SignedEnvelope, timeout: Optional[float] = None) -> ExecutionResult:
        """
        Submit ``signed`` through the relay.

        Returns:
            ``ExecutionResult`` with ``path=RELAY`` and the relay's
            transaction hash. The relay pays gas, so ``gas_consumed`` is
            not reported.
        """
        try:
            response = await asyncio.wait_for(self.execute(signed), timeout)
        except asyncio.TimeoutError:
            raise UnknownOutcomeError(
                f"Relay submission timed out after {timeout}s; the relay may have accepted it. "
                f"Do not resubmit nonce {signed.nonce} until its on-chain state has been checked"
            )
        logger.info(f"Relay accepted call: tx={response.transaction_hash}, nonce={signed.nonce}, channel={signed.channel}")
        return ExecutionResult(
            outcome=ExecutionOutcome.SUCCESS,
            path=ExecutionPath.RELAY,
            transaction_reference=response.transaction_hash,
            nonce=signed.nonce,
            channel=signed.channel,
            message="Relay call accepted by relay service",
        )

    # =========================================================================
    # Quota
    # =========================================================================

    async def get_quota(self, account: str, *, private_key: str, timestamp: Optional[int] = None) -> RelayQuotaResponse:
        """
        ``POST /quota`` for ``account``. Advisory only: a positive quota
        does not guarantee the next submission is accepted.

        Args:
            account: Account whose quota is requested.
            private_key: Controller key used to sign the request.
            timestamp: Unix time to bind the request to; defaults to now.
        """
        signed_at, signature = sign_quota_request(private_key=private_key, account=account, timestamp=timestamp)
        request = RelayQuotaRequest(address=account, timestamp=signed_at, signature=signature)
        response = await self._post_classified("/quota", request.model_dump(mode="json"))
        return RelayQuotaResponse(**response.json())

    # =========================================================================
    # Utility Methods
    # =========================================================================

    async def _post_classified(self, endpoint: str, body: dict) -> httpx.Response:
        try:
            response = await self.post(endpoint, json=body)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise NetworkUnavailableError(f"Relay unreachable at {self.base_url}: {e}") from e
        except httpx.TimeoutException as e:
            raise UnknownOutcomeError(
                f"Relay {endpoint} timed out after the request was sent; the relay may have accepted it"
            ) from e
        except httpx.HTTPError as e:
            raise UnknownOutcomeError(f"Relay {endpoint} transport error after send: {e}") from e

        if response.is_success:
            return response

        error = self.classify_failure(response)
        logger.warning(f"Relay {endpoint} rejected request: status={response.status_code}, class={error.failure_class.value}")
        raise error

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body: Union[dict, str] = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict):
            try:
                return RelayErrorResponse(**body).describe() or str(body)
            except ValueError:
                return str(body)
        return str(body)

    @classmethod
    def classify_failure(cls, response: httpx.Response) -> RelayError:
        """Map a non-2xx relay response to the matching ``RelayError``."""
        status = response.status_code
        detail = cls._error_detail(response)
        lowered = detail.lower()

        if status in (401, 403) or any(marker in lowered for marker in _UNAUTHORIZED_MARKERS):
            return RelayUnauthorizedError(
                f"Relay rejected the controller ({status}): {detail}. "
                f"The relay verifies signatures through the account, which requires the SIGN permission"
            )
        if status == 429 or "quota" in lowered:
            return QuotaExceededError(f"Relay quota exhausted ({status}): {detail}")
        if 400 <= status < 500:
            return MalformedRelayRequestError(f"Relay refused the request ({status}): {detail}")
        return UnknownOutcomeError(
            f"Relay failed after receiving the request ({status}): {detail}. "
            f"The call may still be executed; check the nonce on-chain before resubmitting"
        )
