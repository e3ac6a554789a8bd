"""Safe Transaction Service client.

Only the endpoints the proposal flow needs:

- ``GET  /api/v1/safes/{address}/``                          Safe nonce, owners, version
- ``GET  /api/v1/safes/{address}/multisig-transactions/``     pending proposals
- ``GET  /api/v1/multisig-transactions/{safe_tx_hash}/``      lookup by hash
- ``POST /api/v1/safes/{address}/multisig-transactions/``     propose
- ``POST /api/v1/multisig-transactions/{safe_tx_hash}/confirmations/`` add a signature
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import SafeSettings
from .errors import NetworkError, RejectedByCoordinator
from .models import Proposal, SafeInfo

logger = logging.getLogger(__name__)


class SafeTransactionServiceClient:
    """HTTP client for the Safe Transaction Service."""

    def __init__(self, settings: SafeSettings, client: Optional[httpx.Client] = None):
        self._settings = settings
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._settings.service_api_key:
                headers["Authorization"] = f"Bearer {self._settings.service_api_key}"
            self._client = httpx.Client(
                base_url=self._settings.service_url.rstrip("/"),
                headers=headers,
                timeout=self._settings.timeout,
            )
        return self._client

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _error_reason(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text or "Unknown error"

    def _handle_response(self, response: httpx.Response) -> Any:
        """Raise on error responses, return the decoded body otherwise."""
        if response.status_code >= 500 or response.status_code == 429:
            raise NetworkError(
                f"Safe Transaction Service returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            reason = self._error_reason(response)
            raise RejectedByCoordinator(
                f"Safe Transaction Service rejected the request ({response.status_code}): {reason}",
                status_code=response.status_code,
                reason=reason,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def get_safe_info(self, safe_address: str) -> SafeInfo:
        body = self._handle_response(self._request("GET", f"/api/v1/safes/{safe_address}/"))
        return SafeInfo(
            address=body["address"],
            nonce=int(body["nonce"]),
            threshold=int(body.get("threshold", 0)),
            owners=tuple(body.get("owners", [])),
            version=body.get("version"),
        )

    def get_pending_nonce(self, safe_address: str, from_nonce: int) -> Optional[int]:
        """Highest nonce of an unexecuted proposal at or above ``from_nonce``."""
        params = {
            "executed": "false",
            "nonce__gte": from_nonce,
            "ordering": "-nonce",
            "limit": 1,
        }
        body = self._handle_response(
            self._request("GET", f"/api/v1/safes/{safe_address}/multisig-transactions/", params=params)
        )
        results = (body or {}).get("results") or []
        if not results:
            return None
        return int(results[0]["nonce"])

    def next_nonce(self, safe_address: str, info: Optional[SafeInfo] = None) -> int:
        """Next nonce that does not collide with the Safe or a pending proposal.

        ``info`` skips the Safe lookup when the caller already fetched it.
        """
        if info is None:
            info = self.get_safe_info(safe_address)
        pending = self.get_pending_nonce(safe_address, info.nonce)
        nonce = info.nonce if pending is None else max(info.nonce, pending + 1)
        logger.info(f"Next nonce for {safe_address}: {nonce} (on-chain {info.nonce}, pending {pending})")
        return nonce

    def get_transaction(self, safe_tx_hash: str) -> Optional[Dict[str, Any]]:
        """Proposal by hash, or None when the service does not know it."""
        response = self._request("GET", f"/api/v1/multisig-transactions/{safe_tx_hash}/")
        if response.status_code == 404:
            return None
        return self._handle_response(response)

    def propose_transaction(self, proposal: Proposal) -> None:
        path = f"/api/v1/safes/{proposal.envelope.safe_address}/multisig-transactions/"
        self._handle_response(self._request("POST", path, json=proposal.to_service_payload()))
        logger.info(f"Proposed {proposal.hash.hex()} to the Safe Transaction Service")

    def confirm_transaction(self, safe_tx_hash: str, signature: str) -> None:
        """Add an owner signature to an already proposed transaction."""
        path = f"/api/v1/multisig-transactions/{safe_tx_hash}/confirmations/"
        self._handle_response(self._request("POST", path, json={"signature": signature}))
        logger.info(f"Added confirmation to {safe_tx_hash}")

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None
