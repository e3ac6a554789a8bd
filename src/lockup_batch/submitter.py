"""Proposal submission with safe retries.

A proposal is fully determined by its envelope and hash, so re-sending the
same object after a transient failure cannot create a second, conflicting
proposal. Before every attempt the service is asked whether it already knows
the hash, which covers the case where an earlier attempt reached the service
but its response was lost.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Protocol

from .errors import NetworkError, SignatureMismatch
from .models import Proposal
from .signing import verify_signature

logger = logging.getLogger(__name__)


class ProposalService(Protocol):
    def get_transaction(self, safe_tx_hash: str) -> Optional[dict]:
        ...

    def propose_transaction(self, proposal: Proposal) -> None:
        ...

    def confirm_transaction(self, safe_tx_hash: str, signature: str) -> None:
        ...


def _confirmed_by(transaction: dict, owner: str) -> bool:
    for confirmation in transaction.get("confirmations") or []:
        if str(confirmation.get("owner", "")).lower() == owner.lower():
            return True
    return False


class ProposalSubmitter:
    """Sends signed proposals to the coordination service."""

    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BACKOFF_SECONDS = 1.0

    def __init__(
        self,
        service: ProposalService,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._service = service
        self._max_retries = max(1, max_retries)
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._submitted: Dict[str, Proposal] = {}

    def _submit_once(self, proposal: Proposal) -> None:
        proposal_id = proposal.hash.hex()
        existing = self._service.get_transaction(proposal_id)
        if existing is None:
            self._service.propose_transaction(proposal)
        elif _confirmed_by(existing, proposal.signer_address):
            logger.info(f"Proposal {proposal_id} already on the service with our signature")
        else:
            logger.info(f"Proposal {proposal_id} already on the service, adding our signature")
            self._service.confirm_transaction(proposal_id, proposal.signature.hex())

    def submit(self, proposal: Proposal) -> str:
        """Submit and return the proposal id (the safeTxHash).

        Raises:
            SignatureMismatch: signature does not belong to the proposal
            RejectedByCoordinator: not retried
            NetworkError: after all retries are exhausted
        """
        proposal_id = proposal.hash.hex()

        if (
            proposal.signature.signer_address.lower() != proposal.signer_address.lower()
            or not verify_signature(proposal.hash, proposal.signature)
        ):
            raise SignatureMismatch(
                f"Signature on {proposal_id} does not verify for {proposal.signer_address}",
                expected=proposal.signer_address,
            )

        if proposal_id in self._submitted:
            logger.info(f"Proposal {proposal_id} already submitted in this run")
            return proposal_id

        for attempt in range(self._max_retries):
            try:
                self._submit_once(proposal)
                break
            except NetworkError as e:
                if attempt >= self._max_retries - 1:
                    raise
                delay = self._backoff * (2 ** attempt)
                logger.warning(
                    f"Submitting {proposal_id} failed ({e}); retry {attempt + 1}/"
                    f"{self._max_retries - 1} in {delay:.1f}s"
                )
                self._sleep(delay)

        self._submitted[proposal_id] = proposal
        return proposal_id
