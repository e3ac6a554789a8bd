"""Proposal pipeline.

Runs the stages of one batch proposal in a fixed order:

    fetch -> confirm -> encode -> build -> hash -> sign -> submit

Nothing after ``confirm`` runs unless the operator approves the batch, and
nothing reaches the signer unless encoding, envelope construction and hashing
all succeeded. Every stage failure is raised as :class:`PipelineError` naming
the stage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from rich.console import Console

from .config import BatchSettings
from .coordinator import SafeTransactionServiceClient
from .encoding import ContractInterface, build_batch_calls
from .envelope import EnvelopeBuilder
from .errors import EmptyBatch, PipelineError, SignerError, SignerNotOwner
from .gate import BatchPreview, ConfirmationGate, ConsoleConfirmationGate
from .hashing import compute_safe_tx_hash
from .logging_utils import StageLogger, mask_address
from .models import Proposal, ProposalHash, SafeInfo, Signature, summarize_calls
from .signing import HardwareTransport, Signer, create_signer
from .source import AirtableTransferSource, TransferSnapshot, TransferSource, take_snapshot, verify_snapshot
from .submitter import ProposalSubmitter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineStatus(str, Enum):
    """Outcome of a pipeline run."""
    PROPOSED = "proposed"
    DECLINED = "declined"


@dataclass
class PipelineResult:
    """Result of one run."""
    status: PipelineStatus
    run_id: str
    snapshot: TransferSnapshot
    proposal: Optional[Proposal] = None
    proposal_id: Optional[str] = None

    @property
    def proposed(self) -> bool:
        return self.status == PipelineStatus.PROPOSED


class ProposalPipeline:
    """Orchestrates one batch proposal for a multisig account."""

    def __init__(
        self,
        settings: BatchSettings,
        source: TransferSource,
        gate: ConfirmationGate,
        factory_interface: ContractInterface,
        token_interface: Optional[ContractInterface],
        builder: EnvelopeBuilder,
        signer: Signer,
        submitter: ProposalSubmitter,
        coordinator: SafeTransactionServiceClient,
        on_signer_unavailable: Optional[Callable[[SignerError], bool]] = None,
        verify_source: bool = False,
        stage_logger: Optional[StageLogger] = None,
    ):
        self._settings = settings
        self._source = source
        self._gate = gate
        self._factory_interface = factory_interface
        self._token_interface = token_interface
        self._builder = builder
        self._signer = signer
        self._submitter = submitter
        self._coordinator = coordinator
        self._on_signer_unavailable = on_signer_unavailable
        self._verify_source = verify_source
        self.stages = stage_logger or StageLogger()

    def _stage(self, name: str, fn: Callable[..., T], *args: Any, **metadata: Any) -> T:
        try:
            with self.stages.stage(name, **metadata):
                return fn(*args)
        except Exception as e:
            raise PipelineError(name, e) from e

    # ============ Stages ============

    def _fetch(self) -> TransferSnapshot:
        snapshot = take_snapshot(self._source)
        if not snapshot.instructions:
            raise EmptyBatch(f"{snapshot.source_label} has no transfer records")
        logger.info(f"Snapshot of {snapshot.source_label}: {len(snapshot)} transfer(s), total {snapshot.total}")
        return snapshot

    def _confirm(self, snapshot: TransferSnapshot) -> bool:
        preview = BatchPreview(
            instructions=snapshot.instructions,
            table_name=snapshot.source_label,
            safe_address=self._settings.safe.address,
            chain_id=self._settings.safe.chain_id,
            include_approval=self._settings.contracts.include_approval,
        )
        return self._gate.confirm(preview)

    def _encode(self, snapshot: TransferSnapshot):
        if self._verify_source:
            verify_snapshot(snapshot, self._source)
        contracts = self._settings.contracts
        return build_batch_calls(
            snapshot.instructions,
            token_address=contracts.token_address,
            factory_address=contracts.factory_address,
            factory_interface=self._factory_interface,
            token_interface=self._token_interface,
            include_approval=contracts.include_approval,
        )

    def _build(self, calls):
        safe_address = self._settings.safe.address
        safe_info = self._coordinator.get_safe_info(safe_address)
        nonce = self._coordinator.next_nonce(safe_address, info=safe_info)
        logger.debug(f"Batch calls: {summarize_calls(list(calls))}")
        envelope = self._builder.build(safe_address, calls, nonce=nonce)
        return safe_info, envelope

    def _signer_address(self, safe_info: SafeInfo) -> str:
        address = self._signer.get_address(self._settings.signer.derivation_path)
        if safe_info.owners and not safe_info.is_owner(address):
            raise SignerNotOwner(address, safe_info.address)
        return address

    def _sign(self, proposal_hash: ProposalHash, safe_info: SafeInfo) -> Signature:
        path = self._settings.signer.derivation_path
        while True:
            try:
                self._signer_address(safe_info)
                return self._signer.sign(proposal_hash, path)
            except SignerError as e:
                if not e.recoverable or self._on_signer_unavailable is None:
                    raise
                if not self._on_signer_unavailable(e):
                    raise
                logger.warning(f"Signer unavailable ({e}); reconnecting and retrying")
                self._signer.reconnect()

    # ============ Run ============

    def run(self) -> PipelineResult:
        """Execute all stages and return the outcome.

        Raises:
            PipelineError: a stage failed; ``.stage`` and ``.cause`` say which and why
        """
        run_id = self.stages.run_id
        snapshot = self._stage("fetch", self._fetch, source=self._source.label)

        approved = self._stage("confirm", self._confirm, snapshot, transfers=len(snapshot))
        if not approved:
            logger.info(f"Run {run_id} declined by operator")
            return PipelineResult(status=PipelineStatus.DECLINED, run_id=run_id, snapshot=snapshot)

        calls = self._stage("encode", self._encode, snapshot, verify_source=self._verify_source)
        safe_info, envelope = self._stage(
            "build", self._build, calls, safe=mask_address(self._settings.safe.address)
        )
        proposal_hash = self._stage(
            "hash",
            compute_safe_tx_hash,
            envelope,
            self._settings.safe.chain_id,
            safe_info.version,
            nonce=envelope.nonce,
        )
        signature = self._stage("sign", self._sign, proposal_hash, safe_info, hash=proposal_hash.hex())

        proposal = Proposal(
            envelope=envelope,
            hash=proposal_hash,
            signer_address=signature.signer_address,
            signature=signature,
            origin=self._settings.safe.origin,
        )
        proposal_id = self._stage("submit", self._submitter.submit, proposal, hash=proposal_hash.hex())

        return PipelineResult(
            status=PipelineStatus.PROPOSED,
            run_id=run_id,
            snapshot=snapshot,
            proposal=proposal,
            proposal_id=proposal_id,
        )

    def close(self) -> None:
        for collaborator in (self._source, self._coordinator, self._signer):
            close = getattr(collaborator, "close", None)
            if close:
                close()


def build_pipeline(
    settings: BatchSettings,
    console: Optional[Console] = None,
    gate: Optional[ConfirmationGate] = None,
    on_signer_unavailable: Optional[Callable[[SignerError], bool]] = None,
    verify_source: bool = False,
    transport: Optional[HardwareTransport] = None,
) -> ProposalPipeline:
    """Wire the production collaborators from settings."""
    coordinator = SafeTransactionServiceClient(settings.safe)
    contracts = settings.contracts
    return ProposalPipeline(
        settings=settings,
        source=AirtableTransferSource(settings.source),
        gate=gate or ConsoleConfirmationGate(console=console),
        factory_interface=ContractInterface.load("TokenLockupFactory"),
        token_interface=ContractInterface.load("ERC20") if contracts.include_approval else None,
        builder=EnvelopeBuilder(contracts.multi_send_address, nonce_source=coordinator),
        signer=create_signer(settings.signer.kind, settings.signer.private_key, transport),
        submitter=ProposalSubmitter(coordinator, max_retries=settings.safe.max_retries),
        coordinator=coordinator,
        on_signer_unavailable=on_signer_unavailable,
        verify_source=verify_source,
    )
