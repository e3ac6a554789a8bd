"""Batched token lockup proposals for Safe multisig accounts."""

from .config import BatchSettings, load_settings
from .coordinator import SafeTransactionServiceClient
from .encoding import ContractInterface, build_batch_calls, decode, encode
from .envelope import EnvelopeBuilder, encode_multi_send
from .errors import (
    ConfigurationError,
    DeviceNotConnected,
    EmptyBatch,
    EncodingError,
    InvalidAddress,
    LockupBatchError,
    NetworkError,
    PipelineError,
    RejectedByCoordinator,
    SchemaMismatch,
    SignatureMismatch,
    SignerError,
    SignerNotOwner,
    SourceDrift,
    SourceUnavailable,
    TransportTimeout,
    UserRejectedOnDevice,
)
from .gate import BatchPreview, ConsoleConfirmationGate, ScriptedConfirmationGate
from .hashing import compute_safe_tx_hash
from .models import (
    EncodedCall,
    OperationType,
    Proposal,
    ProposalHash,
    SafeInfo,
    Signature,
    TransactionEnvelope,
    TransferInstruction,
)
from .pipeline import PipelineResult, PipelineStatus, ProposalPipeline, build_pipeline
from .signing import HardwareSigner, LedgerTransport, LocalAccountSigner, create_signer
from .source import AirtableTransferSource, StaticTransferSource, TransferSnapshot
from .submitter import ProposalSubmitter

__version__ = "0.1.0"

__all__ = [
    "BatchSettings",
    "load_settings",
    "SafeTransactionServiceClient",
    "ContractInterface",
    "build_batch_calls",
    "decode",
    "encode",
    "EnvelopeBuilder",
    "encode_multi_send",
    "ConfigurationError",
    "DeviceNotConnected",
    "EmptyBatch",
    "EncodingError",
    "InvalidAddress",
    "LockupBatchError",
    "NetworkError",
    "PipelineError",
    "RejectedByCoordinator",
    "SchemaMismatch",
    "SignatureMismatch",
    "SignerError",
    "SignerNotOwner",
    "SourceDrift",
    "SourceUnavailable",
    "TransportTimeout",
    "UserRejectedOnDevice",
    "BatchPreview",
    "ConsoleConfirmationGate",
    "ScriptedConfirmationGate",
    "compute_safe_tx_hash",
    "EncodedCall",
    "OperationType",
    "Proposal",
    "ProposalHash",
    "SafeInfo",
    "Signature",
    "TransactionEnvelope",
    "TransferInstruction",
    "PipelineResult",
    "PipelineStatus",
    "ProposalPipeline",
    "build_pipeline",
    "HardwareSigner",
    "LedgerTransport",
    "LocalAccountSigner",
    "create_signer",
    "AirtableTransferSource",
    "StaticTransferSource",
    "TransferSnapshot",
    "ProposalSubmitter",
]
