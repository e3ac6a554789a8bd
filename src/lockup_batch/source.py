"""Transfer source adapters.

The Airtable adapter reads one table/view, follows pagination and turns each
record into a :class:`TransferInstruction`. Reads have no side effects, so a
source can be fetched again to check that the data the operator reviewed is
still what the table holds.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import httpx
from web3 import Web3

from .config import SourceSettings
from .errors import ConfigurationError, SchemaMismatch, SourceDrift, SourceUnavailable
from .models import TransferInstruction

logger = logging.getLogger(__name__)


class TransferSource(Protocol):
    """Anything that can produce a batch of transfer instructions."""

    label: str

    def fetch(self) -> Tuple[TransferInstruction, ...]:
        ...


@dataclass(frozen=True)
class TransferSnapshot:
    """The one canonical read of the source used for review and encoding."""
    instructions: Tuple[TransferInstruction, ...]
    source_label: str
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total(self) -> int:
        return total_amount(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    def matches(self, instructions: Iterable[TransferInstruction]) -> bool:
        return tuple(instructions) == self.instructions


def total_amount(instructions: Iterable[TransferInstruction]) -> int:
    """Sum of amounts in base units."""
    return sum(i.amount_base_units for i in instructions)


def take_snapshot(source: TransferSource) -> TransferSnapshot:
    return TransferSnapshot(instructions=tuple(source.fetch()), source_label=source.label)


def verify_snapshot(snapshot: TransferSnapshot, source: TransferSource) -> None:
    """Re-read the source and fail if it no longer matches the snapshot."""
    current = tuple(source.fetch())
    if snapshot.matches(current):
        return
    raise SourceDrift(
        f"{source.label} changed after review: "
        f"{len(snapshot)} reviewed record(s), {len(current)} now",
        reviewed=len(snapshot),
        current=len(current),
    )


# ============ Normalization ============


def normalize_beneficiary(raw: Any, record_id: Optional[str], field_name: str) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise SchemaMismatch(
            f"Record {record_id} has no value for '{field_name}'", record_id, field_name
        )
    value = raw.strip()
    if not Web3.is_address(value):
        raise SchemaMismatch(
            f"Record {record_id} has an invalid address in '{field_name}': {value!r}",
            record_id,
            field_name,
        )
    return Web3.to_checksum_address(value)


def normalize_amount(
    raw: Any,
    record_id: Optional[str],
    field_name: str,
    unit: str = "base",
    decimals: int = 18,
) -> str:
    """Return the amount as an integer string in base units."""
    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise SchemaMismatch(
            f"Record {record_id} has no value for '{field_name}'", record_id, field_name
        )
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation:
        raise SchemaMismatch(
            f"Record {record_id} has a non-numeric amount: {raw!r}", record_id, field_name
        ) from None

    if not amount.is_finite() or amount < 0:
        raise SchemaMismatch(
            f"Record {record_id} has an invalid amount: {raw!r}", record_id, field_name
        )

    if unit == "token":
        with localcontext() as ctx:
            ctx.prec = 120
            amount = amount.scaleb(decimals)

    if amount != amount.to_integral_value():
        raise SchemaMismatch(
            f"Record {record_id} amount {raw!r} is not a whole number of base units",
            record_id,
            field_name,
        )
    return str(int(amount))


# ============ Sources ============


class StaticTransferSource:
    """Fixed list of instructions (replays and tests)."""

    def __init__(self, instructions: Iterable[TransferInstruction], label: str = "static"):
        self._instructions = tuple(instructions)
        self.label = label
        self.fetch_count = 0

    def fetch(self) -> Tuple[TransferInstruction, ...]:
        self.fetch_count += 1
        return self._instructions


class AirtableTransferSource:
    """Read-only Airtable table adapter."""

    def __init__(self, settings: SourceSettings, client: Optional[httpx.Client] = None):
        self._settings = settings
        self._client = client
        self.label = settings.table_name

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            if not self._settings.api_key:
                raise ConfigurationError(
                    "Airtable API key is not configured", "source.api_key"
                )
            self._client = httpx.Client(
                base_url=self._settings.base_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self._settings.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._settings.timeout,
            )
        return self._client

    @property
    def path(self) -> str:
        return f"/{self._settings.base_id}/{self._settings.table_name}"

    def _get_page(self, offset: Optional[str]) -> Dict[str, Any]:
        params = {"view": self._settings.view}
        if offset:
            params["offset"] = offset
        try:
            response = self.client.get(self.path, params=params)
        except httpx.TimeoutException as e:
            raise SourceUnavailable(f"Airtable request timed out: {e}") from e
        except httpx.RequestError as e:
            raise SourceUnavailable(f"Airtable unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = None
            error = error_body.get("error") if isinstance(error_body, dict) else None
            if isinstance(error, dict):
                message = error.get("message") or error.get("type")
            else:
                message = error or response.text or "Unknown error"
            raise SourceUnavailable(
                f"Airtable returned {response.status_code}: {message}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SchemaMismatch(f"Airtable returned a non-JSON body: {e}") from e
        if not isinstance(body, dict) or not isinstance(body.get("records"), list):
            raise SchemaMismatch("Airtable response has no 'records' list")
        return body

    def fetch_records(self) -> List[Dict[str, Any]]:
        """All raw records of the view, following pagination."""
        records: List[Dict[str, Any]] = []
        offset: Optional[str] = None
        pages = 0
        while True:
            body = self._get_page(offset)
            pages += 1
            records.extend(body["records"])
            offset = body.get("offset")
            if not offset:
                break
        logger.info(f"Fetched {len(records)} record(s) from {self.label} in {pages} page(s)")
        return records

    def to_instruction(self, record: Dict[str, Any]) -> TransferInstruction:
        s = self._settings
        record_id = record.get("id")
        fields = record.get("fields")
        if not isinstance(fields, dict):
            raise SchemaMismatch(f"Record {record_id} has no fields", record_id, "fields")
        for required in (s.beneficiary_field, s.amount_field):
            if required not in fields:
                raise SchemaMismatch(
                    f"Record {record_id} lacks required field '{required}'",
                    record_id,
                    required,
                )
        name = fields.get(s.name_field)
        return TransferInstruction(
            beneficiary=normalize_beneficiary(fields[s.beneficiary_field], record_id, s.beneficiary_field),
            amount=normalize_amount(
                fields[s.amount_field],
                record_id,
                s.amount_field,
                unit=s.amount_unit,
                decimals=s.token_decimals,
            ),
            name=str(name) if name is not None else None,
        )

    def fetch(self) -> Tuple[TransferInstruction, ...]:
        return tuple(self.to_instruction(r) for r in self.fetch_records())

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None
