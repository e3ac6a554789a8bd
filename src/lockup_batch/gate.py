"""Operator confirmation before any irreversible step."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple

import click
from rich.console import Console
from rich.table import Table

from .models import TransferInstruction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchPreview:
    """What the operator is asked to approve."""
    instructions: Tuple[TransferInstruction, ...]
    table_name: str
    safe_address: str
    chain_id: int
    include_approval: bool = False

    @property
    def total(self) -> int:
        return sum(i.amount_base_units for i in self.instructions)

    @property
    def question(self) -> str:
        return (
            "Do you want to proceed with the above mentioned transfers "
            f"for ** {self.table_name} **?"
        )


class ConfirmationGate(Protocol):
    """Blocks until the operator answers; ``True`` only on explicit consent."""

    def confirm(self, preview: BatchPreview) -> bool:
        ...


def render_preview(preview: BatchPreview) -> Table:
    """Batch as a rich table."""
    table = Table(title=f"Transfers in {preview.table_name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Beneficiary", style="cyan")
    table.add_column("Amount (base units)", justify="right")

    for index, instruction in enumerate(preview.instructions, start=1):
        table.add_row(
            str(index),
            instruction.name or "",
            instruction.beneficiary,
            instruction.amount,
        )

    table.caption = (
        f"{len(preview.instructions)} transfer(s), total {preview.total} | "
        f"Safe {preview.safe_address} on chain {preview.chain_id}"
        + (" | includes token approval" if preview.include_approval else "")
    )
    return table


class ConsoleConfirmationGate:
    """Interactive yes/no prompt on the terminal."""

    def __init__(
        self,
        console: Optional[Console] = None,
        prompt: Callable[..., bool] = click.confirm,
    ):
        self._console = console or Console()
        self._prompt = prompt

    def confirm(self, preview: BatchPreview) -> bool:
        self._console.print(render_preview(preview))
        # No default: an empty answer re-prompts instead of accepting
        answer = bool(self._prompt(preview.question, default=None))
        logger.info(f"Operator {'approved' if answer else 'declined'} batch {preview.table_name}")
        return answer


class ScriptedConfirmationGate:
    """Answers with a fixed value; records what it was shown."""

    def __init__(self, answer: bool):
        self._answer = answer
        self.previews: List[BatchPreview] = []

    def confirm(self, preview: BatchPreview) -> bool:
        self.previews.append(preview)
        return self._answer
