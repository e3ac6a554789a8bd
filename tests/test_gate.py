"""Tests for gate.py: operator confirmation."""
from __future__ import annotations

from io import StringIO

from rich.console import Console

from lockup_batch.gate import BatchPreview, ConsoleConfirmationGate, ScriptedConfirmationGate, render_preview
from lockup_batch.models import TransferInstruction

from conftest import BENEFICIARY, CHAIN_ID, OWNER_ADDRESS, SAFE_ADDRESS


def make_preview(**overrides) -> BatchPreview:
    values = dict(
        instructions=(
            TransferInstruction(beneficiary=BENEFICIARY, amount="1000000", name="Alice"),
            TransferInstruction(beneficiary=OWNER_ADDRESS, amount="250", name=None),
        ),
        table_name="Batch_001",
        safe_address=SAFE_ADDRESS,
        chain_id=CHAIN_ID,
    )
    values.update(overrides)
    return BatchPreview(**values)


def recording_console() -> Console:
    return Console(file=StringIO(), width=200, color_system=None)


class TestBatchPreview:
    def test_total(self):
        assert make_preview().total == 1000250

    def test_question_names_table(self):
        assert make_preview().question == (
            "Do you want to proceed with the above mentioned transfers for ** Batch_001 **?"
        )


class TestRenderPreview:
    def test_rows_and_caption(self):
        console = recording_console()
        console.print(render_preview(make_preview(include_approval=True)))
        output = console.file.getvalue()
        assert "Alice" in output
        assert BENEFICIARY in output
        assert "1000000" in output
        assert "2 transfer(s), total 1000250" in output
        assert "includes token approval" in output


class TestConsoleConfirmationGate:
    def test_yes(self):
        prompts = []

        def prompt(question, default):
            prompts.append((question, default))
            return True

        gate = ConsoleConfirmationGate(console=recording_console(), prompt=prompt)
        assert gate.confirm(make_preview()) is True
        assert prompts == [(make_preview().question, None)]

    def test_no(self):
        gate = ConsoleConfirmationGate(console=recording_console(), prompt=lambda q, default: False)
        assert gate.confirm(make_preview()) is False

    def test_table_shown_before_prompt(self):
        console = recording_console()
        seen = []

        def prompt(question, default):
            seen.append(console.file.getvalue())
            return False

        ConsoleConfirmationGate(console=console, prompt=prompt).confirm(make_preview())
        assert "Alice" in seen[0]


class TestScriptedConfirmationGate:
    def test_records_previews(self):
        gate = ScriptedConfirmationGate(answer=False)
        preview = make_preview()
        assert gate.confirm(preview) is False
        assert gate.previews == [preview]
