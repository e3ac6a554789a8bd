"""
lockup-batch CLI main entry point.

Usage:
    lockup-batch [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from .config import BatchSettings, load_settings
from .coordinator import SafeTransactionServiceClient
from .errors import LockupBatchError, PipelineError, SignerError
from .gate import BatchPreview, render_preview
from .logging_utils import setup_logging
from .pipeline import PipelineStatus, build_pipeline
from .signing import create_signer
from .source import AirtableTransferSource, take_snapshot

console = Console()


def _settings(ctx: click.Context) -> BatchSettings:
    return ctx.obj["settings"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise SystemExit(1)


def _ask_reconnect(error: SignerError) -> bool:
    console.print(f"[yellow]Signer unavailable:[/yellow] {escape(error.message)}")
    return click.confirm("Reconnect the device and retry?", default=False)


@click.group()
@click.version_option(package_name="lockup-batch", message="%(prog)s %(version)s")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, env_file: str | None, verbose: bool):
    """Propose batched token lockup transfers to a Safe multisig."""
    ctx.ensure_object(dict)

    if "settings" not in ctx.obj:
        try:
            ctx.obj["settings"] = load_settings(env_file)
        except ValueError as e:
            _fail(f"Invalid configuration: {e}")

    settings = _settings(ctx)
    setup_logging(level="DEBUG" if verbose else settings.log_level, json_format=settings.log_json)
    ctx.obj.setdefault("pipeline_factory", build_pipeline)


@cli.command()
@click.option("--table", help="Airtable table holding the batch")
@click.option("--include-approval/--no-include-approval", default=None, help="Prepend token approval for the batch total")
@click.option("--signer", "signer_kind", type=click.Choice(["ledger", "local"]), help="Signer backend")
@click.option("--derivation-path", help="HD derivation path of the signing key")
@click.option("--verify-source", is_flag=True, help="Re-read the table before encoding and abort if it changed")
@click.pass_context
def propose(ctx, table, include_approval, signer_kind, derivation_path, verify_source):
    """Review a batch, sign it and propose it to the Safe."""
    settings = _settings(ctx).with_overrides(
        source={"table_name": table},
        contracts={"include_approval": include_approval},
        signer={"kind": signer_kind, "derivation_path": derivation_path},
    )

    try:
        pipeline = ctx.obj["pipeline_factory"](
            settings,
            console=console,
            on_signer_unavailable=_ask_reconnect,
            verify_source=verify_source,
        )
    except LockupBatchError as e:
        _fail(e.message)

    try:
        result = pipeline.run()
    except PipelineError as e:
        reason = getattr(e.cause, "message", None) or str(e.cause)
        console.print(f"[red]✗ Stage '{e.stage}' failed:[/red] {escape(reason)}")
        raise SystemExit(1)
    finally:
        pipeline.close()

    if result.status == PipelineStatus.DECLINED:
        console.print("Ok terminating.")
        return

    console.print(f"\nSafe transaction hash: [cyan]{result.proposal_id}[/cyan]")
    console.print(f"Nonce: {result.proposal.envelope.nonce}")
    console.print("[green]✓ Transaction proposed, check the Safe UI to confirm it.[/green]")


@cli.command()
@click.option("--table", help="Airtable table holding the batch")
@click.pass_context
def preview(ctx, table):
    """Show the batch without prompting or signing."""
    settings = _settings(ctx).with_overrides(source={"table_name": table})
    source = AirtableTransferSource(settings.source)
    try:
        snapshot = take_snapshot(source)
    except LockupBatchError as e:
        _fail(e.message)
    finally:
        source.close()

    console.print(
        render_preview(
            BatchPreview(
                instructions=snapshot.instructions,
                table_name=snapshot.source_label,
                safe_address=settings.safe.address,
                chain_id=settings.safe.chain_id,
                include_approval=settings.contracts.include_approval,
            )
        )
    )


@cli.command()
@click.pass_context
def nonce(ctx):
    """Print the next valid nonce for the configured Safe."""
    settings = _settings(ctx)
    coordinator = SafeTransactionServiceClient(settings.safe)
    try:
        value = coordinator.next_nonce(settings.safe.address)
    except LockupBatchError as e:
        _fail(e.message)
    finally:
        coordinator.close()
    console.print(f"Next nonce for [cyan]{settings.safe.address}[/cyan]: {value}")


@cli.command()
@click.option("--signer", "signer_kind", type=click.Choice(["ledger", "local"]), help="Signer backend")
@click.option("--derivation-path", help="HD derivation path of the signing key")
@click.pass_context
def address(ctx, signer_kind, derivation_path):
    """Print the signer address for a derivation path."""
    settings = _settings(ctx).with_overrides(
        signer={"kind": signer_kind, "derivation_path": derivation_path},
    )
    try:
        signer = create_signer(settings.signer.kind, settings.signer.private_key)
    except LockupBatchError as e:
        _fail(e.message)
    try:
        value = signer.get_address(settings.signer.derivation_path)
    except LockupBatchError as e:
        _fail(e.message)
    finally:
        signer.close()
    console.print(f"{settings.signer.derivation_path}: [cyan]{value}[/cyan]")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
