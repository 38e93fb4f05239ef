"""CLI entry point for the font ingestion tools.

Provides commands:
  - preview: Group local font files into provisional families (no upload)
  - ingest: Register, upload and analyze font files
  - status: Show ingests with their combined upload/analysis status
  - families: List canonical families for an owner
  - resolve: Apply a conflict policy to a quarantined ingest
  - config: Manage the Gemini API key
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import keyring
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fontingest.config import KEY_NAME, SERVICE_NAME, ConfigProvider
from fontingest.ingest.status import StatusPriority, combined_status
from fontingest.models import ConflictPolicy
from fontingest.normalize import NORMALIZATION_SPEC_VERSION

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Font ingestion - dedupe, group and analyze font families",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (API keys)")
app.add_typer(config_app, name="config")

_PRIORITY_STYLE = {
    StatusPriority.UPLOAD: "red",
    StatusPriority.ANALYSIS: "yellow",
    StatusPriority.COMPLETE: "green",
}


@app.callback()
def app_callback(
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Write DEBUG logs to fontingest_debug.log"),
    ] = False,
) -> None:
    """Configure logging shared by all commands."""
    if debug:
        fh = logging.FileHandler("fontingest_debug.log")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        pkg_logger = logging.getLogger("fontingest")
        pkg_logger.setLevel(logging.DEBUG)
        pkg_logger.addHandler(fh)


def _format_size(size: int) -> str:
    size_kb = size / 1024
    return f"{size_kb:.1f} KB" if size_kb < 1024 else f"{size_kb / 1024:.1f} MB"


@app.command()
def preview(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Font files to group", exists=True, dir_okay=False),
    ],
    server_spec_version: Annotated[
        str | None,
        typer.Option("--server-spec-version", help="Server normalization ruleset version"),
    ] = None,
) -> None:
    """Show how files would be grouped into families before uploading."""
    from fontingest.preview import preview_files

    result = asyncio.run(preview_files(paths, server_spec_version=server_spec_version))

    if result.spec_mismatch:
        console.print(
            Panel(
                f"Local grouping rules v{result.spec_version} differ from server "
                f"v{result.server_spec_version}. The server may group these files differently.",
                title="[yellow]Normalization version mismatch[/yellow]",
            )
        )

    table = Table(title="Provisional Families (preview only)")
    table.add_column("Family", style="cyan")
    table.add_column("Key", style="dim")
    table.add_column("Styles")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Formats")
    table.add_column("Conflicts", style="red")
    for key, family in sorted(result.families.items()):
        conflicts = "; ".join(
            f"{c.style}: {', '.join(c.files)}" for c in family.conflicts
        )
        styles = ", ".join(sorted(family.styles))
        if family.has_variable:
            styles += " [magenta](variable)[/magenta]"
        table.add_row(
            family.display_name,
            key,
            styles,
            str(len(family.files)),
            _format_size(family.total_size),
            ", ".join(sorted(family.formats)),
            conflicts,
        )
    console.print(table)

    if result.failed:
        failed_table = Table(title="Unreadable Files")
        failed_table.add_column("File", style="red")
        failed_table.add_column("Error")
        for failed in result.failed:
            failed_table.add_row(failed.filename, failed.error)
        console.print(failed_table)

    console.print(
        f"[dim]{result.total_files} files, {len(result.families)} families, "
        f"{result.conflict_count} conflicts (rules v{result.spec_version})[/dim]"
    )


@app.command()
def ingest(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Font files to ingest", exists=True, dir_okay=False),
    ],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner id")] = "local",
    db_path: Annotated[
        Path, typer.Option("--db", "-d", help="Path to SQLite document store")
    ] = Path("data/fonts.db"),
    store_root: Annotated[
        Path, typer.Option("--store", "-s", help="Object store root directory")
    ] = Path("data/objects"),
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Remote config JSON template")
    ] = None,
) -> None:
    """Register, upload and analyze font files."""
    from fontingest.analysis.client import build_model_client
    from fontingest.analysis.pipeline import AnalysisPipeline
    from fontingest.exceptions import DuplicateDetected, UploadRejected
    from fontingest.orchestrator import IngestOrchestrator
    from fontingest.progress import IngestProgressTracker
    from fontingest.storage import LocalObjectStore
    from fontingest.store import DocumentStore, FamilyRepository, IngestRepository
    from fontingest.uploader import UploadSession, register_upload

    config = ConfigProvider(config_path)
    try:
        model = build_model_client(config) if config.get_bool("is_ai_enabled") else None
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    db_path.parent.mkdir(parents=True, exist_ok=True)
    objects = LocalObjectStore(store_root)
    rows: list[tuple[str, str, str]] = []

    async def _run() -> None:
        async with DocumentStore(str(db_path)) as store:
            ingests = IngestRepository(store)
            families = FamilyRepository(store)
            pipeline = AnalysisPipeline(model, config)
            orchestrator = IngestOrchestrator(ingests, families, objects, pipeline, config)
            stored: list[str] = []

            with IngestProgressTracker(total_files=len(paths)) as tracker:
                for path in paths:
                    data = path.read_bytes()
                    try:
                        record = await register_upload(ingests, config, owner, path.name, data)
                    except DuplicateDetected as exc:
                        tracker.file_duplicate(path.name)
                        rows.append((path.name, exc.existing_ingest_id, "Duplicate"))
                        continue
                    except UploadRejected as exc:
                        tracker.file_failed(path.name, str(exc))
                        rows.append((path.name, "-", f"Rejected: {exc}"))
                        continue
                    tracker.start_transfer(path.name, len(data))
                    session = UploadSession(
                        ingests, objects, record, data, on_chunk=tracker.transfer_advanced
                    )
                    record = await session.run()
                    if record.error_code:
                        tracker.file_failed(path.name, record.error or record.error_code)
                    else:
                        stored.append(record.id)
                        tracker.file_done(path.name, "uploaded")

            summary = await orchestrator.process_many(stored)
            for ingest_id in stored:
                record = await ingests.require(ingest_id)
                status = combined_status(record.upload_state, record.analysis_state)
                rows.append((record.original_name, record.id, status.text))
            logger.info("Ingest batch finished: %s", summary)

    asyncio.run(_run())

    summary_table = Table(title="Ingest Summary")
    summary_table.add_column("File", style="cyan")
    summary_table.add_column("Ingest", style="dim")
    summary_table.add_column("Status")
    for name, ingest_id, status in rows:
        summary_table.add_row(name, ingest_id, status)
    console.print(Panel(summary_table, title="Ingest Complete"))


@app.command()
def status(
    db_path: Annotated[
        Path, typer.Option("--db", "-d", help="Path to SQLite document store")
    ] = Path("data/fonts.db"),
    owner: Annotated[
        str | None, typer.Option("--owner", "-o", help="Only this owner's ingests")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Rows to show")] = 100,
) -> None:
    """Show ingests with their combined upload/analysis status."""
    from fontingest.store import DocumentStore, IngestRepository

    if not db_path.exists():
        console.print(f"[red]Error:[/red] Database not found: {db_path}")
        raise typer.Exit(code=1)

    async def _load():
        async with DocumentStore(str(db_path)) as store:
            return await IngestRepository(store).list_for_owner(owner, limit=limit)

    records = asyncio.run(_load())
    table = Table(title="Ingests")
    table.add_column("Ingest", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Upload")
    table.add_column("Analysis")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for record in records:
        combined = combined_status(record.upload_state, record.analysis_state)
        style = _PRIORITY_STYLE[combined.priority]
        text = combined.text + (" [magenta]\\[quarantined][/magenta]" if record.quarantined else "")
        table.add_row(
            record.id,
            record.original_name,
            record.upload_state.value,
            record.analysis_state.value,
            f"[{style}]{text}[/{style}]",
            record.error_code or "",
        )
    console.print(table)


@app.command()
def families(
    db_path: Annotated[
        Path, typer.Option("--db", "-d", help="Path to SQLite document store")
    ] = Path("data/fonts.db"),
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner id")] = "local",
) -> None:
    """List canonical families for an owner."""
    from fontingest.store import DocumentStore, FamilyRepository

    if not db_path.exists():
        console.print(f"[red]Error:[/red] Database not found: {db_path}")
        raise typer.Exit(code=1)

    async def _load():
        async with DocumentStore(str(db_path)) as store:
            return await FamilyRepository(store).list_for_owner(owner)

    rows = asyncio.run(_load())
    table = Table(title=f"Families for {owner}")
    table.add_column("Family", style="cyan")
    table.add_column("Classification")
    table.add_column("Variants", justify="right")
    table.add_column("Confidence")
    table.add_column("Description")
    for family in rows:
        band = family.metadata.get("confidence_band", "unknown")
        table.add_row(
            family.name,
            family.classification,
            str(len(family.variants)),
            band,
            family.description,
        )
    console.print(table)


@app.command()
def resolve(
    ingest_id: Annotated[str, typer.Argument(help="Quarantined ingest id")],
    policy: Annotated[ConflictPolicy, typer.Argument(help="Conflict policy to apply")],
    resolved_by: Annotated[
        str, typer.Option("--by", help="Who resolved the conflict")
    ] = "local",
    db_path: Annotated[
        Path, typer.Option("--db", "-d", help="Path to SQLite document store")
    ] = Path("data/fonts.db"),
    store_root: Annotated[
        Path, typer.Option("--store", "-s", help="Object store root directory")
    ] = Path("data/objects"),
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Remote config JSON template")
    ] = None,
) -> None:
    """Apply a conflict policy to a quarantined ingest and reprocess it."""
    from fontingest.analysis.client import build_model_client
    from fontingest.analysis.pipeline import AnalysisPipeline
    from fontingest.orchestrator import IngestOrchestrator
    from fontingest.storage import LocalObjectStore
    from fontingest.store import DocumentStore, FamilyRepository, IngestRepository

    config = ConfigProvider(config_path)
    try:
        model = build_model_client(config) if config.get_bool("is_ai_enabled") else None
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    async def _run():
        async with DocumentStore(str(db_path)) as store:
            orchestrator = IngestOrchestrator(
                IngestRepository(store),
                FamilyRepository(store),
                LocalObjectStore(store_root),
                AnalysisPipeline(model, config),
                config,
            )
            return await orchestrator.resolve_conflict(ingest_id, policy, resolved_by)

    try:
        record = asyncio.run(_run())
    except (KeyError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    combined = combined_status(record.upload_state, record.analysis_state)
    console.print(f"[green]✓[/green] {record.original_name}: {combined.text}")


@config_app.command("set-api-key")
def set_api_key(
    key: Annotated[
        str,
        typer.Argument(help="Gemini API key to store in system keyring"),
    ],
) -> None:
    """Store the Gemini API key in the system keyring (service: fontingest-gemini)."""
    if not key or key.strip() == "":
        console.print("[red]Error:[/red] API key cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, key)
        console.print(
            "[green]✓[/green] API key stored successfully in system keyring "
            f"(service: {SERVICE_NAME})"
        )
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store API key: {e}")
        raise typer.Exit(code=1)


@config_app.command("get-api-key")
def show_api_key() -> None:
    """Retrieve and display the stored Gemini API key (masked)."""
    api_key = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if not api_key:
        console.print(
            "[yellow]No API key found in keyring.[/yellow]\n"
            "Set it with: [bold]fontingest config set-api-key YOUR_KEY[/bold]"
        )
        raise typer.Exit(code=1)

    if len(api_key) > 8:
        masked = api_key[:8] + "*" * (len(api_key) - 8)
    else:
        masked = api_key[:2] + "*" * max(1, len(api_key) - 2)

    console.print(f"[green]API key:[/green] {masked}")
    console.print(f"[dim](stored in service: {SERVICE_NAME})[/dim]")


@config_app.command("remove-api-key")
def remove_api_key() -> None:
    """Delete the stored Gemini API key from the system keyring."""
    try:
        existing = keyring.get_password(SERVICE_NAME, KEY_NAME)
        if not existing:
            console.print(
                "[yellow]Warning:[/yellow] No API key found in keyring.\n"
                "Nothing to remove."
            )
            return

        keyring.delete_password(SERVICE_NAME, KEY_NAME)
        console.print(
            f"[green]✓[/green] API key removed from system keyring (service: {SERVICE_NAME})"
        )
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to remove API key: {e}")
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Print package and normalization ruleset versions."""
    from fontingest import __version__

    console.print(f"fontingest {__version__} (grouping rules v{NORMALIZATION_SPEC_VERSION})")
