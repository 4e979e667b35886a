"""Command Line Interface for Cohort-Sync.

This module provides a CLI using Typer for downloading cohorts from the
clinical-data server and querying the local index.

Security Impact:
    - Server credentials come from configuration only, never from arguments
    - Patient listings show names and identifiers; run on trusted terminals
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cohortsync.domain.models import Cohort, CohortDefinition
from cohortsync.domain.ports import CohortSyncError, Result
from cohortsync.domain.services import CohortService
from cohortsync.infrastructure.logging_config import setup_logging
from cohortsync.infrastructure.settings import APP_VERSION, settings
from cohortsync.main import create_cohort_service

# Initialize Typer app and Rich console
app = typer.Typer(
    name="cohortsync",
    help="Cohort-Sync: local cohort data layer for a clinical-data server",
    add_completion=False
)
console = Console()


def create_service_cli(offline: bool = False) -> CohortService:
    """Create the cohort service (CLI wrapper)."""
    try:
        return create_cohort_service(offline=offline)
    except (ValueError, CohortSyncError) as e:
        console.print(f"[red]✗[/red] Failed to initialize: {str(e)}")
        raise typer.Exit(code=1)


def _exit_on_failure(result: Result) -> None:
    if result.is_failure():
        console.print(f"[red]✗[/red] {result.error_type}: {result.error}")
        raise typer.Exit(code=1)


def _kind_label(entity) -> str:
    if isinstance(entity, CohortDefinition):
        return "definition"
    if isinstance(entity, Cohort):
        return "cohort"
    return type(entity).__name__


def _entity_table(entities: list, title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("UUID", style="cyan")
    table.add_column("Name")
    table.add_column("Description", style="dim")
    for entity in entities:
        table.add_row(entity.uuid, entity.name, entity.description or "")
    return table


@app.command("download-cohorts")
def download_cohorts(
    name: str = typer.Argument("", help="Name filter (empty downloads every cohort)"),
) -> None:
    """Download every cohort whose name matches the filter.

    Examples:
        cohortsync download-cohorts TB
        cohortsync download-cohorts
    """
    service = create_service_cli()
    try:
        with console.status("[bold green]Downloading cohorts..."):
            result = service.download_cohorts_by_name(name)
        _exit_on_failure(result)
        console.print(_entity_table(result.value, "Downloaded cohorts"))
        console.print(f"[green]✓[/green] {len(result.value)} cohorts stored")
    finally:
        service.close()


@app.command("download-definitions")
def download_definitions(
    name: str = typer.Argument("", help="Name filter (empty downloads every definition)"),
) -> None:
    """Download every cohort definition whose name matches the filter."""
    service = create_service_cli()
    try:
        with console.status("[bold green]Downloading cohort definitions..."):
            result = service.download_cohort_definitions_by_name(name)
        _exit_on_failure(result)
        console.print(_entity_table(result.value, "Downloaded cohort definitions"))
        console.print(f"[green]✓[/green] {len(result.value)} cohort definitions stored")
    finally:
        service.close()


@app.command("download-cohort")
def download_cohort(
    uuid: str = typer.Argument(..., help="Cohort uuid"),
    definition: bool = typer.Option(False, "--definition", "-d", help="Download a cohort definition instead"),
) -> None:
    """Download a single cohort (or cohort definition) by uuid."""
    service = create_service_cli()
    try:
        if definition:
            result = service.download_cohort_definition_by_uuid(uuid)
        else:
            result = service.download_cohort_by_uuid(uuid)
        _exit_on_failure(result)
        console.print(f"[green]✓[/green] Stored {_kind_label(result.value)} {result.value.uuid}: {result.value.name}")
    finally:
        service.close()


@app.command("cohort-data")
def cohort_data(
    uuid: str = typer.Argument(..., help="Cohort or cohort definition uuid"),
    dynamic: bool = typer.Option(False, "--dynamic/--static", help="Resolve as a cohort definition (reporting query)"),
) -> None:
    """Download a cohort together with its members and patients.

    Examples:
        cohortsync cohort-data 5d1e...
        cohortsync cohort-data 9a0f... --dynamic
    """
    service = create_service_cli()
    try:
        with console.status("[bold green]Downloading cohort data..."):
            result = service.download_cohort_data(uuid, dynamic)
        _exit_on_failure(result)

        data = result.value
        summary_table = Table(show_header=False, box=None, padding=(0, 2))
        summary_table.add_row("Source:", f"{_kind_label(data.source)} {data.uuid}")
        summary_table.add_row("Name:", data.source.name)
        summary_table.add_row("Resolution:", "dynamic" if data.dynamic else "static")
        summary_table.add_row("Members:", f"[bold]{len(data.members):,}[/bold]")
        summary_table.add_row("Patients:", f"{len(data.patients):,}")
        console.print(summary_table)
    finally:
        service.close()


@app.command()
def search(
    query: str = typer.Argument("", help=(
        'Search query, e.g. TB, "TB Patients", name:hiv OR tb. '
        'Only name: and description: are field prefixes; quote a term such as "HIV: Adults" to match a colon'
    )),
) -> None:
    """Search locally stored cohorts and cohort definitions."""
    service = create_service_cli(offline=True)
    try:
        result = service.search_cohorts(query)
        _exit_on_failure(result)

        table = Table(title=f"Results for '{query}'", show_header=True, header_style="bold")
        table.add_column("Kind")
        table.add_column("UUID", style="cyan")
        table.add_column("Name")
        table.add_column("Score", justify="right")
        for hit in result.value:
            table.add_row(_kind_label(hit.entity), hit.entity.uuid, hit.entity.name, f"{hit.score:g}")
        console.print(table)
        console.print(f"{len(result.value)} matches")
    finally:
        service.close()


@app.command()
def members(
    cohort_uuid: str = typer.Argument(..., help="Cohort or cohort definition uuid"),
    patients: bool = typer.Option(False, "--patients", "-p", help="Show locally stored patient records"),
) -> None:
    """List the locally stored members of a cohort."""
    service = create_service_cli(offline=True)
    try:
        if patients:
            result = service.get_cohort_patients(cohort_uuid)
            _exit_on_failure(result)
            table = Table(title=f"Patients of {cohort_uuid}", show_header=True, header_style="bold")
            table.add_column("UUID", style="cyan")
            table.add_column("Name")
            table.add_column("Identifier")
            table.add_column("Gender")
            table.add_column("Birthdate")
            for patient in result.value:
                table.add_row(
                    patient.uuid,
                    patient.name,
                    patient.identifier or "",
                    patient.gender or "",
                    patient.birthdate.isoformat() if patient.birthdate else ""
                )
            console.print(table)
        else:
            result = service.get_cohort_members(cohort_uuid)
            _exit_on_failure(result)
            for member in result.value:
                console.print(member.patient_uuid)
        console.print(f"{len(result.value)} members")
    finally:
        service.close()


@app.command("delete-members")
def delete_members(
    cohort_uuid: str = typer.Argument(..., help="Cohort or cohort definition uuid"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every locally stored member of a cohort."""
    if not yes:
        typer.confirm(f"Delete all local members of {cohort_uuid}?", abort=True)
    service = create_service_cli(offline=True)
    try:
        result = service.delete_cohort_members(cohort_uuid)
        _exit_on_failure(result)
        console.print(f"[green]✓[/green] Deleted {result.value} members of {cohort_uuid}")
    finally:
        service.close()


@app.command()
def info() -> None:
    """Display configuration and local index statistics."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Database Path:", settings.store_config.db_path)

    service = create_service_cli(offline=True)
    try:
        counts = service.get_member_counts()
        _exit_on_failure(counts)
        cohorts = service.get_all_cohorts()
        _exit_on_failure(cohorts)
        definitions = service.get_all_cohort_definitions()
        _exit_on_failure(definitions)
        info_table.add_row("Cohorts:", str(len(cohorts.value)))
        info_table.add_row("Cohort Definitions:", str(len(definitions.value)))
        info_table.add_row("Members:", str(sum(counts.value.values())))
    finally:
        service.close()

    console.print(info_table)


@app.callback()
def main_callback(
    version: bool = typer.Option(False, "--version", help="Show version information"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--log-text", help="Log format override"),
) -> None:
    """Cohort-Sync: local cohort data layer for a clinical-data server."""
    if version:
        console.print(f"Cohort-Sync v{APP_VERSION}")
        raise typer.Exit()
    setup_logging(
        use_json=settings.log_json if log_json is None else log_json,
        log_level="DEBUG" if verbose else settings.log_level
    )
    if verbose:
        logging.getLogger(__name__).debug("Verbose logging enabled")


if __name__ == "__main__":
    app()
