import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import track
from rich.table import Table

from .bq_loader import BigQueryLoader
from .config_resolver import ConfigResolver, TenantConfigSource, YamlTenantConfigSource
from .coordinator import ScoringCoordinator
from .errors import BridgeScoreError
from .importers.plaintext import TranscriptImporter
from .recorder import ScoreRecorder
from .scoring import OutputGenerator

load_dotenv()

app = typer.Typer(help="BridgeScore - Bridge Selling call scoring")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _tenant_source(source: str, tenants_path: Path, loader: Optional[BigQueryLoader] = None) -> TenantConfigSource:
    if source == "bigquery":
        return loader or BigQueryLoader()
    if source == "yaml":
        return YamlTenantConfigSource(tenants_path)
    console.print(f"[red]Invalid tenant config source: {source}. Must be one of: yaml, bigquery[/red]")
    raise typer.Exit(1)


@app.command()
def score(
    input_dir: Path = typer.Option(Path("data/transcripts"), "--in", help="Input directory containing .txt/.md transcripts"),
    output_dir: Path = typer.Option(Path("out"), "--out", help="Output directory for scorecards"),
    org: Optional[str] = typer.Option(None, "--org", help="Organization id for transcripts without one in front matter"),
    tenant_source: str = typer.Option(os.getenv("TENANT_CONFIG_SOURCE", "yaml"), "--tenant-source", help="yaml or bigquery"),
    tenants_path: Path = typer.Option(Path(os.getenv("TENANT_CONFIG_PATH", "tenants.yaml")), "--tenants", help="YAML tenant configuration file"),
    save_bq: bool = typer.Option(False, "--save-bq", help="Save scores to the BigQuery calls table"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
):
    """Score transcript files and generate scorecards."""
    _configure_logging(verbose)

    if not input_dir.exists():
        console.print(f"[red]Error: Input directory {input_dir} does not exist[/red]")
        raise typer.Exit(1)

    importer = TranscriptImporter()
    files = importer.find_files(input_dir)
    if not files:
        console.print(f"[red]Error: No .md or .txt files found in {input_dir}[/red]")
        raise typer.Exit(1)

    output_dir.mkdir(parents=True, exist_ok=True)

    loader = BigQueryLoader() if (save_bq or tenant_source == "bigquery") else None
    coordinator = ScoringCoordinator(ConfigResolver(_tenant_source(tenant_source, tenants_path, loader)))
    recorder = ScoreRecorder(loader, coordinator) if save_bq else None

    scored_calls = []
    files_failed = 0

    for transcript_file in track(files, description="Scoring calls..."):
        try:
            call = importer.parse_file(transcript_file)
            organization_id = call.organization_id or org
            if not organization_id:
                raise BridgeScoreError("no organization_id in front matter and no --org given")

            result = asyncio.run(coordinator.score_call(call.transcript, organization_id))
            call = call.model_copy(update={
                "organization_id": organization_id,
                "score": result,
                "status": "scored",
            })
            if recorder:
                recorder.record(call)

            scored_calls.append(call)

            if verbose:
                console.print(f"[green]✓[/green] {transcript_file.name}: {result.total} ({result.scoring_method.value})")

        except Exception as e:
            files_failed += 1
            console.print(f"[red]✗[/red] Failed to score {transcript_file.name}: {e}")

    generator = OutputGenerator()
    json_output = output_dir / "scores.json"
    csv_output = output_dir / "scores.csv"
    leaderboard_output = output_dir / "leaderboard.md"

    generator.generate_json_output(scored_calls, json_output)
    generator.generate_csv_output(scored_calls, csv_output)
    generator.generate_leaderboard(scored_calls, leaderboard_output)

    table = Table(title="BridgeScore Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    remote = sum(1 for c in scored_calls if c.score.scoring_method.value == "remote")
    average = sum(c.score.total for c in scored_calls) / len(scored_calls) if scored_calls else 0
    table.add_row("Calls Scored", str(len(scored_calls)))
    table.add_row("Failed", str(files_failed))
    table.add_row("Remote / Local", f"{remote} / {len(scored_calls) - remote}")
    table.add_row("Average Score", f"{average:.1f}")
    console.print(table)

    console.print(f"\n[bold green]Scoring completed![/bold green]")
    console.print(f"JSON output: {json_output}")
    console.print(f"CSV output: {csv_output}")
    console.print(f"Leaderboard: {leaderboard_output}")
    if save_bq:
        console.print(f"BigQuery table: {loader.calls_table_id}")


@app.command()
def rescore(
    call_id: str = typer.Argument(..., help="Id of the stored call to rescore"),
    actor_id: Optional[str] = typer.Option(None, "--actor", help="User triggering the rescore"),
    tenant_source: str = typer.Option(os.getenv("TENANT_CONFIG_SOURCE", "yaml"), "--tenant-source", help="yaml or bigquery"),
    tenants_path: Path = typer.Option(Path(os.getenv("TENANT_CONFIG_PATH", "tenants.yaml")), "--tenants", help="YAML tenant configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
):
    """Rescore a call stored in BigQuery and record an audit entry."""
    _configure_logging(verbose)

    try:
        loader = BigQueryLoader()
        coordinator = ScoringCoordinator(ConfigResolver(_tenant_source(tenant_source, tenants_path, loader)))
        recorder = ScoreRecorder(loader, coordinator)
        result = asyncio.run(recorder.rescore(call_id, actor_id))
    except Exception as e:
        console.print(f"[red]Rescore failed: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Call {call_id}")
    table.add_column("Step", style="cyan")
    table.add_column("Weight", style="blue")
    table.add_column("Credit", style="magenta")
    table.add_column("Notes", style="white")
    for step_score in result.step_scores:
        color = step_score.color.value
        table.add_row(
            step_score.step_name,
            str(step_score.weight),
            f"[{color}]{step_score.credit:g}[/{color}]",
            step_score.notes,
        )
    console.print(table)
    console.print(f"\n[bold green]Total: {result.total}[/bold green] ({result.scoring_method.value})")


@app.command("bq-setup")
def bq_setup():
    """Create the BigQuery dataset and tables."""
    try:
        loader = BigQueryLoader()
        loader.create_tables_if_not_exist()
    except Exception as e:
        console.print(f"[red]Setup failed: {e}[/red]")
        raise typer.Exit(1)

    console.print("\n[bold green]BigQuery setup completed![/bold green]")


@app.command("bq-status")
def bq_status():
    """Show the calls table status and recently scored calls."""
    try:
        loader = BigQueryLoader()
        loader.display_table_status()
    except Exception as e:
        console.print(f"[red]Status check failed: {e}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
