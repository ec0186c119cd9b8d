"""Command line interface for vaultpress."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vaultpress.config import BuildConfig
from vaultpress.errors import ConfigurationError
from vaultpress.export import load_embedding_map, load_media_registry, write_bundle
from vaultpress.vault.builder import VaultBuilder


console = Console()
app = typer.Typer(help="vaultpress - publish a Markdown vault as a structured bundle")

_SEVERITY_STYLES = {"error": "red", "warning": "yellow", "info": "cyan"}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(config_file: Path | None, **overrides) -> BuildConfig:
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if config_file is not None:
        return BuildConfig.from_file(config_file, **overrides)
    return BuildConfig(**overrides)


@app.command()
def build(
    vault: Path = typer.Argument(..., help="Vault directory to publish.", resolve_path=True),
    out: Path = typer.Option(Path("dist"), "--out", "-o", help="Output directory for the bundle"),
    config_file: Path = typer.Option(None, "--config", "-c", help="YAML build configuration"),
    previous: Path = typer.Option(
        None, "--previous", help="Bundle from an earlier build to reuse media and embeddings from"
    ),
    process_all: Optional[bool] = typer.Option(
        None, "--all/--public-only", help="Publish every note, not only those marked public"
    ),
    embed: Optional[bool] = typer.Option(None, "--embed/--no-embed", help="Compute post embeddings"),
    slug_strategy: Optional[str] = typer.Option(None, help="Slug collision strategy: number or hash"),
    force: bool = typer.Option(False, "--force", help="Re-encode media even if outputs exist"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Build a publishing bundle from a vault."""
    _setup_logging(verbose)
    try:
        config = _load_config(
            config_file,
            process_all_files=process_all,
            embed=embed,
            slug_strategy=slug_strategy,
            force_reprocess=force or None,
        )
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    media_dir = config.resolve_media_dir(Path.cwd()) if config.media_output_dir else out / "_media"
    registry = load_media_registry(previous) if previous is not None else {}
    prior_embeddings = load_embedding_map(previous) if previous is not None else {}

    console.print(f"Building [bold]{vault}[/bold] into [bold]{out}[/bold]...")
    try:
        result = VaultBuilder(config).build(
            vault,
            media_dir=media_dir,
            media_registry=registry,
            previous_embeddings=prior_embeddings,
        )
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    if result.is_empty:
        console.print("[yellow]No publishable documents found.[/yellow]")

    written = write_bundle(result, out)
    stats = result.stats
    summary = result.issues.report()["summary"]
    console.print(
        f"Documents: {len(result.documents)}, skipped: {stats.skipped}, failed: {stats.failed + stats.render_failed}"
    )
    console.print(
        f"Media: {len(result.media)} (encoded: {stats.media_processed}, "
        f"reused: {stats.media_reused}, failed: {stats.media_failed})"
    )
    if result.embeddings is not None:
        console.print(
            f"Embeddings: computed {result.embeddings.computed}, reused {result.embeddings.reused}"
        )
    console.print(
        f"Issues: {summary['error_count']} errors, {summary['warning_count']} warnings, "
        f"{summary['info_count']} info"
    )
    console.print(f"Wrote {len(written)} files.")


@app.command()
def issues(
    bundle: Path = typer.Argument(Path("dist"), help="Bundle directory containing issues.json"),
    severity: Optional[str] = typer.Option(None, help="Only show this severity"),
    category: Optional[str] = typer.Option(None, help="Only show this category"),
    limit: int = typer.Option(50, help="Maximum number of rows to display"),
) -> None:
    """Show the issues recorded by a build."""
    report_path = bundle / "issues.json" if bundle.is_dir() else bundle
    if not report_path.exists():
        raise typer.BadParameter(f"Issue report not found: {report_path}")

    report = json.loads(report_path.read_text(encoding="utf-8"))
    rows = [
        issue
        for issue in report.get("issues", [])
        if (severity is None or issue["severity"] == severity)
        and (category is None or issue["category"] == category)
    ]
    if not rows:
        console.print("[green]No issues.[/green]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("File")
    table.add_column("Message")

    for issue in rows[:limit]:
        style = _SEVERITY_STYLES.get(issue["severity"], "white")
        table.add_row(
            f"[{style}]{issue['severity']}[/{style}]",
            issue["category"],
            escape(issue.get("file_path") or "-"),
            escape(issue["message"][:180]),
        )

    console.print(table)
    if len(rows) > limit:
        console.print(f"... and {len(rows) - limit} more")
