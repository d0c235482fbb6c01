"""
Command Line Interface for the script compliance worker.
"""

from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings

app = typer.Typer(help="Script compliance worker - charter analysis of script text")
console = Console()


@app.command()
def worker(
    poll_interval: Optional[float] = typer.Option(None, help="Seconds between polls"),
    high_recall: Optional[bool] = typer.Option(
        None, "--high-recall/--routed", help="Bypass the router"
    ),
    deterministic: Optional[bool] = typer.Option(
        None, "--deterministic/--no-deterministic", help="Force deterministic temperature/seed"
    ),
):
    """Poll for work until interrupted."""
    from ..worker import run_worker

    rprint(Panel.fit("Starting compliance worker", style="bold blue"))
    run_worker(poll_interval=poll_interval, high_recall=high_recall, deterministic=deterministic)


@app.command()
def once(
    job: str = typer.Option(..., "--job", help="Job id to drain"),
    high_recall: Optional[bool] = typer.Option(
        None, "--high-recall/--routed", help="Bypass the router"
    ),
    deterministic: Optional[bool] = typer.Option(
        None, "--deterministic/--no-deterministic", help="Force deterministic temperature/seed"
    ),
):
    """Process every pending chunk of one job, aggregate it, and exit."""
    from ..worker import run_worker

    processed = run_worker(
        high_recall=high_recall, deterministic=deterministic, once_job_id=job
    )
    console.print(f"✅ Processed {processed} chunk(s) for job {job}")


@app.command()
def report(job_id: str = typer.Argument(..., help="Job id")):
    """Show the stored report summary for a job."""
    from ..db import ReportService, get_session_local

    db = get_session_local()()
    try:
        stored = ReportService(db).get_for_job(job_id)
        if stored is None:
            console.print(f"❌ No report for job {job_id}")
            raise typer.Exit(code=1)
        summary = stored.summary_json
    finally:
        db.close()

    totals = summary["totals"]
    console.print(
        f"Job {summary['job_id']} | script {summary['script_id']} | "
        f"generated {summary['generated_at']}"
    )
    console.print(f"Total findings: {totals['findings_count']} {totals['severity_counts']}")

    table = Table(title="Compliance matrix", show_header=True, header_style="bold magenta")
    table.add_column("Article", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    for severity in ("low", "medium", "high", "critical"):
        table.add_column(severity.title(), justify="right")

    status_style = {"ok": "green", "warning": "yellow", "fail": "red"}
    for item in summary["checklist_articles"]:
        counts = item["counts"]
        style = status_style.get(item["status"], "white")
        table.add_row(
            str(item["article_id"]),
            item["title"],
            f"[{style}]{item['status']}[/{style}]",
            *(str(counts[s]) for s in ("low", "medium", "high", "critical")),
        )
    console.print(table)


@app.command("init-db")
def init_db():
    """Create all tables (development; production uses Alembic migrations)."""
    from ..db import init_database

    init_database()
    console.print(f"✅ Tables created on {get_settings().database_url}")


@app.command()
def taxonomy():
    """List the articles the worker scans."""
    from ..policy import get_taxonomy

    catalog = get_taxonomy(get_settings().taxonomy_path)
    table = Table(title=f"Taxonomy {catalog.version or ''}", show_header=True)
    table.add_column("Article", style="cyan")
    table.add_column("Title")
    table.add_column("Atoms", justify="right")
    table.add_column("Scanned")
    for art in catalog.articles:
        table.add_row(
            str(art.article_id), art.title, str(len(art.atoms)), "yes" if art.scannable else "no"
        )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Script Compliance Worker v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
