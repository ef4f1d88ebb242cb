"""
PageSmith CLI - analyze pages, manage page objects, generate code.
"""

from datetime import datetime, timedelta
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from pagesmith import __version__
from pagesmith.core.config import DIALECTS, EngineConfig, SessionOptions
from pagesmith.core.errors import PageSmithError
from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.persistence import JsonDirectoryPersistence
from pagesmith.core.session_manager import SessionManager
from pagesmith.generators.code_synthesizer import CodeSynthesizer
from pagesmith.generators.exporter import DirectoryExporter

console = Console()

DEFAULT_STORE_DIR = "./pagesmith_pages"

store_option = click.option(
    '--store', 'store_dir', default=None,
    help=f'Page object directory (default: $PAGESMITH_STORE_DIR or {DEFAULT_STORE_DIR})',
)


def _open_store(store_dir):
    directory = store_dir or EngineConfig.from_env().store_dir or DEFAULT_STORE_DIR
    store = PageObjectStore(JsonDirectoryPersistence(directory))
    store.load()
    return store


def _element_table(pom):
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Selector", style="yellow", max_width=50)
    table.add_column("Fallbacks", justify="right")
    table.add_column("Stable", justify="center")
    for element in pom.elements:
        table.add_row(
            element.name,
            element.element_type,
            element.primary_selector,
            str(len(element.alternative_selectors)),
            "[green]yes[/green]" if element.is_stable else "[yellow]no[/yellow]",
        )
    return table


@click.group()
@click.version_option(version=__version__, prog_name="pagesmith")
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose):
    """PageSmith - turn live browser sessions into page objects and tests."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@cli.command()
@click.argument('url')
@store_option
@click.option('--headless/--headed', default=True, help='Run browser in headless mode')
@click.option('--artifacts-dir', default=None, help='Flight record and screenshot directory')
def analyze(url, store_dir, headless, artifacts_dir):
    """
    Open URL, map its interactive elements and store the page object.

    \b
    Example:

        pagesmith analyze "https://demo.playwright.dev/todomvc/" --store ./pages
    """
    config = EngineConfig.from_env()
    if artifacts_dir:
        config.artifacts_dir = artifacts_dir
    store = _open_store(store_dir)

    with SessionManager(store, config=config, register_atexit=False) as manager:
        try:
            with console.status(f"Analyzing {url}..."):
                session = manager.start(SessionOptions(headless=headless))
                pom = manager.navigate(session.id, url)
        except PageSmithError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise SystemExit(1)

    console.print(Panel.fit(
        f"[bold blue]{pom.name}[/bold blue]  [dim]v{pom.version}[/dim]\n"
        f"[dim]{pom.url}[/dim]\n"
        f"[dim]id: {pom.id}[/dim]",
        border_style="blue",
    ))
    console.print(_element_table(pom))


@cli.command()
@store_option
def pages(store_dir):
    """List stored page objects."""
    store = _open_store(store_dir)
    poms = sorted(store.all(), key=lambda p: p.name)
    if not poms:
        console.print("[dim]No page objects stored yet. Run `pagesmith analyze URL` first.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="dim")
    table.add_column("Name", style="green")
    table.add_column("URL", style="yellow", max_width=60)
    table.add_column("Elements", justify="right")
    table.add_column("Version", justify="right")
    table.add_column("Updated", style="dim")
    for pom in poms:
        table.add_row(
            pom.id,
            pom.name,
            pom.url,
            str(len(pom.elements)),
            str(pom.version),
            pom.last_updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.argument('pom_id')
@store_option
@click.option('--dialect', default=None, type=click.Choice(DIALECTS), help='Output language')
@click.option('--out', 'out_dir', default=None, help='Write files here instead of printing')
def generate(pom_id, store_dir, dialect, out_dir):
    """Generate the page object class for a stored page."""
    store = _open_store(store_dir)
    try:
        pom = store.get(pom_id)
    except PageSmithError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    synthesizer = CodeSynthesizer(dialect or EngineConfig.from_env().dialect)
    if out_dir:
        for path in DirectoryExporter(out_dir).export(synthesizer.generate([], pom)):
            console.print(f"[green]Wrote[/green] {path}")
    else:
        click.echo(synthesizer.generate_page_object(pom))


@cli.command()
@click.argument('pom_id')
@store_option
@click.option('--older-than-days', type=int, default=None, help='Drop elements not seen for N days')
@click.option('--element', 'element_ids', multiple=True, help='Drop this element id (repeatable)')
def prune(pom_id, store_dir, older_than_days, element_ids):
    """Remove stale elements from a stored page object."""
    if older_than_days is None and not element_ids:
        raise click.UsageError("Give --older-than-days and/or --element")
    store = _open_store(store_dir)
    older_than = datetime.now() - timedelta(days=older_than_days) if older_than_days is not None else None
    try:
        removed = store.prune(pom_id, older_than=older_than, element_ids=element_ids or None)
    except PageSmithError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)
    console.print(f"Removed {removed} element(s) from {pom_id}")


@cli.command()
@click.argument('url')
@click.argument('steps_file', type=click.File('r'))
@store_option
@click.option('--headless/--headed', default=True, help='Run browser in headless mode')
@click.option('--dialect', default=None, type=click.Choice(DIALECTS), help='Output language')
@click.option('--out', 'out_dir', default='./generated', help='Directory for generated files')
def record(url, steps_file, store_dir, headless, dialect, out_dir):
    """
    Replay a JSON list of steps against URL while recording, then write the test.

    Each step is an object such as
    {"action": "fill", "selector": "#email", "value": "a@b.test", "name": "emailField"}.

    \b
    Example:

        pagesmith record "https://example.com/login" login_steps.json --out ./e2e
    """
    steps = json.load(steps_file)
    config = EngineConfig.from_env()
    if dialect:
        config.dialect = dialect
    store = _open_store(store_dir)

    with SessionManager(store, config=config, register_atexit=False) as manager:
        try:
            session = manager.start(SessionOptions(headless=headless))
            manager.navigate(session.id, url)
            manager.start_recording(session.id)
            for index, step in enumerate(steps, 1):
                _run_step(manager, session.id, step)
                console.print(f"  [green]✓[/green] {index}. {step['action']} {step.get('selector', step.get('value', ''))}")
            manager.stop_recording(session.id)
            artifacts = session.last_artifacts
        except (PageSmithError, ValueError, KeyError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise SystemExit(1)

    for path in DirectoryExporter(out_dir).export(artifacts):
        console.print(f"[green]Wrote[/green] {path}")


def _run_step(manager, session_id, step):
    action = step["action"]
    if action == "navigate":
        manager.navigate(session_id, step["value"])
    elif action == "wait":
        manager.wait(session_id, int(step.get("value", 0)))
    elif action == "assert":
        manager.add_assertion(session_id, step["kind"], step.get("expected"), step.get("selector"), step.get("name"))
    elif action in ("fill", "select"):
        getattr(manager, action)(session_id, step["selector"], step.get("value", ""), step.get("name"))
    else:
        getattr(manager, action)(session_id, step["selector"], step.get("name"))


@cli.command()
def doctor():
    """
    Check that the runtime dependencies are importable.
    """
    console.print(Panel.fit(
        "[bold cyan]PageSmith Doctor[/bold cyan]\n"
        "[dim]System Health Check[/dim]",
        border_style="cyan"
    ))

    dependencies = [
        ("selenium", "Browser driver"),
        ("click", "Command line"),
        ("rich", "Terminal output"),
    ]

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Package", style="blue")
    table.add_column("Role", style="dim")
    table.add_column("Status", justify="center")

    all_good = True
    for package, role in dependencies:
        try:
            __import__(package)
            status = "[green]Installed[/green]"
        except ImportError:
            status = "[red]Missing[/red]"
            all_good = False
        table.add_row(package, role, status)

    console.print(table)
    if all_good:
        console.print("[bold green]All dependencies installed.[/bold green]")
    else:
        console.print("[red]Some dependencies are missing. Reinstall with: pip install pagesmith[/red]")
        raise SystemExit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
