import json
from pathlib import Path
from typing import Annotated, List, NoReturn, Optional

from typer import Argument, Exit, Option, Typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import ENV_API_KEY, Settings, require_env
from .container import AppContainer
from .errors import ConfigurationError, QBankError, StoreError
from .indexing import BackfillConfig, BatchReport
from .logging_utils import configure_logging
from .search import QuestionFilters, SearchQuery
from .storage import FusionWeights, QuestionRecord

app = Typer(help="Exam question bank: embedding backfill and hybrid semantic search.")
console = Console()


def build_container(db_path: Optional[str] = None) -> AppContainer:
    return AppContainer(Settings.from_env(db_path))


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]{message}[/]")
    raise Exit(code=1)


def _open_container(db_path: Optional[str]) -> AppContainer:
    try:
        return build_container(db_path)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)."),
    ] = None,
) -> None:
    configure_logging(log_level)


@app.command()
def backfill(
    batch: Annotated[
        Optional[int], Option("--batch", help="Rows fetched per cycle (default 64).")
    ] = None,
    group: Annotated[
        Optional[int], Option("--group", help="Inputs per embedding request (default 32).")
    ] = None,
    sleep: Annotated[
        Optional[int], Option("--sleep", help="Pause between cycles in ms (default 200).")
    ] = None,
    dry_run: Annotated[
        bool, Option("--dry-run", help="Fetch one batch, report it and stop without writing.")
    ] = False,
    model: Annotated[
        Optional[str], Option("--model", help="Embedding model override.")
    ] = None,
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Fill in missing question embeddings until none are left."""
    container = _open_container(db_path)
    settings = container.settings
    config = BackfillConfig(
        batch_size=batch if batch is not None else settings.batch_size,
        group_size=group if group is not None else settings.group_size,
        delay_ms=sleep if sleep is not None else settings.delay_ms,
        dry_run=dry_run,
        model=model,
    )

    def _on_batch(report: BatchReport) -> None:
        console.print(
            f"Batch #{report.batch_number}: processed={report.processed}, "
            f"embedded={report.embedded}, remaining={report.remaining}, "
            f"total={report.cumulative}"
        )

    try:
        summary = container.backfill.run(config, on_batch=_on_batch)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")
    except QBankError as exc:
        _fail(f"Fatal: {exc}")
    finally:
        container.close()

    table = Table(show_header=False, box=None)
    table.add_row("Missing at start", str(summary.missing_at_start))
    table.add_row("Rows processed", str(summary.processed))
    table.add_row("Embedded this run", str(summary.embedded))
    table.add_row("Batches", str(summary.batches))
    table.add_row("Skipped groups", str(summary.skipped_groups))
    table.add_row("Failed writes", str(summary.failed_writes))
    table.add_row("Remaining NULL", str(summary.missing_at_end))
    title = "Dry Run" if summary.dry_run else "Backfill Complete"
    console.print(Panel(table, title=title, title_align="left", border_style="bold green"))


@app.command()
def search(
    query: Annotated[str, Argument(help="Free-text search query.")],
    limit: Annotated[int, Option("--limit", help="Maximum results.")] = 25,
    threshold: Annotated[float, Option("--threshold", help="Minimum score (0..1).")] = 0.6,
    mode: Annotated[str, Option("--mode", help="hybrid or vector.")] = "hybrid",
    exam: Annotated[Optional[str], Option("--exam", help="Exam code filter.")] = None,
    category: Annotated[Optional[str], Option("--category", help="Category filter.")] = None,
    level: Annotated[Optional[str], Option("--level", help="Level filter.")] = None,
    w_vector: Annotated[float, Option("--w-vector", help="Vector weight.")] = 0.7,
    w_fts: Annotated[float, Option("--w-fts", help="Full-text weight.")] = 0.25,
    w_trgm: Annotated[float, Option("--w-trgm", help="Trigram weight.")] = 0.05,
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Search the question bank."""
    request = SearchQuery(
        query=query,
        limit=limit,
        threshold=threshold,
        filters=QuestionFilters(exam_code=exam, category=category, level=level),
        mode=mode,  # type: ignore[arg-type]
        weights=FusionWeights(vector=w_vector, full_text=w_fts, trigram=w_trgm),
    )
    container = _open_container(db_path)
    try:
        response = container.search_engine.search(request)
    except QBankError as exc:
        _fail(f"Search failed: {exc}")
    finally:
        container.close()

    table = Table(title=f"{response.count} result(s), mode={response.mode}")
    table.add_column("id", justify="right")
    table.add_column("score", justify="right")
    table.add_column("exam")
    table.add_column("category")
    table.add_column("question")
    for row in response.results:
        question = str(row.get("question", ""))
        table.add_row(
            str(row.get("id")),
            f"{float(row.get('score') or 0.0):.3f}",
            str(row.get("exam_code") or ""),
            str(row.get("category") or ""),
            question if len(question) <= 80 else question[:77] + "...",
        )
    console.print(table)


@app.command("import")
def import_questions(
    file: Annotated[Path, Argument(help="JSON file: a list of questions or {\"questions\": [...]}.")],
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
    text_index: Annotated[
        bool,
        Option("--text-index/--no-text-index", help="Rebuild the full-text index afterwards."),
    ] = True,
) -> None:
    """Load questions into the bank. Re-imported rows lose their embedding."""
    try:
        payload = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _fail(f"Cannot read {file}: {exc}")

    items = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        _fail("Expected a JSON list of questions.")

    records: list[QuestionRecord] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            _fail(f"Entry #{position} is not an object.")
        try:
            records.append(QuestionRecord.from_mapping(item))
        except (TypeError, ValueError) as exc:
            _fail(f"Entry #{position} is invalid: {exc}")

    container = _open_container(db_path)
    index_note = "skipped"
    try:
        ids = container.store.upsert_questions(records)
        if text_index:
            try:
                container.store.rebuild_text_index()
                index_note = "rebuilt"
            except StoreError as exc:
                index_note = "unavailable"
                console.print(f"[yellow]Full-text index not rebuilt: {exc}[/]")
        missing = container.store.count_missing_embeddings()
    except QBankError as exc:
        _fail(f"Import failed: {exc}")
    finally:
        container.close()

    content = (
        f"Imported {len(ids)} question(s).\n"
        f"Missing embeddings: {missing}\n"
        f"Full-text index: {index_note}"
    )
    console.print(Panel(content, title="Import Complete", title_align="left", border_style="bold green"))


@app.command()
def status(
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Show corpus and embedding counts."""
    container = _open_container(db_path)
    try:
        total = container.store.count_questions()
        missing = container.store.count_missing_embeddings()
    except QBankError as exc:
        _fail(f"Status failed: {exc}")
    finally:
        container.close()

    table = Table(show_header=False, box=None)
    table.add_row("Database", container.settings.db_path)
    table.add_row("Questions", str(total))
    table.add_row("Embedded", str(total - missing))
    table.add_row("Missing embeddings", str(missing))
    table.add_row("Embedding dim", str(container.settings.embedding_dim))
    console.print(Panel(table, title="Question Bank", title_align="left", border_style="bold cyan"))


@app.command("text-index")
def text_index(
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Rebuild the full-text index used by hybrid search."""
    container = _open_container(db_path)
    try:
        container.store.rebuild_text_index()
    except QBankError as exc:
        _fail(f"Full-text index rebuild failed: {exc}")
    finally:
        container.close()
    console.print("[bold green]Full-text index rebuilt.[/]")


@app.command("reset-embeddings")
def reset_embeddings(
    ids: Annotated[
        Optional[List[int]], Option("--id", help="Question id to re-embed (repeatable).")
    ] = None,
    all_rows: Annotated[bool, Option("--all", help="Clear every embedding.")] = False,
    db_path: Annotated[Optional[str], Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Clear embeddings so the next backfill re-embeds those questions."""
    if not ids and not all_rows:
        _fail("Pass --id at least once, or --all.")
    container = _open_container(db_path)
    try:
        cleared = container.store.clear_embeddings(None if all_rows else ids)
    except QBankError as exc:
        _fail(f"Reset failed: {exc}")
    finally:
        container.close()
    console.print(f"Cleared {cleared} embedding(s).")


@app.command()
def serve(
    host: Annotated[str, Option("--host", help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, Option("--port", help="Bind port.")] = 8000,
) -> None:
    """Run the HTTP search API. Refuses to start without embedding credentials."""
    try:
        settings = Settings.from_env()
        require_env(ENV_API_KEY)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")

    from .server import run_server

    console.print(f"Serving {settings.db_path} on http://{host}:{port}")
    run_server(host=host, port=port)
