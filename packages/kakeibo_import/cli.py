"""CLI for the ``kakeibo_import`` package.

This module exposes callable command handlers (``cmd_detect``,
``cmd_import``, ``cmd_rules_list``, ``cmd_rules_add``) that return process
exit codes, and a Typer-based console interface on top of them. Environment
variables (``OPENAI_API_KEY``, ``DATABASE_URL``, ``KAKEIBO_*``) are loaded
from a local ``.env`` using ``python-dotenv`` before any command runs.
Business logic lives in ``kakeibo_import.api`` and related modules.
"""

from __future__ import annotations

import sys
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .categories import InMemoryCatalog
from .config import ClassifierSettings, database_url_from_env, rules_path_from_env
from .logging_setup import configure_logging
from .models import Direction, ImportFormat, ImportResult


def _err(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _parse_direction(value: str) -> Direction | None:
    try:
        d = Direction.from_code(value)
    except ValueError:
        return None
    return None if d is Direction.TRANSFER else d


# ---- Command handlers ---------------------------------------------------------


def cmd_detect(csv_path: Path) -> int:
    """Print every format verdict for ``csv_path``, best first."""

    from .api import detect_format, read_export_text

    try:
        text = read_export_text(csv_path)
    except FileNotFoundError:
        _err(f"File not found: {csv_path}")
        return 1
    except (OSError, ValueError) as e:
        _err(f"Failed to read '{csv_path}': {e}")
        return 1

    results = detect_format(text)
    if not results:
        _err("no known export format detected")
        return 1

    table = Table(title=str(csv_path))
    table.add_column("format")
    table.add_column("confidence")
    table.add_column("reason")
    for r in results:
        table.add_row(r.format.code, r.confidence.name, r.reason)
    Console().print(table)
    return 0


def _print_import_result(result: ImportResult, console: Console) -> None:
    fmt = result.import_format.display_name if result.import_format else "unknown"
    console.print(f"format: {fmt}")
    console.print(result.summary)
    console.print(
        f"processed={result.total_processed} success_rate={result.success_rate:.0%}",
        highlight=False,
    )
    if result.classification is not None:
        console.print(result.classification.summary, highlight=False)
    for line in result.errors:
        console.print(f"  {line}", markup=False, highlight=False)
    if result.unclassified_samples:
        table = Table(title="unclassified")
        table.add_column("memo")
        for memo in result.unclassified_samples:
            table.add_row(memo)
        console.print(table)


def cmd_import(
    csv_path: Path,
    *,
    format_code: str | None = None,
    mapping_path: Path | None = None,
    database_url: str | None = None,
    rules_path: Path | None = None,
    classify: bool = False,
    dry_run: bool = False,
    source: str | None = None,
    account_id: str | None = None,
) -> int:
    """Import ``csv_path`` into the ledger database and print a summary."""

    from .api import collect_hints, import_text, read_export_text
    from .columns import ManualMapping
    from .persistence import SqlRecordSink
    from .remote import classify_unresolved
    from .rules import RuleStore

    try:
        fmt = ImportFormat.from_code(format_code) if format_code else None
    except ValueError as e:
        _err(str(e))
        return 2

    manual = None
    if mapping_path is not None:
        try:
            manual = ManualMapping.model_validate_json(mapping_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            _err(f"Invalid column mapping '{mapping_path}': {e}")
            return 2

    try:
        text = read_export_text(csv_path)
    except FileNotFoundError:
        _err(f"File not found: {csv_path}")
        return 1
    except (OSError, ValueError) as e:
        _err(f"Failed to read '{csv_path}': {e}")
        return 1

    catalog = InMemoryCatalog.default()
    settings = ClassifierSettings.from_env()
    try:
        rules = RuleStore.load(
            rules_path or rules_path_from_env(),
            catalog=catalog,
            allow_heuristic_override=settings.allow_heuristic_override,
        )
    except (OSError, ValueError) as e:
        _err(f"failed to load rules: {e}")
        return 1
    rules.ensure_default_rules(catalog)

    sink = None if dry_run else SqlRecordSink(database_url or database_url_from_env())
    classifier = None
    if classify:
        hints = collect_hints(sink.load_records(), catalog) if sink is not None else []
        classifier = partial(
            classify_unresolved, catalog=catalog, settings=settings, hints=hints
        )

    result = import_text(
        text,
        catalog=catalog,
        rules=rules,
        sink=sink,
        format_override=fmt,
        manual_mapping=manual,
        source=source,
        account_id=account_id,
        classifier=classifier,
    )
    _print_import_result(result, Console())
    if result.import_format is None and not result.added:
        return 1
    return 0


def cmd_rules_list(*, rules_path: Path | None = None, direction: str | None = None) -> int:
    from .rules import RuleStore

    wanted = None
    if direction is not None:
        wanted = _parse_direction(direction)
        if wanted is None:
            _err(f"unknown direction: {direction!r} (expected expense or income)")
            return 2

    catalog = InMemoryCatalog.default()
    try:
        store = RuleStore.load(rules_path or rules_path_from_env(), catalog=catalog)
    except (OSError, ValueError) as e:
        _err(f"failed to load rules: {e}")
        return 1
    table = Table()
    for col in ("priority", "direction", "match", "keyword", "category", "enabled"):
        table.add_column(col)
    ordered = sorted(store.rules, key=lambda r: r.priority, reverse=True)
    for r in ordered:
        if wanted is not None and r.direction is not wanted:
            continue
        cat = catalog.get(r.target_category_id) if r.target_category_id else None
        name = cat.name if cat else f"{r.target_category_name or '-'} (unresolved)"
        table.add_row(
            str(r.priority),
            r.direction.code,
            r.match_type.value,
            r.keyword,
            name,
            "yes" if r.enabled else "no",
        )
    Console().print(table)
    return 0


def cmd_rules_add(
    keyword: str,
    category: str,
    *,
    rules_path: Path | None = None,
    direction: str = "expense",
    match_type: str = "contains",
    priority: int = 0,
    force: bool = False,
) -> int:
    from .rules import ClassificationRule, MatchType, RuleStore

    d = _parse_direction(direction)
    if d is None:
        _err(f"unknown direction: {direction!r} (expected expense or income)")
        return 2
    try:
        mt = MatchType(match_type.strip().lower())
    except ValueError:
        _err(f"unknown match type: {match_type!r}")
        return 2

    catalog = InMemoryCatalog.default()
    cat = catalog.find_category(category, d)
    if cat is None:
        _err(f"unknown {d.code} category: {category!r}")
        return 1

    try:
        store = RuleStore.load(rules_path or rules_path_from_env(), catalog=catalog)
    except (OSError, ValueError) as e:
        _err(f"failed to load rules: {e}")
        return 1
    try:
        rule = ClassificationRule(
            keyword=keyword,
            match_type=mt,
            target_category_id=cat.id,
            target_category_name=cat.name,
            direction=d,
            priority=priority,
        )
    except ValidationError as e:
        _err(f"invalid rule: {e.errors()[0]['msg']}")
        return 2

    added, existing = store.add_with_check(rule)
    if not added and existing is not None:
        if not force:
            _err(
                f"a {d.code} rule for {existing.keyword!r} already exists; "
                "use --force to overwrite it"
            )
            return 1
        store.overwrite(existing.id, rule.model_copy(update={"id": existing.id}))
        print(f"Overwrote rule: {keyword} -> {cat.name}")
        return 0
    print(f"Added rule: {keyword} -> {cat.name}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import household-ledger exports (bank, card and wallet CSV files), "
        "classify them with keyword rules and optionally OpenAI. "
        "Loads OPENAI_API_KEY and DATABASE_URL from a local .env before running."
    ),
)
rules_app = typer.Typer(no_args_is_help=True, help="Inspect and edit classification rules.")
app.add_typer(rules_app, name="rules")


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect these when used as default values below.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--csv-path",
    help="Path to an export file (CSV or TSV)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # allow non-existent here; the handler will report nice errors
)
RULES_PATH_OPTION: OptionInfo = typer.Option(
    None, "--rules-path", help="Rule store JSON (falls back to KAKEIBO_RULES_PATH)."
)


@app.command("detect")
def detect_cmd(csv_path: Annotated[Path, CSV_PATH_OPTION]) -> None:
    """Show which export formats a file looks like."""

    raise typer.Exit(cmd_detect(csv_path))


@app.command("import")
def import_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    format_code: str | None = typer.Option(
        None, "--format", help="Force a format code (e.g. paypay, bank_generic)."
    ),
    mapping: Path | None = typer.Option(
        None, "--mapping", help="Manual column mapping JSON (dateColumn, amountColumn, ...)."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var, then sqlite:///kakeibo.db)."
    ),
    rules_path: Path | None = RULES_PATH_OPTION,
    classify: bool = typer.Option(
        False, "--classify/--no-classify", help="Send unresolved records to OpenAI."
    ),
    dry_run: bool = typer.Option(False, help="Parse and classify without writing to the DB."),
    source: str | None = typer.Option(None, help="Source tag recorded on every record."),
    account: str | None = typer.Option(None, help="Account id recorded on every record."),
) -> None:
    """Import an export file."""

    raise typer.Exit(
        cmd_import(
            csv_path,
            format_code=format_code,
            mapping_path=mapping,
            database_url=database_url,
            rules_path=rules_path,
            classify=classify,
            dry_run=dry_run,
            source=source,
            account_id=account,
        )
    )


@rules_app.command("list")
def rules_list_cmd(
    rules_path: Path | None = RULES_PATH_OPTION,
    direction: str | None = typer.Option(None, help="Only show expense or income rules."),
) -> None:
    """List rules, highest priority first."""

    raise typer.Exit(cmd_rules_list(rules_path=rules_path, direction=direction))


@rules_app.command("add")
def rules_add_cmd(
    keyword: str,
    category: str,
    rules_path: Path | None = RULES_PATH_OPTION,
    direction: str = typer.Option("expense", help="expense or income"),
    match_type: str = typer.Option("contains", help="contains, prefix, suffix or exact"),
    priority: int = typer.Option(0, help="Higher runs first."),
    force: bool = typer.Option(False, help="Overwrite a rule with the same keyword."),
) -> None:
    """Add a keyword rule for an existing category."""

    raise typer.Exit(
        cmd_rules_add(
            keyword,
            category,
            rules_path=rules_path,
            direction=direction,
            match_type=match_type,
            priority=priority,
            force=force,
        )
    )


@app.callback()
def _root() -> None:
    """Load ``.env`` (without overriding set variables) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m kakeibo_import.cli`
    app()
