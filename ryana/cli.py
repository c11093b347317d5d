"""
CLI interface for the snippet notebook.

Usage:
    ryana add --title "Bubble Sort" --lang python --tag sorting - < bubble.py
    ryana search "sort"
    ryana list --view errors --sort viewed
    ryana data export backup.json
"""

import json
import os
import shutil
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .api import SORT_ORDERS, VIEWS, Notebook
from .errors import RyanaError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .transfer import ImportMode, read_snapshot, snapshot_filename, write_snapshot
from .types import SNIPPET_TYPES, ErrorEntry, Snippet, local_date, now_ms


# Configure quiet mode by default
# Set RYANA_VERBOSE=1 to enable debug mode via environment
if os.environ.get("RYANA_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"ryana {version('ryana')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="ryana",
    help="Local notebook for code snippets and error logs.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="RYANA_STORE_PATH",
        help="Path to the store directory (default: ~/.ryana/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local notebook for code snippets and error logs."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        help="Path to the store directory (default: ~/.ryana/)"
    )
]

LimitOption = Annotated[
    int,
    typer.Option(
        "--limit", "-n",
        help="Maximum results to return (0 for all)"
    )
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

@contextmanager
def _notebook(store: Optional[Path]) -> Iterator[Notebook]:
    """Open the notebook; report ryana errors as a clean message and exit 1."""
    actual_store = store if store is not None else _get_store_override()
    try:
        nb = Notebook(actual_store)
    except (RyanaError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    try:
        yield nb
    except RyanaError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        nb.close()


def _output_width() -> int:
    """Terminal width for title truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((120, 24)).columns


def _format_snippet_line(snippet: Snippet, id_width: int = 0) -> str:
    """One line per snippet: id (score) date [language] title #tags"""
    padded_id = snippet.id.ljust(id_width) if id_width else snippet.id
    score_str = f" ({snippet.score})" if snippet.score is not None else ""
    marker = "*" if snippet.favourite else " "
    kind = "!" if snippet.is_error else " "
    date = local_date(snippet.updated_at)
    tags = " ".join(f"#{t}" for t in snippet.tags)

    line = f"{padded_id}{score_str} {date} {marker}{kind}[{snippet.language}] {snippet.title}"
    if tags:
        line += f"  {tags}"
    cols = _output_width()
    if len(line) > cols:
        line = line[:cols - 3] + "..."
    return line


def _format_snippets(snippets: list[Snippet], as_json: bool = False) -> str:
    if as_json:
        result = []
        for s in snippets:
            d = s.to_dict()
            if s.score is not None:
                d["score"] = s.score
            result.append(d)
        return json.dumps(result, indent=2, ensure_ascii=False)
    if not snippets:
        return "No snippets."
    id_width = max(len(s.id) for s in snippets)
    return "\n".join(_format_snippet_line(s, id_width) for s in snippets)


def _render_snippet(snippet: Snippet) -> str:
    """Full display: header fields, then the code."""
    lines = [
        f"id: {snippet.id}",
        f"title: {snippet.title}",
        f"type: {snippet.type}",
        f"language: {snippet.language}",
    ]
    if snippet.subject:
        lines.append(f"subject: {snippet.subject}")
    if snippet.tags:
        lines.append(f"tags: {', '.join(snippet.tags)}")
    if snippet.favourite:
        lines.append("favourite: yes")
    if snippet.description:
        lines.append(f"description: {snippet.description}")
    lines.append(f"created: {local_date(snippet.created_at)}")
    lines.append(f"updated: {local_date(snippet.updated_at)}")
    lines.append(
        f"views: {snippet.analytics.times_viewed}  copies: {snippet.analytics.times_copied}"
    )
    for i, error in enumerate(snippet.errors, 1):
        lines.append(f"error {i}: {error.message}")
        if error.solution:
            lines.append(f"  solution: {error.solution}")
        for link in error.links:
            lines.append(f"  link: {link}")
    lines.append("---")
    lines.append(snippet.code)
    return "\n".join(lines)


def _read_code(code: Optional[str]) -> Optional[str]:
    """Code from the argument, or stdin for '-'."""
    if code == "-":
        return sys.stdin.read()
    return code


def _limit(items: list, limit: int) -> list:
    return items[:limit] if limit else items


# -----------------------------------------------------------------------------
# Snippets
# -----------------------------------------------------------------------------

@app.command()
def add(
    code: Annotated[str, typer.Argument(
        help="Snippet code (use '-' to read stdin)"
    )],
    title: Annotated[Optional[str], typer.Option(
        "--title", "-t", help="Snippet title"
    )] = None,
    language: Annotated[Optional[str], typer.Option(
        "--lang", "-l", help="Language (default: plaintext)"
    )] = None,
    subject: Annotated[Optional[str], typer.Option(
        "--subject", "-S", help="Subject name"
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-T", help="Tag (repeatable)"
    )] = None,
    description: Annotated[Optional[str], typer.Option(
        "--desc", "-d", help="Description"
    )] = None,
    error: Annotated[Optional[str], typer.Option(
        "--error", "-e", help="Error message (makes this an error log)"
    )] = None,
    solution: Annotated[Optional[str], typer.Option(
        "--solution", help="Solution for --error"
    )] = None,
    favourite: Annotated[bool, typer.Option(
        "--fav", "-f", help="Mark as favourite"
    )] = False,
    store: StoreOption = None,
):
    """
    Add a code snippet or error log.

    \b
    Examples:
        ryana add 'print("hi")' --title Hello --lang python
        ryana add - --title "Bubble Sort" -T sorting < bubble.py
        ryana add "$(cat trace.txt)" --error "KeyError: 'x'" --solution "use .get()"
    """
    draft: dict = {"code": _read_code(code)}
    if title:
        draft["title"] = title
    if language:
        draft["language"] = language.lower()
    if subject:
        draft["subject"] = subject
    if tag:
        draft["tags"] = tag
    if description:
        draft["description"] = description
    if favourite:
        draft["favourite"] = True
    if error:
        draft["type"] = "error"
        draft["errors"] = [ErrorEntry(
            message=error, solution=solution or "", created_at=now_ms(),
        ).to_dict()]

    with _notebook(store) as nb:
        id = nb.add_snippet(draft)
    typer.echo(id)


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    no_view: Annotated[bool, typer.Option(
        "--no-view", help="Don't count this as a view"
    )] = False,
    store: StoreOption = None,
):
    """Show a snippet."""
    with _notebook(store) as nb:
        if not no_view:
            nb.record_view(id)
        snippet = nb.get(id)
        if snippet is None:
            typer.echo(f"Snippet not found: {id}", err=True)
            raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(snippet.to_dict(), indent=2, ensure_ascii=False))
    else:
        typer.echo(_render_snippet(snippet))


@app.command("list")
def list_snippets(
    view: Annotated[str, typer.Option(
        "--view", "-V", help=f"View: {', '.join(VIEWS)}"
    )] = "all",
    language: Annotated[Optional[str], typer.Option(
        "--lang", "-l", help="Only this language"
    )] = None,
    subject: Annotated[Optional[str], typer.Option(
        "--subject", "-S", help="Only this subject"
    )] = None,
    tag: Annotated[Optional[str], typer.Option(
        "--tag", "-T", help="Only snippets with this tag"
    )] = None,
    sort: Annotated[str, typer.Option(
        "--sort", help=f"Sort order: {', '.join(SORT_ORDERS)}"
    )] = "updated",
    limit: LimitOption = 0,
    store: StoreOption = None,
):
    """
    List snippets.

    \b
    Examples:
        ryana list                       # Code snippets, recently updated first
        ryana list --view everything     # Code and error logs
        ryana list --view errors --sort viewed
        ryana list --lang python --tag sorting
    """
    with _notebook(store) as nb:
        results = nb.query(view=view, language=language, subject=subject,
                           tag=tag, sort=sort)
    typer.echo(_format_snippets(_limit(results, limit), as_json=_get_json_output()))


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search terms (all must match)")],
    view: Annotated[str, typer.Option(
        "--view", "-V", help=f"View: {', '.join(VIEWS)}"
    )] = "everything",
    naive: Annotated[bool, typer.Option(
        "--naive", help="Unranked match of the whole query in any one field"
    )] = False,
    limit: LimitOption = 10,
    store: StoreOption = None,
):
    """Search snippets by text, best matches first."""
    with _notebook(store) as nb:
        results = nb.query(view=view, text=query, ranked=not naive, sort="relevance")
    typer.echo(_format_snippets(_limit(results, limit), as_json=_get_json_output()))


@app.command()
def edit(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    title: Annotated[Optional[str], typer.Option("--title", "-t")] = None,
    code: Annotated[Optional[str], typer.Option(
        "--code", "-c", help="New code (use '-' to read stdin)"
    )] = None,
    language: Annotated[Optional[str], typer.Option("--lang", "-l")] = None,
    subject: Annotated[Optional[str], typer.Option("--subject", "-S")] = None,
    description: Annotated[Optional[str], typer.Option("--desc", "-d")] = None,
    kind: Annotated[Optional[str], typer.Option(
        "--type", help=f"Snippet type: {', '.join(SNIPPET_TYPES)}"
    )] = None,
    add_tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-T", help="Add a tag (repeatable)"
    )] = None,
    remove_tag: Annotated[Optional[list[str]], typer.Option(
        "--remove", "-R", help="Remove a tag (repeatable)"
    )] = None,
    store: StoreOption = None,
):
    """Change fields of a snippet."""
    changes: dict = {}
    if title is not None:
        changes["title"] = title
    if code is not None:
        changes["code"] = _read_code(code)
    if language is not None:
        changes["language"] = language.lower()
    if subject is not None:
        changes["subject"] = subject
    if description is not None:
        changes["description"] = description
    if kind is not None:
        changes["type"] = kind

    with _notebook(store) as nb:
        if add_tag or remove_tag:
            snippet = nb.get(id)
            if snippet is None:
                typer.echo(f"Snippet not found: {id}", err=True)
                raise typer.Exit(1)
            removed = set(remove_tag or [])
            changes["tags"] = [t for t in snippet.tags + list(add_tag or []) if t not in removed]
        if not changes:
            typer.echo("Error: Nothing to change", err=True)
            raise typer.Exit(1)
        snippet = nb.update(id, changes)
    typer.echo(_format_snippet_line(snippet))


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
    store: StoreOption = None,
):
    """Delete a snippet."""
    with _notebook(store) as nb:
        snippet = nb.get(id)
        if snippet is None:
            typer.echo(f"Snippet not found: {id}", err=True)
            raise typer.Exit(1)
        if not yes and not typer.confirm(f"Delete '{snippet.title}'?"):
            raise typer.Exit(0)
        nb.delete(id)
    typer.echo(f"Deleted {id}", err=True)


@app.command()
def fav(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    store: StoreOption = None,
):
    """Toggle the favourite flag of a snippet."""
    with _notebook(store) as nb:
        favourite = nb.toggle_favourite(id)
    typer.echo(f"{id} {'is' if favourite else 'is no longer'} a favourite")


@app.command()
def copy(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    store: StoreOption = None,
):
    """Print a snippet's code (for piping to the clipboard) and count the copy."""
    with _notebook(store) as nb:
        snippet = nb.record_copy(id)
    typer.echo(snippet.code, nl=not snippet.code.endswith("\n"))


@app.command()
def related(
    id: Annotated[str, typer.Argument(help="Snippet ID")],
    limit: LimitOption = 5,
    store: StoreOption = None,
):
    """Snippets similar to the given one (subject, language, tags, title words)."""
    with _notebook(store) as nb:
        results = nb.related(id, limit=limit or 5)
    typer.echo(_format_snippets(results, as_json=_get_json_output()))


@app.command()
def langs(store: StoreOption = None):
    """List the languages in use."""
    with _notebook(store) as nb:
        languages = nb.list_languages()
    if _get_json_output():
        typer.echo(json.dumps(languages))
    else:
        typer.echo("\n".join(languages) if languages else "No snippets.")


@app.command()
def tags(
    prefix: Annotated[Optional[str], typer.Argument(
        help="Only tags starting with this (top 10)"
    )] = None,
    store: StoreOption = None,
):
    """List tags with their usage counts, most used first."""
    with _notebook(store) as nb:
        results = nb.tag_suggestions(prefix) if prefix else nb.list_tags()
    if _get_json_output():
        typer.echo(json.dumps([t.to_dict() for t in results], indent=2))
    elif not results:
        typer.echo("No tags found.")
    else:
        width = max(len(t.name) for t in results)
        for t in results:
            typer.echo(f"{t.name.ljust(width)}  {t.count}")


@app.command()
def suggest(
    partial: Annotated[str, typer.Argument(help="Partial text")],
    store: StoreOption = None,
):
    """Suggest snippet titles, tags, subjects and languages matching partial text."""
    with _notebook(store) as nb:
        suggestions = nb.suggestions(partial)
    if _get_json_output():
        typer.echo(json.dumps(suggestions, indent=2, ensure_ascii=False))
        return
    empty = True
    for group, entries in suggestions.items():
        for entry in entries:
            empty = False
            label = entry.get("title") or entry.get("name")
            suffix = f"  {entry['id']}" if "id" in entry else ""
            typer.echo(f"{group[:-1]}: {label}{suffix}")
    if empty:
        typer.echo("No suggestions.")


@app.command()
def stats(store: StoreOption = None):
    """Show notebook statistics."""
    with _notebook(store) as nb:
        statistics = nb.statistics()
    if _get_json_output():
        typer.echo(json.dumps(statistics.to_dict(), indent=2))
        return
    s = statistics
    typer.echo(f"Snippets:      {s.total} ({s.code} code, {s.errors} errors, {s.favourites} favourites)")
    typer.echo(f"Subjects:      {s.subjects}")
    typer.echo(f"Tags:          {s.unique_tags}")
    typer.echo(f"Languages:     {s.languages} (most used: {s.most_used_language or 'none'})")
    typer.echo(f"Top subject:   {s.most_used_subject or 'none'}")
    typer.echo(f"Views/copies:  {s.total_views}/{s.total_copies}")
    typer.echo(f"This week:     {s.created_this_week}")
    if s.top_tags:
        typer.echo("Top tags:      " + ", ".join(f"{t['name']} ({t['count']})" for t in s.top_tags))


# -----------------------------------------------------------------------------
# Subjects
# -----------------------------------------------------------------------------

subject_app = typer.Typer(
    name="subject",
    help="Manage subjects (add, list, delete).",
    rich_markup_mode=None,
)
app.add_typer(subject_app)


@subject_app.command("add")
def subject_add(
    name: Annotated[str, typer.Argument(help="Subject name (unique)")],
    color_index: Annotated[Optional[int], typer.Option(
        "--color", help="Palette colour 1-10"
    )] = None,
    year: Annotated[Optional[int], typer.Option("--year")] = None,
    semester: Annotated[Optional[int], typer.Option("--semester")] = None,
    description: Annotated[Optional[str], typer.Option("--desc", "-d")] = None,
    store: StoreOption = None,
):
    """Add a subject."""
    fields: dict = {}
    if color_index is not None:
        fields["colorIndex"] = color_index
    if year is not None:
        fields["year"] = year
    if semester is not None:
        fields["semester"] = semester
    if description:
        fields["description"] = description
    with _notebook(store) as nb:
        id = nb.add_subject(name, **fields)
    typer.echo(id)


@subject_app.command("list")
def subject_list(store: StoreOption = None):
    """List subjects."""
    with _notebook(store) as nb:
        subjects = nb.list_subjects()
    if _get_json_output():
        typer.echo(json.dumps([s.to_dict() for s in subjects], indent=2, ensure_ascii=False))
    elif not subjects:
        typer.echo("No subjects.")
    else:
        for s in subjects:
            typer.echo(f"{s.id}  {s.name}  (year {s.year}, semester {s.semester}, {s.color})")


@subject_app.command("delete")
def subject_delete(
    name: Annotated[str, typer.Argument(help="Subject name or ID")],
    store: StoreOption = None,
):
    """Delete a subject. Snippets keep their subject name."""
    with _notebook(store) as nb:
        subject = nb.store.get_subject_by_name(name)
        nb.delete_subject(subject.id if subject is not None else name)
    typer.echo(f"Deleted subject {name}", err=True)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

@app.command()
def settings(
    theme: Annotated[Optional[str], typer.Option("--theme", help="light or dark")] = None,
    default_language: Annotated[Optional[str], typer.Option(
        "--default-language", help="Language preselected for new snippets"
    )] = None,
    auto_save: Annotated[Optional[bool], typer.Option(
        "--auto-save/--no-auto-save"
    )] = None,
    keyboard_shortcuts: Annotated[Optional[bool], typer.Option(
        "--shortcuts/--no-shortcuts"
    )] = None,
    store: StoreOption = None,
):
    """Show settings, or change them with options."""
    changes: dict = {}
    if theme is not None:
        changes["theme"] = theme
    if default_language is not None:
        changes["defaultLanguage"] = default_language
    if auto_save is not None:
        changes["autoSave"] = auto_save
    if keyboard_shortcuts is not None:
        changes["keyboardShortcuts"] = keyboard_shortcuts

    with _notebook(store) as nb:
        current = nb.update_settings(**changes) if changes else nb.get_settings()
    record = current.to_dict()
    record.pop("authToken", None)
    if _get_json_output():
        typer.echo(json.dumps(record, indent=2))
    else:
        for key, value in record.items():
            typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------
# Data Management
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Export and import notebook data.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[Optional[str], typer.Argument(
        help="Output file path (use '-' for stdout; default: ryana-export-<date>.json)"
    )] = None,
    ids: Annotated[Optional[list[str]], typer.Option(
        "--id", help="Export only these snippets (repeatable)"
    )] = None,
    subject: Annotated[Optional[str], typer.Option(
        "--subject", "-S", help="Export only this subject's snippets"
    )] = None,
    store: StoreOption = None,
):
    """Export the notebook to JSON for backup or migration."""
    if ids and subject:
        typer.echo("Error: Specify either --id or --subject, not both", err=True)
        raise typer.Exit(1)

    with _notebook(store) as nb:
        if ids:
            data = nb.export_selected(ids)
            kind = "selected"
        elif subject:
            data = nb.export_by_subject(subject)
            kind = subject
        else:
            data = nb.export_data()
            kind = "export"

    output = output or snapshot_filename(kind)
    write_snapshot(data, output)
    if output != "-":
        typer.echo(f"Exported {len(data['snippets'])} snippets to {output}", err=True)


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON export file to import ('-' for stdin)")],
    mode: Annotated[str, typer.Option(
        "--mode", "-m",
        help="merge (update if newer), replace (clear first) or add (skip existing)"
    )] = "merge",
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Don't ask before replacing"
    )] = False,
    store: StoreOption = None,
):
    """Import snippets and subjects from a JSON export file."""
    modes = [m.value for m in ImportMode]
    if mode not in modes:
        typer.echo(f"Error: --mode must be one of {', '.join(modes)}, got '{mode}'", err=True)
        raise typer.Exit(1)

    if file != "-" and not Path(file).exists():
        typer.echo(f"Error: file not found: {file}", err=True)
        raise typer.Exit(1)
    try:
        data = read_snapshot(file)
    except RyanaError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    confirm = yes
    if mode == ImportMode.REPLACE.value and not yes:
        count = len(data.get("snippets") or [])
        if not typer.confirm(
            f"This will delete all existing snippets, subjects and tags "
            f"and import {count} snippets from {file}. Continue?"
        ):
            raise typer.Exit(0)
        confirm = True

    with _notebook(store) as nb:
        result = nb.import_data(data, mode=mode, confirm=confirm)

    if _get_json_output():
        typer.echo(json.dumps(result.to_dict()))
        return
    s, j = result.snippets, result.subjects
    typer.echo(
        f"Snippets: {s.added} added, {s.updated} updated, {s.skipped} skipped. "
        f"Subjects: {j.added} added, {j.skipped} skipped.",
        err=True,
    )


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="ryana CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
