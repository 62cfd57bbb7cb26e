"""pvault - PromptVault command-line interface."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import Session

from promptvault import __version__
from promptvault.config import get_settings
from promptvault.database import get_session_factory, init_db, reset_engine
from promptvault.errors import PromptVaultError
from promptvault.llm import get_analysis_provider
from promptvault.models import Account, Category, Prompt, Source
from promptvault.services.account_service import AccountService
from promptvault.services.analysis import AnalysisAdapter, basic_title
from promptvault.services.collection_service import CollectionService, share_url
from promptvault.services.prompt_service import PromptService
from promptvault.services.tag_service import TagService
from promptvault.services.usage_gate import UsageGate


def _version_callback(value: bool) -> None:
    if value:
        print(f"pvault {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="pvault",
    help="PromptVault: save, tag, version and share your AI prompts.",
    add_completion=False,
    no_args_is_help=True,
)
collection_app = typer.Typer(help="Group prompts into collections and share them.", no_args_is_help=True)
account_app = typer.Typer(help="Manage accounts, API tokens and linked clients.", no_args_is_help=True)
app.add_typer(collection_app, name="collection")
app.add_typer(account_app, name="account")


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """PromptVault: save, tag, version and share your AI prompts."""


console = Console()

DbOption = Annotated[
    Path | None,
    typer.Option("--db", envvar="PROMPTVAULT_DB", help="Override path to SQLite database."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON.")]


def _db_target(db: Path | None) -> str | Path:
    return db if db is not None else get_settings().database_target


@contextmanager
def _session(db: Path | None) -> Iterator[Session]:
    """Open a migrated database, commit on success, report errors and exit 1."""
    target = _db_target(db)
    reset_engine()
    init_db(target)
    session = get_session_factory(target)()
    try:
        yield session
        session.commit()
    except PromptVaultError as exc:
        session.rollback()
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    finally:
        session.close()
        reset_engine()


def _local_account(session: Session) -> Account:
    settings = get_settings()
    return AccountService(session, free_limit=settings.FREE_ANALYSES_LIMIT).local_account()


def _prompt_service(session: Session) -> PromptService:
    settings = get_settings()
    account = _local_account(session)
    return PromptService(session, account.id, retry_attempts=settings.WRITE_RETRY_ATTEMPTS)


def _analysis_adapter(session: Session) -> AnalysisAdapter:
    settings = get_settings()
    return AnalysisAdapter(
        session,
        get_analysis_provider(settings),
        UsageGate(session, free_limit=settings.FREE_ANALYSES_LIMIT),
    )


def _read_content(content: str | None, file: Path | None, *, required: bool) -> str | None:
    if content and file:
        rprint("[red]Error:[/red] Provide --content or --file, not both.")
        raise typer.Exit(1) from None
    if file:
        if not file.exists():
            rprint(f"[red]Error:[/red] File not found: {file}")
            raise typer.Exit(1) from None
        return file.read_text(encoding="utf-8")
    if content == "-":
        return sys.stdin.read()
    if content is None and required:
        rprint("[red]Error:[/red] Provide prompt content via --content or --file.")
        raise typer.Exit(1) from None
    return content


def _category_id(session: Session, name: str | None) -> int | None:
    if name is None:
        return None
    wanted = name.strip().lower()
    for category in TagService(session).list_categories():
        if category.name.lower() == wanted:
            return category.id
    rprint(f"[red]Error:[/red] Unknown category '{name}'.")
    raise typer.Exit(1) from None


def _fmt_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def _prompt_dict(prompt: Prompt) -> dict[str, Any]:
    return {
        "id": prompt.id,
        "title": prompt.title,
        "source": prompt.source,
        "category": prompt.category.name if prompt.category else None,
        "tags": [t.name for t in prompt.tags],
        "effectiveness_score": prompt.effectiveness_score,
        "is_favorite": prompt.is_favorite,
        "use_count": prompt.use_count,
        "current_version": prompt.current_version,
        "updated_at": prompt.updated_at.isoformat() if prompt.updated_at else None,
    }


SourceOption = Annotated[
    Source | None,
    typer.Option("--source", "-s", help="AI tool the prompt is for."),
]
ContentOption = Annotated[
    str | None,
    typer.Option("--content", "-c", help="Prompt content. Use - to read from stdin."),
]
FileOption = Annotated[
    Path | None,
    typer.Option("--file", "-f", help="Read prompt content from a file."),
]
TagOption = Annotated[
    list[str] | None,
    typer.Option("--tag", "-t", help="Tag name (repeatable)."),
]


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@app.command()
def init(db: DbOption = None) -> None:
    """Initialize the PromptVault database."""
    target = _db_target(db)
    reset_engine()
    init_db(target)
    reset_engine()
    rprint(f"[green]✓[/green] Database initialized at [bold]{target}[/bold]")


# ------------------------------------------------------------------
# prompts
# ------------------------------------------------------------------


@app.command()
def add(
    title: Annotated[
        str | None,
        typer.Option("--title", help="Prompt title (default: suggested from the content)."),
    ] = None,
    content: ContentOption = None,
    file: FileOption = None,
    source: SourceOption = None,
    category: Annotated[str | None, typer.Option("--category", help="Category name.")] = None,
    collection: Annotated[int | None, typer.Option("--collection", help="Collection id.")] = None,
    score: Annotated[
        int | None,
        typer.Option("--score", min=1, max=10, help="Effectiveness score, 1-10."),
    ] = None,
    tag: TagOption = None,
    favorite: Annotated[bool, typer.Option("--favorite", help="Mark as favorite.")] = False,
    analyze: Annotated[
        bool,
        typer.Option("--analyze", "-a", help="Fill missing metadata from analysis."),
    ] = False,
    note: Annotated[str | None, typer.Option("--note", "-n", help="Note for version 1.")] = None,
    db: DbOption = None,
) -> None:
    """Save a new prompt as version 1."""
    text = _read_content(content, file, required=True)
    source_value = (source or Source.OTHER).value

    with _session(db) as session:
        service = _prompt_service(session)
        category_id = _category_id(session, category)
        tags = list(tag or [])
        auto_tags = False
        if analyze:
            result = _analysis_adapter(session).analyze_for(service.account_id, text or "", source_value)
            title = title or result.title
            if not tags:
                tags, auto_tags = list(result.tags), result.ai_powered
            category_id = category_id if category_id is not None else result.category_id
            score = score if score is not None else result.effectiveness_score
            if result.message:
                rprint(f"[dim]{result.message}[/dim]")
        prompt = service.create_prompt(
            title or basic_title(text or ""),
            text,
            source_value,
            category_id=category_id,
            collection_id=collection,
            effectiveness_score=score,
            tags=tags,
            is_favorite=favorite,
            change_notes=note or "Initial version",
            auto_tags=auto_tags,
        )
        rprint(f"[green]✓[/green] Saved [bold]{prompt.title}[/bold] as #{prompt.id} (v1)")


@app.command()
def edit(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    title: Annotated[str | None, typer.Option("--title", help="New title.")] = None,
    content: ContentOption = None,
    file: FileOption = None,
    source: SourceOption = None,
    category: Annotated[str | None, typer.Option("--category", help="Category name.")] = None,
    collection: Annotated[int | None, typer.Option("--collection", help="Collection id.")] = None,
    score: Annotated[
        int | None,
        typer.Option("--score", min=1, max=10, help="Effectiveness score, 1-10."),
    ] = None,
    favorite: Annotated[
        bool | None,
        typer.Option("--favorite/--no-favorite", help="Set or clear the favorite flag."),
    ] = None,
    tag: TagOption = None,
    note: Annotated[str | None, typer.Option("--note", "-n", help="Note for the new version.")] = None,
    db: DbOption = None,
) -> None:
    """Edit a prompt. Changed content creates a new version."""
    text = _read_content(content, file, required=False)
    with _session(db) as session:
        service = _prompt_service(session)
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if text is not None:
            changes["content"] = text
        if source is not None:
            changes["source"] = source.value
        if category is not None:
            changes["category_id"] = _category_id(session, category)
        if collection is not None:
            changes["collection_id"] = collection
        if score is not None:
            changes["effectiveness_score"] = score
        if favorite is not None:
            changes["is_favorite"] = favorite
        if not changes and not tag:
            rprint("[dim]Nothing to change.[/dim]")
            return
        before = service.get_prompt(prompt_id).current_version
        prompt = service.update_prompt(prompt_id, changes, change_notes=note, tags=tag)
        if prompt.current_version != before:
            rprint(f"[green]✓[/green] Updated #{prompt_id} → v{prompt.current_version}")
        else:
            rprint(f"[green]✓[/green] Updated #{prompt_id} (still v{prompt.current_version})")


@app.command("list")
def list_prompts(
    search: Annotated[str | None, typer.Option("--search", "-q", help="Search title and content.")] = None,
    source: SourceOption = None,
    tag: TagOption = None,
    favorites: Annotated[bool, typer.Option("--favorites", help="Only favorites.")] = False,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Maximum rows.")] = 50,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List prompts, most recently updated first."""
    with _session(db) as session:
        prompts = _prompt_service(session).list_prompts(
            query=search,
            source=source.value if source else None,
            tags=tag,
            is_favorite=favorites or None,
            limit=limit,
        )
        if json_output:
            typer.echo(json.dumps([_prompt_dict(p) for p in prompts], indent=2, ensure_ascii=False))
            return
        if not prompts:
            rprint("[dim]No prompts found.[/dim]")
            return

        table = Table(title="Prompts")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Title")
        table.add_column("Source", style="magenta")
        table.add_column("Tags")
        table.add_column("Score", justify="right")
        table.add_column("Ver", justify="right")
        table.add_column("Updated", style="dim")
        for p in prompts:
            table.add_row(
                str(p.id),
                ("★ " if p.is_favorite else "") + p.title,
                p.source,
                ", ".join(t.name for t in p.tags) or "-",
                str(p.effectiveness_score or "-"),
                str(p.current_version),
                _fmt_time(p.updated_at),
            )
        console.print(table)


@app.command()
def log(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show version history for a prompt."""
    with _session(db) as session:
        versions = _prompt_service(session).list_versions(prompt_id)
        if json_output:
            data = [
                {
                    "version": v.version_number,
                    "change_notes": v.change_notes,
                    "effectiveness_score": v.effectiveness_score,
                    "created_at": v.created_at.isoformat() if v.created_at else None,
                }
                for v in versions
            ]
            typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
            return

        table = Table(title=f"Versions of #{prompt_id}")
        table.add_column("Version", justify="right", style="cyan")
        table.add_column("Notes")
        table.add_column("Score", justify="right")
        table.add_column("Created", style="dim")
        for v in versions:
            table.add_row(
                str(v.version_number),
                v.change_notes or "-",
                str(v.effectiveness_score or "-"),
                _fmt_time(v.created_at),
            )
        console.print(table)


@app.command()
def show(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    version: Annotated[
        int | None,
        typer.Option("--version", "-v", help="Version number (default: current)."),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show a prompt, or one of its versions."""
    with _session(db) as session:
        service = _prompt_service(session)
        prompt = service.get_prompt(prompt_id)
        number = version if version is not None else prompt.current_version
        ver = service.get_version(prompt_id, number)

        if json_output:
            data = _prompt_dict(prompt) | {
                "version": ver.version_number,
                "content": ver.content,
                "change_notes": ver.change_notes,
            }
            typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
            return

        rprint(f"[bold cyan]{prompt.title}[/bold cyan] #{prompt.id} v{ver.version_number}")
        rprint(
            f"[dim]Source: {prompt.source} | "
            f"Category: {prompt.category.name if prompt.category else 'none'} | "
            f"Tags: {', '.join(t.name for t in prompt.tags) or 'none'} | "
            f"Score: {ver.effectiveness_score or '-'} | "
            f"Notes: {ver.change_notes or 'none'}[/dim]"
        )
        rprint()
        console.print(ver.content, markup=False, highlight=False)


@app.command()
def diff(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    v1: Annotated[int, typer.Argument(help="First version number")],
    v2: Annotated[int, typer.Argument(help="Second version number")],
    db: DbOption = None,
) -> None:
    """Show a unified diff between two versions of a prompt."""
    with _session(db) as session:
        result = _prompt_service(session).diff_versions(prompt_id, v1, v2)
        if not result:
            rprint("[dim]No differences.[/dim]")
            return
        styles = (("+++", "bold"), ("---", "bold"), ("+", "green"), ("-", "red"), ("@@", "cyan"))
        for line in result.splitlines():
            style = next((s for prefix, s in styles if line.startswith(prefix)), None)
            console.print(line, style=style, markup=False, highlight=False)


@app.command()
def restore(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    version: Annotated[int, typer.Argument(help="Version number to restore")],
    db: DbOption = None,
) -> None:
    """Restore an old version's content (creates a new version)."""
    with _session(db) as session:
        prompt = _prompt_service(session).restore_version(prompt_id, version)
        rprint(
            f"[green]✓[/green] Restored #{prompt_id} from v{version} → "
            f"now v{prompt.current_version}"
        )


@app.command()
def use(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    db: DbOption = None,
) -> None:
    """Print a prompt's content and count the use."""
    with _session(db) as session:
        service = _prompt_service(session)
        service.record_use(prompt_id)
        typer.echo(service.get_prompt(prompt_id).content)


@app.command()
def export(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write to file instead of stdout."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Export a prompt and all its versions as JSON."""
    with _session(db) as session:
        service = _prompt_service(session)
        if output:
            service.export_to_file(prompt_id, output)
            rprint(f"[green]✓[/green] Exported #{prompt_id} to {output}")
        else:
            typer.echo(service.export_prompt(prompt_id))


@app.command()
def delete(
    prompt_id: Annotated[int, typer.Argument(help="Prompt id")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    db: DbOption = None,
) -> None:
    """Delete a prompt and all its versions."""
    if not yes:
        confirm = typer.confirm(f"Delete prompt #{prompt_id} and all its versions?")
        if not confirm:
            rprint("[dim]Aborted.[/dim]")
            raise typer.Exit(0)

    with _session(db) as session:
        _prompt_service(session).delete_prompt(prompt_id)
        rprint(f"[green]✓[/green] Deleted #{prompt_id}")


@app.command()
def analyze(
    content: ContentOption = None,
    file: FileOption = None,
    source: SourceOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Suggest a title, tags, category and score for some prompt text."""
    text = _read_content(content, file, required=True) or ""
    with _session(db) as session:
        account = _local_account(session)
        result = _analysis_adapter(session).analyze_for(
            account.id, text, source.value if source else None
        )
        if json_output:
            typer.echo(result.model_dump_json(indent=2))
            return
        rprint(f"[bold]Title:[/bold] {result.title}")
        rprint(f"[bold]Tags:[/bold] {', '.join(result.tags) or 'none'}")
        rprint(f"[bold]Category:[/bold] {result.category or 'none'}")
        if result.effectiveness_score is not None:
            rprint(f"[bold]Score:[/bold] {result.effectiveness_score}/10")
        if result.effectiveness_reason:
            rprint(f"[dim]{result.effectiveness_reason}[/dim]")
        if result.message:
            rprint(f"[dim]{result.message}[/dim]")


@app.command()
def stats(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Show prompt counts."""
    with _session(db) as session:
        counts = _prompt_service(session).stats()
        if json_output:
            typer.echo(json.dumps(counts))
            return
        rprint(f"Total prompts: [bold]{counts['total']}[/bold]")
        rprint(f"Favorites: [bold]{counts['favorites']}[/bold]")
        rprint(f"Added this week: [bold]{counts['this_week']}[/bold]")


# ------------------------------------------------------------------
# catalog
# ------------------------------------------------------------------


@app.command()
def tags(db: DbOption = None, json_output: JsonOption = False) -> None:
    """List all tags."""
    with _session(db) as session:
        rows = TagService(session).list_tags()
        if json_output:
            data = [{"name": t.name, "auto": t.is_auto_generated} for t in rows]
            typer.echo(json.dumps(data, indent=2))
            return
        if not rows:
            rprint("[dim]No tags yet.[/dim]")
            return
        table = Table(title="Tags")
        table.add_column("Name", style="cyan")
        table.add_column("Auto", justify="center")
        for t in rows:
            table.add_row(t.name, "✓" if t.is_auto_generated else "")
        console.print(table)


@app.command()
def categories(db: DbOption = None, json_output: JsonOption = False) -> None:
    """List categories."""
    with _session(db) as session:
        rows: list[Category] = TagService(session).list_categories()
        if json_output:
            data = [{"id": c.id, "name": c.name, "description": c.description} for c in rows]
            typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
            return
        table = Table(title="Categories")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Name")
        table.add_column("Description", style="dim")
        for c in rows:
            table.add_row(str(c.id), f"{c.icon or ''} {c.name}".strip(), c.description or "")
        console.print(table)


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port.")] = 8000,
    db: DbOption = None,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from promptvault.api import create_app
    from promptvault.logging_config import configure_logging

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    target = _db_target(db)
    reset_engine()
    init_db(target)
    application = create_app(settings, get_session_factory(target))
    uvicorn.run(application, host=host, port=port, log_config=None)


# ------------------------------------------------------------------
# collections
# ------------------------------------------------------------------


def _collection_service(session: Session) -> CollectionService:
    return CollectionService(session, _local_account(session).id)


@collection_app.command("create")
def collection_create(
    name: Annotated[str, typer.Argument(help="Collection name")],
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    icon: Annotated[str | None, typer.Option("--icon")] = None,
    color: Annotated[str | None, typer.Option("--color")] = None,
    db: DbOption = None,
) -> None:
    """Create a collection."""
    with _session(db) as session:
        created = _collection_service(session).create_collection(
            name, description=description, icon=icon, color=color
        )
        rprint(f"[green]✓[/green] Created collection [bold]{created.name}[/bold] (#{created.id})")


@collection_app.command("list")
def collection_list(db: DbOption = None, json_output: JsonOption = False) -> None:
    """List collections with their prompt counts."""
    with _session(db) as session:
        rows = _collection_service(session).list_collections()
        if json_output:
            data = [
                {"id": c.id, "name": c.name, "prompt_count": n, "is_public": c.is_public}
                for c, n in rows
            ]
            typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
            return
        if not rows:
            rprint("[dim]No collections yet.[/dim]")
            return
        table = Table(title="Collections")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Name")
        table.add_column("Prompts", justify="right")
        table.add_column("Shared", justify="center")
        for c, n in rows:
            table.add_row(str(c.id), f"{c.icon} {c.name}", str(n), "✓" if c.is_public else "")
        console.print(table)


@collection_app.command("share")
def collection_share(
    collection_id: Annotated[int, typer.Argument(help="Collection id")],
    db: DbOption = None,
) -> None:
    """Make a collection public and print its share link."""
    with _session(db) as session:
        token = _collection_service(session).enable_sharing(collection_id)
        typer.echo(share_url(get_settings().APP_URL, token))


@collection_app.command("unshare")
def collection_unshare(
    collection_id: Annotated[int, typer.Argument(help="Collection id")],
    db: DbOption = None,
) -> None:
    """Stop sharing a collection; the old link stops working."""
    with _session(db) as session:
        _collection_service(session).disable_sharing(collection_id)
        rprint(f"[green]✓[/green] Collection #{collection_id} is private again")


# ------------------------------------------------------------------
# accounts
# ------------------------------------------------------------------


def _account_service(session: Session) -> AccountService:
    settings = get_settings()
    return AccountService(
        session,
        free_limit=settings.FREE_ANALYSES_LIMIT,
        link_code_ttl_minutes=settings.LINK_CODE_TTL_MINUTES,
    )


@account_app.command("create")
def account_create(
    email: Annotated[str, typer.Argument(help="Account email")],
    db: DbOption = None,
) -> None:
    """Create an account and print its API token."""
    with _session(db) as session:
        account = _account_service(session).create_account(email)
        rprint(f"[green]✓[/green] Created account [bold]{account.email}[/bold]")
        typer.echo(account.api_token)


@account_app.command("token")
def account_token(
    email: Annotated[str, typer.Argument(help="Account email")],
    rotate: Annotated[bool, typer.Option("--rotate", help="Issue a new token first.")] = False,
    db: DbOption = None,
) -> None:
    """Print an account's API token."""
    with _session(db) as session:
        accounts = _account_service(session)
        account = accounts.get_by_email(email)
        typer.echo(accounts.rotate_token(account.id) if rotate else account.api_token)


@account_app.command("link-code")
def account_link_code(
    email: Annotated[str, typer.Argument(help="Account email")],
    db: DbOption = None,
) -> None:
    """Issue a one-time code for linking the browser extension."""
    settings = get_settings()
    with _session(db) as session:
        accounts = _account_service(session)
        code = accounts.issue_link_code(accounts.get_by_email(email).id)
        typer.echo(code)
        rprint(f"[dim]Valid for {settings.LINK_CODE_TTL_MINUTES} minutes, single use.[/dim]")


@account_app.command("link-telegram")
def account_link_telegram(
    email: Annotated[str, typer.Argument(help="Account email")],
    chat_id: Annotated[int, typer.Argument(help="Telegram chat id")],
    db: DbOption = None,
) -> None:
    """Link a Telegram chat to an account."""
    with _session(db) as session:
        accounts = _account_service(session)
        accounts.link_telegram(accounts.get_by_email(email).id, chat_id)
        rprint(f"[green]✓[/green] Chat {chat_id} linked to [bold]{email}[/bold]")
