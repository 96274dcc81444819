"""CLI interface for matrix-blog."""

import asyncio
import html
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any, Optional, TypeVar

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from matrix_blog.blog import BlogService, BlogServiceError, NewPost, Post, PostEdit
from matrix_blog.config import MatrixBlogConfig, load_config, merge_cli_overrides
from matrix_blog.matrix.client import MatrixClient, MatrixError

T = TypeVar("T")

app = typer.Typer(
    name="matrix-blog",
    help="Publish and manage blog posts stored in Matrix rooms.",
)

console = Console()
_stderr_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from matrix_blog import __version__

        console.print(f"matrix-blog {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .matrix-blog.toml file."),
    ] = None,
    homeserver: Annotated[
        Optional[str],
        typer.Option("--homeserver", help="Homeserver base URL."),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option("--token", help="Access token."),
    ] = None,
    server_name: Annotated[
        Optional[str],
        typer.Option("--server-name", help="Server name used in aliases and via hints."),
    ] = None,
    prefix: Annotated[
        Optional[str],
        typer.Option("--prefix", help="Alias prefix for post slugs."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log every homeserver request."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Matrix Blog - blogs as Matrix spaces, posts as rooms."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_stderr_console, show_path=False)],
    )
    config = merge_cli_overrides(
        load_config(config_path),
        homeserver=homeserver,
        token=token,
        server_name=server_name,
        prefix=prefix,
    )
    ctx.obj = {"config": config, "json": as_json}


# ── Plumbing ─────────────────────────────────────────────────────────


def _make_client(config: MatrixBlogConfig) -> MatrixClient:
    """Build the Matrix client for a CLI invocation."""
    return MatrixClient(config.to_matrix_config())


def _run(ctx: typer.Context, action: Callable[[BlogService], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh BlogService, mapping failures to exit 1."""
    config: MatrixBlogConfig = ctx.obj["config"]
    if not config.matrix.homeserver_url or not config.matrix.access_token:
        _stderr_console.print(
            "[red]Error:[/red] Matrix not configured "
            "(set MATRIX_HOMESERVER_URL and MATRIX_ACCESS_TOKEN)"
        )
        raise typer.Exit(1)

    async def _go() -> T:
        async with _make_client(config) as client:
            service = BlogService(
                client,
                room_prefix=config.blog.room_prefix,
                max_concurrency=config.blog.max_concurrency or None,
            )
            return await action(service)

    try:
        return asyncio.run(_go())
    except BlogServiceError as exc:
        _stderr_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc
    except MatrixError as exc:
        _stderr_console.print(f"[red]Error:[/red] {exc.errcode} ({exc.status}) {exc.error}")
        raise typer.Exit(1) from exc
    except httpx.HTTPError as exc:
        _stderr_console.print(f"[red]Error:[/red] Could not reach homeserver: {exc}")
        raise typer.Exit(1) from exc


def _resolve_blog(ctx: typer.Context, blog_id: str | None) -> str:
    config: MatrixBlogConfig = ctx.obj["config"]
    resolved = blog_id or config.blog.default_blog
    if not resolved:
        _stderr_console.print("[red]Error:[/red] No blog given (pass BLOG_ID or set MATRIX_BLOG_ID)")
        raise typer.Exit(1)
    return resolved


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _format_ms(ms: int | None) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M")


def _print_post(post: Post) -> None:
    console.print(f"[bold]{escape(post.title or '')}[/bold]")
    if post.summary:
        console.print(f"[dim]{escape(post.summary)}[/dim]")
    console.print(f"id: {post.id}")
    console.print(f"slug: {post.slug or '-'}")
    console.print(f"created: {_format_ms(post.created_ms)}")
    console.print(f"edited: {_format_ms(post.edited_ms)}")
    console.print(f"published: {_format_ms(post.published_ms)}")
    console.print()
    console.print(post.text, markup=False)


# ── Commands ─────────────────────────────────────────────────────────


@app.command()
def blog(
    ctx: typer.Context,
    blog_id: Annotated[Optional[str], typer.Argument(help="Blog space room ID.")] = None,
) -> None:
    """Show a blog's title and description."""
    room_id = _resolve_blog(ctx, blog_id)
    result = _run(ctx, lambda service: service.get_blog(room_id))

    if ctx.obj["json"]:
        _echo_json(result.model_dump())
        return
    console.print(f"[bold]{escape(result.title or '(untitled)')}[/bold]")
    if result.description:
        console.print(result.description)
    console.print(f"id: {result.id}")


@app.command()
def posts(
    ctx: typer.Context,
    blog_id: Annotated[Optional[str], typer.Argument(help="Blog space room ID.")] = None,
    full: Annotated[bool, typer.Option("--full", help="Also fetch post content.")] = False,
) -> None:
    """List the posts of a blog."""
    room_id = _resolve_blog(ctx, blog_id)
    if full:
        results: list[Any] = _run(ctx, lambda service: service.get_full_posts(room_id))
    else:
        results = _run(ctx, lambda service: service.get_posts(room_id))

    if ctx.obj["json"]:
        _echo_json([p.model_dump() for p in results])
        return
    if not results:
        console.print("[yellow]No posts found.[/yellow]")
        return

    table = Table(title=f"Posts in {room_id}")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Slug")
    if full:
        table.add_column("Created")
    for p in results:
        row = [p.id, p.title or "", p.slug or ""]
        if full:
            row.append(_format_ms(p.created_ms))
        table.add_row(*row)
    console.print(table)


@app.command()
def post(
    ctx: typer.Context,
    post_id: Annotated[str, typer.Argument(help="Post room ID.")],
) -> None:
    """Show a single post."""
    result = _run(ctx, lambda service: service.get_post(post_id))
    if ctx.obj["json"]:
        _echo_json(result.model_dump())
        return
    _print_post(result)


@app.command()
def add(
    ctx: typer.Context,
    title: Annotated[str, typer.Option("--title", "-t", help="Post title.")],
    text: Annotated[str, typer.Option("--text", help="Plain-text body.")],
    blog_id: Annotated[Optional[str], typer.Argument(help="Blog space room ID.")] = None,
    html_body: Annotated[
        Optional[str],
        typer.Option("--html", help="HTML body. Defaults to the escaped text."),
    ] = None,
    html_file: Annotated[
        Optional[Path],
        typer.Option("--html-file", help="Read the HTML body from a file.", exists=True, dir_okay=False),
    ] = None,
    summary: Annotated[Optional[str], typer.Option("--summary", "-s", help="Short summary.")] = None,
    slug: Annotated[Optional[str], typer.Option("--slug", help="Publish under this slug.")] = None,
) -> None:
    """Create a post in a blog."""
    room_id = _resolve_blog(ctx, blog_id)
    if html_file is not None:
        html_body = html_file.read_text(encoding="utf-8")
    new_post = NewPost(
        title=title,
        summary=summary,
        slug=slug,
        text=text,
        html=html_body if html_body is not None else f"<p>{html.escape(text)}</p>",
    )
    result = _run(ctx, lambda service: service.add_post(room_id, new_post))

    if ctx.obj["json"]:
        _echo_json(result.model_dump())
        return
    console.print(f"[green]Created post[/green] {result.id}")


@app.command()
def edit(
    ctx: typer.Context,
    post_id: Annotated[str, typer.Argument(help="Post room ID.")],
    title: Annotated[Optional[str], typer.Option("--title", "-t", help="New title.")] = None,
    summary: Annotated[Optional[str], typer.Option("--summary", "-s", help="New summary.")] = None,
    slug: Annotated[
        Optional[str],
        typer.Option("--slug", help='New slug; "" removes the alias.'),
    ] = None,
    text: Annotated[Optional[str], typer.Option("--text", help="New plain-text body.")] = None,
    html_body: Annotated[Optional[str], typer.Option("--html", help="New HTML body.")] = None,
) -> None:
    """Edit a post. Only the given fields change."""
    if text is not None and html_body is None:
        html_body = f"<p>{html.escape(text)}</p>"
    changes = PostEdit(title=title, summary=summary, slug=slug, text=text, html=html_body)
    if not changes.model_dump(exclude_none=True):
        console.print("[yellow]Nothing to change.[/yellow]")
        raise typer.Exit(0)

    _run(ctx, lambda service: service.edit_post(post_id, changes))
    console.print(f"[green]Updated post[/green] {post_id}")


@app.command()
def delete(
    ctx: typer.Context,
    post_id: Annotated[str, typer.Argument(help="Post room ID.")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Reason shown to members.")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Delete a post: unlink it, remove its alias, kick members, leave."""
    if not yes:
        typer.confirm(f"Delete post {post_id}?", abort=True)

    config: MatrixBlogConfig = ctx.obj["config"]
    _run(ctx, lambda service: service.delete_post(post_id, reason or config.blog.delete_reason))
    console.print(f"[green]Deleted post[/green] {post_id}")


if __name__ == "__main__":
    app()
