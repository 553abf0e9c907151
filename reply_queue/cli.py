"""
Command-line interface for ReplyQueue.

Uses Typer to expose feed parsing, match passes, heat checks and the model
catalog. Supports loading .env files for API key configuration.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
import typer

from .config import AppConfig, load_config, resolve_threshold
from .core.types import CandidatePost, FeedDocument
from .errors import ReplyQueueError, user_message
from .feed.keywords import extract_keywords
from .feed.parser import parse_feed
from .llm.catalog import blended_price, cost_tier, filter_models, model_age_days
from .llm.tracing import flush, setup_langfuse
from .logging_utils import setup_llm_logger, setup_logging
from .matching.orchestrator import MatchPreferences
from .matching.reconciler import match_stats
from .service import ReplyQueueService

app = typer.Typer(add_completion=False, help="Find social posts worth replying to with your blog content.")
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", exists=True, help="YAML config file.")


def _bootstrap(config: Path | None, log_level: str | None = None) -> tuple[AppConfig, ReplyQueueService]:
    load_dotenv()
    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.logging.level = log_level
    log_dir = Path(cfg.storage.path).parent / "logs"
    setup_logging(cfg.logging, log_dir)
    setup_langfuse(cfg.langfuse)
    llm_logger = setup_llm_logger(cfg.logging, log_dir)
    return cfg, ReplyQueueService.from_config(cfg, llm_logger=llm_logger)


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def _load_source(service: ReplyQueueService, source: str) -> tuple[FeedDocument, str]:
    """Load a feed from a URL (through the feed cache) or a local file."""
    if _is_url(source):
        feed, from_cache = await service.load_feed(source)
        if from_cache:
            console.print("[dim]Using cached feed[/dim]")
        return feed, service.blog_url_for(feed, source)
    try:
        text = Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise typer.BadParameter(f"Cannot read feed file {source}: {exc.strerror or exc}") from exc
    feed = parse_feed(text).limit(service.cfg.feed.max_items)
    return feed, feed.link or ""


def _read_posts(path: Path) -> list[CandidatePost]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Posts file {path} is not valid JSON: {exc}") from exc
    if isinstance(raw, dict):
        raw = raw.get("posts", [])
    if not isinstance(raw, list):
        raise typer.BadParameter("Posts file must hold a JSON array or an object with a 'posts' array")
    try:
        return [CandidatePost.from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError) as exc:
        raise typer.BadParameter(f"Posts file {path} has an invalid post: {exc}") from exc


def _print_matches(matches) -> None:
    if not matches:
        return
    table = Table("Post", "Score", "Status", "Tone", "Reason")
    for match in matches:
        tone = match.tone.tone if match.tone else ""
        if match.tone and match.tone.recommended:
            tone += " *"
        table.add_row(match.key, f"{match.score:.2f}", match.status, tone, match.reason)
    console.print(table)


def _run(coro):
    try:
        return asyncio.run(coro)
    except ReplyQueueError as exc:
        console.print(f"[red]{user_message(exc)}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        flush()


@app.command("parse-feed")
def parse_feed_command(
    source: str = typer.Argument(..., help="Feed URL or path to a feed file."),
    config: Path | None = ConfigOption,
):
    """Parse a feed and list its items."""
    _, service = _bootstrap(config)
    feed, blog_url = _run(_load_source(service, source))

    console.print(f"[bold]{feed.title}[/bold] ({feed.format}) {blog_url}")
    if not feed.items:
        console.print("[yellow]Feed has no posts.[/yellow]")
        return
    table = Table("#", "Title", "Published", "Categories")
    for idx, item in enumerate(feed.items, start=1):
        table.add_row(str(idx), item.title, item.published_at or "", ", ".join(item.categories))
    console.print(table)


@app.command()
def keywords(
    source: str = typer.Argument(..., help="Feed URL or path to a feed file."),
    config: Path | None = ConfigOption,
):
    """Show the keyword set extracted from a feed."""
    _, service = _bootstrap(config)
    feed, _ = _run(_load_source(service, source))
    words = sorted(extract_keywords(feed))
    console.print(f"{len(words)} keywords: " + ", ".join(words))


@app.command()
def match(
    source: str = typer.Argument(..., help="Feed URL or path to a feed file."),
    posts: Path | None = typer.Option(
        None, "--posts", "-p", exists=True, readable=True, help="JSON file of posts to queue first."
    ),
    mode: str = typer.Option("keyword", "--mode", "-m", help="Matching mode: keyword or ai."),
    threshold: str | None = typer.Option(
        None, "--threshold", help="Relevance threshold: low, medium, high or a number in [0, 1]."
    ),
    max_posts: int | None = typer.Option(None, "--max-posts", help="Maximum matches per pass."),
    rules: str | None = typer.Option(None, "--rules", help="Communication rules for AI replies."),
    config: Path | None = ConfigOption,
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
):
    """Queue posts and run a keyword or AI match pass over the queue."""
    if mode not in ("keyword", "ai"):
        raise typer.BadParameter("mode must be 'keyword' or 'ai'")
    cfg, service = _bootstrap(config, log_level)
    try:
        prefs = MatchPreferences(
            threshold=resolve_threshold(threshold) if threshold is not None else cfg.matching.threshold,
            max_posts=max_posts or cfg.matching.max_posts,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    async def _pass():
        if posts is not None:
            added = await service.queue_posts(_read_posts(posts))
            console.print(
                f"Queued {added.added} posts ({added.duplicates} duplicates)"
                + (" [yellow]queue limit reached[/yellow]" if added.limit_reached else "")
            )
        feed, blog_url = await _load_source(service, source)
        if mode == "ai":
            return await service.ai_pass(feed, blog_url, rules=rules, preferences=prefs)
        return await service.keyword_pass(feed, preferences=prefs)

    report = _run(_pass())
    if report.match_pass.used_fallback:
        console.print("[yellow]AI matching unavailable, used keyword matching instead.[/yellow]")
    console.print(
        f"Evaluated {report.selected} posts ({report.skipped} already evaluated), "
        f"{len(report.match_pass.matches)} new matches"
    )
    _print_matches(report.matches)


@app.command("heat-check")
def heat_check(config: Path | None = ConfigOption):
    """Classify the tone of every stored match."""
    _, service = _bootstrap(config)
    updated = _run(service.heat_check())
    if not updated:
        console.print("No posts to analyze.")
        return
    _print_matches(updated)


@app.command()
def suggest(
    source: str = typer.Argument(..., help="Feed URL or path to a feed file."),
    platform: str = typer.Argument(...),
    post_id: str = typer.Argument(...),
    rules: str | None = typer.Option(None, "--rules", help="Communication rules for AI replies."),
    config: Path | None = ConfigOption,
):
    """Regenerate reply suggestions for one stored match."""
    _, service = _bootstrap(config)

    async def _suggest():
        feed, blog_url = await _load_source(service, source)
        return await service.generate_suggestions(platform, post_id, feed, blog_url, rules=rules)

    try:
        suggestions = _run(_suggest())
    except KeyError as exc:
        console.print(f"[red]{exc.args[0]}[/red]")
        raise typer.Exit(code=1) from exc
    if not suggestions:
        console.print("[yellow]No suggestions generated.[/yellow]")
    for idx, suggestion in enumerate(suggestions, start=1):
        console.print(f"{idx}. {suggestion.text}")


@app.command("set-status")
def set_status(
    platform: str = typer.Argument(...),
    post_id: str = typer.Argument(...),
    status: str = typer.Argument(..., help="pending, replied or skipped."),
    draft: str | None = typer.Option(None, "--draft", help="Draft reply text to store."),
    config: Path | None = ConfigOption,
):
    """Record what you did with a matched post."""
    _, service = _bootstrap(config)
    try:
        _run(service.set_status(platform, post_id, status, draft))
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    console.print(f"{platform}:{post_id} marked {status}")


@app.command()
def status(config: Path | None = ConfigOption):
    """Show queue size and stored match statistics."""
    _, service = _bootstrap(config)

    async def _status():
        return await service.queue_status(), await service.store.get_matches()

    queue, matches = _run(_status())
    stats = match_stats(matches)
    console.print(
        f"Queue: {queue.current_size}/{queue.max_size}"
        + (" [yellow](full)[/yellow]" if queue.is_at_limit else "")
    )
    console.print(
        f"Matches: {stats.total} (pending {stats.pending}, replied {stats.replied}, "
        f"skipped {stats.skipped}), average score {stats.average_score:.2f}"
    )


@app.command()
def models(
    search: str | None = typer.Option(None, "--search", "-s", help="Filter by id, name or description."),
    max_price: float | None = typer.Option(None, "--max-price", help="Max blended USD per 1M tokens."),
    max_age: int | None = typer.Option(None, "--max-age", help="Max model age in days."),
    refresh: bool = typer.Option(False, "--refresh", help="Ignore the cached catalog."),
    config: Path | None = ConfigOption,
):
    """List available models, recommended first."""
    cfg, service = _bootstrap(config)
    catalog = _run(service.client.fetch_models(force_refresh=refresh))
    selected = filter_models(
        catalog,
        max_price=max_price if max_price is not None else cfg.catalog.max_price,
        max_age_days=max_age if max_age is not None else cfg.catalog.max_age_days,
        search_query=search,
    )
    table = Table("Model", "Name", "Price/1M", "Tier", "Age (days)", "Context")
    for model in selected:
        price = blended_price(model.pricing)
        age = model_age_days(model)
        name = f"* {model.display_name}" if model.is_recommended else model.display_name
        table.add_row(
            model.id,
            name,
            f"${price:.2f}",
            cost_tier(price),
            "" if age is None else str(age),
            str(model.context_length),
        )
    console.print(table)
    console.print(f"{len(selected)} of {len(catalog)} models")


@app.command()
def clear(config: Path | None = ConfigOption):
    """Clear queued posts, matches, the cached feed and evaluated post ids."""
    _, service = _bootstrap(config)
    _run(service.clear_caches())
    console.print("Caches cleared.")


if __name__ == "__main__":
    app()
