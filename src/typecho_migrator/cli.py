"""Click CLI: sync and export commands for a Typecho blog."""

from __future__ import annotations

import functools
from datetime import timedelta
from pathlib import Path

import click
import structlog

from typecho_migrator.cache import ContentCache
from typecho_migrator.db import get_engine
from typecho_migrator.destinations.markdown import MarkdownDestination
from typecho_migrator.destinations.mxspace import (
    REF_TYPES,
    MxSpaceClient,
    MxSpaceCommentWriter,
    MxSpaceDestination,
    MxSpaceExporter,
)
from typecho_migrator.destinations.notion import NotionDestination, NotionLinksDestination, create_notion_client, link_key
from typecho_migrator.destinations.remark42 import DEFAULT_URL_PATTERN, export_remark42
from typecho_migrator.errors import ConfigError, DestinationError, DuplicateKeyError, SourceError
from typecho_migrator.models import ContentRecord
from typecho_migrator.reconcile import by_slug
from typecho_migrator.report import RecordResult, SyncReport
from typecho_migrator.repository import TypechoRepository
from typecho_migrator.settings import Settings
from typecho_migrator.statuses import ContentKind, SyncAction
from typecho_migrator.sync import IdentityTable, check_duplicates, sync_comments, sync_records
from typecho_migrator.threads import rebuild
from typecho_migrator.utils.logging import setup_logging
from typecho_migrator.verify import DEFAULT_PATH_TEMPLATE, MAPPING_WORKERS, check_mapping

_FATAL_ERRORS = (
    (ConfigError, "Configuration error"),
    (SourceError, "Source error"),
    (DuplicateKeyError, "Duplicate keys"),
    (DestinationError, "Destination error"),
)


def _fatal_errors(func):
    """Turn run-ending errors into a one-line message and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except tuple(exc_type for exc_type, _ in _FATAL_ERRORS) as exc:
            label = next(label for exc_type, label in _FATAL_ERRORS if isinstance(exc, exc_type))
            click.echo(f"{label}: {exc}", err=True)
            raise SystemExit(1) from exc

    return wrapper


@click.group()
@click.option("--env-file", default=".env", help="Path to a .env file with settings.")
@click.option("-v", "--verbose", is_flag=True, help="Show debug events on the console.")
@click.pass_context
def cli(ctx: click.Context, env_file: str, verbose: bool) -> None:
    """Typecho migrator: move a Typecho blog to Notion, Markdown, Remark42 or MxSpace."""
    ctx.ensure_object(dict)
    settings = Settings(_env_file=env_file)
    ctx.obj["settings"] = settings
    ctx.obj["log"] = setup_logging(settings.log_dir, ctx.invoked_subcommand, verbose=verbose)


def _repository(settings: Settings) -> TypechoRepository:
    settings.require_database()
    for line in settings.describe():
        click.echo(line)
    repo = TypechoRepository(get_engine(settings.database_url()), settings.typecho_db_prefix)
    repo.check_connection()
    return repo


def _load_content(
    settings: Settings,
    log: structlog.stdlib.BoundLogger,
    *,
    use_cache: bool = True,
    clear_cache: bool = False,
) -> list[ContentRecord]:
    """Posts and pages, from the snapshot cache when it is fresh."""
    cache = ContentCache(settings.cache_file, timedelta(hours=settings.cache_ttl_hours), log=log)
    if clear_cache:
        cache.clear()
    if use_cache:
        records = cache.load()
        if records is not None:
            return records

    repo = _repository(settings)
    records = repo.list_posts() + repo.list_pages()
    log.info("source.loaded", records=len(records))
    if use_cache:
        cache.save(records)
    return records


def _of_kind(records: list[ContentRecord], kind: ContentKind) -> list[ContentRecord]:
    return [r for r in records if r.kind == kind]


def _run_sync(report: SyncReport, run) -> SyncReport:
    """Run *run* and print the tally whatever happens."""
    try:
        run()
    finally:
        click.echo("")
        click.echo(report.summary())
    return report


def _sync_database(
    destination: NotionDestination | NotionLinksDestination,
    records: list,
    report: SyncReport,
    settings: Settings,
    log: structlog.stdlib.BoundLogger,
    *,
    key=by_slug,
    dry_run: bool,
) -> None:
    """Check the Notion database schema, then sync; dry runs only read the schema."""

    def run() -> None:
        destination.ensure_database_properties(create_missing=not dry_run)
        sync_records(records, destination, log, key=key, delay=settings.write_delay, dry_run=dry_run, report=report)

    _run_sync(report, run)


@cli.command("sync-notion")
@click.option("--pages", "with_pages", is_flag=True, help="Also sync pages.")
@click.option("--no-cache", is_flag=True, help="Read the database even if the cache is fresh.")
@click.option("--clear-cache", is_flag=True, help="Delete the cache before reading.")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.option("--strict", is_flag=True, help="Fail on duplicate slugs instead of keeping the last one.")
@click.pass_context
@_fatal_errors
def sync_notion(ctx: click.Context, with_pages: bool, no_cache: bool, clear_cache: bool, dry_run: bool, strict: bool) -> None:
    """Sync posts to a Notion database (create, update or skip by slug)."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]
    settings.require_notion()

    records = _load_content(settings, log, use_cache=not no_cache, clear_cache=clear_cache)
    selected = records if with_pages else _of_kind(records, ContentKind.POST)
    if strict:
        check_duplicates(selected)

    client = create_notion_client(settings.notion_key, timeout=settings.http_timeout, proxy_url=settings.proxy_url or None)
    destination = NotionDestination(client, settings.notion_database_id, log)
    report = SyncReport(name="Notion sync", dry_run=dry_run)
    try:
        _sync_database(destination, selected, report, settings, log, dry_run=dry_run)
    finally:
        client.close()


@cli.command("sync-links")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.pass_context
@_fatal_errors
def sync_links(ctx: click.Context, dry_run: bool) -> None:
    """Sync friend links to a Notion database (keyed by normalized URL)."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]
    settings.require_notion_links()

    links = _repository(settings).list_links()
    client = create_notion_client(settings.notion_key, timeout=settings.http_timeout, proxy_url=settings.proxy_url or None)
    destination = NotionLinksDestination(client, settings.notion_links_database_id, log)
    report = SyncReport(name="Notion links sync", dry_run=dry_run)
    try:
        _sync_database(destination, links, report, settings, log, key=link_key, dry_run=dry_run)
    finally:
        client.close()


@cli.command("export-markdown")
@click.option("--out", "out_dir", type=click.Path(file_okay=False), help="Export directory (default MARKDOWN_EXPORT_DIR).")
@click.option("--pages", "with_pages", is_flag=True, help="Also export pages.")
@click.option("--check-images", is_flag=True, help="Remove image links that do not answer 200.")
@click.option("--no-cache", is_flag=True, help="Read the database even if the cache is fresh.")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.option("--strict", is_flag=True, help="Fail on duplicate slugs instead of keeping the last one.")
@click.pass_context
@_fatal_errors
def export_markdown(
    ctx: click.Context,
    out_dir: str | None,
    with_pages: bool,
    check_images: bool,
    no_cache: bool,
    dry_run: bool,
    strict: bool,
) -> None:
    """Write posts (and pages) as Markdown files with YAML front matter."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]
    out = Path(out_dir or settings.markdown_export_dir)

    records = _load_content(settings, log, use_cache=not no_cache)
    kinds = [ContentKind.POST, ContentKind.PAGE] if with_pages else [ContentKind.POST]
    for kind in kinds:
        selected = _of_kind(records, kind)
        if strict:
            check_duplicates(selected)
        destination = MarkdownDestination(
            out,
            log,
            content_kind=kind,
            check_images=check_images,
            image_timeout=settings.http_timeout,
            proxy_url=settings.proxy_url or None,
        )
        report = SyncReport(name=f"Markdown export ({kind}s)", dry_run=dry_run)
        _run_sync(report, lambda: sync_records(selected, destination, log, delay=0, dry_run=dry_run, report=report))


@cli.command("export-remark42")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default="remark42-backup.json", show_default=True)
@click.option("--url-pattern", default=DEFAULT_URL_PATTERN, show_default=True, help="Page URL format.")
@click.option("--site-url", default=None, help="Public site root (default SITE_URL).")
@click.option("--no-cache", is_flag=True, help="Read the database even if the cache is fresh.")
@click.pass_context
@_fatal_errors
def export_remark42_cmd(ctx: click.Context, out_path: str, url_pattern: str, site_url: str | None, no_cache: bool) -> None:
    """Write approved comments as a Remark42 backup file."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]
    site_url = site_url or settings.site_url
    if not site_url:
        raise ConfigError("Missing required environment variable(s): SITE_URL")

    contents = _load_content(settings, log, use_cache=not no_cache)
    comments = _repository(settings).list_comments()
    summary = export_remark42(
        contents,
        comments,
        site_id=settings.remark42_site_id,
        site_url=site_url,
        out_path=out_path,
        url_pattern=url_pattern,
        log=log,
    )
    click.echo(summary.summary())


@cli.command("export-mxspace")
@click.option("--out", "out_dir", type=click.Path(file_okay=False), help="Output directory (default MXSPACE_EXPORT_DIR).")
@click.pass_context
@_fatal_errors
def export_mxspace(ctx: click.Context, out_dir: str | None) -> None:
    """Dump posts, pages, categories and comments as MxSpace BSON files."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]

    repo = _repository(settings)
    summary = MxSpaceExporter(out_dir or settings.mxspace_export_dir, log).export(
        repo.list_posts(),
        repo.list_pages(),
        repo.list_categories(),
        repo.list_comments(),
    )
    click.echo(summary.summary())


@cli.command("import-mxspace")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.option("--with-comments", is_flag=True, help="Also post comments (first import only; comments are not reconciled).")
@click.option("--strict", is_flag=True, help="Fail on duplicate slugs instead of keeping the last one.")
@click.pass_context
@_fatal_errors
def import_mxspace(ctx: click.Context, dry_run: bool, with_comments: bool, strict: bool) -> None:
    """Import posts and pages (and optionally comments) through the MxSpace API."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]
    settings.require_mxspace_api()

    repo = _repository(settings)
    posts, pages = repo.list_posts(), repo.list_pages()
    if strict:
        check_duplicates(posts)
        check_duplicates(pages)

    client = MxSpaceClient(
        settings.mxspace_api_url,
        settings.mxspace_api_key,
        timeout=settings.http_timeout,
        proxy_url=settings.proxy_url or None,
        log=log,
    )
    tables: dict[ContentKind, IdentityTable] = {}
    try:
        for kind, records in ((ContentKind.POST, posts), (ContentKind.PAGE, pages)):
            tables[kind] = _import_content(client, kind, records, settings, log, dry_run=dry_run)

        if with_comments:
            _import_comments(client, posts, pages, tables, repo, settings, log, dry_run=dry_run)
    finally:
        client.close()


def _import_content(
    client: MxSpaceClient,
    kind: ContentKind,
    records: list[ContentRecord],
    settings: Settings,
    log: structlog.stdlib.BoundLogger,
    *,
    dry_run: bool,
) -> IdentityTable:
    orders = {p.id: i for i, p in enumerate(records)} if kind == ContentKind.PAGE else None
    destination = MxSpaceDestination(client, kind, orders)
    identity = IdentityTable({})
    report = SyncReport(name=f"MxSpace import ({kind}s)", dry_run=dry_run)

    def run() -> None:
        for key, entry in destination.query_existing().items():
            identity.merge(key, entry)
        sync_records(records, destination, log, identity=identity, delay=settings.write_delay, dry_run=dry_run, report=report)

    _run_sync(report, run)
    return identity


def _import_comments(
    client: MxSpaceClient,
    posts: list[ContentRecord],
    pages: list[ContentRecord],
    tables: dict[ContentKind, IdentityTable],
    repo: TypechoRepository,
    settings: Settings,
    log: structlog.stdlib.BoundLogger,
    *,
    dry_run: bool,
) -> None:
    content_refs: dict[int, str] = {}
    ref_types: dict[str, str] = {}
    for record in [*posts, *pages]:
        entry = tables[record.kind].lookup(record.slug)
        if entry is not None:
            content_refs[record.id] = entry.remote_id
            ref_types[entry.remote_id] = REF_TYPES[record.kind]
        elif dry_run:
            content_refs[record.id] = f"new:{record.slug}"

    result = rebuild(repo.list_comments(), content_refs, log=log)
    report = SyncReport(name="MxSpace import (comments)", dry_run=dry_run)
    for dropped in result.dropped:
        report.add(
            RecordResult(
                key=str(dropped.comment.local_id),
                title=f"comment {dropped.comment.local_id} by {dropped.comment.author}",
                action=SyncAction.SKIP,
                error=f"{dropped.reason}: {dropped.detail}",
            )
        )
    writer = MxSpaceCommentWriter(client, ref_types)
    _run_sync(
        report,
        lambda: sync_comments(result.threads, writer, log, delay=settings.write_delay, dry_run=dry_run, report=report),
    )


@cli.command("check-mapping")
@click.argument("old_domain")
@click.argument("new_domain")
@click.option("--concurrency", default=MAPPING_WORKERS, show_default=True, type=int, help="Parallel requests.")
@click.option("--path-template", default=DEFAULT_PATH_TEMPLATE, show_default=True, help="URL path with {slug}.")
@click.pass_context
@_fatal_errors
def check_mapping_cmd(ctx: click.Context, old_domain: str, new_domain: str, concurrency: int, path_template: str) -> None:
    """Check that every post and page URL answers on the new domain."""
    settings: Settings = ctx.obj["settings"]
    log = ctx.obj["log"]

    repo = _repository(settings)
    records = repo.list_posts() + repo.list_pages()
    if not records:
        click.echo("Nothing to check.")
        return

    report = check_mapping(
        records,
        old_domain,
        new_domain,
        path_template=path_template,
        max_workers=concurrency,
        timeout=settings.http_timeout,
        proxy_url=settings.proxy_url or None,
        log=log,
    )
    click.echo(report.summary())


@cli.command("clear-cache")
@click.pass_context
def clear_cache(ctx: click.Context) -> None:
    """Delete the content snapshot cache."""
    settings: Settings = ctx.obj["settings"]
    removed = ContentCache(settings.cache_file, log=ctx.obj["log"]).clear()
    click.echo("Cache cleared." if removed else "No cache file.")
