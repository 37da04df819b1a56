"""
Command-line interface for notepress.

Usage:
    notepress init-db                       # Create tables
    notepress connect OWNER --token T       # Store note-service credentials
    notepress add-blog BLOG --owner O --notebook GUID --title T
    notepress sync BLOG [--full]            # Note sync pass
    notepress sync-ghost BLOG --key K       # Ghost sync pass
    notepress sync-all [--owner O] [--full] # Note sync for every blog
    notepress naming-report                 # Asset naming strategy counts
    notepress health                        # Check dependencies
"""

import asyncio
import json
import sys

import click

from notepress.observability.logging import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """notepress - publish notes and Ghost posts as blog posts."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"

    setup_logging()


def _print_result(result) -> None:
    click.echo(json.dumps(result.summary(), indent=2))
    for error in result.errors:
        click.echo(click.style(f"  ! {error}", fg="yellow"))


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from notepress.assets.repository import AssetRepository
    from notepress.blogs.credentials import PostgresCredentialStore
    from notepress.blogs.repository import BlogRepository, PostRepository
    from notepress.ingestion.repository import PublishTagCacheRepository
    from notepress.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            await BlogRepository(db).create_table()
            await PostRepository(db).create_table()
            await AssetRepository(db).create_table()
            await PublishTagCacheRepository(db).create_table()
            await PostgresCredentialStore(db).create_table()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
@click.argument("owner_id")
@click.option("--token", required=True, help="Note-service access token")
@click.option("--note-store-url", default=None, help="Account-specific note store URL")
def connect(owner_id: str, token: str, note_store_url: str | None) -> None:
    """Store note-service credentials for OWNER_ID."""
    from notepress.blogs.credentials import NoteCredentials, PostgresCredentialStore
    from notepress.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            await PostgresCredentialStore(db).save_credentials(
                owner_id, NoteCredentials(token, note_store_url)
            )
            click.echo(f"Credentials stored for {owner_id}")
        finally:
            await db.close()

    asyncio.run(run())


@main.command("add-blog")
@click.argument("blog_id")
@click.option("--title", required=True, help="Blog title")
@click.option("--owner", "owner_id", required=True, help="Owner id")
@click.option("--notebook", "notebook_guid", default=None, help="Source notebook guid")
@click.option("--ghost-site-url", default=None, help="Ghost site to mirror")
def add_blog(
    blog_id: str,
    title: str,
    owner_id: str,
    notebook_guid: str | None,
    ghost_site_url: str | None,
) -> None:
    """Create or update blog BLOG_ID."""
    from notepress.blogs.repository import BlogRepository
    from notepress.blogs.schemas import Blog
    from notepress.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            blog = await BlogRepository(db).upsert(
                Blog(
                    id=blog_id,
                    title=title,
                    owner_id=owner_id,
                    notebook_guid=notebook_guid,
                    ghost_site_url=ghost_site_url,
                )
            )
            click.echo(f"Blog {blog.id} saved")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
@click.argument("blog_id")
@click.option("--full", is_flag=True, help="Ignore the change window")
def sync(blog_id: str, full: bool) -> None:
    """Run one note sync pass for BLOG_ID."""
    from notepress.errors import NotepressError
    from notepress.storage.database import Database
    from notepress.sync.service import SyncService

    async def run() -> int:
        db = Database()
        await db.connect()
        try:
            service = SyncService.from_database(db)
            result = await service.sync_blog(blog_id, force_full=full)
        except NotepressError as e:
            click.echo(click.style(f"Sync failed: {e}", fg="red"), err=True)
            return 1
        finally:
            await db.close()

        _print_result(result)
        return 1 if result.failed else 0

    sys.exit(asyncio.run(run()))


@main.command("sync-ghost")
@click.argument("blog_id")
@click.option("--site-url", default=None, help="Ghost site URL (defaults to the blog's)")
@click.option("--key", required=True, envvar="GHOST_CONTENT_API_KEY", help="Content API key")
@click.option("--full", is_flag=True, help="Fetch every post, not only updated ones")
def sync_ghost(blog_id: str, site_url: str | None, key: str, full: bool) -> None:
    """Run one Ghost sync pass for BLOG_ID."""
    from notepress.errors import NotepressError
    from notepress.storage.database import Database
    from notepress.sync.service import SyncService

    async def run() -> int:
        db = Database()
        await db.connect()
        try:
            service = SyncService.from_database(db)
            result = await service.sync_ghost(blog_id, site_url, key, force_full=full)
        except NotepressError as e:
            click.echo(click.style(f"Ghost sync failed: {e}", fg="red"), err=True)
            return 1
        finally:
            await db.close()

        _print_result(result)
        return 1 if result.failed else 0

    sys.exit(asyncio.run(run()))


@main.command("sync-all")
@click.option("--owner", "owner_id", default=None, help="Only sync this owner's blogs")
@click.option("--full", is_flag=True, help="Ignore the change window")
def sync_all(owner_id: str | None, full: bool) -> None:
    """Run a note sync pass for every notebook-linked blog."""
    from notepress.storage.database import Database
    from notepress.sync.service import SyncService

    async def run() -> int:
        db = Database()
        await db.connect()
        try:
            service = SyncService.from_database(db)
            if owner_id:
                outcomes = [await service.sync_owner_blogs(owner_id, force_full=full)]
            else:
                outcomes = await service.sync_all_owners(force_full=full)
        finally:
            await db.close()

        for outcome in outcomes:
            click.echo(json.dumps(outcome.summary(), indent=2))
            if outcome.error:
                click.echo(click.style(f"  ! {outcome.error}", fg="red"))
            for blog_id, error in sorted(outcome.errors.items()):
                click.echo(click.style(f"  ! {blog_id}: {error}", fg="yellow"))
        return 0 if all(outcome.succeeded for outcome in outcomes) else 1

    sys.exit(asyncio.run(run()))


@main.command("naming-report")
def naming_report() -> None:
    """Show how many assets were named by each strategy."""
    from notepress.assets.repository import AssetRepository
    from notepress.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            counts = await AssetRepository(db).count_by_strategy()
        finally:
            await db.close()

        click.echo("\nAsset naming strategies:")
        click.echo("-" * 40)
        for strategy, count in sorted(counts.items()):
            click.echo(f"  {strategy:<20} {count}")
        click.echo("-" * 40)
        click.echo(f"  {'total':<20} {sum(counts.values())}")

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of dependencies."""
    import asyncpg
    import structlog

    from notepress.assets.config import AssetConfig
    from notepress.storage.database import Database

    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        db = Database()
        try:
            await db.connect()
            results["postgres"] = await db.health_check()
        except (OSError, asyncpg.PostgresError) as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))
        finally:
            await db.close()

        import os
        root = AssetConfig().storage_root
        results["asset_storage_writable"] = os.path.isdir(root) and os.access(root, os.W_OK)

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
