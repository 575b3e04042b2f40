# listing_sync/cli/sync_listings.py
import asyncio
import json
import logging
import os
from datetime import timedelta

import click
import uvicorn
from cryptography.fernet import Fernet

from listing_sync.core.config import get_settings
from listing_sync.core.logging_config import configure_logging
from listing_sync.services.credential_service import CredentialService
from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.worker import SyncWorker

logger = logging.getLogger(__name__)


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
def cli(log_level):
    """Marketplace listing sync commands"""
    configure_logging(log_level or get_settings().LOG_LEVEL)


@cli.command('sync-stale')
@click.option('--org-id', default=None, help='Only sync listings of this organization')
@click.option('--stale-after', 'stale_after_minutes', type=int, default=None,
              help='Minutes since last sync (default SYNC_STALE_AFTER_MINUTES)')
@click.option('--max-concurrent', type=click.IntRange(1, 20), default=None)
@click.option('--deadline', 'deadline_seconds', type=float, default=None, help='Stop starting new syncs after N seconds')
@click.option('--limit', type=int, default=None, help='Maximum listings to sync')
def sync_stale(org_id, stale_after_minutes, max_concurrent, deadline_seconds, limit):
    """Run one staleness pass inline and print the report"""

    async def _run():
        service = ListingSyncService()
        return await service.sync_stale_listings(
            org_id=org_id,
            stale_after_minutes=stale_after_minutes,
            max_concurrent=max_concurrent,
            deadline_seconds=deadline_seconds,
            limit=limit,
        )

    report = asyncio.run(_run())
    click.echo(json.dumps(report.summary(), indent=2))
    for result in report.results:
        if not result.succeeded:
            click.echo(f"  listing {result.listing_id}: {result.outcome.value} ({result.detail})")


@cli.command('sync-listing')
@click.argument('listing_id', type=int)
@click.argument('account_id', type=int)
def sync_listing(listing_id, account_id):
    """Sync one listing now"""

    async def _run():
        return await ListingSyncService().sync_listing(listing_id, account_id)

    result = asyncio.run(_run())
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command('drain-queue')
@click.option('--max-jobs', type=int, default=None)
def drain_queue(max_jobs):
    """Run every due job on the sync queue, then exit"""

    async def _run():
        return await SyncWorker(ListingSyncService()).drain(max_jobs=max_jobs)

    processed = asyncio.run(_run())
    click.echo(f"Processed {processed} jobs")


@cli.command('check-tokens')
@click.option('--within-hours', type=click.IntRange(min=1), default=None,
              help='Look-ahead window (default TOKEN_REFRESH_WINDOW_HOURS)')
def check_tokens(within_hours):
    """Refresh tokens about to expire and flag accounts that cannot be refreshed"""

    async def _run():
        within = timedelta(hours=within_hours) if within_hours else None
        return await CredentialService().refresh_expiring_accounts(within)

    report = asyncio.run(_run())
    click.echo(json.dumps(report.summary(), indent=2))
    for account_id in report.expired:
        click.echo(f"  account {account_id}: expired, must be reconnected")


@cli.command('generate-key')
def generate_key():
    """Print a new key for TOKEN_ENCRYPTION_KEYS"""
    click.echo(Fernet.generate_key().decode())


@cli.command('rotate-tokens')
def rotate_tokens():
    """Re-encrypt stored tokens under the first key in TOKEN_ENCRYPTION_KEYS"""
    rewritten = asyncio.run(CredentialService().rotate_stored_tokens())
    click.echo(f"Re-encrypted tokens of {rewritten} accounts")


@cli.command('serve')
@click.option('--host', default='0.0.0.0')
@click.option('--port', type=int, default=lambda: int(os.environ.get("PORT", 8000)), show_default="$PORT or 8000")
def serve(host, port):
    """Run the API (sync triggers, webhooks) with the scheduler"""
    click.echo(f"Starting listing sync API on port {port}")
    uvicorn.run(
        "listing_sync.main:app",
        host=host,
        port=port,
        log_level=get_settings().LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    cli()
