"""CLI tools for license sync administration."""

import json
import logging

import click

from app.core.async_utils import run_async
from app.db.enums import SyncTrigger
from app.db.session import SessionLocal
from app.services import license_sync_service, reconciliation_service, sync_state_service
from app.services.license_provider_client import LicenseProviderClient
from app.services.license_sync_errors import ProviderConfigError, SyncAlreadyRunningError


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """License dashboard CLI tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--dry-run", is_flag=True, help="Fetch and validate without writing")
def sync_now(dry_run: bool):
    """
    Run a license sync in the foreground.

    Goes through the same running-state check as the scheduler, so it refuses
    to start while another sync is running.

    Example:
        license-dashboard sync-now --dry-run
    """
    db = SessionLocal()
    try:
        run = license_sync_service.acquire_or_raise(db, SyncTrigger.CLI, dry_run=dry_run)
    except SyncAlreadyRunningError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)
    finally:
        db.close()

    result = run_async(
        license_sync_service.execute_sync(
            SessionLocal, license_sync_service.default_provider_factory, run
        )
    )
    mark = "✓" if result.success else "❌"
    click.echo(f"{mark} Sync {run.run_id} {'succeeded' if result.success else 'failed'}")
    click.echo(
        f"  fetched={result.fetched} created={result.created} "
        f"updated={result.updated} failed={result.failed}"
    )
    click.echo(
        f"  reconciled: created={result.reconciled_created} updated={result.reconciled_updated}"
    )
    if result.error:
        click.echo(f"  error: {result.error}")
    if not result.success:
        raise SystemExit(1)


@cli.command()
def sync_status():
    """Print the sync status as JSON."""
    db = SessionLocal()
    try:
        status = sync_state_service.get_status(db)
        click.echo(json.dumps(status, indent=2, default=str))
    finally:
        db.close()


@cli.command()
@click.option("--force", is_flag=True, help="Reset even if the run is not stale yet")
def sync_reset(force: bool):
    """Reset a stuck running state to idle."""
    db = SessionLocal()
    try:
        if sync_state_service.recover_stale(db, force=force):
            click.echo("✓ Running state reset to idle")
        else:
            click.echo("✓ Nothing to reset")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
def reconcile_staging():
    """Re-run reconciliation over the whole staging table (no provider fetch)."""
    db = SessionLocal()
    try:
        summary = reconciliation_service.reconcile_from_staging(db)
        click.echo(
            f"✓ Reconciled: {summary.created} created, {summary.updated} updated, "
            f"{summary.unchanged} unchanged, {summary.failed} failed"
        )
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
def provider_health():
    """Probe the external provider with a one-record request."""
    try:
        client = LicenseProviderClient.from_settings()
    except ProviderConfigError as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)

    health = run_async(client.health_check())
    if health["healthy"]:
        click.echo("✓ Provider reachable")
    else:
        click.echo(f"❌ Provider unhealthy: {health['error']}")
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
