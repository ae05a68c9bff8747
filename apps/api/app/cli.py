"""CLI tools for outreach operations."""

import click

from app.core.async_utils import run_async
from app.db.session import SessionLocal
from app.services import crm_token_service, outreach_queue_service, outreach_runner


@click.group()
def cli():
    """Lead outreach CLI tools."""
    pass


def _echo_run(result) -> None:
    click.echo(f"✓ {result.message}")
    click.echo(f"  Accounts processed: {result.accounts_processed}")
    click.echo(f"  Accounts skipped: {result.accounts_skipped}")


@cli.command()
def run_sms_outreach():
    """
    Run one SMS outreach pass now (same as the hourly scheduler call).

    Example:
        python -m app.cli run-sms-outreach
    """
    with SessionLocal() as db:
        result = run_async(outreach_runner.run_sms_outreach(db))
    _echo_run(result)
    click.echo(f"  Contacts processed: {result.contacts_processed}")


@cli.command()
def run_email_outreach():
    """Run one email outreach pass now."""
    with SessionLocal() as db:
        result = run_async(outreach_runner.run_email_outreach(db))
    _echo_run(result)
    click.echo(f"  Emails sent: {result.emails_sent}")


@cli.command()
@click.option("--user-id", default=None, help="Only count this user's queue")
def queue_stats(user_id: str | None):
    """Show outreach queue counts per channel and status."""
    with SessionLocal() as db:
        stats = outreach_queue_service.queue_stats(db, user_id)
    if not stats:
        click.echo("Queue is empty")
        return
    for channel, counts in sorted(stats.items()):
        click.echo(f"{channel}:")
        for status, count in sorted(counts.items()):
            click.echo(f"  {status}: {count}")


@cli.command()
@click.option("--user-id", required=True, help="Owner of the CRM account")
@click.option("--location-id", required=True, help="CRM location (sub-account) id")
@click.option("--access-token", required=True, help="OAuth access token")
@click.option("--refresh-token", default=None, help="OAuth refresh token")
@click.option("--expires-in", default=86400, help="Access token lifetime in seconds")
@click.option("--campaign-email", default=None, help="From address for outreach emails")
def connect_integration(
    user_id: str,
    location_id: str,
    access_token: str,
    refresh_token: str | None,
    expires_in: int,
    campaign_email: str | None,
):
    """
    Store CRM OAuth tokens for a user (replaces any active integration).

    Example:
        python -m app.cli connect-integration --user-id u1 --location-id loc1 --access-token ...
    """
    with SessionLocal() as db:
        integration = crm_token_service.connect_integration(
            db,
            user_id=user_id,
            location_id=location_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            campaign_email=campaign_email,
        )
        click.echo(f"✓ Connected location {location_id} for user {user_id}")
        click.echo(f"  Integration ID: {integration.id}")


if __name__ == "__main__":
    cli()
