import click
from flask.cli import with_appcontext
from sqlalchemy import select
from app.extensions import db
from app.models import Landlord
from app.billing import ledger
from app.billing.errors import BillingError
from app.billing.reconciler import refresh_from_provider
from app.services.landlords import create_landlord

@click.group()
def landlords():
    """Landlord registry."""

@landlords.command("create")
@click.option("--owner-id", required=True, help="Auth identity of the landlord")
@click.option("--email", required=True)
@click.option("--name", default=None)
@click.option("--trial-days", type=int, default=0, show_default=True, help="Promotional trial length")
@with_appcontext
def landlords_create(owner_id, email, name, trial_days):
    # fail fast if the owner already has a landlord
    exists = db.session.execute(select(Landlord.id).where(Landlord.owner_id == owner_id)).first()
    if exists:
        raise click.ClickException("Landlord already exists for this owner id")

    landlord = create_landlord(owner_id=owner_id, email=email, name=name, trial_days=trial_days)
    click.echo(
        f"Landlord created id={landlord.id} owner_id={landlord.owner_id} "
        f"status={landlord.billing_account.status}"
    )

@click.group()
def billing():
    """Subscription state ops."""

@billing.command("sync")
@click.option("--landlord-id", type=int, required=True)
@with_appcontext
def billing_sync(landlord_id):
    """Pull the subscription from Stripe and reconcile the local account."""
    try:
        account = refresh_from_provider(landlord_id)
    except BillingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")
    click.echo(
        f"Synced landlord_id={landlord_id} status={account.status} "
        f"subscription={account.external_subscription_id}"
    )

@click.group("ledger")
def ledger_group():
    """E-sign credit ledger ops."""

@ledger_group.command("balance")
@click.option("--landlord-id", type=int, required=True)
@with_appcontext
def ledger_balance(landlord_id):
    if db.session.get(Landlord, landlord_id) is None:
        raise click.ClickException(f"Landlord id {landlord_id} not found")
    counts = ledger.balance(landlord_id)
    click.echo(
        f"landlord_id={landlord_id} purchased={counts['purchased']} "
        f"used={counts['used']} remaining={counts['remaining']}"
    )

@ledger_group.command("expire-reservations")
@with_appcontext
def ledger_expire():
    """Flip every stale reservation to failed (normally done lazily on read)."""
    expired = ledger.expire_stale_reservations()
    db.session.commit()
    click.echo(f"Expired {expired} reservation(s)")

def register_cli(app):
    app.cli.add_command(landlords)
    app.cli.add_command(billing)
    app.cli.add_command(ledger_group)
