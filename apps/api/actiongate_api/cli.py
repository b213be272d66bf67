"""CLI commands for ActionGate API."""

import json

import click

from actiongate_api.db.seed import seed_all
from actiongate_api.db.session import SessionLocal
from actiongate_api.policy.schema import PolicyDocumentError
from actiongate_api.policy.store import PolicyStore


@click.group()
def cli():
    """ActionGate API CLI."""
    pass


@cli.command()
@click.option("--path", "path", default=None, help="Policy document JSON (defaults to POLICY_DOCUMENT_PATH).")
def seed(path):
    """Publish and activate the policy document."""
    click.echo("Seeding policy document...")
    db = SessionLocal()
    try:
        record = seed_all(db, path)
        click.echo(f"✓ Active policy {record.version} ({record.document_hash})")
    except PolicyDocumentError as e:
        db.rollback()
        raise click.ClickException(f"Error seeding policy: {e}")
    finally:
        db.close()


@cli.command("show-policy")
def show_policy():
    """Print the active policy document."""
    db = SessionLocal()
    try:
        active = PolicyStore(db).get_active()
    finally:
        db.close()
    if active is None:
        raise click.ClickException("No active policy document")
    click.echo(f"version: {active.version}")
    click.echo(f"hash:    {active.document_hash}")
    click.echo(json.dumps(active.document.canonical(), indent=2, sort_keys=True))


if __name__ == "__main__":
    cli()
