"""
CLI Commands for enrollment maintenance.

Safe to run repeatedly, manually or from cron:

# Issue cards to ACTIVE enrollments that never received one
flask enrollments repair-cards --dry-run
flask enrollments repair-cards

# Reset enrollment balance mirrors that drifted from the card balance
flask enrollments reconcile-balances
"""

import click
from flask.cli import with_appcontext
from ..services.enrollment_service import EnrollmentService
from ..services.points_service import PointsService


@click.group('enrollments')
def enrollments_cli():
    """Enrollment maintenance commands."""
    pass


@enrollments_cli.command('repair-cards')
@click.option('--dry-run', is_flag=True, help='List card-less enrollments without issuing cards')
@with_appcontext
def repair_cards(dry_run):
    """Provision cards for ACTIVE enrollments that have none."""
    result = EnrollmentService().repair_cardless_enrollments(dry_run=dry_run)

    prefix = '[DRY RUN] ' if dry_run else ''
    click.echo(f"{prefix}Card-less enrollments found: {result['checked']}")
    if dry_run:
        return

    click.echo(f"  Repaired: {result['repaired']}")
    for card in result['cards'][:20]:
        click.echo(f"    - Enrollment {card['enrollment_id']}: {card['card_number']}")
    if result['failed']:
        click.echo(f"  Failed: {result['failed']} (see log)")


@enrollments_cli.command('reconcile-balances')
@click.option('--dry-run', is_flag=True, help='Report drift without changing anything')
@with_appcontext
def reconcile_balances(dry_run):
    """Set enrollment point mirrors equal to their card balance."""
    result = PointsService().reconcile_enrollment_mirrors(dry_run=dry_run)

    prefix = '[DRY RUN] ' if dry_run else ''
    click.echo(f"{prefix}Enrollments out of sync: {result['checked']}")
    for row in result['enrollments'][:20]:
        click.echo(
            f"    - Enrollment {row['enrollment_id']} ({row['card_number']}): "
            f"{row['mirrored']} -> {row['balance']}"
        )
    if not dry_run:
        click.echo(f"  Fixed: {result['fixed']}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(enrollments_cli)
