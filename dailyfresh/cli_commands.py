"""
Flask CLI commands for database setup and order reconciliation.

Commands:
- flask init-db: Create all tables
- flask reconcile-scan: Flag headless orders and list open checkout failures
- flask reconcile-order <order_id>: Compensate a flagged order and resolve its failures
"""

import click
from flask import current_app
from dailyfresh.database import get_session, create_all
from dailyfresh.exceptions import StorefrontError
from dailyfresh.services import reconciliation_service


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table (development and SQLite)."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('reconcile-scan')
    @click.option('--grace-minutes', type=int, default=None,
                  help='Override HEADLESS_ORDER_GRACE_MINUTES')
    def reconcile_scan(grace_minutes):
        """Flag item-less orders past the grace period and list open failures."""
        if grace_minutes is None:
            grace_minutes = current_app.config.get('HEADLESS_ORDER_GRACE_MINUTES', 5)

        flagged = reconciliation_service.flag_headless_orders(get_session(), grace_minutes)
        for order in flagged:
            click.echo(click.style(f'Flagged headless order {order.id} ({order.order_number})', fg='yellow'))

        failures = reconciliation_service.list_open_failures(get_session())
        if not failures:
            click.echo(click.style('No open checkout failures.', fg='green'))
            return

        click.echo(f'{len(failures)} open checkout failure(s):')
        for failure in failures:
            item = f' item={failure.order_item_id}' if failure.order_item_id else ''
            click.echo(f'  order={failure.order_id} step={failure.step}{item} at={failure.created_at}')

    @app.cli.command('reconcile-order')
    @click.argument('order_id', type=int)
    @click.option('--actor', default='cli', help='Name recorded as the actor')
    def reconcile_order(order_id, actor):
        """Compensate a flagged order and mark its failures resolved."""
        try:
            result = reconciliation_service.reconcile_order(get_session(), order_id, actor=actor)
        except StorefrontError as e:
            raise click.ClickException(e.message)

        click.echo(click.style(f'Order {order_id} reconciled.', fg='green', bold=True))
        click.echo(f'   Restored items: {result.restored_items or "-"}')
        click.echo(f'   Skipped items:  {result.skipped_items or "-"}')
        click.echo(f'   Slot released:  {result.slot_released}')
        click.echo(f'   Refunded:       {result.refunded}')
