import json
import click
from flask import current_app

from notifier.services import kpi


def register_cli(app):
    @app.cli.command('kpi-reminders')
    @click.option('--send', is_flag=True, help='Send notifications instead of previewing them.')
    @click.option('--force', is_flag=True, help='Ignore today\'s dedup records.')
    def kpi_reminders(send, force):
        """Run the weekly KPI reminder job now (dry run unless --send)."""
        engine = current_app.extensions['notifier']
        result = kpi.run_weekly_kpi_reminders(engine, dry_run=not send, force=force)
        if send:
            kpi.write_run_log(engine, result, initiated_by='cli', run_type='manual')
        click.echo(json.dumps(result, indent=2, default=str))
