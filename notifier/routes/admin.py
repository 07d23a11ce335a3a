import logging
from flask import Blueprint, jsonify, g
from notifier.decorators import operator_required, get_engine
from notifier.forms import KpiRunForm, TestNotificationForm, first_error
from notifier import jobs_state
from notifier.services import kpi, messages

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__, url_prefix='/admin')


@bp.route('/kpi-reminders/preview', methods=['POST'])
@operator_required
def preview_kpi_reminders():
    result = kpi.run_weekly_kpi_reminders(get_engine(), dry_run=True)
    return jsonify(result)


@bp.route('/kpi-reminders/run', methods=['POST'])
@operator_required
def run_kpi_reminders():
    form = KpiRunForm()
    if not form.validate():
        return jsonify({'error': first_error(form)}), 400

    engine = get_engine()
    dry_run = bool(form.dryRun.data)
    force = bool(form.force.data)
    logger.info('KPI reminders requested by %s (dryRun=%s, force=%s)', g.current_user.id, dry_run, force)

    result = kpi.run_weekly_kpi_reminders(engine, dry_run=dry_run, force=force)
    if not dry_run:
        kpi.write_run_log(engine, result, initiated_by=g.current_user.id, run_type='manual')
    return jsonify(result)


@bp.route('/test-notification', methods=['POST'])
@operator_required
def send_test_notification():
    form = TestNotificationForm()
    if not form.validate():
        return jsonify({'error': first_error(form)}), 400

    engine = get_engine()
    user_id = form.userId.data
    tokens = engine.tokens.resolve_tokens(user_id)
    if not tokens:
        return jsonify({'error': 'no_tokens', 'message': 'User has no registered devices'}), 404

    message = messages.diagnostic_notification(form.userName.data or 'there', engine.now())
    summary = engine.notify([user_id], message)
    return jsonify({
        'success': summary['successCount'] > 0,
        'successCount': summary['successCount'],
        'failureCount': summary['failureCount'],
        'totalSent': summary['attempted'],
    })


@bp.route('/jobs')
@operator_required
def job_states():
    return jsonify(jobs_state.get_all_states())
