"""Weekly KPI evaluation reminders.

Finds every (mentor, form) pair without a submission in the lookback
window, routes each to an evaluator, and sends each evaluator one
consolidated reminder per day. The same runner backs the scheduled job, the
operator endpoints and the CLI; with `dry_run` it only reports what it
would send.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from notifier import firestore_dao as dao
from notifier.firestore_models import Mentor, User
from notifier.services import messages
from notifier.services.dedup import DedupKey
from notifier.services.routing import EvaluatorProfile, submission_key
from notifier.services.sender import OutboundMessage

logger = logging.getLogger(__name__)

SKIP_DEDUPED = 'deduped'
SKIP_NO_TOKENS = 'no_tokens'
PREVIEW_LIMIT = 200
SUMMARY_LIMIT = 500


def recent_submission_keys(engine, since):
    keys = set()
    for submission in dao.get_recent_submissions(engine.store, since):
        form = submission.get('kpiType') or submission.get('formName')
        if submission.get('mentorId') and form:
            keys.add(submission_key(submission['mentorId'], form))
    return keys


def load_form_names(engine, form_ids):
    """Map form ids to display names, falling back to the id itself."""
    form_ids = sorted(set(form_ids))
    if not form_ids:
        return {}

    def _name(form_id):
        try:
            form = dao.get_kpi_form(engine.store, form_id)
        except Exception:
            logger.warning('Could not read KPI form %s; using its id', form_id, exc_info=True)
            return form_id
        return (form or {}).get('name') or form_id

    with ThreadPoolExecutor(max_workers=min(engine.tokens.max_workers, len(form_ids))) as executor:
        return dict(zip(form_ids, executor.map(_name, form_ids)))


def build_directory(engine, mentors):
    """Evaluator profiles for assigned evaluators and fallback candidates."""
    docs = {doc['id']: doc for doc in dao.get_all_users(engine.store)}
    users = {uid: User.from_dict(doc, uid) for uid, doc in docs.items()}
    roles = engine.router.fallback_roles

    wanted = [m.assigned_evaluator_id for m in mentors if m.assigned_evaluator_id]
    wanted += [uid for uid, u in users.items() if not roles or u.role in roles]
    wanted = [uid for uid in wanted if uid in users]

    resolved = engine.tokens.resolve_many(wanted, docs)
    return {
        uid: EvaluatorProfile.from_user(users[uid], tokens)
        for uid, tokens in resolved.items()
    }


def run_weekly_kpi_reminders(engine, dry_run=False, force=False):
    now = engine.now()
    since = now - timedelta(days=engine.lookback_days)

    mentors = [Mentor.from_dict(doc, doc['id']) for doc in dao.get_mentors(engine.store)]
    recent = recent_submission_keys(engine, since)
    form_names = load_form_names(engine, [f for m in mentors for f in m.assigned_form_ids])
    directory = build_directory(engine, mentors)
    routing = engine.router.route_pending_evaluations(mentors, recent, directory, form_names)

    dedup_key = DedupKey.daily(messages.KPI_REMINDER, now)
    unsent = set(engine.dedup.unsent(list(routing.by_evaluator), dedup_key, force))
    evaluators_summary = []
    outbound = []
    messages_preview = []

    for evaluator_id, pending_list in routing.by_evaluator.items():
        profile = directory[evaluator_id]
        mentor_count = len({p.mentor_id for p in pending_list})
        form_count = len(pending_list)

        skip_reason = None
        if evaluator_id not in unsent:
            skip_reason = SKIP_DEDUPED
        elif not profile.tokens:
            skip_reason = SKIP_NO_TOKENS

        evaluators_summary.append({
            'evaluatorId': evaluator_id,
            'name': profile.name,
            'role': profile.role,
            'mentorCount': mentor_count,
            'formCount': form_count,
            'tokenCount': len(profile.tokens),
            'tokenSamples': [t.token[:16] for t in profile.tokens[:3]],
            'skipReason': skip_reason,
        })
        if skip_reason:
            continue

        message = messages.kpi_reminder(mentor_count, form_count, profile.role)
        outbound.extend(OutboundMessage(evaluator_id, t.token, message, t.source) for t in profile.tokens)
        messages_preview.append({
            'evaluatorId': evaluator_id,
            'title': message.title,
            'body': message.body,
            'tokenCount': len(profile.tokens),
        })

    result = {
        'success': True,
        'dryRun': dry_run,
        'forced': force,
        'dedupKey': dedup_key.label,
        'notificationCount': len(outbound),
        'pendingEvaluationsCount': len(routing.pending),
        'evaluatorsNotified': sum(1 for e in evaluators_summary if e['skipReason'] is None),
        'evaluatorsSummary': evaluators_summary[:SUMMARY_LIMIT],
        'droppedEvaluations': [d.to_dict() for d in routing.dropped[:PREVIEW_LIMIT]],
    }

    if dry_run:
        result['pendingPreview'] = [p.to_dict() for p in routing.pending[:PREVIEW_LIMIT]]
        result['messagesPreview'] = messages_preview[:PREVIEW_LIMIT]
        logger.info('KPI reminder preview: %d message(s) for %d evaluator(s), %d pending',
                    len(outbound), result['evaluatorsNotified'], len(routing.pending))
        return result

    report = engine.sender.dispatch(outbound, engine.cancel_event)
    recorded = engine.dedup.record_many(
        sorted(report.delivered_recipients()), dedup_key, {'type': messages.KPI_REMINDER})

    result['notificationCount'] = sum(1 for r in report.results if r.dispatched)
    result['delivery'] = report.to_dict()
    result['recorded'] = recorded
    logger.info('Sent %d KPI reminder notification(s) for %d evaluator(s) (total evaluated: %d)',
                result['notificationCount'], result['evaluatorsNotified'], len(evaluators_summary))
    return result


def write_run_log(engine, result, initiated_by='system', run_type='scheduled'):
    """Audit a KPI run under _admin/kpiRunLogs/runs. Never fatal."""
    try:
        dao.write_kpi_run_log(engine.store, {
            'initiatedBy': initiated_by,
            'initiatedAt': engine.now(),
            'type': run_type,
            'forced': bool(result.get('forced')),
            'resultSummary': {
                'notificationCount': result.get('notificationCount', 0),
                'pendingEvaluations': result.get('pendingEvaluationsCount', 0),
                'evaluatorsNotified': result.get('evaluatorsNotified', 0),
            },
            'evaluatorsPreview': (result.get('evaluatorsSummary') or [])[:PREVIEW_LIMIT],
        })
    except Exception:
        logger.warning('Failed to write KPI run log', exc_info=True)
