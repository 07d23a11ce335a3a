from notifier.firestore_models import Event, Mentor, User
from notifier.services.routing import (
    DROP_NO_EVALUATOR, EvaluatorProfile, RecipientRouter, find_pending_evaluations,
)
from notifier.services.tokens import ResolvedToken


def profile(uid, role='evaluator', centers=(), tokens=('t',)):
    return EvaluatorProfile(uid, uid, role, list(centers), [ResolvedToken(f'{t}-{uid}', 'device') for t in tokens])


def mentor(mid, forms, evaluator=None, centers=()):
    return Mentor(id=mid, name=mid, assigned_form_ids=list(forms),
                  assigned_evaluator_id=evaluator, centers=list(centers))


def test_pending_skips_recent_submissions_by_form_name():
    mentors = [mentor('m1', ['f1', 'f2'])]
    pending = find_pending_evaluations(mentors, {'m1_Weekly KPI'}, {'f1': 'Weekly KPI'})

    assert [(p.mentor_id, p.form_id, p.form_name) for p in pending] == [('m1', 'f2', 'f2')]


def test_assigned_evaluator_with_tokens_is_used():
    router = RecipientRouter(['admin'])
    directory = {'e1': profile('e1'), 'a1': profile('a1', role='admin')}

    result = router.route_pending_evaluations([mentor('m1', ['f1'], evaluator='e1')], set(), directory)

    assert list(result.by_evaluator) == ['e1']
    assert result.dropped == []


def test_assigned_evaluator_without_tokens_falls_back():
    router = RecipientRouter(['admin', 'quality'])
    directory = {
        'e1': profile('e1', tokens=()),
        'q2': profile('q2', role='quality'),
        'a1': profile('a1', role='admin', centers=['north']),
    }

    result = router.route_pending_evaluations(
        [mentor('m1', ['f1'], evaluator='e1', centers=['south'])], set(), directory)

    # a1 sorts first but does not cover "south"
    assert list(result.by_evaluator) == ['q2']


def test_fallback_is_first_match_in_user_id_order():
    router = RecipientRouter()
    directory = {uid: profile(uid) for uid in ['zed', 'amy', 'kim']}

    result = router.route_pending_evaluations([mentor('m1', ['f1'])], set(), directory)

    assert list(result.by_evaluator) == ['amy']


def test_fallback_respects_role_filter():
    router = RecipientRouter(['Quality'])
    directory = {'a': profile('a', role='user'), 'b': profile('b', role='quality')}

    assert [p.user_id for p in router.fallback_candidates(directory)] == ['b']


def test_unroutable_items_are_dropped_with_reason():
    router = RecipientRouter(['admin'])
    directory = {'a1': profile('a1', role='admin', centers=['north'])}

    result = router.route_pending_evaluations([mentor('m1', ['f1'], centers=['south'])], set(), directory)

    assert result.by_evaluator == {}
    assert [d.reason for d in result.dropped] == [DROP_NO_EVALUATOR]
    assert result.dropped[0].to_dict()['mentorId'] == 'm1'


def test_routing_is_deterministic_and_groups_per_evaluator():
    router = RecipientRouter(['admin', 'evaluator'])
    mentors = [
        mentor('m1', ['f1', 'f2'], evaluator='e1'),
        mentor('m2', ['f1'], centers=['c1']),
        mentor('m3', ['f1'], centers=['c2']),
    ]
    directory = {
        'e1': profile('e1', centers=['c0']),
        'e2': profile('e2', centers=['c2']),
        'e3': profile('e3', centers=['c1', 'c2']),
    }

    first = router.route_pending_evaluations(mentors, set(), directory)
    second = router.route_pending_evaluations(mentors, set(), directory)

    assert first.by_evaluator == second.by_evaluator
    grouped = {k: [(p.mentor_id, p.form_id) for p in v] for k, v in first.by_evaluator.items()}
    assert grouped == {
        'e1': [('m1', 'f1'), ('m1', 'f2')],
        'e3': [('m2', 'f1')],
        'e2': [('m3', 'f1')],
    }


def test_deletion_recipients_union_without_duplicates():
    router = RecipientRouter()
    event = Event(id='ev', assignees=['u1', 'a1'], owner_id='u2', created_by='u1')
    users = [
        User(id='a1', role='admin'),
        User(id='q1', role='quality'),
        User(id='u3', role='evaluator'),
    ]

    assert router.deletion_recipients(event, users) == ['u1', 'a1', 'u2', 'q1']


def test_same_day_recipients_add_covering_quality_users():
    router = RecipientRouter()
    event = Event(id='ev', assignees=['u1'], created_by='c1', centers=['north'])
    users = [
        User(id='q-all', role='quality'),
        User(id='q-north', role='quality', assigned_centers=['north']),
        User(id='q-south', role='quality', assigned_centers=['south']),
        User(id='a1', role='admin'),
    ]

    assert router.same_day_recipients(event, users) == ['c1', 'u1', 'q-all', 'q-north']


def test_overdue_grouped_by_assignee():
    e1 = Event(id='e1', assignees=['u1', 'u2'])
    e2 = Event(id='e2', assignees=['u1'])

    grouped = RecipientRouter.overdue_by_assignee([e1, e2])

    assert {k: [e.id for e in v] for k, v in grouped.items()} == {'u1': ['e1', 'e2'], 'u2': ['e1']}
