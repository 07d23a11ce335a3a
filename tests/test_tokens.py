import pytest

from notifier.errors import ResolutionError
from notifier.services.tokens import SOURCE_DEVICE, SOURCE_LEGACY, TokenResolver


@pytest.fixture
def resolver(store):
    return TokenResolver(store, max_workers=4)


def test_enabled_devices_win_over_legacy_token(store, resolver):
    store.add_user('u1', devices=['d1', 'd2'], fcm_token='legacy')

    assert resolver.resolve_tokens('u1') == ['d1', 'd2']


def test_missing_enabled_field_means_enabled(store, resolver):
    store.add_user('u1', devices=[{'token': 'd1'}, {'token': 'd2', 'enabled': False}])

    assert resolver.resolve_tokens('u1') == ['d1']


def test_all_devices_disabled_does_not_fall_back_to_legacy(store, resolver):
    store.add_user('u1', devices=[{'token': 'd1', 'enabled': False}], fcm_token='legacy')

    assert resolver.resolve_tokens('u1') == []


def test_legacy_token_used_when_no_devices(store, resolver):
    store.add_user('u1', fcm_token='legacy')

    sources = resolver.resolve_sources('u1')
    assert [(t.token, t.source) for t in sources] == [('legacy', SOURCE_LEGACY)]


def test_unknown_user_resolves_to_nothing(resolver):
    assert resolver.resolve_tokens('ghost') == []


def test_device_tokens_are_tagged_with_their_source(store, resolver):
    store.add_user('u1', devices=['d1'])

    assert resolver.resolve_sources('u1')[0].source == SOURCE_DEVICE


def test_read_failure_raises_resolution_error(store, resolver):
    store.add_user('u1', devices=['d1'])
    store.failing.add('users/u1/devices')

    with pytest.raises(ResolutionError) as excinfo:
        resolver.resolve_sources('u1')
    assert excinfo.value.user_id == 'u1'


def test_resolve_many_skips_failures_and_keeps_order(store, resolver):
    store.add_user('a', devices=['ta'])
    store.add_user('b', devices=['tb'])
    store.add_user('c', fcm_token='tc')
    store.failing.add('users/b/devices')

    resolved = resolver.resolve_many(['c', 'b', 'a', 'c'])

    assert list(resolved) == ['c', 'a']
    assert [t.token for t in resolved['c']] == ['tc']


def test_resolve_all_tokens_unions_every_user(store, resolver):
    store.add_user('a', devices=['shared', 'ta'])
    store.add_user('b', devices=['shared'])
    store.add_user('c', fcm_token='tc')
    store.add_user('d')

    assert resolver.resolve_all_tokens() == ['shared', 'ta', 'tc']
