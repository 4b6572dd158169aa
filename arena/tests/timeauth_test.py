import pytest

from arena import timeauth

SECRET = b'secret'


@pytest.fixture(autouse=True)
def timeauth_conf(arenaconf):
    arenaconf('timeauth', enabled=True, timeout_secs=60)


def test_roundtrip():
    token = timeauth.generate_token(SECRET, 'heartbeat', now=1000)
    assert timeauth.check_token(token, SECRET, 'heartbeat', now=1030)


def test_bound_to_message():
    token = timeauth.generate_token(SECRET, 'heartbeat', now=1000)
    assert not timeauth.check_token(token, SECRET, 'unregister', now=1000)


def test_bad_secret():
    token = timeauth.generate_token(b'other', 'heartbeat', now=1000)
    assert not timeauth.check_token(token, SECRET, 'heartbeat', now=1000)


@pytest.mark.parametrize('now', [1061, 939])
def test_outdated(now):
    token = timeauth.generate_token(SECRET, 'heartbeat', now=1000)
    assert not timeauth.check_token(token, SECRET, 'heartbeat', now=now)


@pytest.mark.parametrize('token', [None, '', 'garbage', 'abc:def', '1:2:3'])
def test_malformed(token):
    assert not timeauth.check_token(token, SECRET, 'heartbeat', now=1)


def test_disabled(arenaconf):
    arenaconf('timeauth', enabled=False)
    assert timeauth.check_token(None, SECRET, 'heartbeat')
