import copy

import aiohttp
import pytest

from arena.accounts import TokenVerifier
from arena.matchmaker.service import MatchmakerService

JWT_SECRET = 'test-jwt-secret'
GAMESERVER_SECRET = 'test-gameserver-secret'

GAME_MODES = {
    'solo': {
        'playlist': 'Playlist_DefaultSolo',
        'playlist_id': 'solo',
        'legacy_id': '2',
        'time_between_games': 25,
    },
    'duo': {
        'playlist': 'Playlist_DefaultDuo',
        'playlist_id': 'duo',
        'legacy_id': '10',
        'time_between_games': 10,
    },
}

# Every flow delay is zeroed so that tests do not sleep.
FAST_SETTINGS = {
    'min_players_to_start': 2,
    'max_players_in_queue': 1000,
    'connecting_delay_ms': 0,
    'waiting_delay_ms': 0,
    'queue_full_poll_ms': 10,
    'queued_delay_ms': 0,
    'queue_update_interval_ms': 10,
    'match_start_delay_ms': 0,
    'session_assignment_delay_ms': 0,
    'join_delay_ms': 0,
}


@pytest.fixture
def arenaconf(mocker):
    """Mocks :func:`arena.config.load` for a given profile.

    Usage to override the "matchmaker" profile with one "foo" config key::

        @pytest.fixture
        def myconf(arenaconf):
            arenaconf("matchmaker", foo="bar")
            # Feel free to make other calls to arenaconf() here.

        def test_something(myconf):
            ...

    If all tests in a file requires the same conf, use autouse=True::

        @pytest.fixture(autouse=True)
        def myconf_autoused(arenaconf):
            arenaconf("matchmaker", foo="bar")

        def test_something():  # No need to pass it as an argument.
            ...
    """
    config_registry = {}

    def mocked_loader(profile):
        try:
            return config_registry[profile]
        except KeyError:
            raise KeyError(
                f"Application loads config profile '{profile}', which is not "
                f"configured in arenaconf fixture."
            ) from None

    def configure_func(profile, **kwargs):
        config_registry[profile] = kwargs

    config_load = mocker.patch("arena.config.load")
    config_load.side_effect = mocked_loader
    yield configure_func
    config_load.stop()


@pytest.fixture
def aiohttp_trace_ended():
    """Retains URLs of ended requests. Useful to check they were closed."""
    ended_request_urls = []

    async def on_request_end(session, trace_config_ctx, params):
        ended_request_urls.append(str(params.url))

    trace = aiohttp.TraceConfig()
    trace.on_request_end.append(on_request_end)
    return trace, ended_request_urls


@pytest.fixture
def game_modes_config():
    return copy.deepcopy(GAME_MODES)


@pytest.fixture
def matchmaker_config():
    """Returns a builder of ``matchmaker`` profiles with instant flows.

    Keyword arguments override keys of the ``matchmaking_settings`` section.
    """

    def build(regions=None, **settings):
        return {
            'matchmaker': {
                'service_url': 'ws://127.0.0.1:8080',
                'jwt_secret': JWT_SECRET,
                'gameserver_secret': GAMESERVER_SECRET,
                'gameserver_timeout_secs': 120,
            },
            'matchmaking_settings': dict(FAST_SETTINGS, **settings),
            'game_modes': copy.deepcopy(GAME_MODES),
            'regions': regions or {},
            'xmpp': {'domain': 'xmpp.test'},
        }

    return build


@pytest.fixture
def matchmaker_settings():
    """Overrides of ``matchmaking_settings``, for tests to update."""
    return {}


@pytest.fixture
def matchmaker_service(arenaconf, matchmaker_config, matchmaker_settings):
    arenaconf('timeauth', enabled=True)
    return MatchmakerService(
        matchmaker_config(**matchmaker_settings),
        accounts={},
        verifier=TokenVerifier(JWT_SECRET),
    )


@pytest.fixture
async def matchmaker_client(aiohttp_client, matchmaker_service):
    return await aiohttp_client(matchmaker_service.app)
