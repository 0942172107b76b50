import logging

from conftest import register_player
from scoreguard import db
from scoreguard.models import Anomaly, GameGrant, GameReward, GameSession, GameTitle


def start(c, slug='memory-match', version='1.0.0', **kwargs):
    res = c.post('/api/games/session/start', json={'slug': slug, 'clientVersion': version}, **kwargs)
    assert res.status_code == 200, res.get_json()
    return res.get_json()


def sign(c, session, score, duration_ms, nonce=None, version='1.0.0'):
    return c.post('/api/games/sign', json={
        'sessionId': session['sessionId'],
        'score': score,
        'durationMs': duration_ms,
        'nonce': nonce or session['nonce'],
        'clientVersion': version,
    })


def complete(c, session, score, duration_ms, signature, nonce=None, **kwargs):
    return c.post('/api/games/session/complete', json={
        'sessionId': session['sessionId'],
        'score': score,
        'durationMs': duration_ms,
        'nonce': nonce or session['nonce'],
        'signature': signature,
    }, **kwargs)


def play(c, score=500, duration_ms=60000, slug='memory-match', **kwargs):
    session = start(c, slug, **kwargs)
    signature = sign(c, session, score, duration_ms).get_json()['signature']
    return session, complete(c, session, score, duration_ms, signature, **kwargs)


def test_full_flow_and_repeat_conflict(flask_app, player):
    session = start(player)
    assert session['caps']['maxScorePerMin'] == 600
    assert session['caps']['maxScore'] == 5000
    assert len(session['nonce']) == 32

    res = sign(player, session, 500, 60000)
    assert res.status_code == 200
    signed = res.get_json()
    assert signed['payload'] == f"{session['sessionId']}|500|60000|{session['nonce']}"

    res = complete(player, session, 500, 60000, signed['signature'])
    assert res.status_code == 200
    assert res.get_json() == {'xpDelta': 5, 'currencyDelta': 10}

    res = complete(player, session, 500, 60000, signed['signature'])
    assert res.status_code == 409
    assert res.get_json()['code'] == 'conflict'

    with flask_app.app_context():
        row = db.session.get(GameSession, session['sessionId'])
        assert row.status == 'completed'
        assert row.score == 500
        assert GameReward.query.filter_by(session_id=session['sessionId']).count() == 1
        grant = GameGrant.query.filter_by(idempotency_key=session['sessionId']).one()
        assert grant.currency_amount == 10
        assert grant.source == 'game_session'


def test_sign_rejects_impossible_score_rate(player):
    session = start(player, 'speed-tap')
    res = sign(player, session, 100000, 1000)
    assert res.status_code == 400
    assert res.get_json()['code'] == 'invalid_score_rate'


def test_forged_signature_is_forbidden(flask_app, player):
    session = start(player)
    res = complete(player, session, 10, 5000, 'forged')
    assert res.status_code == 403
    assert res.get_json()['code'] == 'forbidden'
    with flask_app.app_context():
        assert db.session.get(GameSession, session['sessionId']).status == 'started'


def test_forged_signature_on_unknown_session_is_forbidden(player):
    res = complete(player, {'sessionId': 'no-such-session', 'nonce': 'abc'}, 10, 5000, 'forged')
    assert res.status_code == 403


def test_tampered_score_fails_signature(player):
    session = start(player)
    signature = sign(player, session, 500, 60000).get_json()['signature']
    res = complete(player, session, 4000, 60000, signature)
    assert res.status_code == 403
    res = complete(player, session, 500, 60000, signature)
    assert res.status_code == 200


def test_sign_cap_violations(player):
    session = start(player)
    res = sign(player, session, 500, 1000)
    assert res.get_json()['code'] == 'invalid_duration'
    res = sign(player, session, 500, 700000)
    assert res.get_json()['code'] == 'invalid_duration'
    res = sign(player, session, 6000, 600000)
    assert res.get_json()['code'] == 'invalid_score'
    res = sign(player, session, 500, 60000, version='0.9.9')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'client_outdated'


def test_sign_without_client_version_is_outdated(player):
    session = start(player)
    res = player.post('/api/games/sign', json={
        'sessionId': session['sessionId'],
        'score': 500,
        'durationMs': 60000,
        'nonce': session['nonce'],
    })
    assert res.status_code == 400
    assert res.get_json()['code'] == 'client_outdated'


def test_nonce_mismatch_is_checked_before_caps(player):
    session = start(player)
    res = sign(player, session, 10 ** 9, 1, nonce='0' * 32)
    assert res.status_code == 400
    assert res.get_json()['code'] == 'bad_request'


def test_sign_other_users_session_is_forbidden(player, other_player):
    session = start(player)
    res = sign(other_player, session, 500, 60000)
    assert res.status_code == 403


def test_complete_other_users_session_is_forbidden(player, other_player):
    session = start(player)
    signature = sign(player, session, 500, 60000).get_json()['signature']
    res = complete(other_player, session, 500, 60000, signature)
    assert res.status_code == 403
    assert complete(player, session, 500, 60000, signature).status_code == 200


def test_sign_unknown_session_is_not_found(player):
    res = sign(player, {'sessionId': 'missing', 'nonce': 'abc'}, 500, 60000)
    assert res.status_code == 404
    assert res.get_json()['code'] == 'not_found'


def test_sign_after_completion_conflicts(player):
    session, res = play(player)
    assert res.status_code == 200
    res = sign(player, session, 500, 60000)
    assert res.status_code == 409


def test_complete_rechecks_game_max_score(flask_app, player):
    session = start(player)
    signature = sign(player, session, 4000, 600000).get_json()['signature']
    with flask_app.app_context():
        game = GameTitle.query.filter_by(slug='memory-match').one()
        game.max_score = 1000
        db.session.commit()
    res = complete(player, session, 4000, 600000, signature)
    assert res.status_code == 400
    assert res.get_json()['code'] == 'invalid_score'


def test_start_unknown_or_inactive_game(player):
    res = player.post('/api/games/session/start', json={'slug': 'nope', 'clientVersion': '1.0.0'})
    assert res.status_code == 404
    assert res.get_json()['code'] == 'game_not_found'
    res = player.post('/api/games/session/start', json={'slug': 'retired', 'clientVersion': '1.0.0'})
    assert res.status_code == 404


def test_game_endpoints_require_login(client):
    res = client.post('/api/games/session/start', json={'slug': 'memory-match'})
    assert res.status_code == 401
    assert res.get_json()['code'] == 'unauthorized'
    assert client.get('/api/games/player/state').status_code == 401


def test_malformed_bodies_are_rejected(player):
    session = start(player)
    res = player.post('/api/games/sign', json={
        'sessionId': session['sessionId'],
        'score': '500',
        'durationMs': 60000,
        'nonce': session['nonce'],
        'clientVersion': '1.0.0',
    })
    assert res.status_code == 400
    assert res.get_json()['code'] == 'bad_request'

    res = player.post('/api/games/session/start', json={'slug': 'memory-match', 'admin': True})
    assert res.status_code == 400

    res = player.post('/api/games/session/start', data='not json', content_type='application/json')
    assert res.status_code == 400

    res = player.post('/api/games/sign', json={'sessionId': session['sessionId'], 'score': -1,
                                                'durationMs': 60000, 'nonce': session['nonce']})
    assert res.status_code == 400


def test_config_lists_active_games(player):
    res = player.get('/api/games/config')
    assert res.status_code == 200
    slugs = [g['slug'] for g in res.get_json()['games']]
    assert 'memory-match' in slugs
    assert 'retired' not in slugs
    assert 'fallback' not in res.get_json()


def test_player_state_totals_and_streak(player):
    play(player, score=500)
    play(player, score=1000, duration_ms=120000)
    res = player.get('/api/games/player/state')
    assert res.status_code == 200
    state = res.get_json()
    assert state['xp'] == 5 + 10
    assert state['currency'] == 10 + 20
    assert state['streakDays'] == 1
    assert len(state['rewards']) == 2


def test_rate_limit_returns_retry_after(flask_app, player):
    flask_app.extensions['rate_limiter'].limit = 2
    start(player)
    start(player)
    res = player.post('/api/games/session/start', json={'slug': 'memory-match', 'clientVersion': '1.0.0'})
    assert res.status_code == 429
    body = res.get_json()
    assert body['code'] == 'rate_limited'
    assert int(res.headers['Retry-After']) == body['retryAfter'] >= 1

    # Checked before the body is parsed
    res = player.post('/api/games/session/start', json={'bogus': 1})
    assert res.status_code == 429


def test_rate_limit_is_also_keyed_by_ip(flask_app, player, other_player):
    flask_app.extensions['rate_limiter'].limit = 2
    start(player)
    start(player)
    res = other_player.post('/api/games/session/start', json={'slug': 'memory-match', 'clientVersion': '1.0.0'})
    assert res.status_code == 429
    start(other_player, environ_base={'REMOTE_ADDR': '10.1.1.1'})


def _start_status(c, **kwargs):
    res = c.post('/api/games/session/start', json={'slug': 'memory-match', 'clientVersion': '1.0.0'}, **kwargs)
    return res.status_code


def test_forwarding_headers_do_not_split_the_ip_bucket(flask_app, make_player):
    flask_app.extensions['rate_limiter'].limit = 1
    players = [make_player(name) for name in ('alice', 'bob', 'carol')]
    statuses = [
        _start_status(c, headers={'X-Forwarded-For': f'198.51.100.{i}', 'X-Real-IP': f'198.51.100.{i}'})
        for i, c in enumerate(players, start=1)
    ]
    assert statuses == [200, 429, 429]


def test_trusted_proxy_hop_sets_client_ip(proxied_app):
    proxied_app.extensions['rate_limiter'].limit = 1
    alice, bob, carol = (register_player(proxied_app, name) for name in ('alice', 'bob', 'carol'))
    assert _start_status(alice, headers={'X-Forwarded-For': '203.0.113.5'}) == 200
    assert _start_status(bob, headers={'X-Forwarded-For': '203.0.113.6'}) == 200
    # Only the hop our proxy appended counts; the client-supplied prefix is ignored
    assert _start_status(carol, headers={'X-Forwarded-For': '192.0.2.99, 203.0.113.5'}) == 429


def test_completion_log_carries_client_version(player, caplog):
    caplog.set_level(logging.INFO, logger='scoreguard')
    session = start(player, version='1.2.0')
    signature = sign(player, session, 500, 60000, version='1.2.0').get_json()['signature']
    res = player.post('/api/games/session/complete', json={
        'sessionId': session['sessionId'],
        'score': 500,
        'durationMs': 60000,
        'nonce': session['nonce'],
        'signature': signature,
        'clientVersion': '1.2.0',
    })
    assert res.status_code == 200
    lines = [r.getMessage() for r in caplog.records if '[session-complete]' in r.getMessage()]
    assert any(session['sessionId'] in line and 'client=1.2.0' in line for line in lines)


def test_ip_mismatch_flags_anomaly_for_moderators(flask_app, player, moderator):
    session = start(player, environ_base={'REMOTE_ADDR': '10.0.0.1'})
    signature = sign(player, session, 500, 60000).get_json()['signature']
    res = complete(player, session, 500, 60000, signature, environ_base={'REMOTE_ADDR': '10.0.0.2'})
    assert res.status_code == 200

    with flask_app.app_context():
        row = Anomaly.query.filter_by(session_id=session['sessionId'], type='ip_mismatch').one()
        assert row.severity == 2
        anomaly_id = row.id

    res = moderator.get('/api/games/anomalies')
    assert res.status_code == 200
    listed = res.get_json()['anomalies']
    assert any(a['type'] == 'ip_mismatch' and a['details']['startIp'] == '10.0.0.1' for a in listed)

    res = moderator.post(f'/api/games/anomalies/{anomaly_id}/review')
    assert res.status_code == 200
    listed = moderator.get('/api/games/anomalies').get_json()['anomalies']
    assert all(a['id'] != anomaly_id for a in listed)

    assert moderator.post('/api/games/anomalies/99999/review').status_code == 404


def test_anomaly_endpoints_require_admin(player):
    assert player.get('/api/games/anomalies').status_code == 403
    assert player.post('/api/games/anomalies/1/review').status_code == 403


def test_register_login_logout(client):
    res = client.post('/register', json={'username': 'carol', 'password': 'pw'})
    assert res.status_code == 201
    assert client.get('/check_login').get_json()['user']['username'] == 'carol'
    assert client.post('/logout').status_code == 200
    assert client.get('/check_login').status_code == 401
    assert client.post('/login', json={'username': 'carol', 'password': 'wrong'}).status_code == 401
    assert client.post('/login', json={'username': 'carol', 'password': 'pw'}).status_code == 200
    assert client.post('/register', json={'username': 'carol', 'password': 'pw'}).status_code == 400
