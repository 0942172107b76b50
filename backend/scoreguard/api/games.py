from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from scoreguard import db
from scoreguard.errors import BadRequest, Forbidden, NotFound
from scoreguard.models import Anomaly, utcnow
from scoreguard.request_meta import get_client_ip, get_device_hash
from scoreguard.schemas import CompleteRequest, SignRequest, StartRequest
from scoreguard.services.sessions.leaderboard import SCOPES
from scoreguard.services.sessions.store import store_guard
from scoreguard.services.sessions.streak import current_streak_days, streak_window_start


games = Blueprint('games', __name__)


def _lifecycle():
    return current_app.extensions['session_lifecycle']


def _parse(schema):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest('Invalid JSON body.')
    return schema.model_validate(data)


def _rate_limit(action: str, client_ip) -> None:
    # Runs before the body is parsed or any store is touched
    keys = [f"games:{action}:user:{current_user.id}"]
    if client_ip:
        keys.append(f"games:{action}:ip:{client_ip}")
    current_app.extensions['rate_limiter'].enforce(*keys)


def _require_admin() -> None:
    if not current_user.is_admin:
        raise Forbidden('Access denied.')


@games.route('/session/start', methods=['POST'])
@login_required
def start_session():
    client_ip = get_client_ip()
    _rate_limit('start', client_ip)
    body = _parse(StartRequest)
    result = _lifecycle().start(
        current_user.id,
        body.slug.strip(),
        client_version=body.client_version,
        client_ip=client_ip,
        device_hash=get_device_hash(),
    )
    return jsonify(result)


@games.route('/sign', methods=['POST'])
@login_required
def sign_result():
    _rate_limit('sign', get_client_ip())
    body = _parse(SignRequest)
    result = _lifecycle().sign(
        current_user.id,
        body.session_id,
        body.score,
        body.duration_ms,
        body.nonce,
        client_version=body.client_version,
    )
    return jsonify(result)


@games.route('/session/complete', methods=['POST'])
@login_required
def complete_session():
    body = _parse(CompleteRequest)
    reward = _lifecycle().complete(
        current_user.id,
        body.session_id,
        body.score,
        body.duration_ms,
        body.nonce,
        body.signature,
        client_version=body.client_version,
        client_ip=get_client_ip(),
        device_hash=get_device_hash(),
    )
    return jsonify(reward.to_dict())


@games.route('/config', methods=['GET'])
@login_required
def list_games():
    games_list, from_fallback = current_app.extensions['caps_resolver'].list_active_games()
    payload = {
        'games': [
            {'slug': g.slug, 'name': g.name, 'max_score': g.max_score} for g in games_list
        ]
    }
    if from_fallback:
        payload['fallback'] = True
    return jsonify(payload)


@games.route('/player/state', methods=['GET'])
@login_required
def player_state():
    store = current_app.extensions['session_store']
    xp, currency = store.reward_totals(current_user.id)
    recent = store.recent_rewards(current_user.id, limit=5)
    today = utcnow().date()
    streak = current_streak_days(store.completed_at_since(current_user.id, streak_window_start(today)), today)
    return jsonify({
        'xp': xp,
        'currency': currency,
        'streakDays': streak,
        'rewards': [
            {
                'sessionId': r.session_id,
                'xpDelta': r.xp_delta,
                'currencyDelta': r.currency_delta,
                'insertedAt': r.inserted_at.isoformat(),
            }
            for r in recent
        ],
    })


@games.route('/anomalies', methods=['GET'])
@login_required
def list_anomalies():
    _require_admin()
    try:
        limit = min(max(int(request.args.get('limit', 50)), 1), 200)
    except ValueError:
        raise BadRequest('limit must be an integer.')
    with store_guard(Anomaly.__tablename__):
        rows = (
            Anomaly.query.filter(Anomaly.reviewed_at.is_(None))
            .order_by(Anomaly.severity.desc(), Anomaly.inserted_at.desc())
            .limit(limit)
            .all()
        )
        return jsonify({'anomalies': [a.to_dict() for a in rows]})


@games.route('/anomalies/<int:anomaly_id>/review', methods=['POST'])
@login_required
def review_anomaly(anomaly_id):
    _require_admin()
    with store_guard(Anomaly.__tablename__):
        anomaly = db.session.get(Anomaly, anomaly_id)
        if anomaly is None:
            raise NotFound('Anomaly not found.')
        if anomaly.reviewed_at is None:
            anomaly.reviewed_at = utcnow()
            db.session.commit()
        current_app.logger.info(f"[anomaly-review] id={anomaly_id} reviewer={current_user.username}")
        return jsonify({'ok': True, 'reviewedAt': anomaly.reviewed_at.isoformat()})


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@games.route('/<slug>/leaderboard', methods=['GET'])
def leaderboard(slug):
    scope = request.args.get('scope', 'alltime')
    if scope not in SCOPES:
        raise BadRequest(f"scope must be one of {', '.join(SCOPES)}.")
    game = current_app.extensions['caps_resolver'].get_game_by_slug(slug)
    if game is None or not game.active:
        raise NotFound('Game not found.')

    page = max(_int_arg('page', 1), 1)
    limit = min(max(_int_arg('limit', 25), 1), 100)
    rows, total = current_app.extensions['score_board'].fetch(game.id, scope, limit=limit, offset=(page - 1) * limit)
    viewer = current_user.id if current_user.is_authenticated else None
    return jsonify({
        'meta': {'page': page, 'limit': limit, 'total': total, 'scope': scope},
        'rows': [
            {
                'rank': r.rank,
                'user': {'id': r.user_id, 'username': r.username},
                'score': r.score,
                'achievedAt': r.achieved_at.isoformat() if r.achieved_at else None,
                'isSelf': r.user_id == viewer,
            }
            for r in rows
        ],
    })
