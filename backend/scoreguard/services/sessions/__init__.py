"""Game-session integrity services: caps, signing, storage, lifecycle, rewards, leaderboards, anomalies.

This package holds the protocol logic; HTTP routes and socket handlers
only translate requests into calls on the objects wired up here.
"""

from .anomalies import AnomalyDetector, schedule_inspection
from .caps import CapsResolver
from .leaderboard import ScoreBoard
from .lifecycle import SessionLifecycle
from .rewards import GrantLedger
from .signing import SignatureCodec
from .store import DualModeSessionStore, MemorySessionStore, SqlSessionStore


def build_session_services(app, ledger=None):
    """Construct the per-process protocol objects and register them on ``app.extensions``."""
    from scoreguard import limiter as flask_limiter
    from scoreguard.ratelimit import RateLimiter
    from scoreguard.socketio_events import notify_moderators

    config = app.config
    logger = app.logger

    codec = SignatureCodec(config.get('GAME_SIGNING_SECRET'))
    store = DualModeSessionStore(SqlSessionStore(), MemorySessionStore(), logger)
    caps = CapsResolver.from_config(config, logger)
    scores = ScoreBoard()
    detector = AnomalyDetector(
        store,
        logger,
        ip_window_sec=config.get('ANOMALY_IP_WINDOW_SEC', 30),
        device_threshold=config.get('ANOMALY_DEVICE_THRESHOLD', 3),
        device_window_hours=config.get('ANOMALY_DEVICE_WINDOW_HOURS', 24),
        notify=notify_moderators,
    )
    lifecycle = SessionLifecycle(
        store,
        caps,
        codec,
        ledger or GrantLedger(),
        logger,
        on_completed=lambda facts: schedule_inspection(app, facts),
        scores=scores,
    )
    limiter = RateLimiter(
        flask_limiter.limiter,
        config.get('GAME_RATE_LIMIT_PER_MINUTE', 20),
        window_sec=config.get('GAME_RATE_LIMIT_WINDOW_SEC', 60),
    )

    app.extensions['session_store'] = store
    app.extensions['caps_resolver'] = caps
    app.extensions['anomaly_detector'] = detector
    app.extensions['session_lifecycle'] = lifecycle
    app.extensions['score_board'] = scores
    app.extensions['rate_limiter'] = limiter
    return lifecycle
