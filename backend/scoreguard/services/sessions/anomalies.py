"""Post-completion anomaly heuristics.

Rules are fixed thresholds, evaluated once per accepted completion. Results
are upserted per (session, type) for the moderation review workflow and
never feed back into the completion response.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import json
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError

from scoreguard import db, socketio
from scoreguard.models import Anomaly, SessionEvent, utcnow
from .store import store_guard

SCORE_RATE_SLACK = 1.25
DURATION_SLACK = 0.9
MS_PER_MINUTE = 60000


@dataclass
class CompletionFacts:
    session_id: str
    user_id: int
    game_id: int
    score: int
    duration_ms: int
    started_at: Optional[datetime]
    start_ip: Optional[str]
    complete_ip: Optional[str]
    device_hash: Optional[str]
    max_score_per_min: Optional[int]
    min_duration_ms: Optional[int]


def score_per_minute(score, duration_ms) -> float:
    if duration_ms <= 0:
        return float('inf')
    return score * MS_PER_MINUTE / duration_ms


class AnomalyDetector:
    def __init__(self, store, logger, ip_window_sec=30, device_threshold=3, device_window_hours=24,
                 notify: Optional[Callable[[List[dict]], None]] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.logger = logger
        self.ip_window = timedelta(seconds=ip_window_sec)
        self.device_threshold = device_threshold
        self.device_window = timedelta(hours=device_window_hours)
        self.notify = notify
        self.clock = clock

    def evaluate(self, facts: CompletionFacts, completion_count: int, device_user_count: int, now: datetime) -> List[dict]:
        anomalies = []

        def flag(kind, severity, **details):
            anomalies.append({
                'session_id': facts.session_id,
                'user_id': facts.user_id,
                'type': kind,
                'severity': severity,
                'details': {**details, 'gameId': facts.game_id},
            })

        if facts.max_score_per_min and facts.max_score_per_min > 0:
            rate = score_per_minute(facts.score, facts.duration_ms)
            if rate > facts.max_score_per_min * SCORE_RATE_SLACK:
                flag('impossible_score_rate', 4, score=facts.score, durationMs=facts.duration_ms,
                     scorePerMinute=rate, cap=facts.max_score_per_min)

        if facts.min_duration_ms and facts.min_duration_ms > 0:
            if 0 < facts.duration_ms < facts.min_duration_ms * DURATION_SLACK:
                flag('duration_mismatch', 3, durationMs=facts.duration_ms, minimum=facts.min_duration_ms)

        if completion_count > 1:
            flag('nonce_reuse', 5, reason='duplicate_completion', completions=completion_count)

        if facts.start_ip and facts.complete_ip and facts.start_ip != facts.complete_ip and facts.started_at:
            delta = abs(now - facts.started_at)
            if delta <= self.ip_window:
                flag('ip_mismatch', 2, startIp=facts.start_ip, completeIp=facts.complete_ip,
                     deltaMs=int(delta.total_seconds() * 1000))

        if facts.device_hash and device_user_count >= self.device_threshold:
            flag('repeated_device', 3, deviceHash=facts.device_hash, distinctUsers=device_user_count,
                 windowHours=int(self.device_window.total_seconds() // 3600), threshold=self.device_threshold)

        return anomalies

    def inspect(self, facts: CompletionFacts) -> List[dict]:
        """Record the completion, run every rule and persist the flags. Never raises."""
        try:
            now = self.clock()
            completion_count = self._record_completion(facts, now)
            device_user_count = 0
            if facts.device_hash:
                device_user_count = len(set(self.store.users_for_device(facts.device_hash, now - self.device_window)))
            anomalies = self.evaluate(facts, completion_count, device_user_count, now)
            if anomalies:
                self._upsert(anomalies)
                self.logger.info(
                    f"[anti-cheat] session={facts.session_id} user={facts.user_id} flagged={[a['type'] for a in anomalies]}"
                )
                if self.notify:
                    self.notify(anomalies)
            return anomalies
        except Exception as exc:
            self.logger.error(
                f"[anti-cheat] inspect failed session={facts.session_id} user={facts.user_id}: {exc}",
                exc_info=exc,
            )
            return []

    def _record_completion(self, facts: CompletionFacts, now: datetime) -> int:
        with store_guard(SessionEvent.__tablename__):
            db.session.add(SessionEvent(
                kind='complete',
                session_id=facts.session_id,
                user_id=facts.user_id,
                ip=facts.complete_ip,
                device_hash=facts.device_hash,
                inserted_at=now,
            ))
            db.session.commit()
            return SessionEvent.query.filter_by(kind='complete', session_id=facts.session_id).count()

    def _upsert(self, entries: List[dict]) -> None:
        with store_guard(Anomaly.__tablename__):
            for entry in entries:
                try:
                    self._upsert_one(entry)
                    db.session.commit()
                except IntegrityError:
                    # Lost an insert race for (session, type); the row exists now
                    db.session.rollback()
                    self._upsert_one(entry)
                    db.session.commit()

    @staticmethod
    def _upsert_one(entry: dict) -> None:
        row = Anomaly.query.filter_by(session_id=entry['session_id'], type=entry['type']).first()
        if row is None:
            row = Anomaly(session_id=entry['session_id'], type=entry['type'])
            db.session.add(row)
        row.user_id = entry['user_id']
        row.severity = entry['severity']
        row.details = json.dumps(entry['details'], default=str)


def schedule_inspection(app, facts: CompletionFacts) -> None:
    """Run the detector off the request path.

    Inline under TESTING (unless ENABLE_DETECTOR_ASYNC_IN_TESTS), otherwise on
    a Socket.IO background task with its own app context.
    """
    detector = app.extensions['anomaly_detector']
    if app.config.get('TESTING') and not app.config.get('ENABLE_DETECTOR_ASYNC_IN_TESTS'):
        detector.inspect(facts)
        return

    def _worker(f: CompletionFacts):
        with app.app_context():
            detector.inspect(f)

    socketio.start_background_task(_worker, facts)
