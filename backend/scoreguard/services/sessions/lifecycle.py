import hmac
import time
from typing import Callable, Optional

from scoreguard.errors import (
    BadRequest,
    ClientOutdated,
    Conflict,
    Forbidden,
    InvalidDuration,
    InvalidScore,
    InvalidScoreRate,
    NotFound,
)
from .anomalies import CompletionFacts, score_per_minute
from .caps import CapsResolver, GameCaps, compare_versions
from .leaderboard import ScoreBoard
from .rewards import RewardResult, WalletLedger, calculate_rewards
from .signing import SignatureCodec
from .store import DualModeSessionStore, NotProvisioned, SessionRecord, StoreError

REWARD_SOURCE = 'game_session'


def _same_nonce(expected: str, given: str) -> bool:
    return hmac.compare_digest(expected.encode('utf-8'), given.encode('utf-8'))


def validate_against_caps(caps: GameCaps, score: int, duration_ms: int, client_version: Optional[str]) -> None:
    """Raise the first cap violation: duration, score, score rate, client version."""
    if duration_ms <= 0 or not (caps.min_duration_ms <= duration_ms <= caps.max_duration_ms):
        raise InvalidDuration()
    if score > caps.max_score:
        raise InvalidScore()
    if score_per_minute(score, duration_ms) > caps.max_score_per_min:
        raise InvalidScoreRate()
    if not compare_versions(client_version, caps.min_client_version):
        raise ClientOutdated(
            f"Client version {client_version or 'unknown'} does not meet minimum {caps.min_client_version}."
        )


class SessionLifecycle:
    """start -> sign -> complete for one gameplay attempt.

    ``complete`` is the only writer of a session's terminal state. Whether a
    caller wins is decided by the store's conditional write, never by the
    status read earlier in the same call.
    """

    def __init__(self, store: DualModeSessionStore, caps: CapsResolver, codec: SignatureCodec,
                 ledger: WalletLedger, logger, on_completed: Optional[Callable[[CompletionFacts], None]] = None,
                 scores: Optional[ScoreBoard] = None):
        self.store = store
        self.caps = caps
        self.codec = codec
        self.ledger = ledger
        self.logger = logger
        self.on_completed = on_completed
        self.scores = scores

    def start(self, user_id, slug: str, client_version: Optional[str] = None,
              client_ip: Optional[str] = None, device_hash: Optional[str] = None) -> dict:
        game = self.caps.get_game_by_slug(slug)
        if game is None or not game.active:
            self.logger.info(f"[session-start] user={user_id} slug={slug} rejected=game_not_found")
            raise NotFound('Game not available.', code='game_not_found')
        caps = self.caps.get_caps(game)
        record = self.store.create_session(
            user_id, game.id, start_ip=client_ip, device_hash=device_hash, client_version=client_version,
        )
        self.logger.info(
            f"[session-start] user={user_id} session={record.id} game={game.slug} client={client_version} store={record.source}"
        )
        return {
            'sessionId': record.id,
            'nonce': record.nonce,
            'serverTime': int(time.time() * 1000),
            'caps': caps.to_dict(),
        }

    def _load_owned_session(self, user_id, session_id: str, nonce: str, op: str) -> SessionRecord:
        record = self.store.get_session(session_id)
        if record is None:
            self._reject(op, user_id, session_id, 'session_not_found')
            raise NotFound('Session not found.')
        if record.user_id != user_id:
            self._reject(op, user_id, session_id, 'ownership_mismatch')
            raise Forbidden()
        if not _same_nonce(record.nonce, nonce):
            self._reject(op, user_id, session_id, 'nonce_mismatch')
            raise BadRequest('Nonce mismatch.')
        if not record.is_started:
            self._reject(op, user_id, session_id, 'session_completed')
            raise Conflict()
        return record

    def _reject(self, op, user_id, session_id, reason, **extra):
        details = ''.join(f" {k}={v}" for k, v in extra.items())
        self.logger.warning(f"[{op}-reject] user={user_id} session={session_id} reason={reason}{details}")

    def _build_payload(self, session_id, score, duration_ms, nonce) -> str:
        try:
            return self.codec.build_payload(session_id, score, duration_ms, nonce)
        except ValueError:
            raise BadRequest('Malformed session fields.')

    def sign(self, user_id, session_id: str, score: int, duration_ms: int, nonce: str,
             client_version: Optional[str] = None) -> dict:
        record = self._load_owned_session(user_id, session_id, nonce, 'sign')
        game = self.caps.get_game_by_id(record.game_id)
        if game is None:
            self._reject('sign', user_id, session_id, 'game_not_found', game=record.game_id)
            raise NotFound('Game not found.')
        caps = self.caps.get_caps(game)
        try:
            validate_against_caps(caps, score, duration_ms, client_version)
        except BadRequest as exc:
            self._reject('sign', user_id, session_id, exc.code, score=score, durationMs=duration_ms,
                         client=client_version)
            raise
        payload = self._build_payload(session_id, score, duration_ms, nonce)
        return {'signature': self.codec.sign(payload), 'payload': payload}

    def complete(self, user_id, session_id: str, score: int, duration_ms: int, nonce: str, signature: str,
                 client_version: Optional[str] = None, client_ip: Optional[str] = None,
                 device_hash: Optional[str] = None) -> RewardResult:
        # Signature first: a forged submission learns nothing about the session
        payload = self._build_payload(session_id, score, duration_ms, nonce)
        if not self.codec.verify(signature, payload):
            self._reject('complete', user_id, session_id, 'signature_invalid', ip=client_ip)
            raise Forbidden()

        record = self._load_owned_session(user_id, session_id, nonce, 'complete')
        game = self.caps.get_game_by_id(record.game_id)
        if game is None:
            self._reject('complete', user_id, session_id, 'game_not_found', game=record.game_id)
            raise NotFound('Game not found.')
        if score > game.max_score:
            self._reject('complete', user_id, session_id, 'score_above_cap', score=score, maxScore=game.max_score)
            raise InvalidScore()

        if not self.store.mark_completed(record, score, duration_ms):
            self._reject('complete', user_id, session_id, 'completion_race_lost')
            raise Conflict()

        reward = calculate_rewards(score)
        if not self.store.record_reward(record, reward.xp_delta, reward.currency_delta):
            self.logger.info(f"[session-complete] session={session_id} reward already recorded")
        self._credit_ledger(record, reward)
        self._record_score(record, game.id, score, duration_ms)

        self.logger.info(
            f"[session-complete] user={user_id} session={session_id} score={score} durationMs={duration_ms} "
            f"xp={reward.xp_delta} currency={reward.currency_delta} client={client_version} store={record.source}"
        )
        self._after_completion(record, game.id, score, duration_ms, client_ip, device_hash)
        return reward

    def _credit_ledger(self, record: SessionRecord, reward: RewardResult) -> None:
        try:
            self.ledger.credit(record.user_id, REWARD_SOURCE, record.id, reward)
        except NotProvisioned as exc:
            # Reward row stays authoritative; grants can be reissued keyed by session id
            self.logger.warning(f"[ledger-skip] session={record.id} user={record.user_id} reason={exc}")

    def _record_score(self, record: SessionRecord, game_id, score, duration_ms) -> None:
        if self.scores is None:
            return
        try:
            self.scores.record(record.id, record.user_id, game_id, score, duration_ms)
        except NotProvisioned as exc:
            self.logger.warning(f"[score-skip] session={record.id} reason={exc}")
        except StoreError as exc:
            # Score rows never fail a completion
            self.logger.error(f"[score-skip] session={record.id} error={exc}", exc_info=exc)

    def _after_completion(self, record, game_id, score, duration_ms, client_ip, device_hash) -> None:
        if not self.on_completed:
            return
        try:
            bounds = self.caps.get_config_for_game(game_id)
            facts = CompletionFacts(
                session_id=record.id,
                user_id=record.user_id,
                game_id=game_id,
                score=score,
                duration_ms=duration_ms,
                started_at=record.started_at,
                start_ip=record.start_ip,
                complete_ip=client_ip,
                device_hash=record.device_hash or device_hash,
                max_score_per_min=bounds['max_score_per_min'],
                min_duration_ms=bounds['min_duration_ms'],
            )
            self.on_completed(facts)
        except Exception as exc:
            self.logger.error(f"[anti-cheat] scheduling failed session={record.id}: {exc}", exc_info=exc)
