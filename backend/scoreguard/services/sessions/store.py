"""Session persistence: a durable SQL store plus an in-memory degrade mode.

The durable store reports failures as typed :class:`StoreError` subclasses.
``NotProvisioned`` means a table the operation needs does not exist; it is
the only condition under which :class:`DualModeSessionStore` substitutes the
in-memory store. Everything else surfaces as ``Transient`` and fails the
request.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
import secrets
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from scoreguard import db
from scoreguard.models import GameReward, GameSession, generate_session_id, utcnow

DURABLE = 'durable'
MEMORY = 'memory'


class StoreError(Exception):
    pass


class NotProvisioned(StoreError):
    def __init__(self, missing_tables: Iterable[str]):
        self.missing_tables = sorted(missing_tables)
        super().__init__(f"tables not provisioned: {', '.join(self.missing_tables)}")


class Transient(StoreError):
    pass


def classify_store_error(exc: SQLAlchemyError, tables: Iterable[str]) -> StoreError:
    """Map a driver error to NotProvisioned or Transient by inspecting the schema."""
    try:
        inspector = sa.inspect(db.engine)
        missing = [t for t in tables if not inspector.has_table(t)]
    except SQLAlchemyError as inspect_exc:
        return Transient(f"schema inspection failed: {inspect_exc}")
    if missing:
        return NotProvisioned(missing)
    return Transient(str(exc))


@contextmanager
def store_guard(*tables: str):
    """Roll back and re-raise SQLAlchemy failures as typed store errors."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise classify_store_error(exc, tables) from exc


def new_nonce() -> str:
    return secrets.token_hex(16)


@dataclass
class SessionRecord:
    id: str
    user_id: int
    game_id: int
    nonce: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    duration_ms: Optional[int] = None
    start_ip: Optional[str] = None
    device_hash: Optional[str] = None
    client_version: Optional[str] = None
    source: str = DURABLE

    @property
    def is_started(self) -> bool:
        return self.status == 'started'


@dataclass
class RewardRecord:
    session_id: str
    user_id: int
    xp_delta: int
    currency_delta: int
    inserted_at: datetime


class SqlSessionStore:
    SESSION_TABLES = (GameSession.__tablename__,)
    REWARD_TABLES = (GameReward.__tablename__,)

    @staticmethod
    def _to_record(row: GameSession) -> SessionRecord:
        return SessionRecord(
            id=row.id,
            user_id=row.user_id,
            game_id=row.game_id,
            nonce=row.nonce,
            status=row.status,
            started_at=row.started_at,
            completed_at=row.completed_at,
            score=row.score,
            duration_ms=row.duration_ms,
            start_ip=row.start_ip,
            device_hash=row.device_hash,
            client_version=row.client_version,
            source=DURABLE,
        )

    def create_session(self, user_id, game_id, start_ip=None, device_hash=None, client_version=None) -> SessionRecord:
        with store_guard(*self.SESSION_TABLES):
            row = GameSession(
                id=generate_session_id(),
                user_id=user_id,
                game_id=game_id,
                nonce=new_nonce(),
                status='started',
                started_at=utcnow(),
                start_ip=start_ip,
                device_hash=device_hash,
                client_version=client_version,
            )
            db.session.add(row)
            db.session.commit()
            return self._to_record(row)

    def get_session(self, session_id) -> Optional[SessionRecord]:
        with store_guard(*self.SESSION_TABLES):
            row = db.session.get(GameSession, session_id, populate_existing=True)
            return self._to_record(row) if row else None

    def mark_completed(self, session_id, score, duration_ms) -> bool:
        """Single conditional UPDATE; True only for the writer that flipped the row."""
        with store_guard(*self.SESSION_TABLES):
            result = db.session.execute(
                sa.update(GameSession)
                .where(GameSession.id == session_id, GameSession.status == 'started')
                .values(status='completed', completed_at=utcnow(), score=score, duration_ms=duration_ms)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            return result.rowcount == 1

    def record_reward(self, session_id, user_id, xp_delta, currency_delta) -> bool:
        """Insert the reward row; a duplicate for the same session is a no-op (False)."""
        with store_guard(*self.REWARD_TABLES):
            try:
                db.session.add(GameReward(
                    session_id=session_id,
                    user_id=user_id,
                    xp_delta=xp_delta,
                    currency_delta=currency_delta,
                ))
                db.session.commit()
                return True
            except IntegrityError:
                db.session.rollback()
                existing = GameReward.query.filter_by(session_id=session_id).first()
                if existing is None:
                    raise
                return False

    def recent_rewards(self, user_id, limit=5) -> List[RewardRecord]:
        with store_guard(*self.REWARD_TABLES):
            rows = (
                GameReward.query.filter_by(user_id=user_id)
                .order_by(GameReward.inserted_at.desc(), GameReward.id.desc())
                .limit(limit)
                .all()
            )
            return [RewardRecord(r.session_id, r.user_id, r.xp_delta, r.currency_delta, r.inserted_at) for r in rows]

    def reward_totals(self, user_id) -> Tuple[int, int]:
        with store_guard(*self.REWARD_TABLES):
            xp, currency = db.session.query(
                sa.func.coalesce(sa.func.sum(GameReward.xp_delta), 0),
                sa.func.coalesce(sa.func.sum(GameReward.currency_delta), 0),
            ).filter(GameReward.user_id == user_id).one()
            return int(xp), int(currency)

    def completed_at_since(self, user_id, since: datetime) -> List[datetime]:
        with store_guard(*self.SESSION_TABLES):
            rows = (
                db.session.query(GameSession.completed_at)
                .filter(
                    GameSession.user_id == user_id,
                    GameSession.status == 'completed',
                    GameSession.completed_at >= since,
                )
                .all()
            )
            return [r[0] for r in rows if r[0] is not None]

    def users_for_device(self, device_hash, since: datetime) -> List[int]:
        with store_guard(*self.SESSION_TABLES):
            rows = (
                db.session.query(GameSession.user_id)
                .filter(GameSession.device_hash == device_hash, GameSession.started_at >= since)
                .distinct()
                .all()
            )
            return [r[0] for r in rows]


@dataclass
class _MemoryEntry:
    record: SessionRecord
    rewards: List[RewardRecord] = field(default_factory=list)


class MemorySessionStore:
    """Process-local degrade store keyed by session id. Lost on restart."""

    def __init__(self):
        self._entries: Dict[str, _MemoryEntry] = {}
        self._lock = threading.Lock()

    def _copy(self, record: SessionRecord) -> SessionRecord:
        return replace(record)

    def create_session(self, user_id, game_id, start_ip=None, device_hash=None, client_version=None) -> SessionRecord:
        record = SessionRecord(
            id=generate_session_id(),
            user_id=user_id,
            game_id=game_id,
            nonce=new_nonce(),
            status='started',
            started_at=utcnow(),
            start_ip=start_ip,
            device_hash=device_hash,
            client_version=client_version,
            source=MEMORY,
        )
        with self._lock:
            self._entries[record.id] = _MemoryEntry(record=record)
        return self._copy(record)

    def get_session(self, session_id) -> Optional[SessionRecord]:
        with self._lock:
            entry = self._entries.get(session_id)
            return self._copy(entry.record) if entry else None

    def mark_completed(self, session_id, score, duration_ms) -> bool:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None or entry.record.status != 'started':
                return False
            entry.record.status = 'completed'
            entry.record.completed_at = utcnow()
            entry.record.score = score
            entry.record.duration_ms = duration_ms
            return True

    def record_reward(self, session_id, user_id, xp_delta, currency_delta) -> bool:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None or entry.rewards:
                return False
            entry.rewards.append(RewardRecord(session_id, user_id, xp_delta, currency_delta, utcnow()))
            return True

    def adopt_completed(self, record: SessionRecord) -> None:
        """Track a durable session completed elsewhere so its reward can be kept here."""
        with self._lock:
            if record.id not in self._entries:
                self._entries[record.id] = _MemoryEntry(record=replace(record, source=MEMORY, status='completed'))

    def _user_rewards(self, user_id) -> List[RewardRecord]:
        with self._lock:
            rewards = [r for e in self._entries.values() for r in e.rewards if r.user_id == user_id]
        return sorted(rewards, key=lambda r: r.inserted_at, reverse=True)

    def recent_rewards(self, user_id, limit=5) -> List[RewardRecord]:
        return self._user_rewards(user_id)[:limit]

    def reward_totals(self, user_id) -> Tuple[int, int]:
        rewards = self._user_rewards(user_id)
        return sum(r.xp_delta for r in rewards), sum(r.currency_delta for r in rewards)

    def completed_at_since(self, user_id, since: datetime) -> List[datetime]:
        with self._lock:
            return [
                e.record.completed_at for e in self._entries.values()
                if e.record.user_id == user_id and e.record.status == 'completed'
                and e.record.completed_at is not None and e.record.completed_at >= since
            ]

    def users_for_device(self, device_hash, since: datetime) -> List[int]:
        with self._lock:
            return sorted({
                e.record.user_id for e in self._entries.values()
                if e.record.device_hash == device_hash and e.record.started_at >= since
            })


class DualModeSessionStore:
    """Durable store first; the memory store only for calls that hit NotProvisioned.

    Reads fall back per call. Writes against an existing session follow the
    ``source`` of the record the caller resolved.
    """

    def __init__(self, durable: SqlSessionStore, fallback: MemorySessionStore, logger):
        self.durable = durable
        self.fallback = fallback
        self.logger = logger

    def _call(self, op: str, *args, **kwargs):
        try:
            return getattr(self.durable, op)(*args, **kwargs)
        except NotProvisioned as exc:
            self.logger.warning(f"[store-fallback] op={op} reason={exc}")
            return getattr(self.fallback, op)(*args, **kwargs)

    def _backend(self, record: SessionRecord):
        return self.fallback if record.source == MEMORY else self.durable

    def create_session(self, user_id, game_id, **meta) -> SessionRecord:
        return self._call('create_session', user_id, game_id, **meta)

    def get_session(self, session_id) -> Optional[SessionRecord]:
        return self._call('get_session', session_id)

    def mark_completed(self, record: SessionRecord, score, duration_ms) -> bool:
        return self._backend(record).mark_completed(record.id, score, duration_ms)

    def record_reward(self, record: SessionRecord, xp_delta, currency_delta) -> bool:
        backend = self._backend(record)
        try:
            return backend.record_reward(record.id, record.user_id, xp_delta, currency_delta)
        except NotProvisioned as exc:
            self.logger.warning(f"[store-fallback] op=record_reward session={record.id} reason={exc}")
            self.fallback.adopt_completed(record)
            return self.fallback.record_reward(record.id, record.user_id, xp_delta, currency_delta)

    def recent_rewards(self, user_id, limit=5) -> List[RewardRecord]:
        return self._call('recent_rewards', user_id, limit)

    def reward_totals(self, user_id) -> Tuple[int, int]:
        return self._call('reward_totals', user_id)

    def completed_at_since(self, user_id, since: datetime) -> List[datetime]:
        return self._call('completed_at_since', user_id, since)

    def users_for_device(self, device_hash, since: datetime) -> List[int]:
        return self._call('users_for_device', device_hash, since)
