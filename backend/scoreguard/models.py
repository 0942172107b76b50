from datetime import datetime, timezone
import json
import uuid

from flask import current_app
from flask_login import UserMixin

from scoreguard import db, bcrypt


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        admins = current_app.config.get('ADMIN_USERNAMES') or []
        return self.username.lower() in admins

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class GameTitle(db.Model):
    __tablename__ = 'game_title'
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    max_score = db.Column(db.Integer, nullable=True)
    active = db.Column(db.Boolean, default=True, nullable=False)
    config = db.relationship('GameConfig', back_populates='game', uselist=False)


class GameConfig(db.Model):
    """Per-game cap overrides. Null columns fall back to the configured defaults."""
    __tablename__ = 'game_config'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game_title.id'), unique=True, nullable=False)
    max_duration_ms = db.Column(db.Integer, nullable=True)
    min_duration_ms = db.Column(db.Integer, nullable=True)
    max_score_per_min = db.Column(db.Integer, nullable=True)
    min_client_version = db.Column(db.String(32), nullable=True)
    game = db.relationship('GameTitle', back_populates='config')


def generate_session_id():
    return str(uuid.uuid4())


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.String(36), primary_key=True, default=generate_session_id)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game_title.id'), nullable=False)
    nonce = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), default='started', nullable=False)  # started, completed
    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    score = db.Column(db.Integer, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    # Request metadata captured at start for the anomaly detector
    start_ip = db.Column(db.String(64), nullable=True)
    device_hash = db.Column(db.String(64), nullable=True, index=True)
    client_version = db.Column(db.String(32), nullable=True)


class GameReward(db.Model):
    __tablename__ = 'game_reward'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('game_session.id'), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    xp_delta = db.Column(db.Integer, nullable=False)
    currency_delta = db.Column(db.Integer, nullable=False)
    inserted_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class GameScore(db.Model):
    """One row per completed session; leaderboards rank each user's best."""
    __tablename__ = 'game_score'
    __table_args__ = (
        db.UniqueConstraint('session_id', name='uq_game_score_session'),
        db.Index('ix_game_score_game_inserted', 'game_id', 'inserted_at'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey('game_title.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    duration_ms = db.Column(db.Integer, nullable=False)
    inserted_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class GameGrant(db.Model):
    """Ledger credit written by the local wallet adapter."""
    __tablename__ = 'game_grant'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    source = db.Column(db.String(32), nullable=False)
    idempotency_key = db.Column(db.String(64), unique=True, nullable=False)
    currency_amount = db.Column(db.Integer, nullable=False)
    xp_amount = db.Column(db.Integer, nullable=False, default=0)
    inserted_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class SessionEvent(db.Model):
    __tablename__ = 'session_event'
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False)
    session_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(64), nullable=True)
    device_hash = db.Column(db.String(64), nullable=True)
    inserted_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class Anomaly(db.Model):
    __tablename__ = 'anomaly'
    __table_args__ = (db.UniqueConstraint('session_id', 'type', name='uq_anomaly_session_type'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    type = db.Column(db.String(32), nullable=False)
    severity = db.Column(db.Integer, nullable=False)
    details = db.Column(db.Text, nullable=True)  # JSON-encoded dict
    inserted_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'user_id': self.user_id,
            'type': self.type,
            'severity': self.severity,
            'details': json.loads(self.details) if self.details else {},
            'inserted_at': self.inserted_at.isoformat() if self.inserted_at else None,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
