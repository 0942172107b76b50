from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from scoreguard import db
from scoreguard.models import GameGrant
from .store import store_guard

XP_DIVISOR = 100
XP_RANGE = (1, 100)
CURRENCY_DIVISOR = 50
CURRENCY_RANGE = (1, 200)


@dataclass(frozen=True)
class RewardResult:
    xp_delta: int
    currency_delta: int

    def to_dict(self):
        return {'xpDelta': self.xp_delta, 'currencyDelta': self.currency_delta}


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def calculate_rewards(score) -> RewardResult:
    """Map a score to its xp/currency grant.

    Pure and non-decreasing in score; every accepted session earns at least
    one of each. Double-award protection lives in the reward persistence.
    """
    safe_score = int(score) if score and score > 0 else 0
    return RewardResult(
        xp_delta=_clamp(safe_score // XP_DIVISOR, *XP_RANGE),
        currency_delta=_clamp(safe_score // CURRENCY_DIVISOR, *CURRENCY_RANGE),
    )


class WalletLedger:
    """Credits a user's wallet. Calls with an already-seen idempotency key are no-ops."""

    def credit(self, user_id, source: str, idempotency_key: str, reward: RewardResult) -> bool:
        raise NotImplementedError


class GrantLedger(WalletLedger):
    """Ledger adapter recording credits as game_grant rows."""

    def credit(self, user_id, source, idempotency_key, reward):
        with store_guard(GameGrant.__tablename__):
            if GameGrant.query.filter_by(idempotency_key=idempotency_key).first():
                return False
            try:
                db.session.add(GameGrant(
                    user_id=user_id,
                    source=source,
                    idempotency_key=idempotency_key,
                    currency_amount=reward.currency_delta,
                    xp_amount=reward.xp_delta,
                ))
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                return False
            return True
