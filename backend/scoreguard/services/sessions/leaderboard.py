"""Per-game leaderboards built from ``game_score`` rows.

Each user appears once per board, with their best score inside the scope's
period: all time, the current UTC day, or the current UTC week (Monday).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from scoreguard import db
from scoreguard.models import GameScore, User, utcnow
from .store import store_guard

SCOPES = ('alltime', 'daily', 'weekly')


@dataclass
class LeaderboardRow:
    rank: int
    user_id: int
    username: str
    score: int
    achieved_at: datetime


def period_start(scope: str, now: datetime) -> Optional[datetime]:
    if scope == 'alltime':
        return None
    day = datetime.combine(now.date(), datetime.min.time())
    if scope == 'daily':
        return day
    return day - timedelta(days=now.weekday())


class ScoreBoard:
    def record(self, session_id, user_id, game_id, score, duration_ms) -> bool:
        """Insert the score for a completed session; False if it was already there."""
        with store_guard(GameScore.__tablename__):
            try:
                db.session.add(GameScore(
                    session_id=session_id,
                    user_id=user_id,
                    game_id=game_id,
                    score=score,
                    duration_ms=duration_ms,
                ))
                db.session.commit()
                return True
            except IntegrityError:
                db.session.rollback()
                return False

    def fetch(self, game_id, scope: str, limit=25, offset=0,
              now: Optional[datetime] = None) -> Tuple[List[LeaderboardRow], int]:
        """Returns (rows for the page, number of ranked users)."""
        since = period_start(scope, now or utcnow())
        filters = [GameScore.game_id == game_id]
        if since is not None:
            filters.append(GameScore.inserted_at >= since)

        with store_guard(GameScore.__tablename__, User.__tablename__):
            best = (
                db.session.query(GameScore.user_id.label('user_id'), sa.func.max(GameScore.score).label('best'))
                .filter(*filters)
                .group_by(GameScore.user_id)
                .subquery()
            )
            total = db.session.query(sa.func.count()).select_from(best).scalar() or 0

            achieved = sa.func.min(GameScore.inserted_at).label('achieved_at')
            rows = (
                db.session.query(best.c.user_id, User.username, best.c.best, achieved)
                .select_from(best)
                .join(GameScore, sa.and_(GameScore.user_id == best.c.user_id, GameScore.score == best.c.best))
                .join(User, User.id == best.c.user_id)
                .filter(*filters)
                .group_by(best.c.user_id, User.username, best.c.best)
                .order_by(best.c.best.desc(), achieved.asc(), best.c.user_id.asc())
                .limit(limit)
                .offset(offset)
                .all()
            )
        return [
            LeaderboardRow(rank=offset + i + 1, user_id=r[0], username=r[1], score=r[2], achieved_at=r[3])
            for i, r in enumerate(rows)
        ], int(total)
