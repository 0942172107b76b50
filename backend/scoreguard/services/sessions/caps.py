from dataclasses import dataclass, asdict
from typing import List, Optional

from scoreguard.models import GameConfig, GameTitle
from .store import NotProvisioned, store_guard

GAME_TABLES = (GameTitle.__tablename__,)
CONFIG_TABLES = (GameConfig.__tablename__,)


@dataclass
class GameInfo:
    id: int
    slug: str
    name: str
    max_score: int
    active: bool

    def to_dict(self):
        return asdict(self)


@dataclass
class GameCaps:
    max_duration_ms: int
    min_duration_ms: int
    max_score_per_min: int
    min_client_version: str
    max_score: int

    def to_dict(self):
        return {
            'maxDurationMs': self.max_duration_ms,
            'minDurationMs': self.min_duration_ms,
            'maxScorePerMin': self.max_score_per_min,
            'minClientVersion': self.min_client_version,
            'maxScore': self.max_score,
        }


def _parse_version(value: str) -> Optional[List[int]]:
    parts = []
    for segment in value.strip().split('.'):
        if not segment.isdecimal():
            return None
        parts.append(int(segment))
    return parts


def compare_versions(current: Optional[str], minimum: Optional[str]) -> bool:
    """True when ``current`` >= ``minimum``, comparing dotted numeric segments.

    Missing trailing segments count as 0, so "1.2" == "1.2.0". No minimum
    means anything passes; with a minimum, a missing or unparsable current
    version fails.
    """
    if not minimum:
        return True
    if not current:
        return False
    current_parts = _parse_version(current)
    if current_parts is None:
        return False
    minimum_parts = _parse_version(minimum) or [0]
    length = max(len(current_parts), len(minimum_parts))
    current_parts += [0] * (length - len(current_parts))
    minimum_parts += [0] * (length - len(minimum_parts))
    return current_parts >= minimum_parts


class CapsResolver:
    """Loads game identity and cap bounds from the game_title/game_config tables.

    While the game table is not provisioned, lookups are answered from the
    configured fallback catalog instead.
    """

    def __init__(self, defaults: dict, fallback_games: List[dict], logger):
        self.defaults = defaults
        self.fallback_games = [
            GameInfo(
                id=g['id'], slug=g['slug'], name=g['name'],
                max_score=g.get('max_score') or defaults['max_score'],
                active=g.get('active', True),
            )
            for g in fallback_games
        ]
        self.logger = logger

    @classmethod
    def from_config(cls, config, logger):
        defaults = {
            'max_duration_ms': config['DEFAULT_MAX_DURATION_MS'],
            'min_duration_ms': config['DEFAULT_MIN_DURATION_MS'],
            'max_score_per_min': config['DEFAULT_MAX_SCORE_PER_MIN'],
            'min_client_version': config['DEFAULT_MIN_CLIENT_VERSION'],
            'max_score': config['DEFAULT_MAX_SCORE'],
        }
        return cls(defaults, config.get('FALLBACK_GAMES') or [], logger)

    def _to_info(self, row: GameTitle) -> GameInfo:
        return GameInfo(
            id=row.id,
            slug=row.slug,
            name=row.name,
            max_score=row.max_score if row.max_score is not None else self.defaults['max_score'],
            active=bool(row.active),
        )

    def _fallback_lookup(self, exc, **match) -> Optional[GameInfo]:
        self.logger.warning(f"[caps-fallback] {exc}; serving built-in catalog")
        for game in self.fallback_games:
            if all(getattr(game, k) == v for k, v in match.items()):
                return game
        return None

    def get_game_by_slug(self, slug: str) -> Optional[GameInfo]:
        try:
            with store_guard(*GAME_TABLES):
                row = GameTitle.query.filter_by(slug=slug).first()
                return self._to_info(row) if row else None
        except NotProvisioned as exc:
            return self._fallback_lookup(exc, slug=slug)

    def get_game_by_id(self, game_id: int) -> Optional[GameInfo]:
        try:
            with store_guard(*GAME_TABLES):
                row = GameTitle.query.filter_by(id=game_id).first()
                return self._to_info(row) if row else None
        except NotProvisioned as exc:
            return self._fallback_lookup(exc, id=game_id)

    def get_config_for_game(self, game_id: int) -> dict:
        """Cap bounds for the game, each field defaulted when no override exists."""
        try:
            with store_guard(*CONFIG_TABLES):
                row = GameConfig.query.filter_by(game_id=game_id).first()
        except NotProvisioned:
            row = None
        resolved = {}
        for key in ('max_duration_ms', 'min_duration_ms', 'max_score_per_min', 'min_client_version'):
            value = getattr(row, key) if row is not None else None
            resolved[key] = value if value is not None else self.defaults[key]
        return resolved

    def get_caps(self, game: GameInfo) -> GameCaps:
        return GameCaps(max_score=game.max_score, **self.get_config_for_game(game.id))

    def list_active_games(self):
        """Returns (games, served_from_fallback)."""
        try:
            with store_guard(*GAME_TABLES):
                rows = GameTitle.query.filter_by(active=True).order_by(GameTitle.name).all()
                return [self._to_info(r) for r in rows], False
        except NotProvisioned as exc:
            self.logger.warning(f"[caps-fallback] {exc}; serving built-in catalog")
            return [g for g in self.fallback_games if g.active], True
