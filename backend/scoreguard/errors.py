"""Error taxonomy for the game API and its JSON rendering.

Every error raised out of a route carries an HTTP status and a stable
``code`` that clients switch on; ``message`` is for humans only.
"""

from typing import Optional

from flask import jsonify
from pydantic import ValidationError


class GameApiError(Exception):
    status = 500
    code = 'server_error'
    message = 'Something went wrong. Please try again.'

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {'code': self.code, 'message': self.message}


class AuthenticationRequired(GameApiError):
    status = 401
    code = 'unauthorized'
    message = 'Sign in to continue.'


class NotFound(GameApiError):
    status = 404
    code = 'not_found'
    message = 'Not found.'


class Forbidden(GameApiError):
    status = 403
    code = 'forbidden'
    message = 'Forbidden.'


class BadRequest(GameApiError):
    status = 400
    code = 'bad_request'
    message = 'Malformed request.'


class InvalidDuration(BadRequest):
    code = 'invalid_duration'
    message = 'Reported duration is outside allowed bounds.'


class InvalidScore(BadRequest):
    code = 'invalid_score'
    message = 'Score exceeds allowed maximum.'


class InvalidScoreRate(BadRequest):
    code = 'invalid_score_rate'
    message = 'Score rate exceeds allowed maximum.'


class ClientOutdated(BadRequest):
    code = 'client_outdated'
    message = 'Client version does not meet minimum requirements.'


class Conflict(GameApiError):
    """Session already completed. Terminal: clients treat it as done."""
    status = 409
    code = 'conflict'
    message = 'Session already completed.'


class RateLimited(GameApiError):
    status = 429
    code = 'rate_limited'
    message = 'Too many requests. Try again soon.'

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self):
        payload = super().to_dict()
        payload['retryAfter'] = self.retry_after
        return payload


class ServerError(GameApiError):
    pass


def register_error_handlers(app):
    from scoreguard.services.sessions.store import StoreError

    @app.errorhandler(GameApiError)
    def handle_game_api_error(exc):
        headers = {}
        if isinstance(exc, RateLimited):
            headers['Retry-After'] = str(exc.retry_after)
        return jsonify(exc.to_dict()), exc.status, headers

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        fields = ['.'.join(str(p) for p in err.get('loc', ())) for err in exc.errors()]
        app.logger.info(f"[bad-request] invalid fields={fields}")
        return jsonify(BadRequest('Missing or invalid fields.').to_dict()), 400

    @app.errorhandler(StoreError)
    def handle_store_error(exc):
        app.logger.error(f"[store-error] {exc}", exc_info=exc)
        return jsonify(ServerError().to_dict()), 500
