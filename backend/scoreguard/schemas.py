"""Request bodies for the game endpoints.

Unknown keys and loosely-typed values (``"500"`` for a score) are rejected
before any business logic runs.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_MAX_INT = 2 ** 31 - 1


class GameRequest(BaseModel):
    model_config = ConfigDict(extra='forbid', strict=True, populate_by_name=True)


class StartRequest(GameRequest):
    slug: str = Field(..., min_length=1, max_length=64)
    client_version: Optional[str] = Field(None, alias='clientVersion', max_length=32)


class SignRequest(GameRequest):
    session_id: str = Field(..., alias='sessionId', min_length=1, max_length=64)
    score: int = Field(..., ge=0, le=_MAX_INT)
    duration_ms: int = Field(..., alias='durationMs', ge=0, le=_MAX_INT)
    nonce: str = Field(..., min_length=1, max_length=128)
    client_version: Optional[str] = Field(None, alias='clientVersion', max_length=32)


class CompleteRequest(GameRequest):
    session_id: str = Field(..., alias='sessionId', min_length=1, max_length=64)
    score: int = Field(..., ge=0, le=_MAX_INT)
    duration_ms: int = Field(..., alias='durationMs', ge=0, le=_MAX_INT)
    nonce: str = Field(..., min_length=1, max_length=128)
    signature: str = Field(..., min_length=1, max_length=256)
    client_version: Optional[str] = Field(None, alias='clientVersion', max_length=32)


class CredentialsRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=256)
