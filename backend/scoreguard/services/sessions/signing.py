import hashlib
import hmac

PAYLOAD_DELIMITER = '|'


class SignatureCodec:
    """HMAC-SHA256 over the canonical ``session|score|duration|nonce`` payload.

    The signature only proves the tuple was vetted by the sign step for that
    session. Caller identity is bound by the session lookup, not here.
    """

    def __init__(self, secret: str):
        if not secret or not secret.strip():
            raise RuntimeError('GAME_SIGNING_SECRET is not configured')
        self._key = secret.encode('utf-8')

    @staticmethod
    def build_payload(session_id: str, score: int, duration_ms: int, nonce: str) -> str:
        fields = [str(session_id), str(int(score)), str(int(duration_ms)), str(nonce)]
        for value in fields:
            if not value or PAYLOAD_DELIMITER in value:
                raise ValueError(f"payload field {value!r} is empty or contains {PAYLOAD_DELIMITER!r}")
        return PAYLOAD_DELIMITER.join(fields)

    def sign(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode('utf-8'), hashlib.sha256).hexdigest()

    def verify(self, signature: str, payload: str) -> bool:
        if not signature:
            return False
        expected = self.sign(payload)
        return hmac.compare_digest(signature.encode('utf-8'), expected.encode('utf-8'))
