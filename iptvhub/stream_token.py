#=====================================
#        >>>> STREAM TOKENS <<<<
#=====================================
# stream_token.py
import hmac
import hashlib
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class StreamToken:
    channel_id: int
    subject_id: int
    issued_at: int
    expires_at: int
    signature: str


class StreamTokenSigner:
    """
    HMAC-SHA256 over "channel_id:subject_id:expires_at".

    Tokens are deterministic for the same inputs and secret, nothing is
    stored on issue, and a token keeps verifying until it expires.
    """

    def __init__(self, secret, clock=time.time):
        if not secret:
            raise ValueError("A stream token secret is required")
        self._secret = secret.encode() if isinstance(secret, str) else bytes(secret)
        self.clock = clock

    def _sign(self, channel_id, subject_id, expires_at):
        msg = f"{channel_id}:{subject_id}:{expires_at}".encode()
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()

    def issue(self, channel_id, subject_id, ttl_seconds=3600):
        ttl_seconds = int(ttl_seconds)
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        issued_at = int(self.clock())
        expires_at = issued_at + ttl_seconds
        return StreamToken(
            channel_id=channel_id,
            subject_id=subject_id,
            issued_at=issued_at,
            expires_at=expires_at,
            signature=self._sign(channel_id, subject_id, expires_at),
        )

    def verify(self, channel_id, subject_id, expires_at, token):
        if not token or not isinstance(token, str):
            return False
        try:
            expires_at = int(expires_at)
        except (TypeError, ValueError):
            return False

        expected = self._sign(channel_id, subject_id, expires_at)
        if not hmac.compare_digest(expected.encode(), token.encode()):
            return False
        return self.clock() <= expires_at
