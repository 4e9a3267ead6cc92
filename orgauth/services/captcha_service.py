from __future__ import annotations

import hmac
import logging
import os
import secrets
from uuid import uuid4

from orgauth.domain.errors import ChallengeInvalid
from orgauth.domain.models import CaptchaResponse
from orgauth.infra import redis_state

logger = logging.getLogger(__name__)

CAPTCHA_EXPIRE_SECONDS = int(os.getenv("CAPTCHA_EXPIRE_SECONDS", "120"))
CAPTCHA_CODE_KEY = "captcha:image:{key}"


class CaptchaService:
    """Single-use arithmetic challenges stored in Redis."""

    def __init__(self, expire_seconds: int | None = None) -> None:
        self.expire_seconds = expire_seconds or CAPTCHA_EXPIRE_SECONDS

    @staticmethod
    def _key(captcha_key: str) -> str:
        return CAPTCHA_CODE_KEY.format(key=captcha_key)

    def _challenge(self) -> tuple[str, int]:
        left = secrets.randbelow(9) + 1
        right = secrets.randbelow(9) + 1
        if secrets.randbelow(2):
            return f"{left} + {right} = ?", left + right
        left, right = max(left, right), min(left, right)
        return f"{left} - {right} = ?", left - right

    def issue(self) -> CaptchaResponse:
        prompt, answer = self._challenge()
        captcha_key = uuid4().hex
        redis_state.get_redis().set(self._key(captcha_key), str(answer), ex=self.expire_seconds)
        return CaptchaResponse(captcha_key=captcha_key, prompt=prompt, expires_in=self.expire_seconds)

    def verify(self, captcha_key: str | None, captcha_code: str | None) -> None:
        if not captcha_key or not captcha_code:
            raise ChallengeInvalid("captcha required")
        expected = redis_state.get_redis().getdel(self._key(captcha_key))
        if expected is None:
            logger.warning("captcha %s missing or expired", captcha_key)
            raise ChallengeInvalid("captcha expired")
        if isinstance(expected, bytes):
            expected = expected.decode()
        if not hmac.compare_digest(str(expected).encode(), captcha_code.strip().encode()):
            logger.warning("captcha %s answered incorrectly", captcha_key)
            raise ChallengeInvalid("captcha incorrect")


captcha_service = CaptchaService()
