from __future__ import annotations


class SecurityError(Exception):
    status_code = 400
    code = "security_error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail())
        self.detail = detail or self.default_detail()

    def default_detail(self) -> str:
        return self.code.replace("_", " ")


class AuthenticationFailure(SecurityError):
    status_code = 401
    code = "unauthenticated"


class MissingCredentials(AuthenticationFailure):
    code = "token_missing"


class MalformedCredentials(AuthenticationFailure):
    code = "token_malformed"


class TokenInvalid(AuthenticationFailure):
    code = "token_invalid"


class TokenExpired(AuthenticationFailure):
    code = "token_expired"


class TokenRevoked(AuthenticationFailure):
    code = "token_revoked"


class AuthorizationDenied(SecurityError):
    status_code = 403
    code = "forbidden"


class RateLimitExceeded(SecurityError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, detail: str | None = None, *, retry_after: int = 1) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class ChallengeInvalid(SecurityError):
    status_code = 400
    code = "challenge_invalid"


class ScopeUnresolvable(Exception):
    """Principal lacks the identity a department- or owner-scoped filter needs."""
