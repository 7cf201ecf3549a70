"""SCM error taxonomy.

Every error raised by the adapters, the token store and the sync services
derives from SCMError and carries the HTTP status the API layer answers with.
Errors raised inside background jobs are captured into the event log instead.
"""
from typing import Optional


class SCMError(Exception):
    """Base class for SCM integration errors."""

    status_code = 500
    code = "scm_error"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message

    def to_dict(self):
        return {"error": self.message}


class InvalidSignature(SCMError):
    status_code = 401
    code = "invalid_signature"


class AlreadyLinked(SCMError):
    status_code = 409
    code = "already_linked"


class NotLinked(SCMError):
    status_code = 404
    code = "not_linked"


class NotConnected(SCMError):
    """No token stored for the (user, provider) pair."""
    status_code = 401
    code = "not_connected"


class TokenExpired(SCMError):
    status_code = 401
    code = "token_expired"


class Unauthorized(SCMError):
    """The platform rejected our credentials; the user must reconnect."""
    status_code = 401
    code = "unauthorized"


class ProviderInactive(SCMError):
    status_code = 409
    code = "provider_inactive"


class UpstreamRateLimited(SCMError):
    status_code = 429
    code = "upstream_rate_limited"

    def __init__(self, message: str = "", retry_after: Optional[float] = None):
        super().__init__(message or "SCM platform rate limit exceeded")
        self.retry_after = retry_after


class UpstreamTimeout(SCMError):
    status_code = 504
    code = "upstream_timeout"


class UpstreamError(SCMError):
    status_code = 502
    code = "upstream_error"


class RemoteNotFound(UpstreamError):
    """The platform answered 404 for a repository, ref, file or hook."""
    status_code = 404
    code = "remote_not_found"


class ResolutionFailed(SCMError):
    """A tag could not be resolved to a commit."""
    status_code = 422
    code = "resolution_failed"


class PublishFailed(SCMError):
    status_code = 500
    code = "publish_failed"


# Errors that mean "reconnect this provider" to the UI
CREDENTIAL_ERRORS = (NotConnected, TokenExpired, Unauthorized)
