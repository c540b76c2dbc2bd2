from __future__ import annotations


class PipelineError(RuntimeError):
    """Base for every failure the sign-in and publish flows can surface.

    ``code`` is the short opaque marker appended to browser redirects,
    ``message`` the generic text returned by the JSON endpoints. The string
    form of the exception carries internal detail for logs only.
    """

    code = "internal_error"
    status_code = 500
    message = "Internal server error"
    clears_session = False

    def __init__(self, detail: str | None = None, *, message: str | None = None) -> None:
        super().__init__(detail or self.message)
        if message is not None:
            self.message = message


class ConfigurationError(PipelineError):
    code = "configuration_error"
    message = "LinkedIn configuration error"


class MethodNotAllowed(PipelineError):
    code = "method_not_allowed"
    status_code = 405
    message = "Method not allowed"


class OAuthDenied(PipelineError):
    code = "oauth_denied"
    status_code = 400
    message = "Authorization was denied"


class InvalidState(PipelineError):
    code = "invalid_state"
    status_code = 400
    message = "Invalid authorization state"


class NoCode(PipelineError):
    code = "no_code"
    status_code = 400
    message = "Missing authorization code"


class TokenExchangeFailed(PipelineError):
    code = "token_exchange_failed"
    status_code = 502
    message = "Token exchange failed"


class IdentityExtractionFailed(PipelineError):
    code = "identity_extraction_failed"
    status_code = 502
    message = "Could not resolve LinkedIn identity"


class NotAuthenticated(PipelineError):
    code = "not_authenticated"
    status_code = 401
    message = "Not authenticated"


class InvalidSession(PipelineError):
    code = "invalid_session"
    status_code = 401
    message = "Invalid authentication state"
    clears_session = True


class InvalidRequest(PipelineError):
    code = "invalid_request"
    status_code = 400
    message = "Invalid request"


class UnsupportedMediaType(PipelineError):
    code = "unsupported_media_type"
    status_code = 415
    message = "Unsupported image type"


class UploadRegistrationFailed(PipelineError):
    code = "upload_registration_failed"
    message = "Failed to register upload"


class UploadFailed(PipelineError):
    code = "upload_failed"
    message = "Failed to upload image"


class PostCreationFailed(PipelineError):
    code = "post_creation_failed"
    status_code = 502
    message = "Failed to create post"


class AuthExpired(PipelineError):
    code = "auth_expired"
    status_code = 401
    message = "Authentication expired"
    clears_session = True


class RateLimited(PipelineError):
    code = "rate_limited"
    status_code = 429
    message = "Rate limited. Please try again later."

    def __init__(self, retry_after: int, detail: str | None = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class InternalError(PipelineError):
    pass
