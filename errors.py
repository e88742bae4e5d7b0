"""
Error taxonomy for the post/reservation core.

Services raise these; app.py turns them into JSON responses with the
matching status code.
"""


class MarketplaceError(Exception):
    """Base class. `message` is safe to show to the caller."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    status_code = 400
    default_message = "Missing required fields"


class AuthenticationError(MarketplaceError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(MarketplaceError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class DuplicateError(MarketplaceError):
    status_code = 400
    default_message = "You have already reserved this post"


class ExhaustedError(MarketplaceError):
    status_code = 400
    default_message = "This post is no longer available"


class StorageError(MarketplaceError):
    """Backing store failure. The public message stays generic; log the cause."""
    status_code = 500
    default_message = "Internal server error"
