"""Transport adapters for the mail provider."""

from .gmail_client import GmailApiError, GmailClient, RateLimitedError, UnauthorizedError
from .oauth import GoogleOAuthClient, OAuthError, RefreshGrant

__all__ = [
    "GmailApiError",
    "GmailClient",
    "GoogleOAuthClient",
    "OAuthError",
    "RateLimitedError",
    "RefreshGrant",
    "UnauthorizedError",
]
