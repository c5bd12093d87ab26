"""OAuth credentials, token storage and request authentication."""

from .credentials import EXPIRY_BUFFER, Credentials
from .oauth import OAuthFlow, OAuthFlowRequest
from .store import FileTokenStore, SystemTokenStore, TokenStore
from .transport import OAuthBearerAuth

__all__ = [
    "EXPIRY_BUFFER",
    "Credentials",
    "FileTokenStore",
    "OAuthBearerAuth",
    "OAuthFlow",
    "OAuthFlowRequest",
    "SystemTokenStore",
    "TokenStore",
]
