"""
Session validation against the external Authorizer service.
"""

from .authorizer import AuthorizerClient, AuthUser, normalize_token
from .provider import AuthorizerProvider

__all__ = ["AuthorizerClient", "AuthorizerProvider", "AuthUser", "normalize_token"]
