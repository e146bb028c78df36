"""
Authentication package.
"""

from tradewire.auth.token_store import StoredCredential, TokenProvider, TokenStore

__all__ = [
    "StoredCredential",
    "TokenProvider",
    "TokenStore",
]
