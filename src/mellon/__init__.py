from mellon.errors import (
    MellonError,
    StoreNotLoadedError,
    TokenParseError,
    TokenStoreIOError,
    TokenValidationError,
)
from mellon.tokens import Token, TokenStore

__version__ = "0.0.1"

__all__ = [
    "MellonError",
    "StoreNotLoadedError",
    "Token",
    "TokenParseError",
    "TokenStore",
    "TokenStoreIOError",
    "TokenValidationError",
]
