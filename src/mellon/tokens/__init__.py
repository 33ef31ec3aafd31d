from mellon.tokens.store import TokenStore
from mellon.tokens.token import FIELD_SEPARATOR, Token

__all__ = ["FIELD_SEPARATOR", "Token", "TokenStore"]
