# app/models/__init__.py
from .base import Base, CacheBase
from .user import User, UserRole, AuthProvider, WebAuthnCredential
from .media import Media
from .cache import MediaCache, LikesCache, CommentCache, FavoritesCache

# Этот список нужен, чтобы IDE и инструменты видели, что экспортируется
__all__ = [
    "Base", "CacheBase",
    "User", "UserRole", "AuthProvider", "WebAuthnCredential",
    "Media",
    "MediaCache", "LikesCache", "CommentCache", "FavoritesCache",
]
