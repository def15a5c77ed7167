"""Supabase JWT verification and the auth middleware built on it."""

from refyn.auth.middleware import AuthMiddleware, Viewer, get_viewer
from refyn.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "SupabaseJwksVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
