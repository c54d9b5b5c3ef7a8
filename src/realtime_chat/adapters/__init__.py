"""Concrete implementations of provider interfaces."""

from .api.http import HttpChatApi
from .backend.supabase import SupabaseBackend

__all__ = [
    "HttpChatApi",
    "SupabaseBackend",
]
