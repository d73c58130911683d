"""
Persistence for notifications and push tokens.

Currently includes:
- SupabaseClient: PostgREST-backed store used in production.
- InMemoryBackend: process-local store with the same async surface.
"""

from .memory import InMemoryBackend
from .supabase import SupabaseClient, SupabaseError, get_supabase_client

__all__ = ["InMemoryBackend", "SupabaseClient", "SupabaseError", "get_supabase_client"]
