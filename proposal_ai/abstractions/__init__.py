"""
Backend-agnostic persistence abstractions.
Implementations target process memory or Supabase.
"""

from proposal_ai.abstractions.store import (
    KeyValueStore,
    InMemoryStore,
    SupabaseStore,
)

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "SupabaseStore",
]
