"""Contact Directory and Call Ledger implementations"""

from .memory_store import InMemoryContactDirectory, InMemoryCallLedger
from .supabase_store import SupabaseContactDirectory, SupabaseCallLedger

__all__ = [
    "InMemoryContactDirectory",
    "InMemoryCallLedger",
    "SupabaseContactDirectory",
    "SupabaseCallLedger",
]
