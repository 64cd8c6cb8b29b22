"""
Order Unmasker - Result Stores

Persistence collaborators: credential lookup, pending-order listing and
result commits, backed by Supabase (remote) or SQLite (local runs).
"""

from .base import ResultStore, merge_recipient, needs_unmask
from .sqlite_store import SqliteStore
from .supabase import SupabaseStore

__all__ = ['ResultStore', 'SqliteStore', 'SupabaseStore', 'merge_recipient', 'needs_unmask']
