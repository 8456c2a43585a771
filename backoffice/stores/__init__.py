"""Persistence helpers for accounts and tokens.

Functions take the caller's Session and never commit; the calling flow owns the
transaction. Every state change guarded by a precondition is a single UPDATE
whose WHERE clause carries that precondition, so concurrent requests cannot
both win.
"""
