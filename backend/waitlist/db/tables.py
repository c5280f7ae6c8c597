"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL (e.g. TRUNCATE) and in alembic/env.py to check that
the registered models match the migrated schema.
"""
ALL_TABLE_NAMES = (
    "calendar_connections",
    "waitlist_slots",
    "waitlist_entries",
    "offer_tokens",
    "delivery_logs",
)

