"""Sync infrastructure for Sanitas.

Modules:
    orchestrator — One end-to-end run (auth, download, dedup, transform, persist, cursor)
    scheduler    — Periodic background trigger with completion signal
    dedup        — Cursor filter and exact-timestamp deduplication
"""
