"""Infrastructure layer — SQLite store, authorization, workspace wiring.

This layer depends on stdlib, third-party libs (SQLAlchemy), and the
domain ports it implements. It must never import from services,
commands, or output.
"""
