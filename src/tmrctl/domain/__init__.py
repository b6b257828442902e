"""Domain layer — timer sessions, the state machine, conflict rules.

This layer depends only on stdlib, pydantic and structlog.
It must never import from services, infrastructure, commands, or config.
"""
