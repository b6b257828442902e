"""Plugins shipped with tmrctl."""
