"""Shared, framework-free helpers used by both the backend and the coordinator."""
