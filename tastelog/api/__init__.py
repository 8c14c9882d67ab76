"""Tastelog HTTP API (FastAPI + SQLAlchemy async)."""
