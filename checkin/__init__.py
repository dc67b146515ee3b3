"""
Event check-in backend.

This package provides a FastAPI application for participant registration,
QR-code scanning and volunteer management, with a small read-through cache
in front of the hosted Postgres database.
"""
