"""
Booking core models.

Domain aggregates (booking, ledger, type details) are plain dataclasses;
``records`` holds the SQLAlchemy tables they are persisted to.
"""
