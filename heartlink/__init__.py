"""Identity, guardianship and heart-rate aggregation backend.

This package contains the business logic and domain models; transport lives
under ``heartlink.adapters``.
"""
