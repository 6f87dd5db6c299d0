"""
Background jobs for the compliance tracker.

- role_expiry: compaction of expired role assignments and organization roles
"""

from .role_expiry import run_role_expiry_job

__all__ = ["run_role_expiry_job"]
