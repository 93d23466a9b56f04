"""
orgguard - authorization and entitlement engine for multi-tenant organizations.

Decides whether an authenticated principal may read or mutate a resource,
combining organization role, per-project team assignment, and subscription
plan entitlements (quotas and trial state).
"""

__version__ = "0.1.0"
