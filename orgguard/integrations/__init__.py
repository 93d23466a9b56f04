"""
External integrations.

- sentry: error alerting for infrastructure failures
"""

from orgguard.integrations.sentry import capture_exception, init_sentry

__all__ = ["capture_exception", "init_sentry"]
