# Copyright (c) Syntropy Systems
"""Exception taxonomy for tablebench.

Only ``ConfigurationError`` aborts a benchmark. Everything else is local to
one variant or one (variant, template) pair and ends up in the report.
"""
from __future__ import annotations


class TablebenchError(Exception):
    """Base class for tablebench errors."""


class ConfigurationError(TablebenchError):
    """Malformed configuration, raised before anything is provisioned."""


class ProvisioningError(TablebenchError):
    """A variant could not be materialized."""

    variant_id: str

    def __init__(self, variant_id: str, reason: str) -> None:
        self.variant_id = variant_id
        self.reason = reason
        super().__init__(f"Variant '{variant_id}' could not be provisioned: {reason}")


class ExecutionError(TablebenchError):
    """A single (variant, template) run failed after all attempts."""

    variant_id: str
    template_id: str
    attempts: int
    cancelled: bool

    def __init__(
        self,
        variant_id: str,
        template_id: str,
        reason: str,
        attempts: int = 1,
        *,
        cancelled: bool = False,
    ) -> None:
        self.variant_id = variant_id
        self.template_id = template_id
        self.reason = reason
        self.attempts = attempts
        self.cancelled = cancelled
        super().__init__(
            f"Query '{template_id}' on variant '{variant_id}' failed "
            f"after {attempts} attempt(s): {reason}"
        )


class BackendError(TablebenchError):
    """Error reported by a database backend."""


class TransientBackendError(BackendError):
    """Timeout or connection failure worth retrying."""


class QueryCancelledError(BackendError):
    """The backend interrupted a query on request."""
