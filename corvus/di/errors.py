"""
DI-specific error types.
"""

from typing import List, Optional


class DIError(Exception):
    """Base exception for DI errors."""
    pass


class ProviderNotFoundError(DIError):
    """Provider not found for requested token."""

    def __init__(
        self,
        token: str,
        candidates: Optional[List[str]] = None,
        requested_by: Optional[str] = None,
    ):
        self.token = token
        self.candidates = candidates or []
        self.requested_by = requested_by

        msg = f"No provider found for token={token}"
        if requested_by:
            msg += f"\nRequested by: {requested_by}"
        if self.candidates:
            msg += "\n\nCandidates found:"
            for candidate in self.candidates:
                msg += f"\n  - {candidate}"

        super().__init__(msg)


class DependencyCycleError(DIError):
    """Circular dependency detected."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__("Circular dependency detected: " + " -> ".join(cycle))
