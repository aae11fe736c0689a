"""
Typed errors for the scavenging engine.

Only ``ControlSurfaceUnavailable`` ever leaves a fleet pass.  The others
are raised by providers or the planner seam and recovered per slot or per
site, with the outcome recorded in the dispatch result.
"""
from __future__ import annotations


class ScavengingError(Exception):
    """Base class for all scavenging engine errors."""

    def __init__(self, detail: str = "Scavenging error"):
        self.detail = detail
        super().__init__(detail)


class ObservationTimeout(ScavengingError):
    """A slot status or unit count read did not resolve in time."""


class SubmissionRejected(ScavengingError):
    """The control surface refused a dispatch commitment."""


class NoEligiblePlan(ScavengingError):
    """The planner found nothing to allocate for a site."""


class ControlSurfaceUnavailable(ScavengingError):
    """The session for the whole pass could not be established."""
