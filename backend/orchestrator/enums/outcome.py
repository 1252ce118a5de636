"""
Refinement trigger outcomes.

Rules:
- Exactly one outcome per trigger() call.
- CANCELLED is never reported as a failure.
"""

from __future__ import annotations

from enum import Enum


class RefineOutcome(str, Enum):
    """
    Result of RefinementSupervisor.trigger().

    Operations that ran (RefineStarted / RefineCompleted were emitted):
        SUCCEEDED, FAILED, CANCELLED

    Triggers that did not start an operation (no events):
        DISABLED     refinement is switched off in config
        NOT_STARTED  the trigger cancelled the running operation instead
        BUSY         an operation is already cancelling
    """

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    DISABLED = "DISABLED"
    NOT_STARTED = "NOT_STARTED"
    BUSY = "BUSY"
