"""
Pure domain layer.

Value objects and the clock abstraction, with NO dependencies on the ORM,
the database, or any other I/O.
"""

from market_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from market_kernel.domain.workflow import (
    Hook,
    HookPhase,
    HookResult,
    State,
    Transition,
    Workflow,
    after_transition,
    before_transition,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Hook",
    "HookPhase",
    "HookResult",
    "State",
    "Transition",
    "Workflow",
    "after_transition",
    "before_transition",
]
