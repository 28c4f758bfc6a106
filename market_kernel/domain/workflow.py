"""
Canonical workflow types (``market_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for guarded state machines.  Every lifecycle (jobs,
payment requests) declares its states, transition table and ordered hook
list once, as a frozen ``Workflow``; ``market_services.state_machine``
executes it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* State names and persisted values are unique within a workflow.
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Hooks filter only on declared events and states.
* For a given (event, state) the first matching transition wins.
* Hooks for one phase run event-specific first, then any-event, each
  group in registration order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class State:
    """A declared state: human-readable name plus the persisted integer."""
    name: str
    value: int


@dataclass(frozen=True)
class Transition:
    """A transition rule: ``event`` moves any of ``from_states`` to ``to_state``."""
    event: str
    from_states: tuple[str, ...]
    to_state: str

    def matches(self, event: str, state: str) -> bool:
        return self.event == event and state in self.from_states


class HookPhase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class HookResult:
    """Value a before hook returns to pass or reject a transition.

    Hooks signal rejection by value, never by raising.  ``error`` lets a
    hook report a specific ``GuardRejectedError`` subclass (for example a
    bid mismatch) instead of the generic one.
    """
    passed: bool
    reason: str = ""
    error: Exception | None = None

    @classmethod
    def ok(cls) -> HookResult:
        return cls(passed=True)

    @classmethod
    def reject(cls, reason: str) -> HookResult:
        return cls(passed=False, reason=reason)

    @classmethod
    def reject_with(cls, error: Exception) -> HookResult:
        return cls(passed=False, reason=str(error), error=error)


@dataclass(frozen=True)
class Hook:
    """A callback bound to a transition phase.

    Contract: frozen.  ``event=None`` means the hook applies to every event;
    ``to_state`` further narrows it to transitions entering that state.
    ``requires`` names event arguments that must be present before any
    side effect runs.
    """
    phase: HookPhase
    callback: Callable[[Any], Any]
    event: str | None = None
    to_state: str | None = None
    requires: tuple[str, ...] = ()
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or getattr(self.callback, "__name__", repr(self.callback))

    @property
    def is_event_specific(self) -> bool:
        return self.event is not None

    def applies_to(self, event: str, to_state: str) -> bool:
        if self.event is not None and self.event != event:
            return False
        if self.to_state is not None and self.to_state != to_state:
            return False
        return True


def before_transition(
    callback: Callable[[Any], Any],
    on: str | None = None,
    requires: tuple[str, ...] = (),
    name: str = "",
) -> Hook:
    """Declare a guard/before hook."""
    return Hook(
        phase=HookPhase.BEFORE,
        callback=callback,
        event=on,
        requires=tuple(requires),
        name=name,
    )


def after_transition(
    callback: Callable[[Any], Any],
    on: str | None = None,
    to: str | None = None,
    name: str = "",
) -> Hook:
    """Declare an after hook, optionally narrowed to an event or target state."""
    return Hook(
        phase=HookPhase.AFTER,
        callback=callback,
        event=on,
        to_state=to,
        name=name,
    )


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    ``terminal_states`` are states with no outgoing transitions (optional).
    """
    name: str
    description: str
    initial_state: str
    states: tuple[State, ...]
    transitions: tuple[Transition, ...]
    hooks: tuple[Hook, ...] = ()
    terminal_states: tuple[str, ...] = ()
    _by_name: dict[str, int] = field(init=False, repr=False, compare=False)
    _by_value: dict[int, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name = {s.name: s.value for s in self.states}
        by_value = {s.value: s.name for s in self.states}
        if len(by_name) != len(self.states):
            raise ValueError(f"Workflow '{self.name}': duplicate state name")
        if len(by_value) != len(self.states):
            raise ValueError(f"Workflow '{self.name}': duplicate state value")
        if self.initial_state not in by_name:
            raise ValueError(
                f"Workflow '{self.name}': initial state '{self.initial_state}' not declared"
            )
        for t in self.transitions:
            for state in (*t.from_states, t.to_state):
                if state not in by_name:
                    raise ValueError(
                        f"Workflow '{self.name}': transition '{t.event}' "
                        f"references undeclared state '{state}'"
                    )
        events = {t.event for t in self.transitions}
        for hook in self.hooks:
            if hook.event is not None and hook.event not in events:
                raise ValueError(
                    f"Workflow '{self.name}': hook '{hook.label}' "
                    f"filters on undeclared event '{hook.event}'"
                )
            if hook.to_state is not None and hook.to_state not in by_name:
                raise ValueError(
                    f"Workflow '{self.name}': hook '{hook.label}' "
                    f"filters on undeclared state '{hook.to_state}'"
                )
        for state in self.terminal_states:
            if state not in by_name:
                raise ValueError(
                    f"Workflow '{self.name}': terminal state '{state}' not declared"
                )
        object.__setattr__(self, "_by_name", by_name)
        object.__setattr__(self, "_by_value", by_value)

    # -- state enumeration -------------------------------------------------

    @property
    def state_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.states)

    def state_mapping(self) -> dict[str, int]:
        """name -> persisted value, in declaration order."""
        return dict(self._by_name)

    def state_collection(self) -> list[tuple[str, int]]:
        """(display name, value) pairs for selection lists, e.g. ("Arbitrated Completed", -4)."""
        return [(s.name.replace("_", " ").title(), s.value) for s in self.states]

    def value_of(self, name: str) -> int:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValueError(f"Workflow '{self.name}' has no state '{name}'") from None

    def name_of(self, value: int) -> str:
        try:
            return self._by_value[value]
        except KeyError:
            raise ValueError(f"Workflow '{self.name}' has no state value {value!r}") from None

    # -- transitions -------------------------------------------------------

    @property
    def events(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for t in self.transitions:
            seen.setdefault(t.event, None)
        return tuple(seen)

    def find_transition(self, event: str, state: str) -> Transition | None:
        for t in self.transitions:
            if t.matches(event, state):
                return t
        return None

    def hooks_for(self, phase: HookPhase, event: str, to_state: str) -> tuple[Hook, ...]:
        applicable = [
            h for h in self.hooks if h.phase == phase and h.applies_to(event, to_state)
        ]
        specific = [h for h in applicable if h.is_event_specific]
        generic = [h for h in applicable if not h.is_event_specific]
        return tuple(specific + generic)

    def with_hooks(self, *hooks: Hook) -> Workflow:
        """Return a copy with ``hooks`` appended after the existing ones."""
        return Workflow(
            name=self.name,
            description=self.description,
            initial_state=self.initial_state,
            states=self.states,
            transitions=self.transitions,
            hooks=self.hooks + tuple(hooks),
            terminal_states=self.terminal_states,
        )
