"""
market_services.state_machine -- Guarded state machine execution.

Responsibility:
    Executes a declarative ``Workflow`` against an entity: rule lookup,
    required-argument validation, before hooks (guards), the state write,
    after hooks, and one structured trace record per attempt.  Also exposes
    the derived query surface every lifecycle gets for free (state lists,
    name/value mapping, per-state select scopes).

Architecture position:
    Services layer.  May import from market_kernel/ (domain, db, logging).

Invariants enforced:
    - Illegal (event, state) pairs never change state.
    - Missing required arguments are reported before any hook runs.
    - A rejecting before hook leaves state untouched and, when a session is
      given, rolls back every write made by earlier before hooks (SAVEPOINT).
    - After hooks all run once started; the first failure is reported as
      HookFailedError with the state change already applied.
    - The engine holds no per-call state and is safe to share between
      concurrent callers.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.workflow import Hook, HookPhase, HookResult, Transition, Workflow
from market_kernel.exceptions import (
    GuardRejectedError,
    HookFailedError,
    IllegalTransitionError,
    MissingArgumentError,
    TransitionError,
)
from market_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.state_machine")

# Trace message and outcome codes for structured logging and traceability
TRACE_TYPE_STATE_TRANSITION = "STATE_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_ILLEGAL_TRANSITION = "illegal_transition"
OUTCOME_GUARD_REJECTED = "guard_rejected"
OUTCOME_MISSING_ARGUMENT = "missing_argument"
OUTCOME_HOOK_FAILED = "hook_failed"


def _emit_transition_trace(
    workflow_name: str,
    event: str,
    entity_type: str,
    entity_id: Any,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit a structured state transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_STATE_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow": workflow_name,
        "event": event,
        "entity_type": entity_type,
        "entity_id": str(entity_id) if entity_id is not None else None,
        "from_state": from_state,
        "to_state": to_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    record.update(LogContext.get_all())
    if outcome in (OUTCOME_SUCCESS, OUTCOME_GUARD_REJECTED):
        logger.info("state_transition", extra=record)
    else:
        logger.warning("state_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink({**record, "message": "state_transition"})


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of StateMachineEngine.fire().

    ``to_state`` is set whenever the state column changed, which includes a
    HookFailedError outcome.
    """

    success: bool
    event: str
    from_state: str
    to_state: str | None = None
    error: TransitionError | None = None

    @property
    def state_changed(self) -> bool:
        return self.to_state is not None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass
class TransitionContext:
    """What every hook receives."""

    entity: Any
    event: str
    from_state: str
    to_state: str
    args: Mapping[str, Any]
    workflow: Workflow
    clock: Clock
    session: Session | None = None
    resources: Mapping[str, Any] = field(default_factory=dict)

    def arg(self, key: str, default: Any = None) -> Any:
        return self.args.get(key, default)

    def resource(self, name: str) -> Any:
        """Collaborator injected by the calling service (processor, outbox, config)."""
        try:
            return self.resources[name]
        except KeyError:
            raise LookupError(
                f"Hook on '{self.event}' needs resource '{name}' which was not supplied"
            ) from None


class StateMachineEngine:
    """Fires events on entities according to a Workflow.

    Stateless apart from the workflow definition it wraps.
    """

    def __init__(self, workflow: Workflow, state_attr: str = "state") -> None:
        self.workflow = workflow
        self.state_attr = state_attr

    # -- query surface -----------------------------------------------------

    def current_state(self, entity: Any) -> str:
        return self.workflow.name_of(getattr(entity, self.state_attr))

    def can_fire(self, entity: Any, event: str) -> bool:
        return self.workflow.find_transition(event, self.current_state(entity)) is not None

    def available_events(self, entity: Any) -> tuple[str, ...]:
        state = self.current_state(entity)
        return tuple(
            e for e in self.workflow.events
            if self.workflow.find_transition(e, state) is not None
        )

    def scope(self, model: type, state_name: str):
        """SELECT for rows of ``model`` currently in ``state_name``."""
        column = getattr(model, self.state_attr)
        return select(model).where(column == self.workflow.value_of(state_name))

    def scopes(self, model: type) -> dict[str, Any]:
        return {name: self.scope(model, name) for name in self.workflow.state_names}

    # -- execution ---------------------------------------------------------

    def fire(
        self,
        entity: Any,
        event: str,
        args: Mapping[str, Any] | None = None,
        *,
        session: Session | None = None,
        clock: Clock | None = None,
        resources: Mapping[str, Any] | None = None,
        entity_type: str | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> TransitionResult:
        """Fire ``event`` on ``entity``.

        Transition outcomes are returned, never raised.  Database errors
        propagate after the SAVEPOINT is rolled back; the caller owns the
        outer transaction.
        """
        t0 = time.monotonic()
        args = dict(args or {})
        entity_type = entity_type or type(entity).__name__
        entity_id = getattr(entity, "id", None)
        from_state = self.current_state(entity)
        wf = self.workflow.name

        def finish(outcome: str, result: TransitionResult, reason: str = "") -> TransitionResult:
            _emit_transition_trace(
                workflow_name=wf,
                event=event,
                entity_type=entity_type,
                entity_id=entity_id,
                from_state=from_state,
                to_state=result.to_state,
                outcome=outcome,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
                outcome_sink=outcome_sink,
            )
            return result

        # 1. Find the matching transition rule
        transition = self.workflow.find_transition(event, from_state)
        if transition is None:
            error = IllegalTransitionError(wf, event, from_state)
            return finish(
                OUTCOME_ILLEGAL_TRANSITION,
                TransitionResult(False, event, from_state, error=error),
                str(error),
            )

        before = self.workflow.hooks_for(HookPhase.BEFORE, event, transition.to_state)
        after = self.workflow.hooks_for(HookPhase.AFTER, event, transition.to_state)

        # 2. Required arguments, before any side effect
        for hook in (*before, *after):
            for key in hook.requires:
                if args.get(key) is None:
                    error = MissingArgumentError(wf, event, from_state, key)
                    return finish(
                        OUTCOME_MISSING_ARGUMENT,
                        TransitionResult(False, event, from_state, error=error),
                        str(error),
                    )

        ctx = TransitionContext(
            entity=entity,
            event=event,
            from_state=from_state,
            to_state=transition.to_state,
            args=args,
            workflow=self.workflow,
            clock=clock or SystemClock(),
            session=session,
            resources=dict(resources or {}),
        )

        # 3. Before hooks + state write, all-or-nothing
        savepoint = session.begin_nested() if session is not None else None
        try:
            rejection = self._run_before_hooks(before, ctx)
            if rejection is not None:
                if savepoint is not None:
                    savepoint.rollback()
                return finish(
                    OUTCOME_GUARD_REJECTED,
                    TransitionResult(False, event, from_state, error=rejection),
                    rejection.reason,
                )
            self._write_state(entity, transition)
            if savepoint is not None:
                session.flush()
                savepoint.commit()
        except Exception:
            if savepoint is not None and savepoint.is_active:
                savepoint.rollback()
            raise

        # 4. After hooks
        failure = self._run_after_hooks(after, ctx)
        if failure is not None:
            return finish(
                OUTCOME_HOOK_FAILED,
                TransitionResult(False, event, from_state, transition.to_state, failure),
                str(failure),
            )

        return finish(
            OUTCOME_SUCCESS,
            TransitionResult(True, event, from_state, transition.to_state),
        )

    def _write_state(self, entity: Any, transition: Transition) -> None:
        setattr(entity, self.state_attr, self.workflow.value_of(transition.to_state))

    def _run_before_hooks(
        self, hooks: tuple[Hook, ...], ctx: TransitionContext,
    ) -> GuardRejectedError | None:
        wf = self.workflow.name
        for hook in hooks:
            try:
                outcome = hook.callback(ctx)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.warning(
                    "before_hook_raised",
                    extra={"workflow": wf, "event": ctx.event, "hook": hook.label},
                    exc_info=True,
                )
                return GuardRejectedError(wf, ctx.event, ctx.from_state, f"{hook.label}: {exc}")

            if outcome is False:
                return GuardRejectedError(
                    wf, ctx.event, ctx.from_state, f"{hook.label} returned false",
                )
            if isinstance(outcome, HookResult) and not outcome.passed:
                if isinstance(outcome.error, GuardRejectedError):
                    return outcome.error
                return GuardRejectedError(
                    wf, ctx.event, ctx.from_state, outcome.reason or hook.label,
                )
        return None

    def _run_after_hooks(
        self, hooks: tuple[Hook, ...], ctx: TransitionContext,
    ) -> HookFailedError | None:
        first_failure: HookFailedError | None = None
        for hook in hooks:
            try:
                hook.callback(ctx)
            except Exception as exc:
                logger.error(
                    "after_hook_failed",
                    extra={
                        "workflow": self.workflow.name,
                        "event": ctx.event,
                        "hook": hook.label,
                    },
                    exc_info=True,
                )
                if first_failure is None:
                    first_failure = HookFailedError(
                        self.workflow.name, ctx.event, ctx.from_state, hook.label, exc,
                    )
        return first_failure
