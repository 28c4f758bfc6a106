"""
Tests for StateMachineEngine execution semantics.

Uses a plain in-memory entity (no session) for ordering and outcome rules,
and a JobModel with a session for SAVEPOINT rollback of guard writes.
"""

from dataclasses import dataclass, field
from uuid import UUID, uuid4

import pytest

from market_kernel.domain.clock import DeterministicClock
from market_kernel.domain.workflow import (
    HookResult,
    State,
    Transition,
    Workflow,
    after_transition,
    before_transition,
)
from market_kernel.exceptions import (
    GuardRejectedError,
    HookFailedError,
    IllegalTransitionError,
    MissingArgumentError,
)
from market_modules.jobs.orm import JobModel
from market_services.state_machine import (
    OUTCOME_GUARD_REJECTED,
    OUTCOME_ILLEGAL_TRANSITION,
    OUTCOME_SUCCESS,
    StateMachineEngine,
)


@dataclass
class Ticket:
    state: int = 0
    id: UUID = field(default_factory=uuid4)
    notes: list = field(default_factory=list)


def _engine(*hooks) -> StateMachineEngine:
    return StateMachineEngine(
        Workflow(
            name="ticket",
            description="Support ticket",
            initial_state="new",
            states=(State("new", 0), State("open", 1), State("closed", 2)),
            transitions=(
                Transition("open", ("new",), "open"),
                Transition("close", ("new", "open"), "closed"),
            ),
            hooks=hooks,
        )
    )


class TestFireOutcomes:

    def test_legal_transition_moves_state(self):
        engine = _engine()
        ticket = Ticket()
        result = engine.fire(ticket, "open")

        assert result.success
        assert result.from_state == "new"
        assert result.to_state == "open"
        assert ticket.state == 1

    def test_illegal_transition_leaves_state(self):
        engine = _engine()
        ticket = Ticket(state=2)
        result = engine.fire(ticket, "open")

        assert not result.success
        assert not result.state_changed
        assert isinstance(result.error, IllegalTransitionError)
        assert ticket.state == 2

    def test_raise_for_error(self):
        with pytest.raises(IllegalTransitionError):
            _engine().fire(Ticket(state=2), "open").raise_for_error()

    def test_can_fire_and_available_events(self):
        engine = _engine()
        assert engine.can_fire(Ticket(), "open")
        assert not engine.can_fire(Ticket(state=1), "open")
        assert engine.available_events(Ticket(state=1)) == ("close",)
        assert engine.available_events(Ticket(state=2)) == ()

    def test_current_state_name(self):
        assert _engine().current_state(Ticket(state=1)) == "open"


class TestBeforeHooks:

    def test_false_return_rejects(self):
        engine = _engine(before_transition(lambda ctx: False, on="open", name="closed_door"))
        ticket = Ticket()
        result = engine.fire(ticket, "open")

        assert isinstance(result.error, GuardRejectedError)
        assert "closed_door" in result.error.reason
        assert ticket.state == 0

    def test_rejected_result_reason_is_reported(self):
        engine = _engine(before_transition(lambda ctx: HookResult.reject("no agent"), on="open"))
        result = engine.fire(Ticket(), "open")
        assert result.error.reason == "no agent"

    def test_exception_becomes_guard_rejection(self):
        def explode(ctx):
            raise RuntimeError("processor down")

        engine = _engine(before_transition(explode, on="open"))
        ticket = Ticket()
        result = engine.fire(ticket, "open")

        assert isinstance(result.error, GuardRejectedError)
        assert "processor down" in result.error.reason
        assert ticket.state == 0

    def test_rejection_stops_later_hooks(self):
        calls = []

        def first(ctx):
            calls.append("first")
            return False

        def second(ctx):
            calls.append("second")

        engine = _engine(before_transition(first, on="open"), before_transition(second, on="open"))
        engine.fire(Ticket(), "open")
        assert calls == ["first"]

    def test_none_return_passes(self):
        engine = _engine(before_transition(lambda ctx: None, on="open"))
        assert engine.fire(Ticket(), "open").success

    def test_ordering_specific_then_generic(self):
        calls = []
        engine = _engine(
            before_transition(lambda ctx: calls.append("generic"), name="generic"),
            before_transition(lambda ctx: calls.append("specific"), on="open", name="specific"),
        )
        engine.fire(Ticket(), "open")
        assert calls == ["specific", "generic"]


class TestRequiredArguments:

    def test_missing_argument_reported_before_hooks_run(self):
        calls = []
        engine = _engine(
            before_transition(lambda ctx: calls.append("guard"), on="open", requires=("agent",)),
        )
        ticket = Ticket()
        result = engine.fire(ticket, "open")

        assert isinstance(result.error, MissingArgumentError)
        assert result.error.key == "agent"
        assert calls == []
        assert ticket.state == 0

    def test_none_counts_as_missing(self):
        engine = _engine(before_transition(lambda ctx: None, on="open", requires=("agent",)))
        result = engine.fire(Ticket(), "open", {"agent": None})
        assert isinstance(result.error, MissingArgumentError)

    def test_argument_is_visible_to_hooks(self):
        seen = []
        engine = _engine(
            before_transition(lambda ctx: seen.append(ctx.arg("agent")), on="open", requires=("agent",)),
        )
        engine.fire(Ticket(), "open", {"agent": "ana"})
        assert seen == ["ana"]


class TestAfterHooks:

    def test_after_hooks_see_new_state_and_clock(self):
        clock = DeterministicClock()
        seen = []

        def record(ctx):
            seen.append((ctx.entity.state, ctx.clock.now()))

        engine = _engine(after_transition(record, on="open"))
        engine.fire(Ticket(), "open", clock=clock)
        assert seen == [(1, clock.now())]

    def test_failure_reported_after_state_applied(self):
        def explode(ctx):
            raise RuntimeError("mailer down")

        engine = _engine(after_transition(explode, on="close"))
        ticket = Ticket()
        result = engine.fire(ticket, "close")

        assert not result.success
        assert result.state_changed
        assert isinstance(result.error, HookFailedError)
        assert ticket.state == 2

    def test_remaining_after_hooks_still_run(self):
        calls = []

        def explode(ctx):
            raise RuntimeError("first fails")

        engine = _engine(
            after_transition(explode, on="close", name="explode"),
            after_transition(lambda ctx: calls.append("second"), on="close"),
        )
        result = engine.fire(Ticket(), "close")

        assert calls == ["second"]
        assert result.error.hook == "explode"

    def test_missing_resource_raises_lookup_error_inside_hook(self):
        engine = _engine(after_transition(lambda ctx: ctx.resource("mailer"), on="open"))
        result = engine.fire(Ticket(), "open")
        assert isinstance(result.error, HookFailedError)
        assert isinstance(result.error.cause, LookupError)


class TestTrace:

    def test_outcome_sink_receives_one_record_per_fire(self):
        records = []
        engine = _engine(before_transition(lambda ctx: False, on="close"))
        ticket = Ticket()

        engine.fire(ticket, "open", entity_type="Ticket", outcome_sink=records.append)
        engine.fire(ticket, "open", entity_type="Ticket", outcome_sink=records.append)
        engine.fire(ticket, "close", entity_type="Ticket", outcome_sink=records.append)

        assert [r["outcome"] for r in records] == [
            OUTCOME_SUCCESS,
            OUTCOME_ILLEGAL_TRANSITION,
            OUTCOME_GUARD_REJECTED,
        ]
        first = records[0]
        assert first["workflow"] == "ticket"
        assert first["entity_type"] == "Ticket"
        assert first["entity_id"] == str(ticket.id)
        assert first["from_state"] == "new"
        assert first["to_state"] == "open"

    def test_transition_logged(self, captured_logs):
        _engine().fire(Ticket(), "open")
        traces = [r for r in captured_logs() if r["message"] == "state_transition"]
        assert traces and traces[-1]["outcome"] == OUTCOME_SUCCESS


class TestSavepointRollback:

    def test_rejected_guard_writes_are_rolled_back(self, session, customer_id):
        def scribble_then_reject(ctx):
            ctx.entity.title = "scribbled"
            ctx.session.flush()
            return False

        engine = StateMachineEngine(
            Workflow(
                name="job_probe",
                description="Probe",
                initial_state="drafted",
                states=(State("drafted", 0), State("created", 1)),
                transitions=(Transition("list", ("drafted",), "created"),),
                hooks=(before_transition(scribble_then_reject, on="list"),),
            )
        )
        job = JobModel(customer_id=customer_id, title="original", state=0)
        session.add(job)
        session.flush()

        result = engine.fire(job, "list", session=session)

        assert isinstance(result.error, GuardRejectedError)
        assert job.title == "original"
        assert job.state == 0

    def test_state_write_flushed_on_success(self, session, customer_id):
        engine = StateMachineEngine(
            Workflow(
                name="job_probe",
                description="Probe",
                initial_state="drafted",
                states=(State("drafted", 0), State("created", 1)),
                transitions=(Transition("list", ("drafted",), "created"),),
            )
        )
        job = JobModel(customer_id=customer_id, title="t", state=0)
        session.add(job)
        session.flush()

        engine.fire(job, "list", session=session)
        session.expire(job)
        assert job.state == 1

    def test_scope_selects_rows_in_state(self, session, customer_id):
        engine = StateMachineEngine(
            Workflow(
                name="job_probe",
                description="Probe",
                initial_state="drafted",
                states=(State("drafted", 0), State("created", 1)),
                transitions=(Transition("list", ("drafted",), "created"),),
            )
        )
        drafted = JobModel(customer_id=customer_id, title="a", state=0)
        created = JobModel(customer_id=customer_id, title="b", state=1)
        session.add_all([drafted, created])
        session.flush()

        rows = session.execute(engine.scope(JobModel, "created")).scalars().all()
        assert created in rows
        assert drafted not in rows
