"""
Tests for PaymentAggregator.build: validation before any write, totals,
and all-or-nothing association of jobs and orders.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from market_kernel.exceptions import InvalidJobReferenceError, NotPayableError, PaymentError
from market_modules.jobs.models import JobState, OrderStatus
from market_modules.payments.aggregator import PaymentAggregator
from market_modules.payments.models import PayableKind, PayableRef
from market_modules.payments.service import PaymentRequestService


@pytest.fixture
def payable_job(make_job, contractor_id):
    def _make(amount: str, state: JobState = JobState.APPROVED, owner=None):
        return make_job(
            state=state,
            contractor_id=owner or contractor_id,
            contractor_payment_amount=Decimal(amount),
        )

    return _make


class TestBuild:

    def test_amount_is_sum_of_contractor_payments(self, aggregator, payable_job, contractor_id):
        jobs = [payable_job("40.00"), payable_job("15.50")]

        result = aggregator.build(contractor_id, [f"Job:{j.id}" for j in jobs])

        assert result.success
        request = result.payment_request
        assert request.amount == Decimal("55.50")
        assert sorted(link.job_id for link in request.job_links) == sorted(j.id for j in jobs)

    def test_arbitrated_completed_job_is_payable(self, aggregator, payable_job, contractor_id):
        job = payable_job("12.00", state=JobState.ARBITRATED_COMPLETED)
        assert aggregator.build(contractor_id, [f"Job:{job.id}"]).success

    def test_jobs_and_orders_together(self, aggregator, payable_job, make_order, contractor_id):
        job = payable_job("40.00")
        order = make_order(status=OrderStatus.ARBITRATED_COMPLETED)

        result = aggregator.build(contractor_id, [f"Job:{job.id}", f"Order:{order.id}"])

        assert result.success
        assert result.payment_request.amount == Decimal("108.00")
        assert result.payment_request.to_dto().order_ids == (order.id,)

    def test_duplicate_references_counted_once(self, aggregator, payable_job, contractor_id):
        job = payable_job("40.00")
        ref = f"Job:{job.id}"
        result = aggregator.build(contractor_id, [ref, ref, PayableRef(PayableKind.JOB, job.id)])
        assert result.payment_request.amount == Decimal("40.00")

    def test_build_is_committed(self, session, aggregator, payable_job, contractor_id, row_count):
        job = payable_job("40.00")
        aggregator.build(contractor_id, [f"Job:{job.id}"])
        session.rollback()
        assert row_count("payment_requests") == 1
        assert row_count("payment_request_jobs") == 1


class TestRejection:

    def test_one_unpayable_job_persists_nothing(
        self, aggregator, payable_job, contractor_id, row_count,
    ):
        payable = payable_job("40.00")
        unpayable = payable_job("15.50", state=JobState.WORKED)

        result = aggregator.build(contractor_id, [f"Job:{payable.id}", f"Job:{unpayable.id}"])

        assert not result.success
        assert isinstance(result.error, NotPayableError)
        assert result.error.reference == f"Job:{unpayable.id}"
        assert row_count("payment_requests") == 0
        assert row_count("payment_request_jobs") == 0

    def test_other_contractors_job_rejected(
        self, aggregator, payable_job, contractor_id, other_contractor_id,
    ):
        job = payable_job("40.00", owner=other_contractor_id)
        result = aggregator.build(contractor_id, [f"Job:{job.id}"])
        assert "different contractor" in result.error.reason

    def test_unknown_job_rejected(self, aggregator, contractor_id):
        result = aggregator.build(contractor_id, [f"Job:{uuid4()}"])
        assert result.error.reason == "not found"

    def test_job_already_on_a_request_rejected(self, aggregator, payable_job, contractor_id):
        job = payable_job("40.00")
        first = aggregator.build(contractor_id, [f"Job:{job.id}"])
        assert first.success

        second = aggregator.build(contractor_id, [f"Job:{job.id}"])
        assert isinstance(second.error, NotPayableError)
        assert str(first.payment_request.id) in second.error.reason

    def test_non_payable_order_rejected(self, aggregator, make_order, contractor_id):
        order = make_order(status=OrderStatus.ACCEPTED)
        result = aggregator.build(contractor_id, [f"Order:{order.id}"])
        assert isinstance(result.error, NotPayableError)

    def test_empty_reference_list(self, aggregator, contractor_id):
        result = aggregator.build(contractor_id, [])
        assert isinstance(result.error, PaymentError)
        with pytest.raises(PaymentError):
            result.raise_for_error()

    @pytest.mark.parametrize("reference", ["Job", "Invoice:123", "Job:not-a-uuid", ""])
    def test_malformed_reference_raises(self, aggregator, contractor_id, reference):
        with pytest.raises(InvalidJobReferenceError):
            aggregator.build(contractor_id, [reference])


class TestItemIdCollision:

    def test_insert_collision_retried_with_fresh_id(
        self, session, aggregator, payable_job, contractor_id, deterministic_clock,
    ):
        existing = aggregator.build(contractor_id, [f"Job:{payable_job('1.00').id}"])
        taken = existing.payment_request.sender_item_id[3:]

        # The pre-check sees the first id as free, the insert then collides.
        tokens = iter([taken, "c" * 20])
        service = PaymentRequestService(
            session, clock=deterministic_clock, token_hex=lambda n: next(tokens),
        )
        service.item_id_taken = _taken_only_after_first_check(service.item_id_taken)

        result = PaymentAggregator(service).build(contractor_id, [f"Job:{payable_job('2.00').id}"])

        assert result.success
        assert result.payment_request.sender_item_id == "CPR" + "c" * 20

    def test_other_integrity_errors_fail_the_build(
        self, session, aggregator, payable_job, contractor_id, monkeypatch, row_count,
    ):
        job = payable_job("3.00")

        def boom(request):
            raise IntegrityError("INSERT", {}, Exception("check constraint"))

        monkeypatch.setattr(aggregator, "_persist_with_unique_item_id", boom)

        result = aggregator.build(contractor_id, [f"Job:{job.id}"])

        assert not result.success
        assert row_count("payment_requests") == 0


def _taken_only_after_first_check(real_check):
    calls = {"n": 0}

    def check(item_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return False
        return real_check(item_id)

    return check
