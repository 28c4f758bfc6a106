"""
Tests for PaymentRequestService: the payment request workflow, batching,
payout status polling, association maintenance and reporting queries.
"""

from decimal import Decimal

import pytest

from market_config.schema import PaymentsConfig
from market_kernel.exceptions import (
    EntityNotFoundError,
    IllegalTransitionError,
    NotBatchableError,
    PaymentError,
)
from market_modules.jobs.models import JobState
from market_modules.payments.models import PayableKind, PayableRef, PaymentRequestState
from market_modules.payments.service import PaymentRequestService, total_amount


@pytest.fixture
def approved_job(make_job, contractor_id):
    def _make(amount: str = "40.00"):
        return make_job(
            state=JobState.APPROVED,
            contractor_id=contractor_id,
            contractor_payment_amount=Decimal(amount),
        )

    return _make


@pytest.fixture
def payment_request(aggregator, approved_job, contractor_id):
    jobs = [approved_job("40.00"), approved_job("15.50")]
    result = aggregator.build(contractor_id, [f"Job:{j.id}" for j in jobs])
    result.raise_for_error()
    return result.payment_request


class TestConstruction:

    def test_built_request_is_requested(self, payment_request, contractor_id):
        assert payment_request.state == PaymentRequestState.REQUESTED
        assert payment_request.contractor_id == contractor_id
        assert payment_request.amount == Decimal("55.50")

    def test_sender_item_id_shape(self, payment_request):
        item_id = payment_request.sender_item_id
        assert item_id.startswith("CPR")
        assert len(item_id) == 3 + 20
        int(item_id[3:], 16)

    def test_generate_item_id_skips_taken_ids(self, session, payment_request, deterministic_clock):
        taken = payment_request.sender_item_id[3:]
        tokens = iter([taken, taken, "b" * 20])
        service = PaymentRequestService(
            session, clock=deterministic_clock, token_hex=lambda n: next(tokens),
        )
        assert service.generate_item_id() == "CPR" + "b" * 20

    def test_new_request_uses_configured_prefix(self, session, contractor_id):
        service = PaymentRequestService(
            session,
            config=PaymentsConfig(item_id_prefix="TST", item_id_hex_bytes=4),
            token_hex=lambda n: "0" * (2 * n),
        )
        request = service.new_request(contractor_id)
        assert request.sender_item_id == "TST00000000"
        assert request.state == PaymentRequestState.REQUESTED

    def test_get_unknown_request(self, payment_service):
        from uuid import uuid4

        with pytest.raises(EntityNotFoundError):
            payment_service.get(uuid4())


class TestTransitions:

    def test_approve_stamps_approved_at(self, payment_service, payment_request, deterministic_clock):
        payment_service.approve(payment_request).raise_for_error()
        assert payment_request.state == PaymentRequestState.APPROVED
        assert payment_request.approved_at == deterministic_clock.now()
        assert payment_request.paid_at is None

    def test_unapprove_clears_approved_at(self, payment_service, payment_request):
        payment_service.approve(payment_request).raise_for_error()
        payment_service.unapprove(payment_request).raise_for_error()
        assert payment_request.state == PaymentRequestState.REQUESTED
        assert payment_request.approved_at is None

    def test_initiate_then_pay(self, payment_service, payment_request, deterministic_clock, notifier):
        payment_service.initiate(payment_request).raise_for_error()
        assert payment_request.state == PaymentRequestState.PENDING

        deterministic_clock.advance(60)
        payment_service.pay(payment_request).raise_for_error()

        assert payment_request.state == PaymentRequestState.PAID
        assert payment_request.paid_at == deterministic_clock.now()
        assert notifier.events() == [
            ("payment-request-paid", "contractor"),
            ("payment-request-paid", "admin"),
        ]

    def test_initiate_is_idempotent_from_pending(self, payment_service, payment_request):
        payment_service.initiate(payment_request).raise_for_error()
        assert payment_service.initiate(payment_request).success

    def test_pay_requires_pending(self, payment_service, payment_request):
        result = payment_service.pay(payment_request)
        assert isinstance(result.error, IllegalTransitionError)
        assert payment_request.state == PaymentRequestState.REQUESTED

    def test_payment_error_then_reapprove(self, payment_service, payment_request):
        payment_service.initiate(payment_request).raise_for_error()
        payment_service.payment_err(payment_request).raise_for_error()
        assert payment_request.state == PaymentRequestState.PAYMENT_ERRED

        payment_service.approve(payment_request).raise_for_error()
        assert payment_request.state == PaymentRequestState.APPROVED

    def test_paid_is_terminal(self, payment_service, payment_request):
        payment_service.initiate(payment_request).raise_for_error()
        payment_service.pay(payment_request).raise_for_error()
        assert payment_service.engine.available_events(payment_request) == ()

    def test_state_collection(self):
        assert ("Payment Erred", -1) in PaymentRequestService.state_collection()


class TestBatching:

    def test_assign_approved_request(self, payment_service, payment_request):
        batch = payment_service.create_batch()
        payment_service.approve(payment_request).raise_for_error()

        payment_service.assign_batch(payment_request, batch)
        assert payment_request.batch_id == batch.id

    def test_unapproved_request_not_batchable(self, payment_service, payment_request):
        batch = payment_service.create_batch()
        with pytest.raises(NotBatchableError, match="not 'approved'"):
            payment_service.assign_batch(payment_request, batch)

    def test_closed_current_batch_blocks_reassignment(self, payment_service, payment_request):
        first = payment_service.create_batch()
        payment_service.approve(payment_request).raise_for_error()
        payment_service.assign_batch(payment_request, first)
        payment_service.close_batch(first)

        with pytest.raises(NotBatchableError, match="closed"):
            payment_service.assign_batch(payment_request, payment_service.create_batch())

    def test_target_batch_must_be_open(self, payment_service, payment_request):
        batch = payment_service.create_batch()
        payment_service.mark_batch_paid(batch)
        payment_service.approve(payment_request).raise_for_error()

        with pytest.raises(NotBatchableError):
            payment_service.assign_batch(payment_request, batch)

    def test_reapproval_clears_batch(self, payment_service, payment_request):
        batch = payment_service.create_batch()
        payment_service.approve(payment_request).raise_for_error()
        payment_service.assign_batch(payment_request, batch)

        payment_service.initiate(payment_request).raise_for_error()
        payment_service.payment_err(payment_request).raise_for_error()
        payment_service.approve(payment_request).raise_for_error()

        assert payment_request.batch is None

    def test_batchable_lists_open_approved(self, payment_service, payment_request):
        assert payment_service.batchable() == []
        payment_service.approve(payment_request).raise_for_error()
        assert [r.id for r in payment_service.batchable()] == [payment_request.id]

        batch = payment_service.create_batch()
        payment_service.assign_batch(payment_request, batch)
        payment_service.close_batch(batch)
        assert payment_service.batchable() == []


class TestPaymentStatus:

    def _paid_batch_request(self, payment_service, payment_request):
        batch = payment_service.create_batch()
        payment_service.approve(payment_request).raise_for_error()
        payment_service.assign_batch(payment_request, batch)
        payment_service.mark_batch_paid(batch)
        return payment_request

    def test_no_poll_until_batch_paid(self, payment_service, payment_request, processor):
        processor.status = "PENDING"
        assert payment_service.update_payment_status(payment_request) is None
        assert processor.status_calls == 0
        assert payment_request.payment_status_updated_at is not None

    def test_poll_stores_status(self, payment_service, payment_request, processor):
        request = self._paid_batch_request(payment_service, payment_request)
        processor.status = "UNCLAIMED"
        assert payment_service.update_payment_status(request) == "UNCLAIMED"
        assert request.payment_status == "UNCLAIMED"

    def test_poll_rate_limited(self, payment_service, payment_request, processor, deterministic_clock):
        request = self._paid_batch_request(payment_service, payment_request)
        processor.status = "PENDING"

        payment_service.update_payment_status(request)
        payment_service.update_payment_status(request)
        assert processor.status_calls == 1

        deterministic_clock.advance(61)
        payment_service.update_payment_status(request)
        assert processor.status_calls == 2

    def test_terminal_status_never_polled_again(
        self, payment_service, payment_request, processor, deterministic_clock,
    ):
        request = self._paid_batch_request(payment_service, payment_request)
        processor.status = "SUCCESS"
        payment_service.update_payment_status(request)
        assert payment_service.terminal_payment_state(request)

        deterministic_clock.advance(3600)
        assert payment_service.update_payment_status(request) is None
        assert processor.status_calls == 1


class TestAssociations:

    def test_remove_job_recalculates_amount(self, payment_service, payment_request):
        job_id = payment_request.job_links[0].job_id
        remaining = payment_service.remove_job(payment_request, f"Job:{job_id}")

        assert remaining == payment_request.amount
        assert len(payment_request.job_links) == 1
        kept = PayableRef(PayableKind.JOB, payment_request.job_links[0].job_id)
        assert payment_service.find_association(kept) == payment_request.id

    def test_removed_job_can_be_aggregated_again(
        self, payment_service, aggregator, payment_request, contractor_id,
    ):
        job_id = payment_request.job_links[0].job_id
        payment_service.remove_job(payment_request, f"Job:{job_id}")

        result = aggregator.build(contractor_id, [f"Job:{job_id}"])
        assert result.success

    def test_cannot_remove_from_pending_request(self, payment_service, payment_request):
        payment_service.initiate(payment_request).raise_for_error()
        job_id = payment_request.job_links[0].job_id
        with pytest.raises(PaymentError, match="pending"):
            payment_service.remove_job(payment_request, f"Job:{job_id}")

    def test_removing_unlinked_job(self, payment_service, payment_request):
        from uuid import uuid4

        with pytest.raises(EntityNotFoundError):
            payment_service.remove_job(payment_request, f"Job:{uuid4()}")


class TestReporting:

    def test_funds_queries(self, payment_service, aggregator, approved_job, contractor_id, payment_request):
        second = aggregator.build(contractor_id, [f"Job:{approved_job('10.00').id}"]).payment_request
        payment_service.approve(second).raise_for_error()
        payment_service.initiate(payment_request).raise_for_error()
        payment_service.pay(payment_request).raise_for_error()

        assert [r.id for r in payment_service.funds_withdrawn()] == [payment_request.id]
        assert [r.id for r in payment_service.funds_requested()] == [second.id]
        assert [r.id for r in payment_service.funds_approved()] == [second.id]
        assert total_amount(payment_service.funds_requested()) == Decimal("10.00")

    def test_in_state(self, payment_service, payment_request):
        assert [r.id for r in payment_service.in_state("requested")] == [payment_request.id]
        assert payment_service.in_state("paid") == []

    def test_rolling_earnings_window(
        self, payment_service, payment_request, deterministic_clock, contractor_id,
    ):
        earnings = payment_service.rolling_earnings()
        assert earnings[contractor_id] == Decimal("55.50")

        later = deterministic_clock.now().replace(year=deterministic_clock.now().year + 1)
        assert payment_service.rolling_earnings(now=later) == {}

    def test_snapshot_references(self, payment_request):
        dto = payment_request.to_dto()
        assert dto.state is PaymentRequestState.REQUESTED
        assert len(dto.references) == 2
        assert all(ref.startswith("Job:") for ref in dto.references)

    def test_total_amount_of_nothing(self):
        assert total_amount([]) == Decimal("0")
