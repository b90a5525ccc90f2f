"""Tests for the pickup lifecycle service.

Tests cover:
- Creation and its validation
- The pharmacy path from REQUESTED to COMPLETED
- Rejection and cancellation by each role
- Persistence round-trip and status history
- Timestamp monotonicity
- Ownership checks
- Lifecycle events published after commit
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from pharmapickup.core.config import PickupSettings
from pharmapickup.db.models.base import ActorRole, PickupStatus
from pharmapickup.services.errors import (
    ForbiddenTransitionError,
    InvalidInputError,
    InvalidTransitionError,
    RequestNotFoundError,
)
from pharmapickup.services.lifecycle import PickupLifecycleService, parse_role, parse_status
from pharmapickup.services.transitions import LineItemPrice, TransitionPayload
from tests.factories import (
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    OTHER_PHARMACY_ID,
    PHARMACY_ID,
    advance_to,
    create_request,
    line_item,
)


class TestCreate:
    """Tests for opening a request."""

    async def test_create_opens_requested_with_deadline(self, service, clock):
        request = await service.create(
            CUSTOMER_ID, PHARMACY_ID, [line_item("X", quantity=2)], estimated_days=5
        )

        assert request.status is PickupStatus.REQUESTED
        assert request.requested_at == clock.now
        assert request.auto_cancel_deadline == request.requested_at + timedelta(days=5)
        assert request.estimated_days == 5
        assert request.version == 1
        assert [item.quantity for item in request.line_items] == [2]

    async def test_create_defaults_to_five_days(self, service):
        request = await create_request(service)
        assert request.estimated_days == 5

    async def test_create_with_three_days(self, service, clock):
        request = await create_request(service, estimated_days=3)
        assert request.auto_cancel_deadline == clock.now + timedelta(days=3)

    async def test_create_keeps_line_item_order(self, service):
        request = await create_request(
            service, items=[line_item("A"), line_item("B"), line_item("C")]
        )
        assert [(i.position, i.product_name) for i in request.line_items] == [
            (0, "A"),
            (1, "B"),
            (2, "C"),
        ]

    async def test_create_records_memo_and_pet(self, service):
        request = await service.create(
            CUSTOMER_ID,
            PHARMACY_ID,
            [line_item(pet_name="Rex", pet_type="dog", manufacturer="Boehringer")],
            customer_memo="after 5pm",
        )
        assert request.customer_memo == "after 5pm"
        assert request.line_items[0].pet_name == "Rex"
        assert request.line_items[0].manufacturer == "Boehringer"

    async def test_create_rejects_empty_items(self, service):
        with pytest.raises(InvalidInputError) as exc_info:
            await service.create(CUSTOMER_ID, PHARMACY_ID, [])
        assert exc_info.value.field == "line_items"

    async def test_create_rejects_zero_quantity(self, service):
        with pytest.raises(InvalidInputError):
            await service.create(CUSTOMER_ID, PHARMACY_ID, [line_item(quantity=0)])

    async def test_create_rejects_blank_product_name(self, service):
        with pytest.raises(InvalidInputError):
            await service.create(CUSTOMER_ID, PHARMACY_ID, [line_item("   ")])

    async def test_create_rejects_unsupported_days(self, service):
        with pytest.raises(InvalidInputError) as exc_info:
            await create_request(service, estimated_days=4)
        assert exc_info.value.field == "estimated_days"

    async def test_allowed_days_come_from_settings(self, session, dispatcher, locks, clock):
        service = PickupLifecycleService(
            session,
            dispatcher,
            locks=locks,
            clock=clock,
            pickup_settings=PickupSettings(allowed_estimated_days=[7], default_estimated_days=7),
        )
        request = await create_request(service)
        assert request.estimated_days == 7

    async def test_create_publishes_event(self, service, recorder):
        request = await create_request(service)

        assert len(recorder.events) == 1
        event = recorder.events[0]
        assert event.request_id == request.request_id
        assert event.previous_status is None
        assert event.new_status is PickupStatus.REQUESTED
        assert event.actor_role is ActorRole.CUSTOMER
        assert event.actor_id == CUSTOMER_ID

    async def test_invalid_create_publishes_nothing(self, service, recorder):
        with pytest.raises(InvalidInputError):
            await service.create(CUSTOMER_ID, PHARMACY_ID, [])
        assert recorder.events == []


class TestPharmacyPath:
    """Tests for the happy path driven by the pharmacy."""

    async def test_accept_with_total(self, service):
        request = await create_request(service)

        accepted = await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.ACCEPTED,
            TransitionPayload(total_amount=15000),
        )

        assert accepted.status is PickupStatus.ACCEPTED
        assert accepted.accepted_at is not None
        assert accepted.total_amount == 15000

    async def test_accept_with_item_prices(self, service):
        request = await create_request(
            service, items=[line_item("A", quantity=2), line_item("B", quantity=1)]
        )
        pickup_date = datetime(2026, 10, 16, 9, 0, tzinfo=UTC)

        accepted = await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.ACCEPTED,
            TransitionPayload(
                total_amount=17000,
                estimated_pickup_date=pickup_date,
                item_prices=(
                    LineItemPrice(position=0, unit_price=6000),
                    LineItemPrice(position=1, unit_price=5000, total_price=5000),
                ),
            ),
        )

        assert accepted.estimated_pickup_date == pickup_date
        assert [(i.unit_price, i.total_price) for i in accepted.line_items] == [
            (6000, 12000),
            (5000, 5000),
        ]

    async def test_full_path_to_completed(self, service, clock):
        request = await create_request(service)
        for target in (PickupStatus.ACCEPTED, PickupStatus.PREPARING, PickupStatus.READY):
            clock.advance(hours=1)
            request = await service.transition(
                request.request_id, ActorRole.PHARMACY, target, actor_id=PHARMACY_ID
            )
        clock.advance(hours=1)
        request = await service.complete(request.request_id, actor_id=PHARMACY_ID)

        assert request.status is PickupStatus.COMPLETED
        assert (
            request.requested_at
            < request.accepted_at
            < request.preparing_at
            < request.ready_at
            < request.completed_at
        )
        assert request.version == 5

    async def test_waiting_then_accepted(self, service):
        request = await create_request(service)
        request = await service.transition(
            request.request_id, ActorRole.PHARMACY, PickupStatus.WAITING
        )
        assert request.waiting_at is not None

        request = await service.transition(
            request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED
        )
        assert request.status is PickupStatus.ACCEPTED

    async def test_complete_before_ready_is_invalid(self, service):
        request = await create_request(service)
        request = await advance_to(service, request, PickupStatus.ACCEPTED)

        with pytest.raises(InvalidTransitionError):
            await service.complete(request.request_id)

        reloaded = await service.get(request.request_id)
        assert reloaded.status is PickupStatus.ACCEPTED

    async def test_complete_twice(self, service):
        request = await create_request(service)
        request = await advance_to(service, request, PickupStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await service.complete(request.request_id)

    async def test_pharmacy_memo_is_stored(self, service):
        request = await create_request(service)
        request = await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.WAITING,
            TransitionPayload(pharmacy_memo="back-ordered until Friday"),
        )
        assert request.pharmacy_memo == "back-ordered until Friday"

    async def test_status_accepts_string_target(self, service):
        request = await create_request(service)
        request = await service.transition(request.request_id, ActorRole.PHARMACY, "accepted")
        assert request.status is PickupStatus.ACCEPTED

    async def test_unknown_string_target(self, service):
        request = await create_request(service)
        with pytest.raises(InvalidInputError):
            await service.transition(request.request_id, ActorRole.PHARMACY, "SHIPPED")


class TestRejectAndCancel:
    """Tests for the terminal exits other than completion."""

    async def test_reject_with_reason(self, service):
        request = await create_request(service)
        request = await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.REJECTED,
            TransitionPayload(rejection_reason="prescription required"),
        )

        assert request.status is PickupStatus.REJECTED
        assert request.rejection_reason == "prescription required"
        assert request.rejected_at is not None

    async def test_reject_without_reason(self, service):
        request = await create_request(service)
        with pytest.raises(InvalidInputError):
            await service.transition(request.request_id, ActorRole.PHARMACY, PickupStatus.REJECTED)

    async def test_customer_cancel(self, service):
        request = await create_request(service)
        request = await service.cancel(
            request.request_id, ActorRole.CUSTOMER, "found it elsewhere", actor_id=CUSTOMER_ID
        )

        assert request.status is PickupStatus.CANCELED
        assert request.canceled_by is ActorRole.CUSTOMER
        assert request.cancel_reason == "found it elsewhere"
        assert request.canceled_at is not None

    async def test_pharmacy_cancel_after_acceptance(self, service):
        request = await create_request(service)
        request = await advance_to(service, request, PickupStatus.PREPARING)

        request = await service.cancel(request.request_id, ActorRole.PHARMACY, "recalled batch")
        assert request.canceled_by is ActorRole.PHARMACY

    async def test_cancel_completed_is_invalid(self, service):
        request = await create_request(service)
        request = await advance_to(service, request, PickupStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await service.cancel(request.request_id, ActorRole.CUSTOMER, "too late")

    async def test_cancel_twice_is_invalid(self, service):
        request = await create_request(service)
        await service.cancel(request.request_id, ActorRole.CUSTOMER, "first")

        with pytest.raises(InvalidTransitionError):
            await service.cancel(request.request_id, ActorRole.CUSTOMER, "second")

    async def test_customer_cannot_accept(self, service):
        request = await create_request(service)
        with pytest.raises(ForbiddenTransitionError):
            await service.transition(request.request_id, ActorRole.CUSTOMER, PickupStatus.ACCEPTED)


class TestOwnership:
    """A caller acting with an id must be a party to the request."""

    async def test_other_customer_cannot_cancel(self, service):
        request = await create_request(service)
        with pytest.raises(ForbiddenTransitionError):
            await service.cancel(
                request.request_id, ActorRole.CUSTOMER, "x", actor_id=OTHER_CUSTOMER_ID
            )

    async def test_other_pharmacy_cannot_accept(self, service):
        request = await create_request(service)
        with pytest.raises(ForbiddenTransitionError):
            await service.transition(
                request.request_id,
                ActorRole.PHARMACY,
                PickupStatus.ACCEPTED,
                actor_id=OTHER_PHARMACY_ID,
            )

    async def test_ensure_party(self, service):
        request = await create_request(service)

        PickupLifecycleService.ensure_party(request, ActorRole.CUSTOMER, CUSTOMER_ID)
        PickupLifecycleService.ensure_party(request, ActorRole.PHARMACY, PHARMACY_ID)
        with pytest.raises(ForbiddenTransitionError):
            PickupLifecycleService.ensure_party(request, ActorRole.CUSTOMER, OTHER_CUSTOMER_ID)
        with pytest.raises(ForbiddenTransitionError):
            PickupLifecycleService.ensure_party(request, ActorRole.PHARMACY, CUSTOMER_ID)


class TestPersistence:
    """Tests for reads and the status history."""

    async def test_round_trip_in_new_session(self, service, session_factory):
        request = await create_request(
            service, items=[line_item("A", quantity=2), line_item("B", quantity=3)]
        )
        await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.ACCEPTED,
            TransitionPayload(total_amount=900, item_prices=(LineItemPrice(0, 100),)),
        )

        async with session_factory() as other:
            loaded = await PickupLifecycleService(other).get(request.request_id)

        assert loaded.status is PickupStatus.ACCEPTED
        assert loaded.total_amount == 900
        assert loaded.accepted_at == request.accepted_at
        assert loaded.accepted_at.tzinfo is not None
        assert [(i.product_name, i.quantity, i.total_price) for i in loaded.line_items] == [
            ("A", 2, 200),
            ("B", 3, None),
        ]

    async def test_get_unknown_request(self, service):
        with pytest.raises(RequestNotFoundError):
            await service.get(uuid4())

    async def test_transition_unknown_request(self, service):
        with pytest.raises(RequestNotFoundError):
            await service.transition(uuid4(), ActorRole.PHARMACY, PickupStatus.ACCEPTED)

    async def test_history_records_every_change(self, service):
        request = await create_request(service)
        await advance_to(service, request, PickupStatus.READY)
        await service.cancel(request.request_id, ActorRole.CUSTOMER, "moved away")

        history = await service.history(request.request_id)

        assert [c.sequence for c in history] == [1, 2, 3, 4, 5]
        assert [(c.from_status, c.to_status) for c in history] == [
            (None, PickupStatus.REQUESTED),
            (PickupStatus.REQUESTED, PickupStatus.ACCEPTED),
            (PickupStatus.ACCEPTED, PickupStatus.PREPARING),
            (PickupStatus.PREPARING, PickupStatus.READY),
            (PickupStatus.READY, PickupStatus.CANCELED),
        ]
        assert history[-1].reason == "moved away"
        assert history[-1].actor_role is ActorRole.CUSTOMER

    async def test_failed_transition_leaves_no_history(self, service):
        request = await create_request(service)
        with pytest.raises(InvalidTransitionError):
            await service.transition(request.request_id, ActorRole.PHARMACY, PickupStatus.READY)

        assert len(await service.history(request.request_id)) == 1

    async def test_list_for_customer_newest_first(self, service, clock):
        first = await create_request(service)
        clock.advance(minutes=5)
        second = await create_request(service)
        await create_request(service, customer_id=OTHER_CUSTOMER_ID)

        listed = await service.list_for_customer(CUSTOMER_ID)
        assert [r.request_id for r in listed] == [second.request_id, first.request_id]

    async def test_list_for_pharmacy_with_status_filter(self, service):
        kept = await create_request(service)
        canceled = await create_request(service)
        await create_request(service, pharmacy_id=OTHER_PHARMACY_ID)
        await service.cancel(canceled.request_id, ActorRole.CUSTOMER, "x")

        listed = await service.list_for_pharmacy(PHARMACY_ID, "requested")
        assert [r.request_id for r in listed] == [kept.request_id]

    async def test_list_with_unknown_status(self, service):
        with pytest.raises(InvalidInputError):
            await service.list_for_pharmacy(PHARMACY_ID, "LOST")


class TestTimestamps:
    """Lifecycle timestamps never go backwards."""

    async def test_clock_moving_backwards_is_clamped(self, service, clock):
        request = await create_request(service)
        created_at = request.requested_at

        clock.advance(hours=-2)
        request = await service.transition(
            request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED
        )

        assert request.accepted_at == created_at
        assert request.updated_at == created_at

    async def test_updated_at_follows_last_change(self, service, clock):
        request = await create_request(service)
        clock.advance(minutes=30)
        request = await service.transition(
            request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED
        )
        assert request.updated_at == clock.now


class TestEvents:
    """One event per committed change, none for rejected attempts."""

    async def test_transition_publishes_event(self, service, recorder):
        request = await create_request(service)
        await service.transition(
            request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED, actor_id=PHARMACY_ID
        )

        event = recorder.events[-1]
        assert event.previous_status is PickupStatus.REQUESTED
        assert event.new_status is PickupStatus.ACCEPTED
        assert event.actor_role is ActorRole.PHARMACY
        assert event.actor_id == PHARMACY_ID

    async def test_rejected_transition_publishes_nothing(self, service, recorder):
        request = await create_request(service)
        with pytest.raises(InvalidTransitionError):
            await service.complete(request.request_id)
        assert len(recorder.events) == 1

    async def test_failing_subscriber_does_not_undo_change(self, service, dispatcher, caplog):
        async def broken(event):
            raise RuntimeError("push gateway down")

        dispatcher.subscribe(broken)
        request = await create_request(service)

        reloaded = await service.get(request.request_id)
        assert reloaded.status is PickupStatus.REQUESTED
        assert "subscriber failed" in caplog.text


class TestParseStatus:
    def test_case_insensitive(self):
        assert parse_status(" ready ") is PickupStatus.READY

    def test_passthrough(self):
        assert parse_status(None) is None
        assert parse_status(PickupStatus.READY) is PickupStatus.READY

    def test_unknown(self):
        with pytest.raises(InvalidInputError) as exc_info:
            parse_status("shipped")
        assert exc_info.value.field == "status"


class TestRoleByName:
    def test_parse_role(self):
        assert parse_role("pharmacy") is ActorRole.PHARMACY
        assert parse_role(ActorRole.SYSTEM) is ActorRole.SYSTEM

    def test_unknown_role(self):
        with pytest.raises(InvalidInputError) as exc_info:
            parse_role("courier")
        assert exc_info.value.field == "actor_role"

    async def test_transition_accepts_role_name(self, service):
        request = await create_request(service)

        accepted = await service.transition(request.request_id, "PHARMACY", "ACCEPTED")

        assert accepted.status is PickupStatus.ACCEPTED
        history = await service.history(request.request_id)
        assert history[-1].actor_role is ActorRole.PHARMACY

    async def test_cancel_accepts_role_name(self, service):
        request = await create_request(service)

        canceled = await service.cancel(request.request_id, "pharmacy", "out of stock")

        assert canceled.status is PickupStatus.CANCELED
        assert canceled.canceled_by is ActorRole.PHARMACY

    async def test_unknown_role_name_is_invalid_input(self, service):
        request = await create_request(service)

        with pytest.raises(InvalidInputError):
            await service.transition(request.request_id, "COURIER", PickupStatus.ACCEPTED)
