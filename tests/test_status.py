"""Tests for the order status state machine."""

import pytest

from orderflow.domain.status import (
    CANCELLABLE_STATES,
    ORDER_CREATED,
    STATUS_SEQUENCE,
    OrderStatus,
    allowed_next,
    is_terminal,
    status_event_type,
    status_from_event_type,
)


class TestAllowedNext:
    @pytest.mark.parametrize(
        "current, following",
        list(zip(STATUS_SEQUENCE, STATUS_SEQUENCE[1:])),
    )
    def test_each_status_advances_to_the_next_one(self, current, following):
        assert following in allowed_next(current)

    @pytest.mark.parametrize("status", sorted(CANCELLABLE_STATES, key=STATUS_SEQUENCE.index))
    def test_cancellation_allowed_before_pickup(self, status):
        assert OrderStatus.CANCELLED in allowed_next(status)

    @pytest.mark.parametrize(
        "status", [OrderStatus.READY_FOR_PICKUP, OrderStatus.OUT_FOR_DELIVERY]
    )
    def test_cannot_cancel_once_handed_to_courier(self, status):
        assert OrderStatus.CANCELLED not in allowed_next(status)

    def test_cannot_skip_steps(self):
        assert OrderStatus.DELIVERED not in allowed_next(OrderStatus.READY_FOR_PICKUP)
        assert OrderStatus.PREPARING not in allowed_next(OrderStatus.PENDING)

    def test_cannot_move_backwards(self):
        assert OrderStatus.PENDING not in allowed_next(OrderStatus.CONFIRMED)

    @pytest.mark.parametrize("status", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_terminal_states_have_no_successors(self, status):
        assert allowed_next(status) == frozenset()
        assert is_terminal(status)

    def test_accepts_raw_string_values(self):
        assert allowed_next("pending") == {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}

    def test_cancelled_is_not_part_of_progress_sequence(self):
        assert OrderStatus.CANCELLED not in STATUS_SEQUENCE
        assert len(STATUS_SEQUENCE) == 6


class TestEventTypes:
    def test_status_event_type_is_prefixed(self):
        assert status_event_type(OrderStatus.READY_FOR_PICKUP) == "status_ready_for_pickup"

    def test_order_created_establishes_pending(self):
        assert status_from_event_type(ORDER_CREATED) == OrderStatus.PENDING

    def test_round_trips_through_event_type(self):
        for status in OrderStatus:
            assert status_from_event_type(status_event_type(status)) == status

    @pytest.mark.parametrize("event_type", ["delivery_assigned", "location_update", "status_unknown"])
    def test_non_status_events_map_to_none(self, event_type):
        assert status_from_event_type(event_type) is None
