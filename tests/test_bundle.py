"""Tests for task bundles, outcomes and id assignment."""

import pytest

from fetch_swarm.bundle import (
    MAX_BUNDLE_ID,
    NO_BUNDLE_ID,
    BundleState,
    Failure,
    Result,
    TaskBundle,
    next_bundle_id,
)
from fetch_swarm.exceptions import TransportError


class TestNextBundleId:
    """Tests for id assignment."""

    def test_starts_after_sentinel(self) -> None:
        """The first id handed out is 1, never the sentinel."""
        assert next_bundle_id(NO_BUNDLE_ID, {}) == 1

    def test_monotonic(self) -> None:
        """Ids increase by one when nothing is live."""
        assert next_bundle_id(41, {}) == 42

    def test_wraps_around_skipping_sentinel(self) -> None:
        """After the bound, ids wrap to 1 rather than 0."""
        assert next_bundle_id(MAX_BUNDLE_ID, {}) == 1

    def test_skips_live_ids(self) -> None:
        """Ids still outstanding are never reused."""
        assert next_bundle_id(0, {1, 2}) == 3
        assert next_bundle_id(MAX_BUNDLE_ID - 1, {MAX_BUNDLE_ID, 1}) == 2


class TestOutcomes:
    """Tests for Result and Failure."""

    def test_result_is_ok(self) -> None:
        """Results are successes whatever the response carries."""
        result = Result(descriptor="req", response={"status": 500}, index=3, attempts=2)

        assert result.ok is True
        assert result.index == 3
        assert result.attempts == 2

    def test_failure_is_not_ok(self) -> None:
        """Failures carry the descriptor and cause."""
        cause = TransportError("reset")
        failure = Failure(descriptor="req", cause=cause)

        assert failure.ok is False
        assert failure.cause is cause
        assert failure.attempts == 1

    def test_outcomes_are_frozen(self) -> None:
        """Outcomes cannot be altered after they are produced."""
        result = Result(descriptor="req", response=None)

        with pytest.raises(AttributeError):
            result.response = "changed"  # type: ignore[misc]


class TestTaskBundle:
    """Tests for TaskBundle."""

    def test_new_bundle_is_pending(self) -> None:
        """Bundles start pending and unsettled."""
        bundle = TaskBundle(id=1, descriptor="req", index=0)

        assert bundle.state is BundleState.PENDING
        assert bundle.attempts == 0
        assert bundle.dispatched_at is None
        assert bundle.is_settled is False

    def test_states_exist(self) -> None:
        """All lifecycle states are defined."""
        states = {s.name for s in BundleState}
        assert states == {"PENDING", "IN_FLIGHT", "COMPLETED", "FAILED", "CANCELLED"}
