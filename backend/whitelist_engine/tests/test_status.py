"""
Tests for duration stacking and status resolution.

Test coverage:
- TestAddDuration: calendar month arithmetic, months before days
- TestResolveStatus: permanent dominance, stacking, lapsed chains,
  zero-duration and revoked grants
- TestBuildStackChains: chain boundaries
"""

import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from whitelist_engine.entitlements.status import (
    StatusState,
    add_duration,
    build_stack_chains,
    individual_expiration,
    resolve_status,
)

DAY_0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


# =============================================================================
# Helpers
# =============================================================================


def _grant(
    granted_at,
    duration_value=None,
    duration_type=None,
    approved=True,
    revoked=False,
    source="manual",
):
    return SimpleNamespace(
        id=f"grant-{next(_ids):04d}",
        granted_at=granted_at,
        duration_value=duration_value,
        duration_type=duration_type,
        approved=approved,
        revoked=revoked,
        source=source,
    )


def _day(n):
    return DAY_0 + timedelta(days=n)


# =============================================================================
# add_duration
# =============================================================================


class TestAddDuration:

    def test_month_end_clamps(self):
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        assert add_duration(start, months=1) == datetime(2025, 2, 28, tzinfo=timezone.utc)

    def test_months_then_days(self):
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        # Feb 28 + 1 day, not Jan 31 + 1 day + 1 month
        assert add_duration(start, months=1, days=1) == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_naive_start_treated_as_utc(self):
        naive = datetime(2025, 1, 1)
        assert add_duration(naive, days=1) == datetime(2025, 1, 2, tzinfo=timezone.utc)

    def test_individual_expiration_permanent_is_none(self):
        assert individual_expiration(_grant(DAY_0)) is None

    def test_individual_expiration_unknown_type_raises(self):
        with pytest.raises(ValueError):
            individual_expiration(_grant(DAY_0, 1, "weeks"))


# =============================================================================
# resolve_status
# =============================================================================


class TestResolveStatus:

    def test_no_grants(self):
        status = resolve_status([], now=DAY_0)
        assert status.state == StatusState.NONE
        assert status.active is False

    def test_permanent_dominates_timed(self):
        """A permanent role grant wins over a running 3-month manual grant."""
        permanent = _grant(_day(-100), source="role")
        timed = _grant(_day(-10), 3, "months")

        status = resolve_status([timed, permanent], now=DAY_0)

        assert status.permanent is True
        assert status.active is True
        assert status.expires_at is None
        assert status.state == StatusState.PERMANENT
        assert status.canonical_grant_id == permanent.id

    def test_earliest_permanent_is_canonical(self):
        later = _grant(_day(-5))
        earlier = _grant(_day(-50))
        status = resolve_status([later, earlier], now=DAY_0)
        assert status.canonical_grant_id == earlier.id
        assert status.grant_count == 2

    def test_overlapping_grants_stack_past_individual_expiration(self):
        """Two 1-month grants on day 0 and day 20 stay active until day 0 + 2 months."""
        first = _grant(_day(0), 1, "months")
        second = _grant(_day(20), 1, "months")

        status = resolve_status([first, second], now=_day(35))

        assert individual_expiration(first) < _day(35)
        assert status.active is True
        assert status.expires_at == add_duration(DAY_0, months=2)
        assert status.grant_count == 2
        assert status.canonical_grant_id == first.id

    def test_n_monthly_grants_stack(self):
        grants = [_grant(_day(i), 1, "months") for i in range(5)]
        status = resolve_status(grants, now=_day(100))
        assert status.active is True
        assert status.expires_at == add_duration(DAY_0, months=5)

    @pytest.mark.parametrize("count", [1, 2, 3, 12])
    def test_same_day_monthly_grants_stack(self, count):
        grants = [_grant(DAY_0, 1, "months") for _ in range(count)]
        status = resolve_status(grants, now=DAY_0)
        assert status.active is True
        assert status.expires_at == add_duration(DAY_0, months=count)
        assert status.grant_count == count

    def test_lapsed_grant_does_not_resurrect(self):
        """A grant made after the previous chain expired starts a new chain."""
        old = _grant(_day(0), 1, "months")
        new = _grant(_day(90), 10, "days")

        status = resolve_status([old, new], now=_day(95))

        assert status.active is True
        assert status.expires_at == _day(100)
        assert status.grant_count == 1
        assert status.canonical_grant_id == new.id

    def test_expired_chain(self):
        grant = _grant(_day(0), 7, "days")
        status = resolve_status([grant], now=_day(30))
        assert status.active is False
        assert status.state == StatusState.EXPIRED
        assert status.expires_at == _day(7)

    def test_expired_shows_latest_individual_expiration(self):
        first = _grant(_day(0), 1, "months")
        second = _grant(_day(20), 1, "months")

        status = resolve_status([first, second], now=_day(100))

        assert status.active is False
        assert status.state == StatusState.EXPIRED
        assert status.expires_at == individual_expiration(second)
        assert status.canonical_grant_id == second.id

    def test_months_added_before_days_in_chain(self):
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        days_grant = _grant(start, 1, "days")
        month_grant = _grant(start + timedelta(hours=1), 1, "months")

        status = resolve_status([days_grant, month_grant], now=start + timedelta(days=2))

        assert status.expires_at == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_zero_duration_never_active(self):
        status = resolve_status([_grant(_day(0), 0, "days")], now=_day(0))
        assert status.active is False
        assert status.state == StatusState.EXPIRED

    def test_zero_duration_does_not_extend_chain(self):
        running = _grant(_day(0), 10, "days")
        zero = _grant(_day(5), 0, "months")
        status = resolve_status([running, zero], now=_day(6))
        assert status.expires_at == _day(10)
        assert status.grant_count == 1

    def test_revoked_and_unapproved_ignored(self):
        revoked_permanent = _grant(_day(0), revoked=True)
        blocked = _grant(_day(0), source="role", approved=False, revoked=True)

        status = resolve_status([revoked_permanent, blocked], now=_day(1))

        assert status.active is False
        assert status.state == StatusState.REVOKED

    def test_revoked_permanent_falls_back_to_timed(self):
        revoked_permanent = _grant(_day(0), revoked=True)
        timed = _grant(_day(0), 30, "days")
        status = resolve_status([revoked_permanent, timed], now=_day(10))
        assert status.permanent is False
        assert status.expires_at == _day(30)

    def test_to_dict(self):
        status = resolve_status([_grant(_day(0), 30, "days")], now=_day(1))
        data = status.to_dict()
        assert data["state"] == "active"
        assert data["expires_at"] == _day(30).isoformat()


# =============================================================================
# build_stack_chains
# =============================================================================


class TestBuildStackChains:

    def test_grant_at_exact_expiration_starts_new_chain(self):
        first = _grant(_day(0), 10, "days")
        second = _grant(_day(10), 10, "days")
        chains = build_stack_chains([first, second])
        assert len(chains) == 2

    def test_unknown_duration_type_skipped(self):
        chains = build_stack_chains([_grant(_day(0), 3, "weeks")])
        assert chains == []

    def test_input_order_irrelevant(self):
        grants = [_grant(_day(20), 1, "months"), _grant(_day(0), 1, "months")]
        forward = build_stack_chains(grants)
        backward = build_stack_chains(list(reversed(grants)))
        assert [c.grant_ids for c in forward] == [c.grant_ids for c in backward]
