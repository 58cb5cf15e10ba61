"""Tests for circle creation (with rollback on partial failure) and deletion."""

from datetime import timedelta

import pytest

from app.core.clock import add_years, start_of_tomorrow, utcnow
from app.core.exceptions import ConflictError, ValidationError
from app.modules.circles.lifecycle import CircleLifecycleManager
from app.modules.circles.models import ASSIGNMENTS_TABLE, CIRCLES_TABLE, MEMBERS_TABLE


# ─────────────────────────────────────────────────────────────────
# create_circle
# ─────────────────────────────────────────────────────────────────


class TestCreateCircle:
    @pytest.mark.asyncio
    async def test_creates_circle_organizer_and_thirty_unassigned_juz(self, service, store, circle, organizer_device):
        assert circle.circle.status == "active"
        assert circle.circle.completed_juz == 0
        assert circle.circle.total_juz == 30
        assert circle.circle.organizer_id == organizer_device
        assert circle.membership.is_organizer
        assert circle.membership.nickname == "Dad"

        assignments = store.rows(ASSIGNMENTS_TABLE, circle_id=circle.circle.id)
        assert sorted(a["juz_number"] for a in assignments) == list(range(1, 31))
        assert all(a["status"] == "unassigned" and a["member_id"] is None for a in assignments)

        progress = await service.get_circle_progress(circle.circle.id)
        assert progress.data.completed == 0
        assert progress.data.total == 30
        assert progress.data.percentage == 0

    @pytest.mark.asyncio
    async def test_trims_name_and_nickname(self, service, organizer_device, deadline):
        result = await service.create_circle("  Family  ", "  Dad ", deadline, organizer_device)

        assert result.data.circle.name == "Family"
        assert result.data.membership.nickname == "Dad"

    @pytest.mark.asyncio
    async def test_device_already_in_active_circle_is_rejected(self, service, store, circle, organizer_device, deadline):
        result = await service.create_circle("Second", "Dad", deadline, organizer_device)

        assert not result.success
        assert result.error_code == ConflictError.code
        assert "Family" in result.error
        assert len(store.rows(CIRCLES_TABLE)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, nickname", [
        ("", "Dad"),
        ("   ", "Dad"),
        ("x" * 51, "Dad"),
        ("Family", ""),
        ("Family", "y" * 21),
    ])
    async def test_invalid_name_or_nickname(self, service, store, organizer_device, deadline, name, nickname):
        result = await service.create_circle(name, nickname, deadline, organizer_device)

        assert not result.success
        assert result.error_code == ValidationError.code
        assert store.rows(CIRCLES_TABLE) == []

    @pytest.mark.asyncio
    async def test_deadline_today_is_rejected(self, service, organizer_device):
        result = await service.create_circle("Family", "Dad", utcnow(), organizer_device)

        assert result.error_code == ValidationError.code

    @pytest.mark.asyncio
    async def test_deadline_beyond_one_year_is_rejected(self, service, organizer_device):
        result = await service.create_circle("Family", "Dad", utcnow() + timedelta(days=370), organizer_device)

        assert result.error_code == ValidationError.code

    @pytest.mark.asyncio
    async def test_backend_unavailable_short_circuits(self, service, store, organizer_device, deadline):
        store.available = False

        result = await service.create_circle("Family", "Dad", deadline, organizer_device)

        assert not result.success
        assert result.error_code == "BACKEND_UNAVAILABLE"
        assert store.rows(CIRCLES_TABLE) == []


class TestValidateExpiration:
    def test_accepts_bounds(self):
        now = utcnow()
        assert CircleLifecycleManager.validate_expiration(start_of_tomorrow(now), now)
        assert CircleLifecycleManager.validate_expiration(add_years(now, 1), now)

    def test_rejects_just_before_tomorrow(self):
        now = utcnow()
        with pytest.raises(ValidationError):
            CircleLifecycleManager.validate_expiration(start_of_tomorrow(now) - timedelta(seconds=1), now)


# ─────────────────────────────────────────────────────────────────
# Rollback on partial create
# ─────────────────────────────────────────────────────────────────


class TestCreateRollback:
    @pytest.mark.asyncio
    async def test_member_insert_failure_removes_circle(self, service, store, organizer_device, deadline):
        store.fail_next("insert", MEMBERS_TABLE)

        result = await service.create_circle("Family", "Dad", deadline, organizer_device)

        assert not result.success
        assert result.error_code == "UNEXPECTED_ERROR"
        assert store.rows(CIRCLES_TABLE) == []
        assert store.rows(MEMBERS_TABLE) == []

    @pytest.mark.asyncio
    async def test_assignment_insert_failure_removes_member_and_circle(self, service, store, organizer_device, deadline):
        store.fail_next("insert", ASSIGNMENTS_TABLE)

        result = await service.create_circle("Family", "Dad", deadline, organizer_device)

        assert not result.success
        assert store.rows(CIRCLES_TABLE) == []
        assert store.rows(MEMBERS_TABLE) == []
        assert store.rows(ASSIGNMENTS_TABLE) == []

        check = await service.check_user_circle(organizer_device)
        assert check.success and check.data is None

    @pytest.mark.asyncio
    async def test_failing_rollback_step_does_not_stop_the_others(self, service, store, organizer_device, deadline):
        store.fail_next("insert", ASSIGNMENTS_TABLE)
        store.fail_next("delete", MEMBERS_TABLE)

        result = await service.create_circle("Family", "Dad", deadline, organizer_device)

        # The insert failure is reported, not the rollback one
        assert result.error == "An unexpected error occurred."
        assert store.rows(CIRCLES_TABLE) == []
        assert len(store.rows(MEMBERS_TABLE)) == 1


# ─────────────────────────────────────────────────────────────────
# delete_circle
# ─────────────────────────────────────────────────────────────────


class TestDeleteCircle:
    @pytest.mark.asyncio
    async def test_cascades_to_members_and_assignments(self, service, store, circle, member, organizer_device):
        result = await service.delete_circle(circle.circle.id, organizer_device)

        assert result.success and result.data is True
        assert store.rows(CIRCLES_TABLE) == []
        assert store.rows(MEMBERS_TABLE) == []
        assert store.rows(ASSIGNMENTS_TABLE) == []

    @pytest.mark.asyncio
    async def test_any_member_may_delete(self, service, store, circle, member, member_device):
        result = await service.delete_circle(circle.circle.id, member_device)

        assert result.success
        assert store.rows(CIRCLES_TABLE) == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_delete(self, service, store, circle):
        result = await service.delete_circle(circle.circle.id, "outsider-device")

        assert result.error_code == "NOT_FOUND"
        assert len(store.rows(CIRCLES_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_steps_are_best_effort(self, service, store, circle):
        store.fail_next("delete", ASSIGNMENTS_TABLE)

        deleted = await service.lifecycle.delete(circle.circle.id)

        assert deleted is False
        assert store.rows(MEMBERS_TABLE) == []
        assert store.rows(CIRCLES_TABLE) == []
        assert len(store.rows(ASSIGNMENTS_TABLE)) == 30
