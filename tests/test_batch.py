"""Tests for staged Juz edits and the multi-Juz commits."""

import pytest

from app.core.exceptions import ConflictError
from app.modules.circles.batch import PendingAssignmentBatch
from app.modules.circles.models import ASSIGNMENTS_TABLE
from app.modules.circles.schemas import CircleAssignment


def _assignment(juz, member_id=None, status="unassigned"):
    return CircleAssignment(
        id=f"a{juz}", circle_id="c1", juz_number=juz, member_id=member_id, status=status,
    )


@pytest.fixture
def batch():
    return PendingAssignmentBatch([
        _assignment(1, "m1", "assigned"),
        _assignment(2),
        _assignment(3, "m2", "completed"),
        _assignment(4, "m1", "in_progress"),
    ])


# ─────────────────────────────────────────────────────────────────
# Staging
# ─────────────────────────────────────────────────────────────────


class TestPendingAssignmentBatch:
    def test_starts_empty(self, batch):
        assert len(batch) == 0
        assert batch.effective_member(1) == "m1"
        assert batch.effective_member(2) is None

    def test_toggle_gives_then_takes_back(self, batch):
        assert batch.toggle(2, "m2") == "m2"
        assert batch.effective_member(2) == "m2"

        assert batch.toggle(2, "m2") is None
        assert batch.effective_member(2) is None

    def test_toggle_on_held_unit_releases_it(self, batch):
        assert batch.toggle(1, "m1") is None
        assert batch.changes == {1: None}

    def test_toggle_moves_unit_between_members(self, batch):
        assert batch.toggle(1, "m2") == "m2"

    def test_completed_unit_cannot_be_staged(self, batch):
        with pytest.raises(ConflictError):
            batch.toggle(3, "m1")
        with pytest.raises(ConflictError):
            batch.stage(3, None)
        assert len(batch) == 0

    def test_member_juz_reflects_staged_edits(self, batch):
        batch.stage(2, "m1")
        batch.stage(4, None)

        assert batch.member_juz("m1") == [1, 2]
        assert batch.member_juz("m2") == [3]

    def test_drop_member_forgets_their_edits(self, batch):
        batch.stage(2, "m2")
        batch.stage(1, None)

        batch.drop_member("m2")

        assert batch.changes == {1: None}


# ─────────────────────────────────────────────────────────────────
# Commit
# ─────────────────────────────────────────────────────────────────


class TestCommit:
    @pytest.mark.asyncio
    async def test_applies_every_staged_edit(self, service, store, circle, member):
        circle_id = circle.circle.id
        await service.assign_juz_to_member(circle_id, 2, member.id)
        batch = PendingAssignmentBatch(await service.repository.list_assignments(circle_id))
        batch.toggle(1, member.id)
        batch.toggle(2, member.id)
        batch.stage(3, circle.membership.id)

        result = await batch.commit(service.assignments, circle_id)

        assert result.applied == [1, 2, 3]
        assert result.error_count == 0
        assert len(batch) == 0
        rows = {r["juz_number"]: r for r in store.rows(ASSIGNMENTS_TABLE, circle_id=circle_id)}
        assert rows[1]["member_id"] == member.id
        assert rows[2]["member_id"] is None
        assert rows[3]["member_id"] == circle.membership.id

    @pytest.mark.asyncio
    async def test_failures_are_tallied_per_unit(self, service, store, circle, member, member_device):
        circle_id = circle.circle.id
        await service.assign_juz_to_member(circle_id, 5, member.id)
        await service.mark_juz_completed(circle_id, 5, member_device)

        result = await service.apply_pending_changes(circle_id, {
            4: member.id,
            5: None,
            6: "ghost",
            7: member.id,
        })

        assert result.success
        assert result.data.applied == [4, 7]
        assert sorted(result.data.failed) == [5, 6]
        assert "completed" in result.data.failed[5]
        assert result.data.error_count == 2
        assert store.rows(ASSIGNMENTS_TABLE, circle_id=circle_id, juz_number=7)[0]["member_id"] == member.id

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_reported_generically(self, service, store, circle, member):
        store.fail_next("update", ASSIGNMENTS_TABLE)

        result = await service.assign_multiple_juz(circle.circle.id, [1, 2], member.id)

        assert result.data.applied == [2]
        assert result.data.failed == {1: "An unexpected error occurred."}


class TestMultipleJuz:
    @pytest.mark.asyncio
    async def test_assign_and_unassign_many(self, service, store, circle, member):
        circle_id = circle.circle.id

        assigned = await service.assign_multiple_juz(circle_id, [10, 11, 12], member.id)
        unassigned = await service.unassign_multiple_juz(circle_id, [10, 12])

        assert assigned.data.applied == [10, 11, 12]
        assert unassigned.data.applied == [10, 12]
        holders = {r["juz_number"]: r["member_id"] for r in store.rows(ASSIGNMENTS_TABLE, circle_id=circle_id)}
        assert (holders[10], holders[11], holders[12]) == (None, member.id, None)

    @pytest.mark.asyncio
    async def test_out_of_range_unit_is_reported(self, service, circle, member):
        result = await service.assign_multiple_juz(circle.circle.id, [30, 31], member.id)

        assert result.data.applied == [30]
        assert list(result.data.failed) == [31]
