from datetime import timedelta

import pytest

from booking_engine.core.enums import SessionStatus
from booking_engine.services.conflict_checker import ConflictChecker


@pytest.fixture
def checker(unit_db):
    return ConflictChecker(unit_db)


class TestFindConflicts:
    def test_back_to_back_sessions_do_not_conflict(self, world, checker):
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9))

        assert checker.find_conflicts(world.provider.id, world.at(monday, 10)) == []
        assert checker.find_conflicts(world.provider.id, world.at(monday, 8)) == []

    def test_partial_overlap_is_reported(self, world, checker):
        monday = world.next_weekday(0)
        existing = world.add_session(world.at(monday, 9))

        conflicts = checker.find_conflicts(world.provider.id, world.at(monday, 9, 30))

        assert [c["session_id"] for c in conflicts] == [existing.id]
        assert conflicts[0]["status"] == SessionStatus.SCHEDULED.value

    def test_conflicts_are_ordered_by_start(self, world, checker):
        monday = world.next_weekday(0)
        later = world.add_session(world.at(monday, 11))
        earlier = world.add_session(world.at(monday, 9), client=world.other_client)

        start = world.at(monday, 9, 30)
        conflicts = checker.find_conflicts(world.provider.id, start, end_at=start + timedelta(hours=2))

        assert [c["session_id"] for c in conflicts] == [earlier.id, later.id]

    def test_completed_sessions_still_occupy(self, world, checker):
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9), status=SessionStatus.COMPLETED)
        assert checker.check_overlap(world.provider.id, world.at(monday, 9))

    @pytest.mark.parametrize(
        "status",
        [SessionStatus.CANCELLED_LATE, SessionStatus.CANCELLED_EARLY, SessionStatus.NO_SHOW],
    )
    def test_released_statuses_do_not_occupy(self, world, checker, status):
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9), status=status)
        assert not checker.check_overlap(world.provider.id, world.at(monday, 9))

    def test_excluded_session_is_ignored(self, world, checker):
        monday = world.next_weekday(0)
        existing = world.add_session(world.at(monday, 9))

        assert not checker.check_overlap(
            world.provider.id, world.at(monday, 9, 30), exclude_session_id=existing.id
        )

    def test_explicit_end_widens_the_window(self, world, checker):
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 11))

        start = world.at(monday, 9)
        assert not checker.check_overlap(world.provider.id, start)
        assert checker.check_overlap(world.provider.id, start, end_at=start + timedelta(hours=3))

    def test_other_providers_sessions_are_ignored(self, world, checker):
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9))
        assert checker.find_conflicts("01UNRELATEDPROVIDER0000000", world.at(monday, 9)) == []


class TestCandidateEnd:
    def test_defaults_to_one_hour(self, world):
        start = world.at(world.next_weekday(0), 9)
        assert ConflictChecker.candidate_end(start) == start + timedelta(hours=1)

    def test_uses_given_duration(self, world):
        start = world.at(world.next_weekday(0), 9)
        assert ConflictChecker.candidate_end(start, 30) == start + timedelta(minutes=30)
