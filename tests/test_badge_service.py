"""
Tests for badge awarding

Covers:
- BEHAVIOR_COUNT unlock on the third application, never twice
- Fixed-point loop (reward XP unlocking further badges) and its pass cap
- Badge visibility (SYSTEM + own classroom)
- Manual grant / revoke
- Progress read model
"""
import json
import logging

import pytest

from points_service import crud, models
from points_service.errors import NotFoundError, ValidationError
from points_service.logic.badge_service import BadgeService
from points_service.logic.points_engine import PointsEngine


def awarded_names(result, student_id):
    for entry in result.awarded_badges:
        if entry.student_id == student_id:
            return [b.name for b in entry.badges]
    return []


# ============================================================================
# Automatic awards
# ============================================================================

class TestAutomaticAwards:

    async def test_behavior_count_unlocks_on_third_application(self, points_engine, seed, make_badge, count_rows, notifier):
        badge_id = await make_badge(
            "Regular",
            {'type': 'BEHAVIOR_COUNT', 'behaviorId': seed.participation, 'count': 3},
            classroom_id=seed.classroom_id,
        )

        first = await points_engine.apply_behavior(seed.participation, [seed.bob])
        second = await points_engine.apply_behavior(seed.participation, [seed.bob])
        assert first.awarded_badges == [] and second.awarded_badges == []

        third = await points_engine.apply_behavior(seed.participation, [seed.bob])
        assert awarded_names(third, seed.bob) == ["Regular"]

        fourth = await points_engine.apply_behavior(seed.participation, [seed.bob])
        assert fourth.awarded_badges == []
        assert fourth.errors == []

        assert await count_rows(models.StudentBadge, student_id=seed.bob, badge_id=badge_id) == 1
        assert notifier.badges_awarded == [{'studentId': seed.bob, 'badges': ["Regular"]}]

    async def test_category_and_any_behavior(self, points_engine, seed, make_badge):
        await make_badge("Troublemaker", {'type': 'BEHAVIOR_CATEGORY', 'category': 'negative', 'count': 1},
                         classroom_id=seed.classroom_id)
        await make_badge("Busy", {'type': 'ANY_BEHAVIOR', 'count': 2}, classroom_id=seed.classroom_id)

        first = await points_engine.apply_behavior(seed.participation, [seed.alice])
        assert first.awarded_badges == []

        second = await points_engine.apply_behavior(seed.disruption, [seed.alice])
        assert awarded_names(second, seed.alice) == ["Troublemaker", "Busy"]

    async def test_reward_unlocks_next_badge(self, points_engine, seed, make_badge, load_student, count_rows):
        """XP reward of badge A pushes the student to level 3, which unlocks B."""
        a = await make_badge("Hundred", {'type': 'XP_TOTAL', 'value': 100}, classroom_id=seed.classroom_id,
                             reward_xp=100)
        await make_badge("Level three", {'type': 'LEVEL', 'value': 3}, classroom_id=seed.classroom_id,
                         reward_xp=50, reward_gp=10)

        result = await points_engine.apply_behavior(seed.participation, [seed.alice])

        assert awarded_names(result, seed.alice) == ["Hundred", "Level three"]
        assert len(result.level_ups) == 1
        assert (result.level_ups[0].from_level, result.level_ups[0].to_level) == (1, 3)

        student = await load_student(seed.alice)
        assert (student.xp, student.level, student.gp) == (260, 3, 15)
        assert result.results[0].new_xp == 260

        again = await points_engine.apply_behavior(seed.participation, [seed.alice])
        assert again.awarded_badges == []
        assert await count_rows(models.StudentBadge, badge_id=a) == 1

    async def test_reward_logged_with_badge(self, points_engine, seed, make_badge, session_factory):
        badge_id = await make_badge("Hundred", {'type': 'XP_TOTAL', 'value': 100},
                                    classroom_id=seed.classroom_id, reward_xp=30)

        await points_engine.apply_behavior(seed.participation, [seed.alice])

        async with session_factory() as db:
            logs = [log for log in await crud.get_point_logs(db, seed.alice) if log.badge_id == badge_id]

        assert [(log.point_type, log.amount) for log in logs] == [('XP', 30)]

    async def test_pass_cap_stops_the_loop(self, session_factory, seed, make_badge, caplog):
        engine = PointsEngine(session_factory, badge_service=BadgeService(max_iterations=1))
        await make_badge("Hundred", {'type': 'XP_TOTAL', 'value': 100}, classroom_id=seed.classroom_id,
                         reward_xp=100)
        await make_badge("Level three", {'type': 'LEVEL', 'value': 3}, classroom_id=seed.classroom_id)

        with caplog.at_level(logging.WARNING):
            result = await engine.apply_behavior(seed.participation, [seed.alice])

        assert awarded_names(result, seed.alice) == ["Hundred"]
        assert "stopped after 1 passes" in caplog.text

        follow_up = await engine.apply_behavior(seed.participation, [seed.alice])
        assert awarded_names(follow_up, seed.alice) == ["Level three"]

    async def test_secret_badges_unlock_like_any_other(self, points_engine, seed, make_badge):
        await make_badge("Hidden", {'type': 'ANY_BEHAVIOR', 'count': 1}, classroom_id=seed.classroom_id,
                         is_secret=True)

        result = await points_engine.apply_behavior(seed.participation, [seed.bob])

        assert awarded_names(result, seed.bob) == ["Hidden"]

    async def test_badge_visibility(self, points_engine, seed, make_badge):
        await make_badge("Everyone", {'type': 'ANY_BEHAVIOR', 'count': 1})
        await make_badge("Elsewhere", {'type': 'ANY_BEHAVIOR', 'count': 1}, classroom_id=seed.other_classroom_id)
        await make_badge("Retired", {'type': 'ANY_BEHAVIOR', 'count': 1}, classroom_id=seed.classroom_id,
                         is_active=False)
        await make_badge("Manual only", None, classroom_id=seed.classroom_id, assignment_mode='MANUAL')

        result = await points_engine.apply_behavior(seed.participation, [seed.bob])

        assert awarded_names(result, seed.bob) == ["Everyone"]

    async def test_malformed_condition_never_blocks_points(self, points_engine, seed, make_badge, load_student):
        await make_badge("Broken", '{"type": "BEHAVIOR_COUNT", "count":', classroom_id=seed.classroom_id)
        await make_badge("Unknown", {'type': 'PURCHASES', 'count': 1}, classroom_id=seed.classroom_id)

        result = await points_engine.apply_behavior(seed.participation, [seed.alice, seed.bob])

        assert result.errors == []
        assert result.awarded_badges == []
        assert (await load_student(seed.alice)).xp == 110

    async def test_double_encoded_condition(self, points_engine, seed, make_badge):
        raw = json.dumps(json.dumps({'type': 'ANY_BEHAVIOR', 'count': 1}))
        await make_badge("Encoded twice", raw, classroom_id=seed.classroom_id)

        result = await points_engine.apply_behavior(seed.participation, [seed.bob])

        assert awarded_names(result, seed.bob) == ["Encoded twice"]


# ============================================================================
# Manual grant / revoke
# ============================================================================

class TestManualAwards:

    async def test_manual_grant_is_idempotent(self, points_engine, seed, make_badge, load_student, count_rows):
        badge_id = await make_badge("Helper", None, classroom_id=seed.classroom_id,
                                    assignment_mode='MANUAL', reward_xp=20)

        first = await points_engine.award_badge_manually(seed.alice, badge_id, given_by="teacher-1", reason="Kind")
        assert first.newly_awarded is True
        assert (first.new_xp, first.new_level) == (110, 2)

        second = await points_engine.award_badge_manually(seed.alice, badge_id, given_by="teacher-1")
        assert second.newly_awarded is False
        assert second.new_xp == 110

        assert (await load_student(seed.alice)).xp == 110
        assert await count_rows(models.StudentBadge, student_id=seed.alice, badge_id=badge_id) == 1

    async def test_manual_grant_records_who_and_why(self, points_engine, seed, make_badge):
        badge_id = await make_badge("Helper", None, classroom_id=seed.classroom_id, assignment_mode='MANUAL')

        await points_engine.award_badge_manually(seed.alice, badge_id, given_by="teacher-1", reason="Kind")
        owned = await points_engine.get_student_badges(seed.alice)

        assert len(owned) == 1
        assert owned[0].awarded_by == "teacher-1"
        assert owned[0].reason == "Kind"
        assert owned[0].badge.name == "Helper"

    async def test_manual_grant_triggers_automatic_badges(self, points_engine, seed, make_badge, notifier):
        badge_id = await make_badge("Helper", None, classroom_id=seed.classroom_id,
                                    assignment_mode='BOTH', reward_xp=20)
        await make_badge("Hundred", {'type': 'XP_TOTAL', 'value': 100}, classroom_id=seed.classroom_id)

        result = await points_engine.award_badge_manually(seed.alice, badge_id)

        assert [b.name for b in result.awarded_badges] == ["Helper", "Hundred"]
        assert notifier.badges_awarded == [{'studentId': seed.alice, 'badges': ["Helper", "Hundred"]}]
        assert notifier.level_ups[0]['newLevel'] == 2

    async def test_automatic_only_badge_rejected(self, points_engine, seed, make_badge):
        badge_id = await make_badge("Auto", {'type': 'XP_TOTAL', 'value': 10000}, classroom_id=seed.classroom_id)

        with pytest.raises(ValidationError):
            await points_engine.award_badge_manually(seed.alice, badge_id)

    async def test_badge_from_other_classroom_rejected(self, points_engine, seed, make_badge):
        badge_id = await make_badge("Elsewhere", None, classroom_id=seed.other_classroom_id,
                                    assignment_mode='MANUAL')

        with pytest.raises(ValidationError):
            await points_engine.award_badge_manually(seed.alice, badge_id)

    async def test_unknown_badge_or_student(self, points_engine, seed, make_badge):
        badge_id = await make_badge("Helper", None, classroom_id=seed.classroom_id, assignment_mode='MANUAL')

        with pytest.raises(NotFoundError):
            await points_engine.award_badge_manually(seed.alice, "missing")
        with pytest.raises(NotFoundError):
            await points_engine.award_badge_manually("ghost", badge_id)

    async def test_revoke(self, points_engine, seed, make_badge, count_rows, load_student):
        badge_id = await make_badge("Helper", None, classroom_id=seed.classroom_id,
                                    assignment_mode='MANUAL', reward_gp=5)
        await points_engine.award_badge_manually(seed.alice, badge_id)

        await points_engine.revoke_badge(seed.alice, badge_id)

        assert await count_rows(models.StudentBadge, student_id=seed.alice) == 0
        assert (await load_student(seed.alice)).gp == 5

        with pytest.raises(NotFoundError):
            await points_engine.revoke_badge(seed.alice, badge_id)


# ============================================================================
# Progress
# ============================================================================

class TestBadgeProgress:

    async def test_progress_sorted_by_percentage(self, points_engine, seed, make_badge):
        await make_badge("Thousand", {'type': 'XP_TOTAL', 'value': 1000}, classroom_id=seed.classroom_id)
        await make_badge("Twice", {'type': 'BEHAVIOR_COUNT', 'behaviorId': seed.participation, 'count': 4},
                         classroom_id=seed.classroom_id)
        await make_badge("Hidden", {'type': 'ANY_BEHAVIOR', 'count': 50}, classroom_id=seed.classroom_id,
                         is_secret=True)
        await make_badge("Manual", None, classroom_id=seed.classroom_id, assignment_mode='MANUAL')
        await make_badge("Broken", '{"type": "LEVEL"}', classroom_id=seed.classroom_id)

        await points_engine.apply_behavior(seed.participation, [seed.bob])
        progress = await points_engine.get_badge_progress(seed.bob)

        assert [(p['name'], p['current'], p['target'], p['percentage']) for p in progress] == [
            ("Twice", 1, 4, 25),
            ("Thousand", 20, 1000, 2),
        ]
        assert progress[0]['condition_type'] == 'BEHAVIOR_COUNT'

    async def test_owned_badges_not_in_progress(self, points_engine, seed, make_badge):
        await make_badge("First step", {'type': 'ANY_BEHAVIOR', 'count': 1}, classroom_id=seed.classroom_id)

        await points_engine.apply_behavior(seed.participation, [seed.bob])

        assert await points_engine.get_badge_progress(seed.bob) == []

    async def test_progress_unknown_student(self, points_engine, seed):
        with pytest.raises(NotFoundError):
            await points_engine.get_badge_progress("ghost")
