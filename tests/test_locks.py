"""
Tests for the per-student lock registry
"""
import asyncio

from points_service.logic.locks import StudentLocks


def test_same_key_same_lock():
    locks = StudentLocks()

    first = locks.for_student("s-1")
    other = locks.for_student("s-2")

    assert locks.for_student("s-1") is first
    assert other is not first
    assert locks.get("student", "s-1") is first
    assert len(locks) == 2


def test_unused_locks_are_dropped():
    locks = StudentLocks()
    lock = locks.for_student("s-1")
    assert len(locks) == 1

    del lock

    assert len(locks) == 0


async def test_lock_serializes_one_student():
    locks = StudentLocks()
    events = []

    async def unit(name):
        async with locks.for_student("s-1"):
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")

    await asyncio.gather(unit("a"), unit("b"))

    assert events == ["a:start", "a:end", "b:start", "b:end"]
    assert len(locks) == 0


async def test_registry_does_not_grow_with_students(points_engine, seed):
    await points_engine.apply_behavior(seed.participation, [seed.alice, seed.bob, seed.dora])

    assert len(points_engine.locks) == 0
