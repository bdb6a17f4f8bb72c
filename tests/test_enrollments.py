import asyncio

import pytest

from course_bot.errors import NotFoundError
from course_bot.models import EnrollmentStatus

from conftest import CURATOR, LEARNER, LEARNER_CHAT, MODULE, NEXT_MODULE


def statuses(db, module_id):
    return {r["user_id"]: r["status"] for r in db.rows("enrollments") if r["module_id"] == module_id}


def test_unlock_for_selected_users(db, gateway, make_container):
    container = make_container()

    async def scenario():
        result = await container.enrollments.unlock_module(NEXT_MODULE, [LEARNER], curator_id=CURATOR)
        await container.runner.drain()
        return result

    result = asyncio.run(scenario())
    assert result["unlocked"] == 1
    row = next(r for r in db.rows("enrollments") if r["module_id"] == NEXT_MODULE)
    assert row["status"] == "IN_PROGRESS"
    assert row["unlocked_by"] == CURATOR
    assert any("Storytelling" in t for t in gateway.texts_to(LEARNER_CHAT))


def test_unlock_for_all_sets_auto_unlock(db, make_container):
    db.tables["users"].append({"id": "u-2", "telegram_id": None, "role": "LEARNER"})
    container = make_container()

    async def scenario():
        result = await container.enrollments.unlock_module(NEXT_MODULE, for_all=True)
        await container.runner.drain()
        return result

    assert asyncio.run(scenario())["unlocked"] == 2
    assert statuses(db, NEXT_MODULE) == {LEARNER: "IN_PROGRESS", "u-2": "IN_PROGRESS"}
    module = next(m for m in db.rows("course_modules") if m["id"] == NEXT_MODULE)
    assert module["auto_unlock_for_new_learners"] is True


def test_unlock_for_those_who_completed_previous(db, make_container):
    db.tables["users"].append({"id": "u-2", "telegram_id": "222", "role": "LEARNER"})
    db.tables["enrollments"].append({"id": "e-2", "user_id": "u-2", "module_id": MODULE, "status": "COMPLETED"})
    container = make_container()

    async def scenario():
        result = await container.enrollments.unlock_module(NEXT_MODULE, all_completed_previous=True)
        await container.runner.drain()
        return result

    assert asyncio.run(scenario())["unlocked"] == 1
    assert statuses(db, NEXT_MODULE) == {"u-2": "IN_PROGRESS"}


def test_unlock_keeps_completed_enrollments(db, make_container):
    db.tables["enrollments"][0]["status"] = "COMPLETED"
    container = make_container()
    result = asyncio.run(container.enrollments.unlock_module(MODULE, [LEARNER]))
    assert result["unlocked"] == 0
    assert statuses(db, MODULE) == {LEARNER: "COMPLETED"}


def test_lock_keeps_the_row(db, gateway, make_container):
    container = make_container()

    async def scenario():
        result = await container.enrollments.lock_module(MODULE, [LEARNER])
        await container.runner.drain()
        return result

    assert asyncio.run(scenario())["locked"] == 1
    assert statuses(db, MODULE) == {LEARNER: EnrollmentStatus.LOCKED.value}
    assert any("closed" in t for t in gateway.texts_to(LEARNER_CHAT))


def test_lock_then_unlock_reopens(db, make_container):
    container = make_container()

    async def scenario():
        await container.enrollments.lock_module(MODULE, for_all=True)
        await container.enrollments.unlock_module(MODULE, [LEARNER])
        await container.runner.drain()

    asyncio.run(scenario())
    assert statuses(db, MODULE) == {LEARNER: "IN_PROGRESS"}


def test_unknown_module(make_container):
    container = make_container()
    with pytest.raises(NotFoundError):
        asyncio.run(container.enrollments.lock_module("nope", [LEARNER]))


def test_auto_unlock_for_new_learner_skips_existing(db, make_container):
    db.tables["users"].append({"id": "u-new", "telegram_id": "333", "role": "LEARNER"})
    db.tables["course_modules"][1]["auto_unlock_for_new_learners"] = True
    db.tables["enrollments"].append({"id": "e-x", "user_id": "u-new", "module_id": MODULE, "status": "LOCKED"})
    container = make_container()

    async def scenario():
        modules = await container.enrollments.auto_unlock_for_new_learner("u-new")
        await container.runner.drain()
        return modules

    assert [m.id for m in asyncio.run(scenario())] == [MODULE, NEXT_MODULE]
    assert statuses(db, MODULE)["u-new"] == "LOCKED"
    assert statuses(db, NEXT_MODULE)["u-new"] == "IN_PROGRESS"


def test_set_auto_unlock(db, make_container):
    container = make_container()
    container.enrollments.set_auto_unlock(MODULE, False)
    assert db.rows("course_modules")[0]["auto_unlock_for_new_learners"] is False
