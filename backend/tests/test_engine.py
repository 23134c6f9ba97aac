"""
Enrollment engine tests against the SQLAlchemy stores.

Covers the lifecycle rules, counter bookkeeping and error kinds of every
engine operation.
"""

import pytest

from enrollment.core.exceptions import (
    CapacityExceeded,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    NotRegistered,
)
from enrollment.models import ActivityStatus, RegistrationStatus, UserRole


# --- enroll ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_enroll_creates_pending_registration(engine, alice, make_activity, participants):
    activity_id = await make_activity(max_participants=5)

    registration = await engine.enroll(activity_id, alice, notes="Bringing a ball")

    assert registration.status == RegistrationStatus.PENDING
    assert registration.notes == "Bringing a ball"
    assert registration.activity.id == activity_id
    assert registration.user.id == alice
    assert registration.user.username == "alice"
    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_enroll_twice_returns_same_registration(engine, alice, make_activity, participants):
    activity_id = await make_activity(max_participants=5)

    first = await engine.enroll(activity_id, alice)
    second = await engine.enroll(activity_id, alice)

    assert first.id == second.id
    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_last_slot_goes_to_first_enrollment(engine, alice, bob, make_activity, participants):
    activity_id = await make_activity(max_participants=1)

    await engine.enroll(activity_id, alice)
    with pytest.raises(CapacityExceeded):
        await engine.enroll(activity_id, bob)

    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_enroll_closed_activity_is_invalid_transition(engine, alice, make_activity, participants):
    activity_id = await make_activity(status=ActivityStatus.CLOSED)

    with pytest.raises(InvalidTransition):
        await engine.enroll(activity_id, alice)

    assert await participants(activity_id) == 0


@pytest.mark.asyncio
async def test_enroll_unknown_activity_or_user(engine, alice, make_activity):
    activity_id = await make_activity()

    with pytest.raises(NotFound):
        await engine.enroll(9999, alice)
    with pytest.raises(NotFound):
        await engine.enroll(activity_id, 9999)


@pytest.mark.asyncio
async def test_enroll_rejects_long_notes(engine, alice, make_activity, participants):
    activity_id = await make_activity()

    with pytest.raises(InvalidArgument):
        await engine.enroll(activity_id, alice, notes="x" * 201)

    assert await participants(activity_id) == 0


@pytest.mark.asyncio
async def test_reenroll_after_withdraw_creates_new_registration(engine, alice, make_activity, participants):
    activity_id = await make_activity(max_participants=1)

    first = await engine.enroll(activity_id, alice)
    await engine.withdraw(first.id, alice, UserRole.USER)
    second = await engine.enroll(activity_id, alice)

    assert second.id != first.id
    assert second.status == RegistrationStatus.PENDING
    assert await participants(activity_id) == 1


# --- withdraw -------------------------------------------------------------

@pytest.mark.asyncio
async def test_withdraw_releases_slot(engine, alice, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    cancelled = await engine.withdraw(registration.id, alice, UserRole.USER)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert await participants(activity_id) == 0


@pytest.mark.asyncio
async def test_withdraw_twice_decrements_once(engine, alice, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    await engine.withdraw(registration.id, alice, UserRole.USER)
    with pytest.raises(InvalidTransition):
        await engine.withdraw(registration.id, alice, UserRole.USER)

    assert await participants(activity_id) == 0


@pytest.mark.asyncio
async def test_withdraw_unknown_registration(engine, alice):
    with pytest.raises(NotFound):
        await engine.withdraw(424242, alice, UserRole.USER)


@pytest.mark.asyncio
async def test_withdraw_someone_elses_registration_is_forbidden(engine, alice, bob, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    with pytest.raises(Forbidden):
        await engine.withdraw(registration.id, bob, UserRole.USER)

    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_confirmed_registration_only_admin_can_withdraw(engine, alice, admin, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)
    await engine.set_status(registration.id, RegistrationStatus.CONFIRMED, UserRole.ADMIN)

    with pytest.raises(InvalidTransition):
        await engine.withdraw(registration.id, alice, UserRole.USER)
    assert await participants(activity_id) == 1

    cancelled = await engine.withdraw(registration.id, admin, UserRole.ADMIN)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert await participants(activity_id) == 0


# --- set_status -----------------------------------------------------------

@pytest.mark.asyncio
async def test_set_status_rejects_unknown_status(engine, alice, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    with pytest.raises(InvalidArgument):
        await engine.set_status(registration.id, "bogus", UserRole.ADMIN)


@pytest.mark.asyncio
async def test_set_status_requires_admin(engine, alice, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    with pytest.raises(Forbidden):
        await engine.set_status(registration.id, "CONFIRMED", UserRole.USER)


@pytest.mark.asyncio
async def test_confirm_keeps_counter_and_is_case_insensitive(engine, alice, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    confirmed = await engine.set_status(registration.id, "confirmed", UserRole.ADMIN)

    assert confirmed.status == RegistrationStatus.CONFIRMED
    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_set_status_same_status_is_noop(engine, alice, make_activity, participants):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    unchanged = await engine.set_status(registration.id, "PENDING", UserRole.ADMIN)

    assert unchanged.status == RegistrationStatus.PENDING
    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_set_status_cancel_releases_slot(engine, alice, make_activity, participants, active_registrations):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    cancelled = await engine.set_status(registration.id, "CANCELLED", UserRole.ADMIN)

    assert cancelled.status == RegistrationStatus.CANCELLED
    assert await participants(activity_id) == 0
    assert await active_registrations(activity_id) == 0


@pytest.mark.asyncio
async def test_set_status_rejects_backward_transitions(engine, alice, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)
    await engine.set_status(registration.id, "CONFIRMED", UserRole.ADMIN)

    with pytest.raises(InvalidTransition):
        await engine.set_status(registration.id, "PENDING", UserRole.ADMIN)
    with pytest.raises(InvalidTransition):
        await engine.set_status(registration.id, "CANCELLED", UserRole.ADMIN)


@pytest.mark.asyncio
async def test_set_status_unknown_registration(engine):
    with pytest.raises(NotFound):
        await engine.set_status(31337, "CONFIRMED", UserRole.ADMIN)


# --- amend ----------------------------------------------------------------

@pytest.mark.asyncio
async def test_amend_updates_notes_only(engine, alice, make_activity, participants):
    activity_id = await make_activity()
    await engine.enroll(activity_id, alice, notes="before")

    amended = await engine.amend(activity_id, alice, "after")

    assert amended.notes == "after"
    assert amended.status == RegistrationStatus.PENDING
    assert await participants(activity_id) == 1


@pytest.mark.asyncio
async def test_amend_without_registration(engine, alice, make_activity):
    activity_id = await make_activity()

    with pytest.raises(NotRegistered):
        await engine.amend(activity_id, alice, "hello")


@pytest.mark.asyncio
async def test_amend_cancelled_registration(engine, alice, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)
    await engine.withdraw(registration.id, alice, UserRole.USER)

    with pytest.raises(InvalidTransition):
        await engine.amend(activity_id, alice, "too late")


# --- comment --------------------------------------------------------------

@pytest.mark.asyncio
async def test_comment_requires_registration(engine, alice, make_activity):
    activity_id = await make_activity()

    with pytest.raises(NotRegistered):
        await engine.comment(activity_id, alice, 5, "Great session!")


@pytest.mark.asyncio
async def test_comment_is_upsert(engine, alice, make_activity):
    activity_id = await make_activity()
    await engine.enroll(activity_id, alice)

    first = await engine.comment(activity_id, alice, 3, "It was fine")
    second = await engine.comment(activity_id, alice, 5, "Actually brilliant")
    comments, total = await engine.list_comments(activity_id)

    assert first.id == second.id
    assert total == 1
    assert comments[0].rating == 5
    assert comments[0].content == "Actually brilliant"
    assert comments[0].user.username == "alice"


@pytest.mark.asyncio
async def test_update_comment_requires_existing_comment(engine, alice, make_activity):
    activity_id = await make_activity()
    await engine.enroll(activity_id, alice)

    with pytest.raises(NotFound):
        await engine.update_comment(activity_id, alice, 4, "Edited thoughts")

    _, total = await engine.list_comments(activity_id)
    assert total == 0


@pytest.mark.asyncio
async def test_update_comment_edits_in_place(engine, alice, make_activity):
    activity_id = await make_activity()
    await engine.enroll(activity_id, alice)
    original = await engine.comment(activity_id, alice, 2, "Too crowded")

    edited = await engine.update_comment(activity_id, alice, 4, "Better than I said")

    assert edited.id == original.id
    assert edited.rating == 4
    assert edited.content == "Better than I said"
    with pytest.raises(InvalidArgument):
        await engine.update_comment(activity_id, alice, 6, "Off the scale")


@pytest.mark.asyncio
async def test_withdrawn_participant_can_still_comment(engine, alice, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)
    await engine.withdraw(registration.id, alice, UserRole.USER)

    comment = await engine.comment(activity_id, alice, 4, "Could not make it")

    assert comment.rating == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("rating, content", [
    (0, "Valid content"),
    (6, "Valid content"),
    (True, "Valid content"),
    (4, "meh"),
    (4, "x" * 501),
])
async def test_comment_validates_rating_and_content(engine, alice, make_activity, rating, content):
    activity_id = await make_activity()
    await engine.enroll(activity_id, alice)

    with pytest.raises(InvalidArgument):
        await engine.comment(activity_id, alice, rating, content)


# --- reads ----------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_mine_newest_first_with_pagination(engine, alice, make_activity):
    ids = []
    for title in ("Yoga", "Swim", "Tennis"):
        activity_id = await make_activity(title=title)
        ids.append((await engine.enroll(activity_id, alice)).id)

    page_one, total = await engine.list_mine(alice, page=1, limit=2)
    page_two, _ = await engine.list_mine(alice, page=2, limit=2)

    assert total == 3
    assert [r.id for r in page_one] == [ids[2], ids[1]]
    assert [r.id for r in page_two] == [ids[0]]


@pytest.mark.asyncio
async def test_list_for_activity_filters_by_status(engine, alice, bob, make_activity):
    activity_id = await make_activity()
    first = await engine.enroll(activity_id, alice)
    await engine.enroll(activity_id, bob)
    await engine.set_status(first.id, "CONFIRMED", UserRole.ADMIN)

    everyone, total = await engine.list_for_activity(activity_id)
    confirmed, confirmed_total = await engine.list_for_activity(activity_id, status="confirmed")

    assert total == 2
    assert len(everyone) == 2
    assert confirmed_total == 1
    assert confirmed[0].id == first.id


@pytest.mark.asyncio
async def test_list_for_unknown_activity(engine):
    with pytest.raises(NotFound):
        await engine.list_for_activity(777)


@pytest.mark.asyncio
@pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 101)])
async def test_listing_rejects_bad_paging(engine, alice, page, limit):
    with pytest.raises(InvalidArgument):
        await engine.list_mine(alice, page=page, limit=limit)


@pytest.mark.asyncio
async def test_get_registration_owner_or_admin(engine, alice, bob, admin, make_activity):
    activity_id = await make_activity()
    registration = await engine.enroll(activity_id, alice)

    assert (await engine.get_registration(registration.id, alice, UserRole.USER)).id == registration.id
    assert (await engine.get_registration(registration.id, admin, UserRole.ADMIN)).id == registration.id
    with pytest.raises(Forbidden):
        await engine.get_registration(registration.id, bob, UserRole.USER)
