import asyncio

from course_bot.models import AnswerType, CourseModule, CourseStep, ReviewContext, Submission, SubmissionStatus, User
from course_bot.notifications import (
    NotificationDispatcher,
    format_curator_notice,
    format_review_outcome,
    parse_review_callback,
    review_callback,
)

from conftest import ADMIN_CHAT, CURATOR_CHAT
from fakes import RecordingGateway


def context(**submission_fields):
    submission = Submission(id="sub-1", user_id="u", module_id="m", step_id="s", answer_type=AnswerType.TEXT,
                            **submission_fields)
    return ReviewContext(
        submission=submission,
        user=User(id="u", telegram_id="111", first_name="Anna", last_name="Petrova"),
        module=CourseModule(id="m", index=1, title="Pyramid principle"),
        step=CourseStep(id="s", module_id="m", index=2, title="Write a summary", max_score=10),
    )


def test_review_callback_round_trip():
    assert review_callback("approve", "abc") == "rv|approve|abc"
    assert parse_review_callback("rv|return|abc") == ("return", "abc")
    assert parse_review_callback("rv|delete|abc") is None
    assert parse_review_callback(None) is None


def test_curator_notice_shows_ai_prescore():
    text = format_curator_notice(context(status=SubmissionStatus.AI_REVIEWED, ai_score=7.5,
                                         ai_feedback="Clear", answer_text="My answer"))
    assert "Anna Petrova" in text
    assert "7.5/10" in text
    assert "Clear" in text
    assert "My answer" in text


def test_learner_outcome_hides_ai_score():
    text = format_review_outcome(context(status=SubmissionStatus.CURATOR_APPROVED, ai_score=3,
                                         ai_feedback="secret", curator_score=9, curator_feedback="Well done"))
    assert "9/10" in text
    assert "Well done" in text
    assert "secret" not in text
    assert "3/10" not in text


def test_returned_outcome_carries_feedback():
    text = format_review_outcome(context(status=SubmissionStatus.CURATOR_RETURNED, curator_feedback="Add numbers"))
    assert "returned" in text
    assert "Add numbers" in text


def test_received_notice_goes_to_all_staff_with_buttons(store):
    gateway = RecordingGateway()
    dispatcher = NotificationDispatcher(gateway, store)

    sent = asyncio.run(dispatcher.submission_received(context(status=SubmissionStatus.SENT)))

    assert {chat_id for chat_id, _ in sent} == {CURATOR_CHAT, ADMIN_CHAT}
    buttons = gateway.sent[0]["buttons"]
    assert [data for _, data in buttons[0]] == ["rv|approve|sub-1", "rv|return|sub-1"]


def test_document_goes_to_every_staff_member(store):
    gateway = RecordingGateway()
    dispatcher = NotificationDispatcher(gateway, store)

    sent = asyncio.run(dispatcher.send_document_to_staff(b"id\tstatus\n", "pending.tsv", caption="Pending"))

    assert len(sent) == 2
    assert sorted(gateway.documents) == sorted([
        (CURATOR_CHAT, "pending.tsv", "Pending"),
        (ADMIN_CHAT, "pending.tsv", "Pending"),
    ])
