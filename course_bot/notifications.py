import asyncio
import logging

from .events import SubmissionEvents
from .models import SubmissionStatus

logger = logging.getLogger(__name__)

APPROVE_ACTION = "approve"
RETURN_ACTION = "return"


def review_callback(action, submission_id):
    return f"rv|{action}|{submission_id}"


def parse_review_callback(data):
    """``rv|approve|<id>`` -> ``("approve", "<id>")``; anything else -> ``None``."""
    parts = (data or "").split("|", 2)
    if len(parts) != 3 or parts[0] != "rv" or parts[1] not in (APPROVE_ACTION, RETURN_ACTION):
        return None
    return parts[1], parts[2]


def _score(value, max_score):
    if value is None:
        return "not scored"
    return f"{value:g}/{max_score}"


def format_curator_notice(context):
    submission = context.submission
    max_score = context.step.max_score if context.step else 10
    text = (
        f"📬 New submission\n\n"
        f"👤 Learner: {context.learner_name}\n"
        f"📚 Module {context.module_label}\n"
        f"📝 Step {context.step_label}\n"
        f"🗂 Answer: {submission.answer_type.value}\n\n"
        f"🤖 AI pre-score: {_score(submission.ai_score, max_score)}\n"
    )
    if submission.ai_feedback:
        text += f"\n💬 AI comment:\n{submission.ai_feedback}\n"
    if submission.answer_text:
        text += f"\n✍️ Answer:\n{submission.answer_text[:1500]}\n"
    return text


def format_review_outcome(context):
    submission = context.submission
    max_score = context.step.max_score if context.step else 10
    if submission.status == SubmissionStatus.CURATOR_APPROVED:
        text = (
            f"✅ Your submission was approved!\n\n"
            f"📚 Module {context.module_label}\n"
            f"📝 Step {context.step_label}\n"
        )
        if submission.curator_score is not None:
            text += f"\n⭐ Score: {_score(submission.curator_score, max_score)}\n"
        if submission.curator_feedback:
            text += f"\n💬 Curator's comment:\n{submission.curator_feedback}\n"
        return text + "\nKeep it up! 🎉"
    return (
        f"↩️ Your submission was returned for revision\n\n"
        f"📚 Module {context.module_label}\n"
        f"📝 Step {context.step_label}\n\n"
        f"💬 Curator's comment:\n{submission.curator_feedback or 'Needs more work'}\n\n"
        f"Please revise it and submit again."
    )


class NotificationDispatcher(SubmissionEvents):
    """Formats and sends chat notifications for submission workflow events."""

    def __init__(self, gateway, store):
        self.gateway = gateway
        self.store = store

    async def _fan_out(self, recipients, send):
        """Call ``send(chat_id)`` for every recipient concurrently; failures are logged per recipient.

        Returns ``[(chat_id, message_id), ...]`` for the sends that succeeded.
        """
        chat_ids = [user.telegram_id for user in recipients if user.telegram_id]
        results = await asyncio.gather(*(send(chat_id) for chat_id in chat_ids), return_exceptions=True)
        sent = []
        for chat_id, result in zip(chat_ids, results):
            if isinstance(result, BaseException):
                logger.error("Failed to notify %s: %s", chat_id, result)
            else:
                sent.append((chat_id, result))
        return sent

    async def _to_learner(self, user, text):
        if not user or not user.telegram_id:
            logger.info("Learner %s has no chat; skipping notification", user.id if user else "?")
            return None
        return await self.gateway.send_text(user.telegram_id, text)

    async def broadcast_to_staff(self, text, buttons=None):
        return await self._fan_out(
            self.store.list_staff(),
            lambda chat_id: self.gateway.send_text(chat_id, text, buttons=buttons),
        )

    async def send_document_to_staff(self, data, filename, caption=None):
        return await self._fan_out(
            self.store.list_staff(),
            lambda chat_id: self.gateway.send_document(chat_id, data, filename, caption=caption),
        )

    async def submission_received(self, context):
        buttons = [[
            ("✅ Approve", review_callback(APPROVE_ACTION, context.submission.id)),
            ("↩️ Return", review_callback(RETURN_ACTION, context.submission.id)),
        ]]
        return await self.broadcast_to_staff(format_curator_notice(context), buttons=buttons)

    async def submission_scored(self, context):
        return await self.submission_received(context)

    async def scoring_unavailable(self, context):
        text = (
            f"⚠️ AI check failed\n\n"
            f"The learner's answer could not be pre-scored because the AI quota is exhausted.\n\n"
            f"Learner: {context.learner_name}\n"
            f"Module {context.module_label}\n"
            f"Step {context.step_label}\n\n"
            f"Please review it manually."
        )
        return await self.broadcast_to_staff(text)

    async def submission_decided(self, context):
        return await self._to_learner(context.user, format_review_outcome(context))

    async def module_completed(self, user, module):
        text = (
            f"🎉 Congratulations!\n\n"
            f"You have completed module {module.index}: \"{module.title}\".\n\n"
            f"Wait for the curator to open the next one."
        )
        return await self._to_learner(user, text)

    async def module_unlocked(self, user, module):
        text = (
            f"🔓 A new module is open!\n\n"
            f"📚 Module {module.index}: \"{module.title}\"\n\n"
            f"You can start working on it now."
        )
        return await self._to_learner(user, text)

    async def module_locked(self, user, module):
        text = f"🔒 Module {module.index}: \"{module.title}\" has been closed by the curator."
        return await self._to_learner(user, text)

    async def resubmission_requested(self, context):
        text = (
            f"🔄 Resubmission request\n\n"
            f"Learner: {context.learner_name}\n"
            f"Module {context.module_label}\n"
            f"Step {context.step_label}\n\n"
            f"The learner asks to be allowed to submit this step again."
        )
        return await self.broadcast_to_staff(text)

    async def resubmission_approved(self, context):
        text = (
            f"🔄 Resubmission allowed\n\n"
            f"📚 Module {context.module_label}\n"
            f"📝 Step {context.step_label}\n\n"
            f"You can complete this step again."
        )
        return await self._to_learner(context.user, text)

    async def submission_deleted(self, context):
        text = (
            f"🔄 Submission reset\n\n"
            f"📚 Module {context.module_label}\n"
            f"📝 Step {context.step_label}\n\n"
            f"The curator removed your submission. You can complete the step again."
        )
        return await self._to_learner(context.user, text)
