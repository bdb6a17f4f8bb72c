"""Telegram-facing dialogs: /start registration, /question relay, curator
replies, voice answers and the inline review buttons.

The ``CourseBot`` methods take plain chat ids and text so they can be driven
without Telegram; the ``on_*`` coroutines adapt python-telegram-bot updates
onto them.
"""
import logging

from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from .audio import VIDEO_NOTE, VOICE
from .correlation import RegistrationStage
from .errors import CourseBotError
from .models import OPEN_STATUSES, Decision, UserRole
from .notifications import APPROVE_ACTION, RETURN_ACTION, parse_review_callback

logger = logging.getLogger(__name__)

STAGE_PROMPTS = {
    RegistrationStage.WAITING_FIRST_NAME: "👋 Welcome to the course!\n\nLet's get you registered. What is your first name?",
    RegistrationStage.WAITING_LAST_NAME: "Thanks! What is your last name?",
    RegistrationStage.WAITING_POSITION: "And what is your position?",
}

REGISTERED = (
    "✅ Registration complete, {name}!\n\n"
    "Open the course to start learning. If you have a question for the curators, send /question."
)

WELCOME_BACK = "👋 Welcome back, {name}!\n\nSend /question if you want to ask the curators something."
WELCOME_CURATOR = (
    "👋 Hello, {name}! You are registered as a curator.\n\n"
    "New submissions and learners' questions will arrive here. Reply to a question to answer the learner."
)

HELP = (
    "ℹ️ I did not understand that.\n\n"
    "• /question to ask the curators\n"
    "• To submit an audio task, reply to the bot's instruction with a voice message"
)


class CourseBot:
    def __init__(self, store, registry, gateway, submissions, audio, enrollments, settings=None):
        self.store = store
        self.registry = registry
        self.gateway = gateway
        self.submissions = submissions
        self.audio = audio
        self.enrollments = enrollments
        self.settings = settings

    def _is_configured_curator(self, chat_id):
        return bool(self.settings and self.settings.is_curator(chat_id))

    def _is_staff(self, user, chat_id):
        return bool(user and user.is_staff) or self._is_configured_curator(chat_id)

    # ── /start and registration ───────────────────────────

    async def start(self, chat_id, first_name=None, last_name=None):
        user = self.store.get_user_by_telegram_id(chat_id)
        curator = self._is_configured_curator(chat_id)
        if not user:
            role = UserRole.CURATOR if curator else UserRole.LEARNER
            user = self.store.create_user(chat_id, first_name, last_name, role=role)
            logger.info("New %s %s registered from chat %s", role.value, user.id, chat_id)
            if role == UserRole.LEARNER:
                await self.enrollments.auto_unlock_for_new_learner(user.id)
        elif curator and not user.is_staff:
            user = self.store.update_user(user.id, {"role": UserRole.CURATOR})
            logger.info("User %s promoted to curator", user.id)

        if not user.profile_completed:
            dialog = self.registry.start_registration(chat_id)
            await self.gateway.send_text(chat_id, STAGE_PROMPTS[dialog.stage])
            return user

        template = WELCOME_CURATOR if user.is_staff else WELCOME_BACK
        await self.gateway.send_text(chat_id, template.format(name=user.display_name))
        return user

    async def reprompt_registration(self, chat_id):
        """Ask the current registration question again. Returns False when no dialog is open."""
        dialog = self.registry.registration(chat_id)
        if dialog is None:
            return False
        await self.gateway.send_text(chat_id, STAGE_PROMPTS[dialog.stage])
        return True

    async def _continue_registration(self, chat_id, text):
        dialog = self.registry.advance_registration(chat_id, text.strip())
        if not dialog.complete:
            await self.gateway.send_text(chat_id, STAGE_PROMPTS[dialog.stage])
            return
        user = self.store.get_user_by_telegram_id(chat_id)
        if not user:
            logger.warning("Registration finished for unknown chat %s", chat_id)
            return
        user = self.store.update_user(user.id, {
            "first_name": dialog.first_name,
            "last_name": dialog.last_name,
            "position": dialog.position,
            "profile_completed": True,
        })
        logger.info("Profile completed for %s", user.id)
        await self.gateway.send_text(chat_id, REGISTERED.format(name=user.display_name))

    # ── /question relay ───────────────────────────────────

    async def ask_question(self, chat_id):
        if not self.registry.start_question(chat_id):
            await self.gateway.send_text(chat_id, "⚠️ Please finish registration first.")
            return False
        await self.gateway.send_text(chat_id, "✍️ Write your question in one message and I will pass it to the curators.")
        return True

    async def _relay_question(self, chat_id, text):
        self.registry.clear_question(chat_id)
        user = self.store.get_user_by_telegram_id(chat_id)
        sender = user.display_name if user else "Unknown learner"
        relay = f"❓ Question from {sender} (chat {chat_id})\n\n{text}\n\n↩️ Reply to this message to answer."

        staff = [u for u in self.store.list_staff() if u.telegram_id]
        sent = []
        for curator in staff:
            try:
                message_id = await self.gateway.send_text(curator.telegram_id, relay)
            except Exception as e:
                logger.error("Failed to relay question to %s: %s", curator.telegram_id, e)
                continue
            self.registry.remember_relay(curator.telegram_id, message_id, chat_id)
            sent.append((curator.telegram_id, message_id))

        if sent:
            await self.gateway.send_text(chat_id, "✅ Your question was sent to the curators. You will get the answer here.")
        else:
            await self.gateway.send_text(chat_id, "⚠️ Could not reach the curators right now. Please try again later.")
        logger.info("Question from %s relayed to %d curator(s)", chat_id, len(sent))
        return sent

    async def _relay_answer(self, chat_id, learner_chat_id, text):
        await self.gateway.send_text(learner_chat_id, f"💬 Answer from the curator:\n\n{text}")
        await self.gateway.send_text(chat_id, "✅ Your answer was sent to the learner.")
        logger.info("Curator %s answered learner %s", chat_id, learner_chat_id)

    # ── Inbound text ──────────────────────────────────────

    async def handle_text(self, chat_id, text, reply_to_message_id=None):
        if self.registry.registration(chat_id) is not None:
            if not (text or "").strip():
                return await self.reprompt_registration(chat_id)
            return await self._continue_registration(chat_id, text)

        pending_return = self.registry.take_return_feedback(chat_id)
        if pending_return:
            return await self._finish_return(chat_id, pending_return, text)

        if reply_to_message_id is not None:
            learner_chat_id = self.registry.learner_for_reply(chat_id, reply_to_message_id)
            if learner_chat_id:
                return await self._relay_answer(chat_id, learner_chat_id, text)

        if self.registry.awaiting_question(chat_id):
            return await self._relay_question(chat_id, text)

        await self.gateway.send_text(chat_id, HELP)

    async def handle_attachment(self, chat_id, file_ref, kind, reply_to_message_id=None):
        if await self.reprompt_registration(chat_id):
            return None
        return await self.audio.handle_attachment(chat_id, file_ref, kind, reply_to_message_id)

    # ── Inline review buttons ─────────────────────────────

    async def handle_callback(self, chat_id, data):
        """Returns the text to show in the callback answer."""
        parsed = parse_review_callback(data)
        if parsed is None:
            return "Unknown action"
        action, submission_id = parsed

        curator = self.store.get_user_by_telegram_id(chat_id)
        if not curator or not self._is_staff(curator, chat_id):
            return "Only curators can review submissions"

        try:
            if action == APPROVE_ACTION:
                await self.submissions.quick_approve(submission_id, curator_id=curator.id)
                return "✅ Approved"
            submission = self.submissions.get(submission_id)
        except CourseBotError as e:
            return e.message

        if action == RETURN_ACTION:
            if submission.status not in OPEN_STATUSES:
                return f"Submission is already {submission.status.value}"
            self.registry.await_return_feedback(chat_id, submission.id)
            await self.gateway.send_text(chat_id, "✍️ Write the feedback for the learner in one message.")
            return "Waiting for feedback"

    async def _finish_return(self, chat_id, submission_id, feedback):
        curator = self.store.get_user_by_telegram_id(chat_id)
        try:
            await self.submissions.decide(
                submission_id, Decision.RETURN, feedback=feedback, curator_id=curator.id if curator else None
            )
        except CourseBotError as e:
            await self.gateway.send_text(chat_id, f"⚠️ {e.message}")
            return None
        await self.gateway.send_text(chat_id, "↩️ The submission was returned to the learner.")

    # ── python-telegram-bot adapters ──────────────────────

    async def on_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        await self.start(update.effective_chat.id, user.first_name if user else None, user.last_name if user else None)

    async def on_question(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.ask_question(update.effective_chat.id)

    async def on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        reply_to = message.reply_to_message.message_id if message.reply_to_message else None
        await self.handle_text(update.effective_chat.id, message.text, reply_to)

    async def on_voice(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        reply_to = message.reply_to_message.message_id if message.reply_to_message else None
        if message.voice:
            file_ref, kind = message.voice.file_id, VOICE
        else:
            file_ref, kind = message.video_note.file_id, VIDEO_NOTE
        await self.handle_attachment(update.effective_chat.id, file_ref, kind, reply_to)

    async def on_other(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_chat:
            await self.reprompt_registration(update.effective_chat.id)

    async def on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        answer = await self.handle_callback(update.effective_chat.id, query.data)
        await query.answer(answer)


def build_application(token):
    """Webhook-mode application: updates are fed in through ``process_update``."""
    return Application.builder().token(token).updater(None).build()


def register_handlers(application, course_bot):
    application.add_handler(CommandHandler("start", course_bot.on_start))
    application.add_handler(CommandHandler("question", course_bot.on_question))
    application.add_handler(CallbackQueryHandler(course_bot.on_callback, pattern=r"^rv\|"))
    application.add_handler(MessageHandler(filters.VOICE | filters.VIDEO_NOTE, course_bot.on_voice))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, course_bot.on_text))
    application.add_handler(MessageHandler(~filters.COMMAND, course_bot.on_other))
    return application
