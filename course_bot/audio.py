"""Voice and video-note answers.

The learner asks for an audio task, the bot sends an instruction and the
learner is expected to reply to it with a voice message or a video note. The
instruction's message id is stored on the submission as ``prompt_message_id``
and is the primary correlation key. Clients that drop the reply fall back to
the learner's most recent media submission that is still waiting for a file.
"""
import logging

from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .models import AnswerType, EnrollmentStatus, MEDIA_ANSWERS, SubmissionStatus
from .submissions import CLEARED_REVIEW

logger = logging.getLogger(__name__)

VOICE = "voice"
VIDEO_NOTE = "video_note"

FILENAME_HINTS = {VOICE: "voice.ogg", VIDEO_NOTE: "video_note.mp4"}

INSTRUCTION = (
    "🎤 Audio answer\n\n"
    "📝 Task: {title}\n\n"
    "Record a {medium} with your answer and send it as a REPLY to this message.\n\n"
    "⚠️ Important: reply to this exact message, otherwise the bot cannot tell which task it is for."
)

RECEIVED = (
    "✅ Your answer has been received!\n\n"
    "⏳ It was sent to the curator for review. You will get the result once the curator has checked it."
)

UNMATCHED = (
    "📨 Message received, but there is no task waiting for an audio answer.\n\n"
    "To submit a task, open it in the course and send the voice message as a reply to the bot's instruction."
)

UNKNOWN_SENDER = "❌ You are not registered yet. Send /start to begin."

ALREADY_UNDER_REVIEW = "ℹ️ This task has already been submitted and is waiting for the curator."


class AudioIntakePipeline:
    def __init__(self, store, gateway, submissions, runner, transcriber=None):
        self.store = store
        self.gateway = gateway
        self.submissions = submissions
        self.runner = runner
        self.transcriber = transcriber

    # ── Prompting ─────────────────────────────────────────

    async def start_audio_submission(self, user_id, step_id, module_id):
        user = self.store.get_user(user_id)
        if not user or not user.telegram_id:
            raise BadRequestError("User not found or has no Telegram chat")

        step = self.store.get_step(step_id)
        if not step:
            raise NotFoundError("Step not found")
        if step.module_id != module_id:
            raise BadRequestError("Step does not belong to this module")
        if step.expected_answer not in MEDIA_ANSWERS:
            raise BadRequestError("This step does not expect an audio or video answer")

        enrollment = self.store.get_enrollment(user_id, module_id)
        if not enrollment or enrollment.status != EnrollmentStatus.IN_PROGRESS:
            raise ForbiddenError("Module is not unlocked yet. Please wait for the curator to open it.")

        existing = self.store.find_submission(user_id, step_id)
        if existing and existing.status == SubmissionStatus.CURATOR_APPROVED:
            raise ConflictError("This step is already approved by the curator")
        if existing and existing.status != SubmissionStatus.CURATOR_RETURNED and not existing.awaiting_file:
            raise ConflictError("You have already submitted this step, it is awaiting review")

        medium = "voice message" if step.expected_answer == AnswerType.AUDIO else "video note"
        try:
            prompt_id = await self.gateway.send_text(
                user.telegram_id, INSTRUCTION.format(title=step.title, medium=medium)
            )
        except Exception as e:
            logger.error("Failed to send audio instruction to %s: %s", user.telegram_id, e)
            raise BadRequestError("Failed to send the instruction to Telegram") from e

        values = {
            "answer_type": step.expected_answer,
            "status": SubmissionStatus.SENT,
            "prompt_message_id": prompt_id,
            "answer_text": None,
            "answer_file_id": None,
            **CLEARED_REVIEW,
        }
        if existing:
            submission = self.store.update_submission_if(existing.id, existing.version, values)
            if submission is None:
                raise ConflictError("Submission changed while saving, please try again")
        else:
            submission = self.store.insert_submission(
                {"user_id": user_id, "step_id": step_id, "module_id": module_id, **values}
            )
        logger.info("Audio prompt %s sent for submission %s", prompt_id, submission.id)
        return submission

    # ── Inbound attachments ───────────────────────────────

    def resolve(self, user, reply_to_message_id=None):
        """Find the submission an inbound attachment belongs to, or ``None``."""
        if reply_to_message_id is not None:
            submission = self.store.find_by_prompt(user.id, reply_to_message_id)
            if submission:
                return submission
            logger.info("Reply %s from %s matches no prompt; trying fallback", reply_to_message_id, user.id)

        outstanding = self.store.list_awaiting_files(user.id)
        if not outstanding:
            return None
        if len(outstanding) > 1:
            # Several open prompts cannot be told apart without the reply; newest wins.
            logger.warning(
                "User %s has %d outstanding audio prompts; attributing to the newest (%s)",
                user.id, len(outstanding), outstanding[0].id,
            )
        return outstanding[0]

    async def handle_attachment(self, chat_id, file_ref, kind, reply_to_message_id=None):
        user = self.store.get_user_by_telegram_id(chat_id)
        if not user:
            logger.info("Attachment from unknown chat %s", chat_id)
            await self.gateway.send_text(chat_id, UNKNOWN_SENDER)
            return None

        submission = self.resolve(user, reply_to_message_id)
        if not submission:
            logger.info("Unmatched %s from %s dropped", kind, chat_id)
            await self.gateway.send_text(chat_id, UNMATCHED)
            return None
        if submission.status != SubmissionStatus.SENT:
            logger.info("Submission %s is %s; %s ignored", submission.id, submission.status.value, kind)
            await self.gateway.send_text(chat_id, ALREADY_UNDER_REVIEW)
            return None

        # Keep the file even if everything after this fails.
        saved = self.store.update_submission_if(submission.id, submission.version, {"answer_file_id": file_ref})
        if saved is None:
            logger.warning("Submission %s changed before the %s could be attached", submission.id, kind)
            await self.gateway.send_text(chat_id, ALREADY_UNDER_REVIEW)
            return None
        logger.info("Attached %s %s to submission %s", kind, file_ref, saved.id)

        transcript = await self._transcribe(file_ref, kind)
        if transcript:
            saved = self.store.update_submission(saved.id, {"answer_text": transcript})

        self.runner.spawn(f"confirm:{saved.id}", lambda: self.gateway.send_text(chat_id, RECEIVED))
        self.submissions.accept_answer(saved)
        return saved

    async def _transcribe(self, file_ref, kind):
        if self.transcriber is None:
            return None
        try:
            data = await self.gateway.download_attachment(file_ref)
            text = await self.transcriber.transcribe(data, FILENAME_HINTS.get(kind, "attachment.ogg"))
        except Exception as e:
            logger.error("Transcription of %s failed: %s", file_ref, e)
            return None
        logger.info("Transcribed %s: %d chars", file_ref, len(text))
        return text or None

    # ── Curator playback ──────────────────────────────────

    async def send_audio_to_curator(self, submission_id, curator_id):
        curator = self.store.get_user(curator_id)
        if not curator or not curator.telegram_id:
            raise BadRequestError("Curator not found or has no Telegram chat")
        submission = self.store.get_submission(submission_id)
        if not submission:
            raise NotFoundError("Submission not found")
        if not submission.answer_file_id:
            raise BadRequestError("This submission has no audio file")

        context = self.store.load_context(submission)
        caption = (
            f"🎤 Learner's answer\n\n"
            f"👤 Learner: {context.learner_name}\n"
            f"📚 Module {context.module_label}\n"
            f"📝 Step {context.step_label}"
        )
        try:
            if submission.answer_type == AnswerType.VIDEO:
                await self.gateway.send_text(curator.telegram_id, caption)
                await self.gateway.send_video_note(curator.telegram_id, submission.answer_file_id)
            else:
                await self.gateway.send_voice(curator.telegram_id, submission.answer_file_id, caption=caption)
        except Exception as e:
            logger.error("Failed to send audio %s to curator %s: %s", submission_id, curator_id, e)
            raise BadRequestError("Failed to send audio to Telegram") from e
        logger.info("Audio for %s sent to curator %s", submission_id, curator_id)
