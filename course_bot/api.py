"""HTTP boundary: submission and curator endpoints plus the Telegram webhook."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from telegram import Update

from . import __version__
from .errors import CourseBotError, ForbiddenError
from .models import AnswerType, Decision, SubmissionStatus

logger = logging.getLogger(__name__)


class CreateSubmissionBody(BaseModel):
    step_id: str
    module_id: str
    answer_type: AnswerType
    answer_text: Optional[str] = None
    answer_file_id: Optional[str] = None


class StartAudioBody(BaseModel):
    step_id: str
    module_id: str


class ApproveBody(BaseModel):
    score: Optional[float] = None
    feedback: Optional[str] = None


class ReturnBody(BaseModel):
    feedback: str


class UnlockBody(BaseModel):
    user_ids: List[str] = Field(default_factory=list)
    for_all: bool = False
    all_completed_previous: bool = False


class LockBody(BaseModel):
    user_ids: List[str] = Field(default_factory=list)
    for_all: bool = False


def create_app(container):
    @asynccontextmanager
    async def lifespan(app):
        await container.startup()
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(title="course-bot", version=__version__, lifespan=lifespan)
    store = container.store
    submissions = container.submissions

    @app.exception_handler(CourseBotError)
    async def domain_error(request: Request, exc: CourseBotError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    def caller(user_id):
        user = store.get_user(user_id) if user_id else None
        if not user:
            raise ForbiddenError("Unknown caller")
        return user

    def curator(user_id):
        user = caller(user_id)
        if not user.is_staff:
            raise ForbiddenError("Curator role required")
        return user

    @app.get("/health")
    async def health():
        return {"status": "ok", "pending_side_effects": container.runner.pending,
                "dead_letters": len(container.runner.dead_letters)}

    # ── Learner ───────────────────────────────────────────

    @app.post("/submissions", status_code=201)
    async def create_submission(body: CreateSubmissionBody, x_user_id: Optional[str] = Header(None)):
        user = caller(x_user_id)
        submission = await submissions.create(
            user.id, body.step_id, body.module_id, body.answer_type, body.answer_text, body.answer_file_id
        )
        return submission.to_row()

    @app.post("/submissions/audio/start", status_code=201)
    async def start_audio(body: StartAudioBody, x_user_id: Optional[str] = Header(None)):
        user = caller(x_user_id)
        submission = await container.audio.start_audio_submission(user.id, body.step_id, body.module_id)
        return {
            "submission_id": submission.id,
            "prompt_message_id": submission.prompt_message_id,
            "message": "Instruction sent to Telegram. Please reply to it with a voice message.",
        }

    @app.get("/submissions")
    async def list_submissions(
        module_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
        user_id: Optional[str] = None,
        x_user_id: Optional[str] = Header(None),
    ):
        user = caller(x_user_id)
        if not user.is_staff:
            user_id = user.id
        return [s.to_row() for s in submissions.list_submissions(user_id=user_id, module_id=module_id, status=status)]

    @app.get("/submissions/{submission_id}")
    async def get_submission(submission_id: str, x_user_id: Optional[str] = Header(None)):
        user = caller(x_user_id)
        submission = submissions.get(submission_id)
        if not user.is_staff and submission.user_id != user.id:
            raise ForbiddenError("You can only view your own submissions")
        return submission.to_row()

    @app.post("/submissions/{submission_id}/resubmission-request")
    async def request_resubmission(submission_id: str, x_user_id: Optional[str] = Header(None)):
        user = caller(x_user_id)
        return (await submissions.request_resubmission(submission_id, user.id)).to_row()

    # ── Curator ───────────────────────────────────────────

    @app.post("/submissions/{submission_id}/approve")
    async def approve(submission_id: str, body: ApproveBody, x_user_id: Optional[str] = Header(None)):
        user = curator(x_user_id)
        if body.score is None and body.feedback is None:
            submission = await submissions.quick_approve(submission_id, curator_id=user.id)
        else:
            submission = await submissions.decide(
                submission_id, Decision.APPROVE, score=body.score, feedback=body.feedback, curator_id=user.id
            )
        return submission.to_row()

    @app.post("/submissions/{submission_id}/return")
    async def return_submission(submission_id: str, body: ReturnBody, x_user_id: Optional[str] = Header(None)):
        user = curator(x_user_id)
        submission = await submissions.decide(
            submission_id, Decision.RETURN, feedback=body.feedback, curator_id=user.id
        )
        return submission.to_row()

    @app.post("/submissions/{submission_id}/resubmission-approve")
    async def approve_resubmission(submission_id: str, x_user_id: Optional[str] = Header(None)):
        curator(x_user_id)
        await submissions.approve_resubmission(submission_id)
        return {"message": "Resubmission allowed, the learner can complete the step again"}

    @app.delete("/submissions/{submission_id}")
    async def delete_submission(submission_id: str, x_user_id: Optional[str] = Header(None)):
        curator(x_user_id)
        await submissions.delete_submission(submission_id)
        return {"message": "Submission deleted"}

    @app.post("/submissions/{submission_id}/send-audio")
    async def send_audio(submission_id: str, x_user_id: Optional[str] = Header(None)):
        user = curator(x_user_id)
        await container.audio.send_audio_to_curator(submission_id, user.id)
        return {"message": "Audio sent to your chat with the bot"}

    @app.post("/modules/{module_id}/unlock")
    async def unlock_module(module_id: str, body: UnlockBody, x_user_id: Optional[str] = Header(None)):
        user = curator(x_user_id)
        return await container.enrollments.unlock_module(
            module_id, body.user_ids, for_all=body.for_all,
            all_completed_previous=body.all_completed_previous, curator_id=user.id,
        )

    @app.post("/modules/{module_id}/lock")
    async def lock_module(module_id: str, body: LockBody, x_user_id: Optional[str] = Header(None)):
        curator(x_user_id)
        return await container.enrollments.lock_module(module_id, body.user_ids, for_all=body.for_all)

    # ── Telegram ──────────────────────────────────────────

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        request: Request,
        x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    ):
        settings = container.settings
        if settings and settings.webhook_secret and x_telegram_bot_api_secret_token != settings.webhook_secret:
            raise ForbiddenError("Invalid webhook secret")
        application = container.application
        if application is None:
            raise HTTPException(status_code=503, detail="Telegram application is not configured")
        update = Update.de_json(await request.json(), application.bot)
        await application.process_update(update)
        return {"ok": True}

    return app
