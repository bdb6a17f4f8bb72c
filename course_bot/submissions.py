"""Submission lifecycle: SENT -> AI_REVIEWED -> CURATOR_APPROVED | CURATOR_RETURNED.

A returned submission can be answered again, which reuses the same row and
starts over from SENT. Scoring, notifications and the module completion
check run as side effects and never fail the call that triggered them.
"""
import logging

from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .models import (
    AnswerType,
    Decision,
    EnrollmentStatus,
    OPEN_STATUSES,
    SubmissionStatus,
    utcnow,
)
from .scoring import clamp, is_quota_error

logger = logging.getLogger(__name__)

QUICK_APPROVE_FEEDBACK = "Great work! Approved by the curator."

CLEARED_REVIEW = {
    "ai_score": None,
    "ai_feedback": None,
    "curator_score": None,
    "curator_feedback": None,
    "resubmission_requested": False,
    "resubmission_requested_at": None,
}


class SubmissionService:
    def __init__(self, store, events, runner, scorer=None):
        self.store = store
        self.events = events
        self.runner = runner
        self.scorer = scorer

    # ── Reads ─────────────────────────────────────────────

    def get(self, submission_id):
        submission = self.store.get_submission(submission_id)
        if not submission:
            raise NotFoundError("Submission not found")
        return submission

    def list_submissions(self, user_id=None, module_id=None, status=None):
        return self.store.list_submissions(user_id=user_id, module_id=module_id, status=status)

    # ── Learner answers ───────────────────────────────────

    def _require_open_module(self, user_id, module_id):
        enrollment = self.store.get_enrollment(user_id, module_id)
        if not enrollment or enrollment.status != EnrollmentStatus.IN_PROGRESS:
            raise ForbiddenError("Module is not unlocked yet. Please wait for the curator to open it.")
        return enrollment

    def _load_step(self, step_id, module_id):
        step = self.store.get_step(step_id)
        if not step:
            raise NotFoundError("Step not found")
        if step.module_id != module_id:
            raise BadRequestError("Step does not belong to the specified module")
        return step

    async def create(self, user_id, step_id, module_id, answer_type, answer_text=None, answer_file_id=None):
        step = self._load_step(step_id, module_id)
        if step.is_info:
            raise BadRequestError("Cannot submit an answer for an informational step")
        self._require_open_module(user_id, module_id)

        existing = self.store.find_submission(user_id, step_id)
        if existing and existing.status != SubmissionStatus.CURATOR_RETURNED:
            raise ConflictError("You have already submitted this step, it is awaiting review")

        try:
            answer_type = AnswerType(answer_type)
        except ValueError:
            raise BadRequestError(f"Unknown answer type {answer_type!r}")
        if step.expected_answer != answer_type:
            raise BadRequestError(
                f"Expected answer type is {step.expected_answer.value}, but got {answer_type.value}"
            )
        if answer_type == AnswerType.TEXT and not (answer_text or "").strip():
            raise BadRequestError("Answer text is required for TEXT answers")
        if answer_type != AnswerType.TEXT and not answer_file_id:
            raise BadRequestError(f"A file reference is required for {answer_type.value} answers")

        values = {
            "answer_type": answer_type,
            "answer_text": answer_text,
            "answer_file_id": answer_file_id,
            "status": SubmissionStatus.SENT,
            "prompt_message_id": None,
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
        logger.info("Submission %s SENT (user=%s step=%s)", submission.id, user_id, step_id)

        self.accept_answer(submission, step)
        return submission

    def accept_answer(self, submission, step=None):
        """Kick off review of a freshly received answer without waiting for it."""
        step = step or self.store.get_step(submission.step_id)
        if step and step.requires_ai_review and (submission.answer_text or "").strip():
            self.runner.spawn(f"score:{submission.id}", lambda: self.apply_scoring(submission.id), retries=0)
        else:
            context = self.store.load_context(submission)
            self.runner.spawn(f"notify-received:{submission.id}", lambda: self.events.submission_received(context))

    # ── AI pre-scoring ────────────────────────────────────

    async def apply_scoring(self, submission_id):
        submission = self.store.get_submission(submission_id)
        if not submission:
            logger.error("Submission %s not found for scoring", submission_id)
            return None
        step = self.store.get_step(submission.step_id)
        if not step or not step.requires_ai_review:
            logger.info("Scoring skipped for %s: not required", submission_id)
            return None
        if submission.status != SubmissionStatus.SENT:
            logger.info("Scoring skipped for %s: status is %s", submission_id, submission.status.value)
            return None
        if self.scorer is None:
            logger.warning("No scorer configured; %s goes to manual review", submission_id)
            context = self.store.load_context(submission)
            self.runner.spawn(f"notify-received:{submission_id}", lambda: self.events.submission_received(context))
            return None

        try:
            review = await self.scorer.score(
                step.content, submission.answer_text or "", step.max_score, step.ai_rubric
            )
        except Exception as e:
            logger.error("AI review failed for %s: %s", submission_id, e)
            context = self.store.load_context(submission)
            if is_quota_error(e):
                self.runner.spawn(f"quota-alert:{submission_id}", lambda: self.events.scoring_unavailable(context))
            else:
                self.runner.spawn(f"notify-received:{submission_id}", lambda: self.events.submission_received(context))
            return None

        updated = self.store.update_submission_if(submission.id, submission.version, {
            "ai_score": clamp(review.score, step.max_score),
            "ai_feedback": review.feedback,
            "status": SubmissionStatus.AI_REVIEWED,
        })
        if updated is None:
            logger.warning("Submission %s changed during scoring; AI review discarded", submission_id)
            return None
        logger.info("Submission %s AI_REVIEWED: %s/%s", submission_id, updated.ai_score, step.max_score)

        context = self.store.load_context(updated)
        self.runner.spawn(f"notify-scored:{submission_id}", lambda: self.events.submission_scored(context))
        return updated

    # ── Curator decisions ─────────────────────────────────

    async def decide(self, submission_id, outcome, score=None, feedback=None, curator_id=None):
        submission = self.get(submission_id)
        try:
            outcome = Decision(outcome)
        except ValueError:
            raise BadRequestError(f"Unknown decision {outcome!r}")
        step = self.store.get_step(submission.step_id)
        max_score = step.max_score if step else 10

        if submission.status not in OPEN_STATUSES:
            raise ConflictError(f"Submission is already {submission.status.value}")
        if outcome == Decision.APPROVE and score is not None and not 0 <= score <= max_score:
            raise BadRequestError(f"Score must be between 0 and {max_score}")
        if outcome == Decision.RETURN and not (feedback or "").strip():
            raise BadRequestError("Feedback is required when returning a submission")

        if outcome == Decision.APPROVE:
            status = SubmissionStatus.CURATOR_APPROVED
        else:
            status = SubmissionStatus.CURATOR_RETURNED

        updated = self.store.update_submission_if(submission.id, submission.version, {
            "status": status,
            "curator_score": score,
            "curator_feedback": feedback,
            "resubmission_requested": False,
            "resubmission_requested_at": None,
        })
        if updated is None:
            raise ConflictError("Submission was already reviewed by another curator")
        if status == SubmissionStatus.CURATOR_RETURNED:
            self.store.add_history(submission, "RETURNED")
        logger.info("Submission %s %s by %s", submission_id, status.value, curator_id or "curator")

        context = self.store.load_context(updated)
        self.runner.spawn(f"notify-decided:{submission_id}", lambda: self.events.submission_decided(context))
        if status == SubmissionStatus.CURATOR_APPROVED:
            self.runner.spawn(
                f"completion:{updated.module_id}:{updated.user_id}",
                lambda: self.check_module_completion(updated.module_id, updated.user_id),
            )
        return updated

    async def quick_approve(self, submission_id, score=None, curator_id=None):
        submission = self.get(submission_id)
        if score is None:
            step = self.store.get_step(submission.step_id)
            score = step.max_score if step else 10
        return await self.decide(
            submission_id, Decision.APPROVE, score=score, feedback=QUICK_APPROVE_FEEDBACK, curator_id=curator_id
        )

    # ── Module completion ─────────────────────────────────

    async def check_module_completion(self, module_id, user_id):
        """Flip the enrollment to COMPLETED once every required step is approved.

        Returns True only for the call that performed the transition.
        """
        module = self.store.get_module(module_id)
        if not module:
            return False
        required = [s.id for s in self.store.list_module_steps(module_id) if s.is_required and not s.is_info]
        approved = {
            s.step_id
            for s in self.store.list_submissions(user_id=user_id, module_id=module_id)
            if s.status == SubmissionStatus.CURATOR_APPROVED
        }
        if not all(step_id in approved for step_id in required):
            return False

        enrollment = self.store.transition_enrollment(
            user_id, module_id, EnrollmentStatus.IN_PROGRESS,
            {"status": EnrollmentStatus.COMPLETED, "completed_at": utcnow()},
        )
        if enrollment is None:
            return False
        logger.info("Module %s COMPLETED for %s", module_id, user_id)

        user = self.store.get_user(user_id)
        self.runner.spawn(f"notify-completed:{module_id}:{user_id}", lambda: self.events.module_completed(user, module))
        return True

    def _reopen_module(self, user_id, module_id):
        enrollment = self.store.transition_enrollment(
            user_id, module_id, EnrollmentStatus.COMPLETED,
            {"status": EnrollmentStatus.IN_PROGRESS, "completed_at": None},
        )
        if enrollment:
            logger.info("Module %s reopened for %s", module_id, user_id)

    # ── Resubmission and resets ───────────────────────────

    async def request_resubmission(self, submission_id, user_id):
        submission = self.get(submission_id)
        if submission.user_id != user_id:
            raise ForbiddenError("You can only request resubmission of your own submissions")
        if submission.status == SubmissionStatus.CURATOR_APPROVED:
            raise BadRequestError("Cannot request resubmission of an approved submission")
        if submission.resubmission_requested:
            raise ConflictError("Resubmission already requested. Please wait for the curator.")

        updated = self.store.update_submission(submission.id, {
            "resubmission_requested": True,
            "resubmission_requested_at": utcnow(),
        })
        context = self.store.load_context(updated)
        self.runner.spawn(f"notify-resubmission:{submission_id}", lambda: self.events.resubmission_requested(context))
        return updated

    async def approve_resubmission(self, submission_id):
        submission = self.get(submission_id)
        if not submission.resubmission_requested:
            raise BadRequestError("The learner has not requested a resubmission")
        context = self.store.load_context(submission)
        self.store.add_history(submission, "RESUBMISSION")
        self.store.delete_submission(submission.id)
        self._reopen_module(submission.user_id, submission.module_id)
        self.runner.spawn(f"notify-resubmission-ok:{submission_id}", lambda: self.events.resubmission_approved(context))
        return context

    async def delete_submission(self, submission_id):
        submission = self.get(submission_id)
        context = self.store.load_context(submission)
        self.store.add_history(submission, "DELETED")
        self.store.delete_submission(submission.id)
        self._reopen_module(submission.user_id, submission.module_id)
        self.runner.spawn(f"notify-deleted:{submission_id}", lambda: self.events.submission_deleted(context))
        return context
