"""Supabase-backed persistence for users, modules, steps, enrollments and submissions."""
import logging
from uuid import uuid4

from supabase import create_client

from .models import (
    CourseModule,
    CourseStep,
    Enrollment,
    EnrollmentStatus,
    MEDIA_ANSWERS,
    ReviewContext,
    STAFF_ROLES,
    Submission,
    SubmissionStatus,
    User,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

USERS = "users"
MODULES = "course_modules"
STEPS = "course_steps"
ENROLLMENTS = "enrollments"
SUBMISSIONS = "submissions"
HISTORY = "submission_history"


def _first(result):
    return result.data[0] if result.data else None


class SubmissionStore:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_settings(cls, settings):
        return cls(create_client(settings.supabase_url, settings.supabase_key))

    def _table(self, name):
        return self.client.table(name)

    # ── Users ─────────────────────────────────────────────

    def get_user(self, user_id):
        result = self._table(USERS).select("*").eq("id", user_id).limit(1).execute()
        return User.from_row(_first(result))

    def get_user_by_telegram_id(self, telegram_id):
        result = self._table(USERS)\
            .select("*")\
            .eq("telegram_id", str(telegram_id))\
            .limit(1)\
            .execute()
        return User.from_row(_first(result))

    def list_staff(self):
        result = self._table(USERS)\
            .select("*")\
            .in_("role", [r.value for r in STAFF_ROLES])\
            .execute()
        return [User.from_row(row) for row in result.data]

    def list_learners(self):
        result = self._table(USERS).select("*").eq("role", UserRole.LEARNER.value).execute()
        return [User.from_row(row) for row in result.data]

    def create_user(self, telegram_id, first_name=None, last_name=None, role=UserRole.LEARNER):
        row = {
            "id": str(uuid4()),
            "telegram_id": str(telegram_id),
            "first_name": first_name,
            "last_name": last_name,
            "role": UserRole(role).value,
            "profile_completed": False,
        }
        result = self._table(USERS).insert(row).execute()
        return User.from_row(_first(result) or row)

    def update_user(self, user_id, values):
        result = self._table(USERS).update(_plain(values)).eq("id", user_id).execute()
        return User.from_row(_first(result))

    # ── Course structure ──────────────────────────────────

    def get_module(self, module_id):
        result = self._table(MODULES).select("*").eq("id", module_id).limit(1).execute()
        return CourseModule.from_row(_first(result))

    def get_module_by_index(self, index):
        result = self._table(MODULES).select("*").eq("index", index).limit(1).execute()
        return CourseModule.from_row(_first(result))

    def list_auto_unlock_modules(self):
        result = self._table(MODULES)\
            .select("*")\
            .eq("auto_unlock_for_new_learners", True)\
            .order("index")\
            .execute()
        return [CourseModule.from_row(row) for row in result.data]

    def update_module(self, module_id, values):
        self._table(MODULES).update(_plain(values)).eq("id", module_id).execute()

    def get_step(self, step_id):
        result = self._table(STEPS).select("*").eq("id", step_id).limit(1).execute()
        return CourseStep.from_row(_first(result))

    def list_module_steps(self, module_id):
        result = self._table(STEPS)\
            .select("*")\
            .eq("module_id", module_id)\
            .order("index")\
            .execute()
        return [CourseStep.from_row(row) for row in result.data]

    # ── Enrollments ───────────────────────────────────────

    def get_enrollment(self, user_id, module_id):
        result = self._table(ENROLLMENTS)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("module_id", module_id)\
            .limit(1)\
            .execute()
        return Enrollment.from_row(_first(result))

    def list_enrollments(self, module_id, status=None):
        query = self._table(ENROLLMENTS).select("*").eq("module_id", module_id)
        if status is not None:
            query = query.eq("status", EnrollmentStatus(status).value)
        return [Enrollment.from_row(row) for row in query.execute().data]

    def save_enrollment(self, user_id, module_id, values):
        """Find-then-create-or-update on the (user, module) pair."""
        values = _plain(values)
        existing = self.get_enrollment(user_id, module_id)
        if existing:
            result = self._table(ENROLLMENTS).update(values).eq("id", existing.id).execute()
            return Enrollment.from_row(_first(result))
        row = {"id": str(uuid4()), "user_id": user_id, "module_id": module_id, **values}
        result = self._table(ENROLLMENTS).insert(row).execute()
        return Enrollment.from_row(_first(result) or row)

    def transition_enrollment(self, user_id, module_id, from_status, values):
        """Update only if the enrollment is still in ``from_status``.

        Returns the updated enrollment, or ``None`` when nothing matched.
        """
        result = self._table(ENROLLMENTS)\
            .update(_plain(values))\
            .eq("user_id", user_id)\
            .eq("module_id", module_id)\
            .eq("status", EnrollmentStatus(from_status).value)\
            .execute()
        return Enrollment.from_row(_first(result))

    # ── Submissions ───────────────────────────────────────

    def get_submission(self, submission_id):
        result = self._table(SUBMISSIONS).select("*").eq("id", submission_id).limit(1).execute()
        return Submission.from_row(_first(result))

    def find_submission(self, user_id, step_id):
        result = self._table(SUBMISSIONS)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("step_id", step_id)\
            .limit(1)\
            .execute()
        return Submission.from_row(_first(result))

    def find_by_prompt(self, user_id, prompt_message_id):
        result = self._table(SUBMISSIONS)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("prompt_message_id", int(prompt_message_id))\
            .limit(1)\
            .execute()
        return Submission.from_row(_first(result))

    def list_awaiting_files(self, user_id=None):
        """AUDIO/VIDEO submissions that were prompted but never got a file, newest first."""
        query = self._table(SUBMISSIONS)\
            .select("*")\
            .in_("answer_type", [t.value for t in MEDIA_ANSWERS])\
            .eq("status", SubmissionStatus.SENT.value)\
            .is_("answer_file_id", "null")
        if user_id is not None:
            query = query.eq("user_id", user_id)
        result = query.order("created_at", desc=True).execute()
        return [Submission.from_row(row) for row in result.data]

    def list_submissions(self, user_id=None, module_id=None, status=None):
        query = self._table(SUBMISSIONS).select("*")
        if user_id:
            query = query.eq("user_id", user_id)
        if module_id:
            query = query.eq("module_id", module_id)
        if status:
            query = query.eq("status", SubmissionStatus(status).value)
        result = query.order("created_at", desc=True).execute()
        return [Submission.from_row(row) for row in result.data]

    def insert_submission(self, values):
        now = utcnow()
        row = {
            "id": str(uuid4()),
            "version": 0,
            "resubmission_requested": False,
            "created_at": now,
            "updated_at": now,
            **_plain(values),
        }
        result = self._table(SUBMISSIONS).insert(row).execute()
        return Submission.from_row(_first(result) or row)

    def update_submission(self, submission_id, values):
        values = {**_plain(values), "updated_at": utcnow()}
        result = self._table(SUBMISSIONS).update(values).eq("id", submission_id).execute()
        return Submission.from_row(_first(result))

    def update_submission_if(self, submission_id, expected_version, values):
        """Compare-and-set on ``version``; returns ``None`` if another writer got there first."""
        values = {**_plain(values), "version": expected_version + 1, "updated_at": utcnow()}
        result = self._table(SUBMISSIONS)\
            .update(values)\
            .eq("id", submission_id)\
            .eq("version", expected_version)\
            .execute()
        return Submission.from_row(_first(result))

    def delete_submission(self, submission_id):
        self._table(SUBMISSIONS).delete().eq("id", submission_id).execute()

    def add_history(self, submission, reason):
        row = {
            "id": str(uuid4()),
            "submission_id": submission.id,
            "answer_text": submission.answer_text,
            "answer_file_id": submission.answer_file_id,
            "answer_type": submission.answer_type.value,
            "ai_score": submission.ai_score,
            "ai_feedback": submission.ai_feedback,
            "curator_score": submission.curator_score,
            "curator_feedback": submission.curator_feedback,
            "status": submission.status.value,
            "reason": reason,
            "created_at": utcnow(),
        }
        self._table(HISTORY).insert(row).execute()

    def load_context(self, submission):
        return ReviewContext(
            submission=submission,
            user=self.get_user(submission.user_id),
            module=self.get_module(submission.module_id),
            step=self.get_step(submission.step_id),
        )


def _plain(values):
    """Turn enum members into their wire values."""
    return {k: getattr(v, "value", v) for k, v in values.items()}
