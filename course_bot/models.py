from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum


class SubmissionStatus(str, Enum):
    SENT = "SENT"
    AI_REVIEWED = "AI_REVIEWED"
    CURATOR_APPROVED = "CURATOR_APPROVED"
    CURATOR_RETURNED = "CURATOR_RETURNED"


class AnswerType(str, Enum):
    TEXT = "TEXT"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    FILE = "FILE"


class EnrollmentStatus(str, Enum):
    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class StepType(str, Enum):
    INFO = "INFO"
    TASK = "TASK"
    QUIZ = "QUIZ"


class UserRole(str, Enum):
    LEARNER = "LEARNER"
    CURATOR = "CURATOR"
    ADMIN = "ADMIN"


class Decision(str, Enum):
    APPROVE = "APPROVE"
    RETURN = "RETURN"


MEDIA_ANSWERS = (AnswerType.AUDIO, AnswerType.VIDEO)
STAFF_ROLES = (UserRole.CURATOR, UserRole.ADMIN)
OPEN_STATUSES = (SubmissionStatus.SENT, SubmissionStatus.AI_REVIEWED)


def utcnow():
    return datetime.now(timezone.utc).isoformat()


class _Row:
    """Mixin mapping dataclass fields to supabase rows and back."""

    _enums = {}

    @classmethod
    def from_row(cls, row):
        if row is None:
            return None
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in row.items() if k in known}
        for name, enum_cls in cls._enums.items():
            if values.get(name) is not None:
                values[name] = enum_cls(values[name])
        return cls(**values)

    def to_row(self):
        row = asdict(self)
        for name in self._enums:
            if row.get(name) is not None:
                row[name] = row[name].value
        return row


@dataclass
class User(_Row):
    id: str
    telegram_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    position: str | None = None
    role: UserRole = UserRole.LEARNER
    profile_completed: bool = False

    _enums = {"role": UserRole}

    @property
    def display_name(self):
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Learner"

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES


@dataclass
class CourseModule(_Row):
    id: str
    index: int
    title: str
    auto_unlock_for_new_learners: bool = False


@dataclass
class CourseStep(_Row):
    id: str
    module_id: str
    index: int
    title: str
    type: StepType = StepType.TASK
    content: str = ""
    expected_answer: AnswerType = AnswerType.TEXT
    requires_ai_review: bool = False
    ai_rubric: str | None = None
    max_score: int = 10
    is_required: bool = True

    _enums = {"type": StepType, "expected_answer": AnswerType}

    @property
    def is_info(self):
        return self.type == StepType.INFO


@dataclass
class Enrollment(_Row):
    id: str
    user_id: str
    module_id: str
    status: EnrollmentStatus = EnrollmentStatus.LOCKED
    unlocked_at: str | None = None
    completed_at: str | None = None
    unlocked_by: str | None = None

    _enums = {"status": EnrollmentStatus}


@dataclass
class Submission(_Row):
    id: str
    user_id: str
    module_id: str
    step_id: str
    answer_type: AnswerType
    status: SubmissionStatus = SubmissionStatus.SENT
    answer_text: str | None = None
    answer_file_id: str | None = None
    ai_score: float | None = None
    ai_feedback: str | None = None
    curator_score: float | None = None
    curator_feedback: str | None = None
    resubmission_requested: bool = False
    resubmission_requested_at: str | None = None
    prompt_message_id: int | None = None
    version: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    _enums = {"answer_type": AnswerType, "status": SubmissionStatus}

    @property
    def is_media(self):
        return self.answer_type in MEDIA_ANSWERS

    @property
    def awaiting_file(self):
        return self.is_media and self.status == SubmissionStatus.SENT and not self.answer_file_id


@dataclass
class ReviewContext:
    """A submission together with the rows notifications need to render it."""

    submission: Submission
    user: User | None = None
    module: CourseModule | None = None
    step: CourseStep | None = None

    @property
    def learner_name(self):
        return self.user.display_name if self.user else "Learner"

    @property
    def module_label(self):
        if not self.module:
            return "?"
        return f"{self.module.index}: {self.module.title}"

    @property
    def step_label(self):
        if not self.step:
            return "?"
        return f"{self.step.index}: {self.step.title}"
