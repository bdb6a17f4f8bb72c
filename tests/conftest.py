import pytest

from course_bot.app import Container
from course_bot.config import Settings
from course_bot.store import SubmissionStore
from course_bot.tasks import SideEffectRunner

from fakes import FakeSupabase, RecordingGateway

LEARNER = "u-learner"
LEARNER_CHAT = "111"
CURATOR = "u-curator"
CURATOR_CHAT = "900"
ADMIN = "u-admin"
ADMIN_CHAT = "901"

MODULE = "m-1"
NEXT_MODULE = "m-2"
INFO_STEP = "s-info"
TEXT_STEP = "s-text"
AUDIO_STEP = "s-audio"
VIDEO_STEP = "s-video"
NEXT_STEP = "s-next"


def seed(db):
    db.tables["users"] = [
        {"id": LEARNER, "telegram_id": LEARNER_CHAT, "first_name": "Anna", "last_name": "Petrova",
         "role": "LEARNER", "profile_completed": True},
        {"id": CURATOR, "telegram_id": CURATOR_CHAT, "first_name": "Igor", "last_name": "Smirnov",
         "role": "CURATOR", "profile_completed": True},
        {"id": ADMIN, "telegram_id": ADMIN_CHAT, "first_name": "Olga", "last_name": None,
         "role": "ADMIN", "profile_completed": True},
    ]
    db.tables["course_modules"] = [
        {"id": MODULE, "index": 1, "title": "Pyramid principle", "auto_unlock_for_new_learners": True},
        {"id": NEXT_MODULE, "index": 2, "title": "Storytelling", "auto_unlock_for_new_learners": False},
    ]
    db.tables["course_steps"] = [
        {"id": INFO_STEP, "module_id": MODULE, "index": 1, "title": "Intro", "type": "INFO",
         "content": "Read this", "expected_answer": "TEXT", "requires_ai_review": False, "is_required": True},
        {"id": TEXT_STEP, "module_id": MODULE, "index": 2, "title": "Write a summary", "type": "TASK",
         "content": "Summarise the memo", "expected_answer": "TEXT", "requires_ai_review": True,
         "ai_rubric": None, "max_score": 10, "is_required": True},
        {"id": AUDIO_STEP, "module_id": MODULE, "index": 3, "title": "Pitch it", "type": "TASK",
         "content": "Pitch the idea", "expected_answer": "AUDIO", "requires_ai_review": True,
         "max_score": 10, "is_required": True},
        {"id": VIDEO_STEP, "module_id": MODULE, "index": 4, "title": "Optional video", "type": "TASK",
         "content": "Record a video", "expected_answer": "VIDEO", "requires_ai_review": False,
         "max_score": 5, "is_required": False},
        {"id": NEXT_STEP, "module_id": NEXT_MODULE, "index": 1, "title": "Tell a story", "type": "TASK",
         "content": "Tell a story", "expected_answer": "TEXT", "requires_ai_review": False,
         "max_score": 10, "is_required": True},
    ]
    db.tables["enrollments"] = [
        {"id": "e-1", "user_id": LEARNER, "module_id": MODULE, "status": "IN_PROGRESS",
         "unlocked_at": "2025-01-01T00:00:00+00:00", "completed_at": None, "unlocked_by": CURATOR},
    ]
    db.tables["submissions"] = []
    db.tables["submission_history"] = []
    return db


@pytest.fixture
def db():
    return seed(FakeSupabase())


@pytest.fixture
def store(db):
    return SubmissionStore(db)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def settings():
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_key="key",
        telegram_token="token",
        curator_telegram_ids=frozenset({CURATOR_CHAT, "902"}),
        webhook_secret="s3cret",
    )


@pytest.fixture
def make_container(store, gateway):
    def make(scorer=None, transcriber=None, settings=None, retries=1):
        runner = SideEffectRunner(retries=retries, base_delay=0)
        return Container(store, gateway, scorer=scorer, transcriber=transcriber, settings=settings, runner=runner)
    return make
