import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_CORRELATION_TTL = 7 * 24 * 3600


def _env(name, default=None):
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _split_ids(raw):
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_key: str
    telegram_token: str
    gemini_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    whisper_model: str = "base"
    whisper_language: str = "ru"
    curator_telegram_ids: frozenset = field(default_factory=frozenset)
    webhook_url: str | None = None
    webhook_secret: str | None = None
    correlation_ttl: int = DEFAULT_CORRELATION_TTL
    correlation_max_entries: int = 10_000
    side_effect_retries: int = 3

    @classmethod
    def from_env(cls, dotenv=True):
        """Read settings from the environment (and ``.env`` when present).

        Missing required keys raise ``KeyError`` the same way a bare
        ``os.environ[...]`` lookup would.
        """
        if dotenv:
            load_dotenv()
        return cls(
            supabase_url=os.environ["SUPABASE_URL"].strip(),
            supabase_key=os.environ["SUPABASE_KEY"].strip(),
            telegram_token=os.environ["TELEGRAM_TOKEN"].strip(),
            gemini_api_key=_env("GEMINI_API_KEY"),
            gemini_model=_env("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            whisper_model=_env("WHISPER_MODEL", "base"),
            whisper_language=_env("WHISPER_LANGUAGE", "ru"),
            curator_telegram_ids=_split_ids(_env("CURATOR_TELEGRAM_IDS")),
            webhook_url=_env("WEBHOOK_URL"),
            webhook_secret=_env("WEBHOOK_SECRET"),
            correlation_ttl=int(_env("CORRELATION_TTL_SECONDS", DEFAULT_CORRELATION_TTL)),
            correlation_max_entries=int(_env("CORRELATION_MAX_ENTRIES", 10_000)),
            side_effect_retries=int(_env("SIDE_EFFECT_RETRIES", 3)),
        )

    def is_curator(self, telegram_id):
        return str(telegram_id) in self.curator_telegram_ids
