"""Process-local correlation state for the bot's conversations.

Nothing here is persisted: a restart forgets open dialogs and relay
threads, and the learner simply has to start again.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CorrelationStore:
    """Key-value store with optional per-entry TTL."""

    def get(self, key, default=None):
        raise NotImplementedError

    def set(self, key, value, ttl=None):
        raise NotImplementedError

    def pop(self, key, default=None):
        raise NotImplementedError

    def __contains__(self, key):
        return self.get(key, _MISSING) is not _MISSING


_MISSING = object()


class InMemoryCorrelationStore(CorrelationStore):
    """Bounded map: entries expire after ``default_ttl`` seconds and the
    least recently written entry is evicted once ``max_entries`` is exceeded.
    """

    def __init__(self, default_ttl=None, max_entries=None, clock=time.monotonic):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries = OrderedDict()

    def _expired(self, expires_at):
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key, default=None):
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._expired(expires_at):
            del self._entries[key]
            return default
        return value

    def set(self, key, value, ttl=None):
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None
        self._entries.pop(key, None)
        self._entries[key] = (expires_at, value)
        self._evict()

    def pop(self, key, default=None):
        entry = self._entries.pop(key, None)
        if entry is None or self._expired(entry[0]):
            return default
        return entry[1]

    def purge(self):
        for key in [k for k, (exp, _) in self._entries.items() if self._expired(exp)]:
            del self._entries[key]

    def _evict(self):
        if not self.max_entries:
            return
        if len(self._entries) > self.max_entries:
            self.purge()
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted correlation entry %r", key)

    def __len__(self):
        self.purge()
        return len(self._entries)


def _or_default(store):
    return InMemoryCorrelationStore() if store is None else store


class RegistrationStage(str, Enum):
    WAITING_FIRST_NAME = "WAITING_FIRST_NAME"
    WAITING_LAST_NAME = "WAITING_LAST_NAME"
    WAITING_POSITION = "WAITING_POSITION"


@dataclass
class RegistrationDialog:
    stage: RegistrationStage = RegistrationStage.WAITING_FIRST_NAME
    first_name: str | None = None
    last_name: str | None = None
    position: str | None = None
    complete: bool = False


class CorrelationRegistry:
    """Per-chat dialog state plus the curator reply map.

    Every namespace is an injected ``CorrelationStore`` so a deployment can
    swap in a shared backend; tests use the in-memory one.
    """

    def __init__(self, registrations=None, questions=None, curator_replies=None, pending_returns=None):
        self.registrations = _or_default(registrations)
        self.questions = _or_default(questions)
        self.curator_replies = _or_default(curator_replies)
        self.pending_returns = _or_default(pending_returns)

    @classmethod
    def from_settings(cls, settings):
        def bounded():
            return InMemoryCorrelationStore(
                default_ttl=settings.correlation_ttl,
                max_entries=settings.correlation_max_entries,
            )
        return cls(
            registrations=bounded(),
            questions=bounded(),
            curator_replies=bounded(),
            pending_returns=bounded(),
        )

    # ── Registration ──────────────────────────────────────

    def start_registration(self, chat_id):
        self.questions.pop(str(chat_id))
        dialog = RegistrationDialog()
        self.registrations.set(str(chat_id), dialog)
        return dialog

    def registration(self, chat_id):
        return self.registrations.get(str(chat_id))

    def advance_registration(self, chat_id, text):
        """Record ``text`` for the current stage.

        Returns the updated dialog (``complete`` is set and the state is
        removed once the last stage is answered), or ``None`` when no
        registration is open for ``chat_id``.
        """
        dialog = self.registrations.get(str(chat_id))
        if dialog is None:
            return None
        if dialog.stage == RegistrationStage.WAITING_FIRST_NAME:
            dialog.first_name = text
            dialog.stage = RegistrationStage.WAITING_LAST_NAME
        elif dialog.stage == RegistrationStage.WAITING_LAST_NAME:
            dialog.last_name = text
            dialog.stage = RegistrationStage.WAITING_POSITION
        else:
            dialog.position = text
            dialog.complete = True
            self.registrations.pop(str(chat_id))
            return dialog
        self.registrations.set(str(chat_id), dialog)
        return dialog

    def finish_registration(self, chat_id):
        return self.registrations.pop(str(chat_id))

    # ── Question relay ────────────────────────────────────

    def start_question(self, chat_id):
        if str(chat_id) in self.registrations:
            return False
        self.questions.set(str(chat_id), True)
        return True

    def awaiting_question(self, chat_id):
        return bool(self.questions.get(str(chat_id)))

    def clear_question(self, chat_id):
        self.questions.pop(str(chat_id))

    def remember_relay(self, curator_chat_id, message_id, learner_chat_id):
        self.curator_replies.set((str(curator_chat_id), int(message_id)), str(learner_chat_id))

    def learner_for_reply(self, curator_chat_id, message_id):
        return self.curator_replies.get((str(curator_chat_id), int(message_id)))

    # ── Inline "return" feedback ──────────────────────────

    def await_return_feedback(self, curator_chat_id, submission_id):
        self.pending_returns.set(str(curator_chat_id), submission_id)

    def take_return_feedback(self, curator_chat_id):
        return self.pending_returns.pop(str(curator_chat_id))
