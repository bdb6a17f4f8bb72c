"""In-memory stand-ins for the supabase client, the chat gateway and the AI collaborators."""
import copy

from course_bot.gateway import MessagingGateway
from course_bot.scoring import Review, Scorer
from course_bot.transcription import Transcriber


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.action = "select"
        self.payload = None
        self.filters = []
        self._order = None
        self._limit = None

    def select(self, *columns):
        self.action = "select"
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, values):
        self.action = "update"
        self.payload = values
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        assert value == "null"
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        self.db.calls.append((self.table, self.action))
        rows = self.db.tables.setdefault(self.table, [])
        if self.action == "insert":
            new = self.payload if isinstance(self.payload, list) else [self.payload]
            rows.extend(copy.deepcopy(new))
            return FakeResult(copy.deepcopy(new))

        matched = [row for row in rows if all(f(row) for f in self.filters)]
        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
        elif self.action == "delete":
            for row in matched:
                rows.remove(row)
        else:
            if self._order:
                column, desc = self._order
                position = {id(row): i for i, row in enumerate(rows)}
                matched.sort(key=lambda row: (row.get(column) or "", position[id(row)]), reverse=desc)
            if self._limit is not None:
                matched = matched[:self._limit]
        return FakeResult(copy.deepcopy(matched))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.get(name, [])


class RecordingGateway(MessagingGateway):
    def __init__(self, fail_for=()):
        self.fail_for = {str(chat_id) for chat_id in fail_for}
        self.sent = []
        self.voices = []
        self.video_notes = []
        self.documents = []
        self.downloads = []
        self.attachment_data = b"OggS fake voice"
        self._next_id = 1000

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    async def send_text(self, chat_id, text, buttons=None, reply_to=None):
        if str(chat_id) in self.fail_for:
            raise RuntimeError(f"chat {chat_id} unreachable")
        message_id = self._new_id()
        self.sent.append({"chat_id": str(chat_id), "text": text, "buttons": buttons, "message_id": message_id})
        return message_id

    async def send_voice(self, chat_id, file_ref, caption=None):
        self.voices.append((str(chat_id), file_ref, caption))
        return self._new_id()

    async def send_video_note(self, chat_id, file_ref):
        self.video_notes.append((str(chat_id), file_ref))
        return self._new_id()

    async def send_document(self, chat_id, data, filename, caption=None):
        self.documents.append((str(chat_id), filename, caption))
        return self._new_id()

    async def download_attachment(self, file_ref):
        self.downloads.append(file_ref)
        return self.attachment_data

    def texts_to(self, chat_id):
        return [m["text"] for m in self.sent if m["chat_id"] == str(chat_id)]


class ScriptedScorer(Scorer):
    """Returns queued reviews (or raises queued exceptions) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def score(self, task_text, answer_text, max_score, rubric=None):
        self.calls.append((task_text, answer_text, max_score, rubric))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, Review):
            return outcome
        score, feedback = outcome
        return Review(score=score, feedback=feedback)


class ScriptedTranscriber(Transcriber):
    def __init__(self, text="transcribed answer", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def transcribe(self, data, filename_hint):
        self.calls.append((data, filename_hint))
        if self.error:
            raise self.error
        return self.text
