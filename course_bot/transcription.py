import asyncio
import logging
import os
import tempfile

import whisper

from .errors import TranscriptionError

logger = logging.getLogger(__name__)


class Transcriber:
    async def transcribe(self, data, filename_hint):
        raise NotImplementedError


class WhisperTranscriber(Transcriber):
    """Local Whisper transcription pinned to one language.

    The model is loaded on first use and reused; decoding runs in a worker
    thread so the bot keeps serving other updates.
    """

    def __init__(self, model_name="base", language="ru"):
        self.model_name = model_name
        self.language = language
        self._model = None

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.whisper_model, settings.whisper_language)

    def _load(self):
        if self._model is None:
            logger.info("Loading Whisper model %s...", self.model_name)
            self._model = whisper.load_model(self.model_name)
        return self._model

    def transcribe_file(self, path):
        result = self._load().transcribe(path, language=self.language)
        return result["text"].strip()

    def _transcribe_bytes(self, data, filename_hint):
        suffix = os.path.splitext(filename_hint)[1] or ".ogg"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as f:
            f.write(data)
            path = f.name
        try:
            return self.transcribe_file(path)
        finally:
            os.remove(path)

    async def transcribe(self, data, filename_hint):
        try:
            return await asyncio.to_thread(self._transcribe_bytes, data, filename_hint)
        except Exception as e:
            raise TranscriptionError(f"Transcription of {filename_hint} failed: {e}") from e
