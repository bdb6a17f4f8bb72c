import logging

from .audio import AudioIntakePipeline
from .bot import CourseBot, build_application, register_handlers
from .correlation import CorrelationRegistry
from .enrollments import EnrollmentService
from .gateway import TelegramGateway
from .notifications import NotificationDispatcher
from .scoring import GeminiScorer
from .store import SubmissionStore
from .submissions import SubmissionService
from .tasks import SideEffectRunner
from .transcription import WhisperTranscriber

logger = logging.getLogger(__name__)


class Container:
    """Wires the services together around one store and one gateway."""

    def __init__(self, store, gateway, scorer=None, transcriber=None, settings=None,
                 registry=None, runner=None, application=None):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        if runner is None:
            runner = SideEffectRunner(retries=settings.side_effect_retries if settings else 3)
        self.runner = runner
        if registry is None:
            registry = CorrelationRegistry.from_settings(settings) if settings else CorrelationRegistry()
        self.registry = registry

        self.notifications = NotificationDispatcher(gateway, store)
        self.submissions = SubmissionService(store, self.notifications, runner, scorer)
        self.audio = AudioIntakePipeline(store, gateway, self.submissions, runner, transcriber)
        self.enrollments = EnrollmentService(store, self.notifications, runner)
        self.bot = CourseBot(store, registry, gateway, self.submissions, self.audio, self.enrollments, settings)

        self.application = application
        if application is not None:
            register_handlers(application, self.bot)

    @classmethod
    def from_settings(cls, settings):
        application = build_application(settings.telegram_token)
        scorer = GeminiScorer.from_settings(settings)
        if scorer is None:
            logger.warning("GEMINI_API_KEY not set; submissions will go to manual review")
        return cls(
            store=SubmissionStore.from_settings(settings),
            gateway=TelegramGateway(application.bot),
            scorer=scorer,
            transcriber=WhisperTranscriber.from_settings(settings),
            settings=settings,
            application=application,
        )

    async def startup(self):
        if self.application is not None:
            await self.application.initialize()

    async def shutdown(self):
        await self.runner.drain()
        if self.application is not None:
            await self.application.shutdown()
