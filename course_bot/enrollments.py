import logging

from .errors import NotFoundError
from .models import EnrollmentStatus, utcnow

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Curator-driven module access. A locked module keeps its row with status LOCKED."""

    def __init__(self, store, events, runner):
        self.store = store
        self.events = events
        self.runner = runner

    def _module(self, module_id):
        module = self.store.get_module(module_id)
        if not module:
            raise NotFoundError("Module not found")
        return module

    def _learner_ids(self):
        return [user.id for user in self.store.list_learners()]

    def _completed_previous(self, module):
        if module.index <= 1:
            return self._learner_ids()
        previous = self.store.get_module_by_index(module.index - 1)
        if not previous:
            raise NotFoundError("Previous module not found")
        completed = self.store.list_enrollments(previous.id, status=EnrollmentStatus.COMPLETED)
        return [e.user_id for e in completed]

    def _notify(self, hook, user_id, module):
        user = self.store.get_user(user_id)
        if user and user.telegram_id:
            self.runner.spawn(f"{hook.__name__}:{module.id}:{user_id}", lambda: hook(user, module))

    async def unlock_module(self, module_id, user_ids=(), for_all=False, all_completed_previous=False,
                            curator_id=None):
        module = self._module(module_id)
        if for_all:
            targets = self._learner_ids()
        elif all_completed_previous:
            targets = self._completed_previous(module)
        else:
            targets = list(user_ids)

        unlocked = 0
        for user_id in targets:
            current = self.store.get_enrollment(user_id, module_id)
            if current and current.status != EnrollmentStatus.LOCKED:
                continue
            self.store.save_enrollment(user_id, module_id, {
                "status": EnrollmentStatus.IN_PROGRESS,
                "unlocked_at": utcnow(),
                "unlocked_by": curator_id,
            })
            unlocked += 1
            self._notify(self.events.module_unlocked, user_id, module)

        if for_all:
            self.store.update_module(module_id, {"auto_unlock_for_new_learners": True})

        logger.info("Module %s unlocked for %d user(s)", module.index, unlocked)
        message = f"Module unlocked for {unlocked} user(s)"
        if for_all:
            message += " and will be unlocked automatically for new learners"
        return {"unlocked": unlocked, "message": message}

    async def lock_module(self, module_id, user_ids=(), for_all=False):
        module = self._module(module_id)
        targets = self._learner_ids() if for_all else list(user_ids)

        locked = 0
        for user_id in targets:
            current = self.store.get_enrollment(user_id, module_id)
            if not current or current.status == EnrollmentStatus.LOCKED:
                continue
            self.store.save_enrollment(user_id, module_id, {"status": EnrollmentStatus.LOCKED})
            locked += 1
            self._notify(self.events.module_locked, user_id, module)

        if for_all:
            self.store.update_module(module_id, {"auto_unlock_for_new_learners": False})

        logger.info("Module %s locked for %d user(s)", module.index, locked)
        return {"locked": locked, "message": f"Module locked for {locked} user(s)"}

    def set_auto_unlock(self, module_id, flag):
        self._module(module_id)
        self.store.update_module(module_id, {"auto_unlock_for_new_learners": bool(flag)})
        return {"auto_unlock_for_new_learners": bool(flag)}

    async def auto_unlock_for_new_learner(self, user_id):
        modules = self.store.list_auto_unlock_modules()
        for module in modules:
            if self.store.get_enrollment(user_id, module.id):
                continue
            self.store.save_enrollment(user_id, module.id, {
                "status": EnrollmentStatus.IN_PROGRESS,
                "unlocked_at": utcnow(),
            })
            self._notify(self.events.module_unlocked, user_id, module)
        if modules:
            logger.info("Auto-unlocked %d module(s) for new learner %s", len(modules), user_id)
        return modules
