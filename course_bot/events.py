class SubmissionEvents:
    """Outbound hooks fired by the submission workflow.

    The state machine and the enrollment admin only talk to this interface;
    the notification dispatcher implements it on top of the chat gateway.
    Every hook is awaited inside a side-effect task, so implementations may
    raise and the triggering request is unaffected.
    """

    async def submission_received(self, context):
        pass

    async def submission_scored(self, context):
        pass

    async def scoring_unavailable(self, context):
        pass

    async def submission_decided(self, context):
        pass

    async def module_completed(self, user, module):
        pass

    async def module_unlocked(self, user, module):
        pass

    async def module_locked(self, user, module):
        pass

    async def resubmission_requested(self, context):
        pass

    async def resubmission_approved(self, context):
        pass

    async def submission_deleted(self, context):
        pass
