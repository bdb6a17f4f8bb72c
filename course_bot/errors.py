class CourseBotError(Exception):
    """Precondition failure surfaced to the direct caller."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class BadRequestError(CourseBotError):
    status_code = 400


class ForbiddenError(CourseBotError):
    status_code = 403


class NotFoundError(CourseBotError):
    status_code = 404


class ConflictError(CourseBotError):
    status_code = 409


class TranscriptionError(Exception):
    pass


class ScoringError(Exception):
    pass
