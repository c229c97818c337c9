"""
Domain error taxonomy

Every error carries a stable machine-readable ``code`` and the HTTP status it
maps to. Handlers in ``quizdesk.main`` render them as JSON.
"""


class QuizDeskError(Exception):
    """Base class for all domain errors"""

    code = "error"
    status_code = 400
    message = "Request could not be processed"
    retryable = False

    def __init__(self, message: str = None):
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }


class NotFound(QuizDeskError):
    code = "not_found"
    status_code = 404
    message = "Resource not found"


# Link is no longer usable

class LinkDeactivated(QuizDeskError):
    code = "deactivated"
    status_code = 403
    message = "This quiz link has been deactivated"


class LinkExpired(QuizDeskError):
    code = "expired"
    status_code = 403
    message = "This quiz link has expired"


class LinkExhausted(QuizDeskError):
    code = "exhausted_uses"
    status_code = 403
    message = "This quiz link has reached its maximum usage limit"


# Quiz itself is unavailable

class QuizMissing(NotFound):
    code = "quiz_missing"
    message = "Quiz not found"


class QuizInactive(QuizDeskError):
    code = "quiz_inactive"
    status_code = 403
    message = "This quiz is currently inactive"


class QuizNotYetAvailable(QuizDeskError):
    code = "quiz_not_yet_available"
    status_code = 403
    message = "This quiz is not yet available"


class QuizWindowExpired(QuizDeskError):
    code = "quiz_window_expired"
    status_code = 403
    message = "This quiz has expired"


class AlreadyAttempted(QuizDeskError):
    code = "already_attempted"
    status_code = 403
    message = "You have already attempted this quiz"


class ValidationFailed(QuizDeskError):
    code = "validation_error"
    status_code = 400
    message = "Invalid input"


class RegistrationValidationError(ValidationFailed):
    message = "Invalid registration details"


class NoAttemptsRemaining(QuizDeskError):
    code = "no_attempts_remaining"
    status_code = 403
    message = "No attempts remaining for this quiz"


class AlreadyCompleted(QuizDeskError):
    code = "already_completed"
    status_code = 409
    message = "This attempt is no longer in progress"


class TransientStorageError(QuizDeskError):
    code = "transient_storage_error"
    status_code = 503
    message = "Storage is temporarily unavailable. Please try again."
    retryable = True
