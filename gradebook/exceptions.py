"""
Error kinds raised by the report-card engine.

Each error carries the HTTP status the views answer with, so callers outside
the request cycle (Celery tasks, management code) can still tell them apart.
"""


class ReportCardError(Exception):
    """Base class for engine errors."""
    status_code = 400
    default_message = 'Report card operation failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ReportCardError):
    """A student, term, class or report card does not exist."""
    status_code = 404
    default_message = 'Not found'


class Conflict(ReportCardError):
    """The operation collides with an existing report card."""
    status_code = 409
    default_message = 'Report card already exists'


class BadRequest(ReportCardError):
    """The request cannot be satisfied with the data available."""
    status_code = 400
    default_message = 'Bad request'


class UnknownCurriculum(BadRequest):
    """No grading rules are registered under the given curriculum id."""
    default_message = 'Unknown curriculum'
