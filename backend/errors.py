class QtiansError(Exception):
    """Base class for errors the HTTP layer knows how to report."""


class ConfigurationError(QtiansError):
    """Endpoint URL missing, still a placeholder, or not an http(s) URL."""


class SubmissionInProgress(QtiansError):
    """Another submission has not settled yet."""


class InsightError(QtiansError):
    """The AI collaborator gave no usable insight."""
