"""
Kirikou - Exceptions
=====================
Failure taxonomy of the chat pipeline.  Every class here is raised
deep in the pipeline and caught only by the HTTP route, which logs it
and answers with a uniform ``{"error": ...}`` body.

Rate-limit *throttling* is not an exception: it is a normal reply.
"""


class KirikouError(Exception):
    """Base class for all Kirikou pipeline failures."""


class AdmissionError(KirikouError):
    """The rate-limiter backend could not decide on admission (fail-closed)."""


class EmptyConversationError(KirikouError, ValueError):
    """No user/assistant message is left to answer."""


class SourceExtractionError(KirikouError, ValueError):
    """Structured-mode sources could not be parsed from the first tool step."""
