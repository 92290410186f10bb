"""Error taxonomy shared by frame capture, inference and session control."""


class AnalysisError(Exception):
    """Base class for analysis pipeline failures."""


class SourceNotReady(AnalysisError):
    """Video source has no decodable frame at the current position."""


class EndOfSource(AnalysisError):
    """File source has been played to the end."""


class DrawSurfaceUnavailable(AnalysisError):
    """Frame could not be rendered into an encoded still."""


class NoSubjectSelected(AnalysisError, ValueError):
    """Analysis was started without a camera or file."""


class SessionAlreadyRunning(AnalysisError, ValueError):
    """Subject already has an active analysis session."""


class InferenceError(AnalysisError):
    """Remote inference call failed."""


class InferenceTransient(InferenceError):
    """Failure that only affects the current frame."""


class RateLimited(InferenceTransient):
    pass


class InferenceUnavailable(InferenceTransient):
    pass


class InvalidResponse(InferenceTransient):
    pass


class InferenceFatal(InferenceError):
    """Failure that ends the session until an operator restarts it."""


class Unauthenticated(InferenceFatal):
    pass


class Misconfigured(InferenceFatal):
    """Model or endpoint named in the configuration does not exist."""
