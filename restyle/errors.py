"""
Error types for the Restyle core.

Every error carries a stable ``code`` string so callers (CLI, UI bridges)
can branch on the kind of failure without parsing messages. Cancellation
has its own type and is never reported as a failure.
"""


class RestyleError(Exception):
    """Base error for the Restyle core."""

    code = "UNKNOWN"

    def __init__(self, message: str = ""):
        self.message = message or self.code
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# =============================================================================
# Repository / Downloads
# =============================================================================

class RepositoryFetchFailed(RestyleError):
    """Non-2xx response or network error from the model repository.

    Attributes:
        url: The URL that failed
        status_code: HTTP status, or None for network errors
    """

    code = "REPOSITORY_FETCH_FAILED"

    def __init__(self, url: str, status_code: int | None = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        if status_code is not None:
            message = f"Request failed {status_code}: {url}"
        else:
            message = f"Request failed: {url} ({reason or 'network error'})"
        super().__init__(message)


class DownloadFailed(RestyleError):
    """A file transfer failed for a reason other than cancellation."""

    code = "DOWNLOAD_FAILED"


class InvalidRepo(RestyleError):
    """Repository id is not of the form org/name."""

    code = "INVALID_REPO"

    def __init__(self, repo):
        self.repo = repo
        super().__init__(f"Invalid repo format. Expected org/name, got: {repo!s}")


class UnknownTask(RestyleError):
    """No download task or conversion job with the given id."""

    code = "UNKNOWN_TASK"


# =============================================================================
# Engine
# =============================================================================

class BinaryMissing(RestyleError):
    """No engine executable at any candidate location.

    Attributes:
        expected_path: The primary location the binary was expected at
    """

    code = "LLAMA_BINARY_MISSING"

    def __init__(self, expected_path, hint: str = ""):
        self.expected_path = expected_path
        message = f"{expected_path}"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class NoFreePort(RestyleError):
    """Every scanned port was in use."""

    code = "NO_FREE_PORT"


class EngineUnreachable(RestyleError):
    """Engine not running, or liveness/readiness timed out."""

    code = "LLAMA_UNREACHABLE"


class ModelStructureInvalid(RestyleError):
    """A required artifact is missing, too small, or its metadata mismatches."""

    code = "MODEL_STRUCTURE_INVALID"


# =============================================================================
# Conversion
# =============================================================================

class ConversionFailed(RestyleError):
    """Engine HTTP error during a conversion, or empty input."""

    code = "CONVERSION_FAILED"


class Cancelled(RestyleError):
    """The operation was aborted by its owner."""

    code = "CANCELLED"
