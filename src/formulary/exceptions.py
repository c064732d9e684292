"""
Custom exceptions for the Formulary application.

Every error raised while generating manifests is fatal for the run. The
pipeline errors carry the repository, release tag and stage that failed, plus
whatever output the failing external query produced, so the single diagnostic
printed at exit identifies exactly what went wrong.
"""

from typing import Any, Dict, Optional


class FormularyError(Exception):
    """
    Base exception for all Formulary errors.

    All custom exceptions in Formulary inherit from this class so the CLI can
    catch every application-specific error in one place.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def context(self) -> Dict[str, Any]:
        """Return the structured diagnostic fields worth logging for this error."""
        fields: Dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.details:
            fields["details"] = self.details
        return fields


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(FormularyError):
    """
    Exception raised when configuration is invalid or missing.

    This includes:
    - Missing required configuration keys
    - Invalid configuration values
    - Configuration file parsing errors
    """

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when the configuration file cannot be read or parsed."""

    def __init__(
        self, message: str, path: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.path = path


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    def __init__(
        self, message: str, field: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.field = field


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(FormularyError):
    """
    Base exception for failures while processing a repository.

    Attributes:
        repository: Repository identifier (owner/name) being processed.
        tag: Release tag being processed, when the failure is release-specific.
        stage: Pipeline stage that failed (enumerate, resolve, fetch, render, write).
    """

    stage: Optional[str] = None

    def __init__(
        self,
        message: str,
        repository: str | None = None,
        tag: str | None = None,
        stage: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.repository = repository
        self.tag = tag
        if stage is not None:
            self.stage = stage

    def with_release(self, repository: str, tag: str | None) -> "PipelineError":
        """Fill in repository and tag when the raising component did not know them."""
        if self.repository is None:
            self.repository = repository
        if self.tag is None:
            self.tag = tag
        return self

    def context(self) -> Dict[str, Any]:
        fields = super().context()
        for key in ("repository", "tag", "stage"):
            value = getattr(self, key)
            if value is not None:
                fields[key] = value
        return fields


class _ExternalQueryMixin:
    """Carries the exit status and captured output of an external query."""

    returncode: Optional[int]
    stdout: str
    stderr: str

    def _query_context(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        if self.returncode is not None:
            fields["returncode"] = self.returncode
        if self.stdout:
            fields["stdout"] = self.stdout
        if self.stderr:
            fields["stderr"] = self.stderr
        return fields


class QueryError(_ExternalQueryMixin, PipelineError):
    """
    Exception raised when enumerating a repository's releases fails.

    Covers transport and authentication failures of the release query as well as
    responses that cannot be parsed into release summaries.
    """

    stage = "enumerate"

    def __init__(
        self,
        message: str,
        repository: str | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        details: str | None = None,
    ) -> None:
        super().__init__(message, repository=repository, details=details)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def context(self) -> Dict[str, Any]:
        return self._query_context(super().context())


class DuplicateVersionTokenError(QueryError):
    """Exception raised when two release tags sanitize to the same version token."""

    pass


class NoReleasesFoundError(PipelineError):
    """Exception raised when a repository reports no releases at all."""

    stage = "enumerate"


class NoLatestReleaseError(PipelineError):
    """Exception raised when the release index does not flag exactly one latest release."""

    stage = "enumerate"


class ResolutionError(_ExternalQueryMixin, PipelineError):
    """
    Exception raised when a release's tarball URL cannot be resolved.

    An empty URL is a resolution failure even when the underlying query succeeded.
    """

    stage = "resolve"

    def __init__(
        self,
        message: str,
        repository: str | None = None,
        tag: str | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        details: str | None = None,
    ) -> None:
        super().__init__(message, repository=repository, tag=tag, details=details)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def context(self) -> Dict[str, Any]:
        return self._query_context(super().context())


class FetchError(PipelineError):
    """
    Exception raised when downloading an artifact for hashing fails.

    Attributes:
        url: The URL that was being downloaded.
        status_code: HTTP status code, when the server answered with an error.
    """

    stage = "fetch"

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        repository: str | None = None,
        tag: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, repository=repository, tag=tag, details=details)
        self.url = url
        self.status_code = status_code

    def context(self) -> Dict[str, Any]:
        fields = super().context()
        if self.url:
            fields["url"] = self.url
        if self.status_code is not None:
            fields["status_code"] = self.status_code
        return fields


class RenderError(PipelineError):
    """Exception raised when a manifest template cannot be parsed or rendered."""

    stage = "render"

    def __init__(
        self,
        message: str,
        template: str | None = None,
        repository: str | None = None,
        tag: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, repository=repository, tag=tag, details=details)
        self.template = template

    def context(self) -> Dict[str, Any]:
        fields = super().context()
        if self.template:
            fields["template"] = self.template
        return fields


class WriteError(PipelineError):
    """Exception raised when a rendered manifest cannot be persisted."""

    stage = "write"

    def __init__(
        self,
        message: str,
        path: str | None = None,
        repository: str | None = None,
        tag: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, repository=repository, tag=tag, details=details)
        self.path = path

    def context(self) -> Dict[str, Any]:
        fields = super().context()
        if self.path:
            fields["path"] = self.path
        return fields


# =============================================================================
# Run Control
# =============================================================================


class RunCancelledError(FormularyError):
    """Exception raised when the run is cancelled by an external request."""

    def __init__(self, message: str = "Run cancelled", reason: str | None = None):
        super().__init__(message, details=reason)
        self.reason = reason
