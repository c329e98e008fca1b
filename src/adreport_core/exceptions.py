"""Custom exceptions for source adapters and report assembly."""


class SourceError(Exception):
    """Base exception for all source adapter errors."""


class SourceConfigurationError(SourceError):
    """Raised when a source is called without the credentials it needs."""

    def __init__(self, platform: str, missing: list[str]):
        self.platform = platform
        self.missing = missing
        super().__init__(
            f"{platform} is not configured (missing: {', '.join(missing)})"
        )


class SourceApiError(SourceError):
    """Raised for HTTP 4xx/5xx responses and platform error payloads."""

    def __init__(self, platform: str, status: int, message: str):
        self.platform = platform
        self.status = status
        self.message = message
        super().__init__(f"{platform} API error (HTTP {status}): {message[:500]}")


class SourceResponseError(SourceError):
    """Raised when a response body is not JSON or has an unexpected shape."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform} response error: {message[:500]}")


class RealtimeMergeError(Exception):
    """Raised when a realtime snapshot would be merged into a series twice."""


class SettingsError(Exception):
    """Raised when the report settings document is missing or malformed."""


class ProjectNotFoundError(SettingsError):
    """Raised when a report is requested for a project with no settings."""

    def __init__(self, project_name: str):
        self.project_name = project_name
        super().__init__(f"Unknown project: {project_name}")
