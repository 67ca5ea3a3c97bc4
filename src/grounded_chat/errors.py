"""Error taxonomy shared by the assistant components."""

from __future__ import annotations


class AssistantError(Exception):
    """Base error. ``recoverable`` errors fail a single turn, others end the process."""

    recoverable = False


class ConfigurationError(AssistantError):
    """Missing credential or unreadable configuration."""


class AuthError(AssistantError):
    """The credential was rejected or the client could not be created."""


class UploadError(AssistantError):
    """Uploading the grounding document failed."""


class CacheCreationError(AssistantError):
    """The server-side context cache could not be created."""


class TransportError(AssistantError):
    """A remote call failed in transit or the service returned an error."""

    recoverable = True


class RateLimitError(TransportError):
    """The service throttled the request."""


class ContentPolicyError(AssistantError):
    """The request or the reply was blocked by the service's safety filters."""

    recoverable = True


class ToolDispatchError(AssistantError):
    """Base for failures raised while registering or running tools."""


class DuplicateToolError(ToolDispatchError, ValueError):
    """A tool with the same name is already registered."""


class SandboxViolationError(ToolDispatchError, ValueError):
    """A tool tried to write outside its sandbox root."""


class ReleaseError(AssistantError):
    """Deleting a remote resource during teardown failed."""

    def __init__(self, resource: str, name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to delete {resource} {name}: {cause}")
        self.resource = resource
        self.name = name
        self.cause = cause
