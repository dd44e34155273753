"""
Error types raised while loading, merging, planning and running pods.

Configuration errors abort a run before any runtime call is made.
Execution errors are caught by the orchestrator and folded into the
per-service report.
"""
from typing import List, Optional


class CageError(Exception):
    """Base class for all errors raised by cage."""


class ConfigurationError(CageError):
    """
    A problem with the pod files or settings. Nothing has been executed
    when one of these is raised.
    """


class ParseError(ConfigurationError):
    """A pod file could not be read or is not a valid pod document."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class MergeError(ConfigurationError):
    """The same key holds values of different kinds in two documents."""

    def __init__(self, path: str, existing_kind: str, incoming_kind: str, source: Optional[str] = None):
        self.path = path
        self.existing_kind = existing_kind
        self.incoming_kind = incoming_kind
        self.source = source
        where = f" (in {source})" if source else ""
        super().__init__(
            f"Cannot merge '{path}'{where}: {existing_kind} value overridden by {incoming_kind} value"
        )


class UnknownServiceError(ConfigurationError):
    """
    A link (or a command target) names a service that is not defined.

    ``from_service`` is None when the unknown name came from the command
    line rather than from a link.
    """

    def __init__(self, to_service: str, from_service: Optional[str] = None):
        self.from_service = from_service
        self.to_service = to_service
        if from_service is None:
            message = f"No such service: '{to_service}'"
        else:
            message = f"Service '{from_service}' links to unknown service '{to_service}'"
        super().__init__(message)


class CyclicDependencyError(ConfigurationError):
    """The link graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class SettingsError(ConfigurationError):
    """A CAGE_* setting or .env value is invalid."""


class HookMissingError(CageError):
    """The requested hook is not configured on a service."""

    def __init__(self, service: str, hook: str):
        self.service = service
        self.hook = hook
        super().__init__(f"Service '{service}' has no {hook} hook configured")


class AdapterFailure(CageError):
    """A runtime adapter call exited non-zero, raised, or timed out."""

    def __init__(self, service: str, action: str, exit_code: Optional[int], detail: str = ""):
        self.service = service
        self.action = action
        self.exit_code = exit_code
        self.detail = detail
        message = f"{action} on '{service}' failed"
        if exit_code is not None:
            message += f" (exit={exit_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
