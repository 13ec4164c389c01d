"""
Custom exceptions for forklift-orchestrator with helpful error messages.
"""

from typing import Any


class OrchestratorError(Exception):
    """Base exception for forklift-orchestrator errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class ValidationError(OrchestratorError):
    """Migration request or resource parameters are invalid."""

    def __init__(self, errors: list[str], subject: str = None):
        self.errors = list(errors)
        error_list = "\n  - ".join(self.errors)
        message = f"Validation failed with {len(self.errors)} error(s):\n  - {error_list}"

        if subject:
            message = f"Validation failed for {subject}:\n  - {error_list}"

        suggestion = (
            "Fix the listed fields in your migration request.\n"
            "Common issues:\n"
            "  - Missing source host, credentials or VM list\n"
            "  - Names with uppercase letters, dots or underscores\n"
            "  - Names longer than 253 characters\n\n"
            "Preview the generated resources with:\n"
            "  forklift-orchestrator render <request.yaml>"
        )
        super().__init__(message, suggestion)


class RequestNotFoundError(OrchestratorError):
    """Migration request file not found."""

    def __init__(self, file_path: str):
        message = f"Request file not found: {file_path}"
        suggestion = (
            "Check that the file path is correct and the file exists:\n" f"  ls -l {file_path}"
        )
        super().__init__(message, suggestion)


class ConflictError(OrchestratorError):
    """An object with the same name exists with a different spec."""

    def __init__(
        self,
        kind: str,
        name: str,
        namespace: str,
        differences: list[str] = None,
    ):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.differences = list(differences or [])

        message = f"{kind} '{namespace}/{name}' already exists"
        if self.differences:
            diff_list = "\n  - ".join(self.differences)
            message += f" with a different spec:\n  - {diff_list}"

        suggestion = (
            "The cluster already holds a resource with this name.\n"
            "Either:\n"
            "  1. Use a different request name so new resources are created, or\n"
            "  2. Inspect and remove the existing resource:\n"
            f"     oc get {kind.lower()} {name} -n {namespace} -o yaml"
        )
        super().__init__(message, suggestion)


class NotFoundError(OrchestratorError):
    """Requested object does not exist on the backend."""

    def __init__(self, kind: str, name: str, namespace: str):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{kind} '{namespace}/{name}' not found")


class BackendError(OrchestratorError):
    """Errors returned by the orchestration backend."""

    def __init__(self, message: str, status: int | None = None, suggestion: str = None):
        self.status = status
        super().__init__(message, suggestion)


class TransientError(BackendError):
    """Backend hiccup that is safe to retry (throttling, 5xx, connection loss)."""

    pass


class FatalError(BackendError):
    """Backend rejected the request (schema, permission); never retried."""

    def __init__(self, message: str, status: int | None = None):
        if status in (401, 403):
            suggestion = (
                "The service account lacks permission for Forklift resources.\n"
                "Check access with:\n"
                "  oc auth can-i create providers.forklift.konveyor.io -n <namespace>"
            )
        elif status in (400, 422):
            suggestion = (
                "The backend rejected the resource body.\n"
                "Check that the Forklift operator is installed and the API version\n"
                "in forklift-orchestrator.yaml (forklift.api_version) matches the CRDs."
            )
        else:
            suggestion = None
        super().__init__(message, status, suggestion)


class WaitTimeoutError(OrchestratorError):
    """Status did not converge within the wait budget."""

    def __init__(
        self,
        kind: str,
        name: str,
        namespace: str,
        timeout: float,
        last_observed: Any = None,
    ):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.timeout = timeout
        self.last_observed = last_observed

        message = f"Timed out after {timeout:g}s waiting for {kind} '{namespace}/{name}'"
        if last_observed is not None:
            message += f" (last phase: {last_observed.phase.value})"
        else:
            message += " (never observed)"

        suggestion = (
            "The Forklift controllers did not report progress in time.\n"
            "Inspect the resource conditions:\n"
            f"  oc describe {kind.lower()} {name} -n {namespace}\n\n"
            "Or raise reconcile.timeouts in forklift-orchestrator.yaml"
        )
        super().__init__(message, suggestion)


class StageFailedError(OrchestratorError):
    """Controllers reported a failure condition on the object."""

    def __init__(self, kind: str, name: str, namespace: str, reason: str = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.reason = reason

        message = f"{kind} '{namespace}/{name}' reported failure"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CancelledError(OrchestratorError):
    """Caller cancelled an in-flight wait."""

    def __init__(self, kind: str = None, name: str = None):
        self.kind = kind
        self.name = name
        message = "Operation cancelled"
        if kind and name:
            message = f"Cancelled while waiting for {kind} '{name}'"
        super().__init__(message)


class ConfigurationError(OrchestratorError):
    """Configuration file errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the forklift-orchestrator.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv forklift-orchestrator.yaml forklift-orchestrator.yaml.backup\n"
            "  forklift-orchestrator init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, OrchestratorError):
        output = f"[red]Error:[/red] {error.message}"
        if error.suggestion:
            output += f"\n\n[yellow]{error.suggestion}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {str(error)}"
