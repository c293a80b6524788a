"""Exceptions and exit codes for ec2-terraform-manager"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import Iterable


class ExitCode(IntEnum):
    """Process exit codes used by every command."""

    OK = 0
    ERROR = 1
    USAGE = 2
    VALIDATION = 3
    EXTERNAL = 4
    NOT_FOUND = 5
    DUPLICATE = 6
    INTERNAL = 7


class ManagerError(Exception):
    """Base class for errors reported to the operator."""

    exit_code: ExitCode = ExitCode.ERROR


class UsageError(ManagerError):
    """A required command-line argument is missing or malformed."""

    exit_code = ExitCode.USAGE


class SettingsError(ManagerError):
    """Raised when the settings file or environment holds invalid values."""

    exit_code = ExitCode.USAGE


class DuplicateRecordError(ManagerError):
    """Create targeted a resource key that already exists in the document."""

    exit_code = ExitCode.DUPLICATE

    def __init__(self, key: str, existing_name: str | None = None) -> None:
        self.key = key
        self.existing_name = existing_name
        message = f"Instance '{key}' already exists in the configuration"
        if existing_name:
            message += f" (Name tag: {existing_name!r})"
        super().__init__(message)


class RecordNotFoundError(ManagerError):
    """The target resource key is not present in the document."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, key: str, available: Iterable[str] = ()) -> None:
        self.key = key
        self.available: list[str] = list(available)
        super().__init__(f"Instance '{key}' not found in the configuration")


class RecordValidationError(ManagerError):
    """An instance record failed schema validation."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, problems: Iterable[str]) -> None:
        self.problems: list[str] = list(problems)
        super().__init__("Invalid instance configuration: " + "; ".join(self.problems))


class RecordParseError(ManagerError):
    """A record block could not be read back into an InstanceRecord."""


class UnbalancedDocumentError(ManagerError):
    """A brace region in the document never closes."""

    exit_code = ExitCode.INTERNAL


class DocumentInvariantError(ManagerError):
    """A freshly rendered document does not hold the records it should."""

    exit_code = ExitCode.INTERNAL


class LockTimeoutError(ManagerError):
    """The configuration document is locked by another process."""

    exit_code = ExitCode.INTERNAL


class ExternalCollaboratorError(ManagerError):
    """A cloud provider or provisioning backend call failed."""

    exit_code = ExitCode.EXTERNAL


class ProviderError(ExternalCollaboratorError):
    """An AWS API call failed."""


class TerraformError(ExternalCollaboratorError):
    """A terraform command exited non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"Terraform {' '.join(command[1:2])} failed: {detail}")


class PostWriteValidationError(ManagerError):
    """terraform validate rejected the document that was just written."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, message: str, backup: Path | None = None, restored: bool = False) -> None:
        self.backup = backup
        self.restored = restored
        super().__init__(message)
