"""Exception hierarchy for workflow-claw."""

from __future__ import annotations


class WorkflowClawError(Exception):
    """Base class for all workflow-claw errors."""


class ConfigurationError(WorkflowClawError):
    """A record the run depends on (workflow, folder, provider) is missing."""


class ResolutionError(WorkflowClawError):
    """The agent CLI executable could not be found."""


class SpawnError(WorkflowClawError):
    """The operating system refused to start a process."""


class ProtocolError(WorkflowClawError):
    """Agent or skill output was not the structured data we expected."""


class VaultError(WorkflowClawError):
    """Secret vault failure."""


class VaultLocked(VaultError):
    """Raised when encrypting or decrypting without an unlocked vault."""

    def __init__(self, message: str = "Vault locked") -> None:
        super().__init__(message)
