"""Exceptions related to fabrik."""

__all__ = [
    "FabrikException",
    "InputException",
    "CommandException",
    "ConfigurationError",
    "ResourceAllocationError",
    "FetchError",
    "CheckoutError",
    "MaterializationError",
    "HelmException",
]


class FabrikException(Exception):
    """Generic base exception used for this library."""


class InputException(FabrikException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(FabrikException):
    """Raised when there is a failure running a subcommand."""


class ConfigurationError(FabrikException):
    """Raised when the credential injection pattern cannot be compiled."""


class ResourceAllocationError(FabrikException):
    """Raised when a unique temporary clone directory cannot be created."""


class FetchError(CommandException):
    """Raised when a git clone fails to run or exits non-zero.

    Authentication failures surface here too since interactive credential
    prompts are disabled for the git process.
    """


class CheckoutError(CommandException):
    """Raised when checking out a requested commit fails."""


class MaterializationError(FabrikException):
    """Raised when copying a cached clone to its destination fails."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""
