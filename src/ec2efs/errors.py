"""Error hierarchy shared by the stack builders.

Every failure raised while declaring the stack is fatal to the run. Nothing
here is retried locally; transient provider errors are the reconciliation
engine's concern.
"""
from __future__ import annotations


class Ec2EfsError(RuntimeError):
    """Base class for errors raised while building the stack."""


class AccountNotFound(Ec2EfsError):
    """Raised when an account name cannot be mapped to an account id."""

    def __init__(self, account_name: str, source: str) -> None:
        super().__init__(f"Account '{account_name}' was not found in {source}.")
        self.account_name = account_name
        self.source = source


class NetworkNotFound(Ec2EfsError):
    """Raised when the named network does not exist in the target account/region."""

    def __init__(self, network_name: str, detail: str | None = None) -> None:
        message = f"Network '{network_name}' could not be resolved"
        message += f": {detail}" if detail else "."
        super().__init__(message)
        self.network_name = network_name


class ProviderError(Ec2EfsError):
    """Raised when a provider API call fails for reasons other than absence."""


class NetworkLookupError(ProviderError):
    """Raised when the provider rejects or fails a network lookup."""

    def __init__(self, network_name: str, detail: str) -> None:
        super().__init__(f"Network '{network_name}' lookup failed at the provider: {detail}")
        self.network_name = network_name


class SubnetPlacementError(Ec2EfsError):
    """Raised when a resource has no eligible subnet to be placed into."""


class FilesystemCreationFailed(SubnetPlacementError):
    """Raised when the shared filesystem cannot be placed in the network."""


class DependencyViolation(Ec2EfsError):
    """Raised when a resource is referenced before its dependency edge exists."""


class PolicyViolation(Ec2EfsError):
    """Raised when a policy statement grants more than it is allowed to."""


__all__ = [
    "AccountNotFound",
    "DependencyViolation",
    "Ec2EfsError",
    "FilesystemCreationFailed",
    "NetworkLookupError",
    "NetworkNotFound",
    "PolicyViolation",
    "ProviderError",
    "SubnetPlacementError",
]
