"""Environment context passed into the stack orchestrator."""
from __future__ import annotations

from dataclasses import dataclass

from .config import AppConfig


def stack_name_for(env_name: str) -> str:
    """Return the stack name for an environment."""
    return f"ec2-efs-{env_name}"


@dataclass(frozen=True, slots=True)
class EnvironmentContext:
    """Target region/account and naming inputs for one orchestration run."""

    region: str
    account_id: str
    account_name: str
    env_name: str

    @property
    def stack_name(self) -> str:
        """Return the stack name derived from the environment name."""
        return stack_name_for(self.env_name)

    @property
    def network_name(self) -> str:
        """Return the name of the network this environment lives in."""
        return f"vpc-{self.account_name}"

    @classmethod
    def from_config(cls, config: AppConfig, account_id: str) -> EnvironmentContext:
        """Build a context from resolved configuration and account id."""
        return cls(
            region=config.region,
            account_id=account_id,
            account_name=config.account_name,
            env_name=config.env_name,
        )

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {
            "region": self.region,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "env_name": self.env_name,
            "stack_name": self.stack_name,
        }


__all__ = ["EnvironmentContext", "stack_name_for"]
