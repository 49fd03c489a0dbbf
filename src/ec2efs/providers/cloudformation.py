"""Thin client over the CloudFormation API used by ``deploy``/``destroy``.

CloudFormation is the reconciliation engine: it orders creation by the
template's edges, retries transient provider errors, and owns timeouts. This
module only submits templates and reads results back.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..errors import ProviderError

logger = logging.getLogger(__name__)

CAPABILITIES = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM")
_NO_UPDATES = "No updates are to be performed"


class DeployError(ProviderError):
    """Raised when the reconciliation engine rejects or fails a request."""


@dataclass(slots=True)
class DeployResult:
    """Outcome of a deploy call."""

    stack_name: str
    action: str
    outputs: dict[str, str] = field(default_factory=dict)


class CloudFormationDeployer:
    """Create, update, delete and inspect a single stack."""

    def __init__(self, region: str, client: Any | None = None) -> None:
        self.region = region
        self._client = (
            client if client is not None else boto3.client("cloudformation", region_name=region)
        )

    def stack_exists(self, stack_name: str) -> bool:
        """Return ``True`` when *stack_name* exists and is not deleted."""
        try:
            response = self._client.describe_stacks(StackName=stack_name)
        except ClientError as exc:
            if "does not exist" in str(exc):
                return False
            raise DeployError(f"Failed to describe stack {stack_name}: {exc}") from exc
        except BotoCoreError as exc:
            raise DeployError(f"Failed to describe stack {stack_name}: {exc}") from exc
        stacks = response.get("Stacks", [])
        return bool(stacks) and stacks[0].get("StackStatus") != "DELETE_COMPLETE"

    def deploy(
        self,
        stack_name: str,
        template_body: str,
        *,
        tags: Mapping[str, str] | None = None,
        wait: bool = True,
    ) -> DeployResult:
        """Create *stack_name*, or update it when it already exists."""
        request: dict[str, Any] = {
            "StackName": stack_name,
            "TemplateBody": template_body,
            "Capabilities": list(CAPABILITIES),
            "Tags": [{"Key": key, "Value": value} for key, value in sorted((tags or {}).items())],
        }
        exists = self.stack_exists(stack_name)
        action = "update" if exists else "create"
        logger.info("Submitting %s for stack %s", action, stack_name)
        try:
            if exists:
                self._client.update_stack(**request)
            else:
                self._client.create_stack(**request)
        except ClientError as exc:
            if exists and _NO_UPDATES in str(exc):
                logger.info("Stack %s is already up to date", stack_name)
                return DeployResult(stack_name, "unchanged", self.outputs(stack_name))
            raise DeployError(f"Failed to {action} stack {stack_name}: {exc}") from exc
        except BotoCoreError as exc:
            raise DeployError(f"Failed to {action} stack {stack_name}: {exc}") from exc

        if not wait:
            return DeployResult(stack_name, action)
        self._wait(f"stack_{action}_complete", stack_name)
        return DeployResult(stack_name, action, self.outputs(stack_name))

    def destroy(self, stack_name: str, *, wait: bool = True) -> bool:
        """Delete *stack_name*; return ``False`` when there was nothing to delete."""
        if not self.stack_exists(stack_name):
            return False
        try:
            self._client.delete_stack(StackName=stack_name)
        except (BotoCoreError, ClientError) as exc:
            raise DeployError(f"Failed to delete stack {stack_name}: {exc}") from exc
        if wait:
            self._wait("stack_delete_complete", stack_name)
        return True

    def outputs(self, stack_name: str) -> dict[str, str]:
        """Return ``export name -> value`` (or output key when not exported)."""
        try:
            response = self._client.describe_stacks(StackName=stack_name)
        except (BotoCoreError, ClientError) as exc:
            raise DeployError(f"Failed to read outputs of {stack_name}: {exc}") from exc
        stacks = response.get("Stacks", [])
        if not stacks:
            return {}
        results: dict[str, str] = {}
        for output in stacks[0].get("Outputs", []):
            name = output.get("ExportName") or output["OutputKey"]
            results[name] = output.get("OutputValue", "")
        return results

    # ------------------------------------------------------------------
    def _wait(self, waiter_name: str, stack_name: str) -> None:
        try:
            self._client.get_waiter(waiter_name).wait(StackName=stack_name)
        except WaiterError as exc:
            raise DeployError(f"Stack {stack_name} did not settle ({waiter_name}): {exc}") from exc


__all__ = ["CloudFormationDeployer", "DeployError", "DeployResult"]
