"""Least-privilege role for the compute instance.

The filesystem statement is scoped to ``*``: the filesystem's id does not
exist yet when the policy is written, so the restriction is on actions only.
:func:`narrow_filesystem_statement` rewrites the scope to the filesystem ARN once
the filesystem has been declared.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import cast

from aws_cdk import aws_iam as iam
from constructs import Construct

from ..errors import PolicyViolation
from ..graph import ResourceGraph
from .scope import pin_logical_id

ROLE_ID = "InstanceRole"
FILESYSTEM_POLICY_ID = "EfsAccessPolicy"
FILESYSTEM_POLICY_NAME = "efs-access"

FILESYSTEM_ACTIONS = (
    "elasticfilesystem:DescribeMountTargets",
    "elasticfilesystem:ClientMount",
    "elasticfilesystem:ClientWrite",
)

REMOTE_SESSION_POLICY = "AmazonSSMManagedInstanceCore"
SERVICE_PRINCIPAL = "ec2.amazonaws.com"


def check_filesystem_actions(actions: Sequence[str]) -> None:
    """Raise :class:`PolicyViolation` if *actions* go beyond the client actions."""
    extra = set(actions) - set(FILESYSTEM_ACTIONS)
    if extra:
        joined = ", ".join(sorted(extra))
        raise PolicyViolation(f"Filesystem access policy grants unexpected actions: {joined}.")
    if any("*" in action for action in actions):
        raise PolicyViolation("Filesystem access policy must not use wildcard actions.")


def filesystem_statement(actions: Sequence[str] = FILESYSTEM_ACTIONS) -> iam.PolicyStatement:
    """Return the statement granting the filesystem client actions on ``*``."""
    check_filesystem_actions(actions)
    return iam.PolicyStatement(actions=list(actions), resources=["*"])


@dataclass(slots=True)
class InstanceRole:
    """The instance role and the filesystem policy attached to it."""

    role: iam.Role
    filesystem_policy: iam.Policy
    managed_policies: tuple[str, ...]
    filesystem_actions: tuple[str, ...]
    narrowed: bool = False


def build_instance_role(scope: Construct, graph: ResourceGraph) -> InstanceRole:
    """Declare the instance role and its filesystem access policy."""
    managed = (REMOTE_SESSION_POLICY,)
    role = iam.Role(
        scope,
        ROLE_ID,
        assumed_by=iam.ServicePrincipal(SERVICE_PRINCIPAL),
        managed_policies=[iam.ManagedPolicy.from_aws_managed_policy_name(name) for name in managed],
    )
    pin_logical_id(role, ROLE_ID)
    graph.add(ROLE_ID, "AWS::IAM::Role", role)

    policy = iam.Policy(
        scope,
        FILESYSTEM_POLICY_ID,
        policy_name=FILESYSTEM_POLICY_NAME,
        statements=[filesystem_statement()],
        roles=[role],
    )
    pin_logical_id(policy, FILESYSTEM_POLICY_ID)
    graph.add(FILESYSTEM_POLICY_ID, "AWS::IAM::Policy", policy)
    graph.add_reference(FILESYSTEM_POLICY_ID, ROLE_ID)

    return InstanceRole(
        role=role,
        filesystem_policy=policy,
        managed_policies=managed,
        filesystem_actions=FILESYSTEM_ACTIONS,
    )


def narrow_filesystem_statement(
    role: InstanceRole,
    graph: ResourceGraph,
    filesystem_id: str,
    filesystem_arn: str,
) -> None:
    """Second phase: scope the filesystem statement to one filesystem."""
    cfn_policy = cast(iam.CfnPolicy, role.filesystem_policy.node.default_child)
    cfn_policy.add_property_override("PolicyDocument.Statement.0.Resource", filesystem_arn)
    graph.add_reference(FILESYSTEM_POLICY_ID, filesystem_id)
    role.narrowed = True


__all__ = [
    "FILESYSTEM_ACTIONS",
    "FILESYSTEM_POLICY_ID",
    "FILESYSTEM_POLICY_NAME",
    "InstanceRole",
    "REMOTE_SESSION_POLICY",
    "ROLE_ID",
    "build_instance_role",
    "check_filesystem_actions",
    "filesystem_statement",
    "narrow_filesystem_statement",
]
