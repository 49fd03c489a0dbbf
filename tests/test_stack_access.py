"""Instance role and filesystem policy tests."""
from __future__ import annotations

import json

import pytest
from aws_cdk import Stack
from aws_cdk.assertions import Match, Template

from ec2efs.errors import PolicyViolation
from ec2efs.graph import ResourceGraph
from ec2efs.stack.access import (
    FILESYSTEM_ACTIONS,
    FILESYSTEM_POLICY_ID,
    FILESYSTEM_POLICY_NAME,
    ROLE_ID,
    build_instance_role,
    check_filesystem_actions,
    filesystem_statement,
    narrow_filesystem_statement,
)
from ec2efs.stack.filesystem import FILESYSTEM_ID, provision_filesystem
from ec2efs.stack.network import ImportedNetwork, build_security_boundaries


def _filesystem_policy(stack: Stack) -> dict[str, object]:
    resources = Template.from_stack(stack).to_json()["Resources"]
    return resources[FILESYSTEM_POLICY_ID]["Properties"]


def test_filesystem_policy_grants_exactly_three_actions(
    stack: Stack, graph: ResourceGraph
) -> None:
    """The filesystem statement carries the three client actions and nothing else."""
    role = build_instance_role(stack, graph)

    assert role.filesystem_actions == FILESYSTEM_ACTIONS
    properties = _filesystem_policy(stack)
    assert properties["PolicyName"] == FILESYSTEM_POLICY_NAME
    assert properties["Roles"] == [{"Ref": ROLE_ID}]
    (statement,) = properties["PolicyDocument"]["Statement"]
    assert set(statement["Action"]) == {
        "elasticfilesystem:DescribeMountTargets",
        "elasticfilesystem:ClientMount",
        "elasticfilesystem:ClientWrite",
    }
    assert statement["Effect"] == "Allow"
    assert statement["Resource"] == "*"
    assert graph.implicit_dependencies(FILESYSTEM_POLICY_ID) == {ROLE_ID}


def test_role_trusts_compute_service_and_remote_sessions(
    stack: Stack, graph: ResourceGraph
) -> None:
    """The role is assumable by EC2 and carries the session manager policy."""
    build_instance_role(stack, graph)

    template = Template.from_stack(stack)
    template.has_resource_properties(
        "AWS::IAM::Role",
        {
            "AssumeRolePolicyDocument": {
                "Statement": [
                    Match.object_like(
                        {
                            "Action": "sts:AssumeRole",
                            "Principal": {"Service": "ec2.amazonaws.com"},
                        }
                    )
                ]
            }
        },
    )
    role = template.to_json()["Resources"][ROLE_ID]["Properties"]
    (managed,) = role["ManagedPolicyArns"]
    assert "AmazonSSMManagedInstanceCore" in json.dumps(managed)


def test_extra_actions_are_a_policy_violation() -> None:
    """Anything beyond the three client actions is rejected."""
    with pytest.raises(PolicyViolation, match="ClientRootAccess"):
        check_filesystem_actions((*FILESYSTEM_ACTIONS, "elasticfilesystem:ClientRootAccess"))
    with pytest.raises(PolicyViolation):
        check_filesystem_actions(("elasticfilesystem:*",))
    with pytest.raises(PolicyViolation):
        filesystem_statement(("s3:GetObject",))


def test_bundle_grants_stay_out_of_filesystem_policy(
    stack: Stack, graph: ResourceGraph, bundle
) -> None:
    """Additional grants land in the role's default policy."""
    role = build_instance_role(stack, graph)

    bundle.grant_read(role.role)

    (statement,) = _filesystem_policy(stack)["PolicyDocument"]["Statement"]
    assert not any(action.startswith("s3:") for action in statement["Action"])
    Template.from_stack(stack).resource_count_is("AWS::IAM::Policy", 2)


def test_narrowing_scopes_statement_to_filesystem_arn(
    stack: Stack, graph: ResourceGraph, imported: ImportedNetwork
) -> None:
    """The second phase swaps the wildcard resource for the filesystem ARN."""
    boundaries = build_security_boundaries(stack, graph, imported)
    role = build_instance_role(stack, graph)
    filesystem = provision_filesystem(stack, graph, imported, boundaries.filesystem)

    narrow_filesystem_statement(role, graph, FILESYSTEM_ID, filesystem.arn)

    assert role.narrowed is True
    assert graph.implicit_dependencies(FILESYSTEM_POLICY_ID) == {ROLE_ID, FILESYSTEM_ID}
    (statement,) = _filesystem_policy(stack)["PolicyDocument"]["Statement"]
    assert set(statement["Action"]) == set(FILESYSTEM_ACTIONS)
    assert statement["Resource"] == {"Fn::GetAtt": [FILESYSTEM_ID, "Arn"]}
