"""Network resolution and security boundary tests."""
from __future__ import annotations

import pytest
from aws_cdk import Stack, Token
from aws_cdk.assertions import Match, Template

from ec2efs.context import EnvironmentContext
from ec2efs.errors import NetworkNotFound
from ec2efs.graph import ResourceGraph
from ec2efs.providers.network import Network
from ec2efs.stack.network import (
    FILESYSTEM_PORT,
    SECURE_TRANSPORT_PORT,
    ImportedNetwork,
    build_security_boundaries,
    resolve_network,
)


def test_resolve_network_uses_account_name(
    context: EnvironmentContext, network: Network, lookup
) -> None:
    """The network is looked up as ``vpc-<account name>``."""
    assert resolve_network(context, lookup) is network
    assert lookup.calls == ["vpc-sandpit1"]


def test_resolve_network_missing_raises(context: EnvironmentContext, empty_lookup) -> None:
    """A missing network is fatal and names the account and region."""
    with pytest.raises(NetworkNotFound) as excinfo:
        resolve_network(context, empty_lookup)

    assert excinfo.value.network_name == "vpc-sandpit1"
    assert "123456789012/ap-southeast-2" in str(excinfo.value)


def test_imported_network_is_referenced_not_created(
    stack: Stack, imported: ImportedNetwork
) -> None:
    """Importing the network adds no VPC or subnet resources."""
    subnet = imported.subnet(imported.network.subnets[1])

    assert imported.vpc.vpc_id == "vpc-0a1b2c3d"
    assert subnet.subnet_id == "subnet-priv-a"
    assert imported.subnet(imported.network.subnets[1]) is subnet
    template = Template.from_stack(stack)
    template.resource_count_is("AWS::EC2::VPC", 0)
    template.resource_count_is("AWS::EC2::Subnet", 0)


def test_exactly_two_groups_scoped_to_network_range(
    stack: Stack, graph: ResourceGraph, imported: ImportedNetwork
) -> None:
    """One group per concern, each admitting a single port from the network range."""
    boundaries = build_security_boundaries(stack, graph, imported)

    assert [boundary.logical_id for boundary in boundaries] == [
        "Ec2SecurityGroup",
        "EfsSecurityGroup",
    ]
    assert [component.type for component in graph] == ["AWS::EC2::SecurityGroup"] * 2

    template = Template.from_stack(stack)
    template.resource_count_is("AWS::EC2::SecurityGroup", 2)
    groups = template.to_json()["Resources"]
    assert groups["Ec2SecurityGroup"]["Properties"]["SecurityGroupIngress"] == [
        {
            "CidrIp": "10.20.0.0/16",
            "Description": "https within the vpc",
            "FromPort": SECURE_TRANSPORT_PORT,
            "IpProtocol": "tcp",
            "ToPort": SECURE_TRANSPORT_PORT,
        }
    ]
    (filesystem_rule,) = groups["EfsSecurityGroup"]["Properties"]["SecurityGroupIngress"]
    assert filesystem_rule["FromPort"] == FILESYSTEM_PORT == 2049
    assert filesystem_rule["Description"] == "data within the vpc"
    template.all_resources_properties(
        "AWS::EC2::SecurityGroup",
        {
            "VpcId": "vpc-0a1b2c3d",
            "SecurityGroupIngress": [Match.object_like({"CidrIp": "10.20.0.0/16"})],
        },
    )


def test_group_id_token_points_at_group(
    stack: Stack, graph: ResourceGraph, imported: ImportedNetwork
) -> None:
    """Boundaries hand out a GroupId attribute token."""
    boundaries = build_security_boundaries(stack, graph, imported)

    group_id = boundaries.filesystem.group_id
    assert Token.is_unresolved(group_id)
    assert stack.resolve(group_id) == {"Fn::GetAtt": ["EfsSecurityGroup", "GroupId"]}
