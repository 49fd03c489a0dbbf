"""Network lookup against the EC2 API."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import NetworkLookupError, NetworkNotFound

logger = logging.getLogger(__name__)

# Tag written by CDK-managed VPCs; trusted over route-table inspection.
SUBNET_TYPE_TAG = "aws-cdk:subnet-type"


class SubnetKind(str, Enum):
    """Routing class of a subnet."""

    PUBLIC = "public"
    PRIVATE_WITH_EGRESS = "private-with-egress"
    ISOLATED = "isolated"


@dataclass(frozen=True, slots=True)
class Subnet:
    """A subnet inside the looked-up network."""

    subnet_id: str
    availability_zone: str
    kind: SubnetKind


@dataclass(frozen=True, slots=True)
class Network:
    """An existing network resolved by name."""

    name: str
    vpc_id: str
    cidr_block: str
    subnets: tuple[Subnet, ...] = ()

    def subnets_of(self, kind: SubnetKind) -> tuple[Subnet, ...]:
        """Return subnets of *kind* in lookup order."""
        return tuple(subnet for subnet in self.subnets if subnet.kind is kind)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "vpc_id": self.vpc_id,
            "cidr_block": self.cidr_block,
            "subnets": [
                {
                    "subnet_id": subnet.subnet_id,
                    "availability_zone": subnet.availability_zone,
                    "kind": subnet.kind.value,
                }
                for subnet in self.subnets
            ],
        }


class NetworkLookup(Protocol):
    """Resolve a network by its ``Name`` tag."""

    def find_by_name(self, name: str) -> Network | None:
        """Return the network called *name*, or ``None`` if it does not exist."""
        ...


class Ec2NetworkLookup:
    """Look networks up with ``DescribeVpcs``/``DescribeSubnets``/``DescribeRouteTables``."""

    def __init__(self, region: str, client: Any | None = None) -> None:
        self.region = region
        self._client = client if client is not None else boto3.client("ec2", region_name=region)

    def find_by_name(self, name: str) -> Network | None:
        """Return the network tagged ``Name=<name>`` in this region."""
        try:
            response = self._client.describe_vpcs(
                Filters=[{"Name": "tag:Name", "Values": [name]}]
            )
        except (BotoCoreError, ClientError) as exc:
            raise NetworkLookupError(name, str(exc)) from exc

        vpcs = response.get("Vpcs", [])
        if not vpcs:
            logger.info("No network named %s in %s", name, self.region)
            return None
        if len(vpcs) > 1:
            ids = ", ".join(vpc["VpcId"] for vpc in vpcs)
            raise NetworkNotFound(name, f"name is ambiguous ({ids})")

        vpc = vpcs[0]
        vpc_id = vpc["VpcId"]
        try:
            subnets = self._describe_subnets(vpc_id)
            route_tables = self._describe_route_tables(vpc_id)
        except (BotoCoreError, ClientError) as exc:
            raise NetworkLookupError(name, f"subnet lookup: {exc}") from exc

        classified = tuple(_classify_subnets(subnets, route_tables))
        logger.info("Resolved network %s to %s with %d subnets", name, vpc_id, len(classified))
        return Network(
            name=name,
            vpc_id=vpc_id,
            cidr_block=vpc["CidrBlock"],
            subnets=classified,
        )

    # ------------------------------------------------------------------
    def _describe_subnets(self, vpc_id: str) -> list[Mapping[str, Any]]:
        paginator = self._client.get_paginator("describe_subnets")
        results: list[Mapping[str, Any]] = []
        for page in paginator.paginate(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
            results.extend(page.get("Subnets", []))
        return results

    def _describe_route_tables(self, vpc_id: str) -> list[Mapping[str, Any]]:
        paginator = self._client.get_paginator("describe_route_tables")
        results: list[Mapping[str, Any]] = []
        for page in paginator.paginate(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
            results.extend(page.get("RouteTables", []))
        return results


def _classify_subnets(
    subnets: Iterable[Mapping[str, Any]],
    route_tables: Iterable[Mapping[str, Any]],
) -> Iterable[Subnet]:
    main_table: Mapping[str, Any] | None = None
    by_subnet: dict[str, Mapping[str, Any]] = {}
    for table in route_tables:
        for association in table.get("Associations", []):
            if association.get("Main"):
                main_table = table
            subnet_id = association.get("SubnetId")
            if subnet_id:
                by_subnet[subnet_id] = table

    ordered = sorted(subnets, key=lambda item: (item["AvailabilityZone"], item["SubnetId"]))
    for subnet in ordered:
        subnet_id = subnet["SubnetId"]
        kind = _kind_from_tags(subnet.get("Tags", []))
        if kind is None:
            kind = _kind_from_routes(by_subnet.get(subnet_id, main_table))
        yield Subnet(
            subnet_id=subnet_id,
            availability_zone=subnet["AvailabilityZone"],
            kind=kind,
        )


def _kind_from_tags(tags: Iterable[Mapping[str, Any]]) -> SubnetKind | None:
    for tag in tags:
        if tag.get("Key") != SUBNET_TYPE_TAG:
            continue
        value = str(tag.get("Value", "")).lower()
        if value == "public":
            return SubnetKind.PUBLIC
        if value == "private":
            return SubnetKind.PRIVATE_WITH_EGRESS
        if value == "isolated":
            return SubnetKind.ISOLATED
    return None


def _kind_from_routes(table: Mapping[str, Any] | None) -> SubnetKind:
    if table is None:
        return SubnetKind.ISOLATED
    for route in table.get("Routes", []):
        if route.get("DestinationCidrBlock") != "0.0.0.0/0":
            continue
        gateway = str(route.get("GatewayId", ""))
        if gateway.startswith("igw-"):
            return SubnetKind.PUBLIC
        if route.get("NatGatewayId") or route.get("TransitGatewayId") or route.get("InstanceId"):
            return SubnetKind.PRIVATE_WITH_EGRESS
    return SubnetKind.ISOLATED


__all__ = [
    "Ec2NetworkLookup",
    "Network",
    "NetworkLookup",
    "Subnet",
    "SubnetKind",
]
