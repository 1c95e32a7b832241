"""EC2 compute backend: instances and security groups."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from loguru import logger

from cloudenv.providers.ec2.clients import backend_errors
from cloudenv.types import Instance, IPPermission, RunSpec, SecurityGroup

log = logger.bind(component="ec2")


def to_instance(raw: Mapping[str, Any]) -> Instance:
    return Instance(
        id=raw["InstanceId"],
        dns_name=raw.get("PublicDnsName") or raw.get("PublicIpAddress") or "",
        state=raw.get("State", {}).get("Name", ""),
        raw=MappingProxyType(dict(raw)),
    )


def to_ip_permission(perm: IPPermission) -> dict[str, Any]:
    return {
        "IpProtocol": perm.protocol,
        "FromPort": perm.from_port,
        "ToPort": perm.to_port,
        "IpRanges": [{"CidrIp": cidr} for cidr in perm.source_ips],
    }


class EC2Compute:
    """ComputeBackend over a boto3 EC2 client."""

    def __init__(self, ec2: Any) -> None:
        self.ec2 = ec2

    def run_instances(self, spec: RunSpec) -> list[Instance]:
        with backend_errors("RunInstances"):
            resp = self.ec2.run_instances(
                ImageId=spec.image_id,
                InstanceType=spec.instance_type,
                MinCount=spec.count,
                MaxCount=spec.count,
                UserData=spec.user_data.decode(),
                SecurityGroupIds=[g.id for g in spec.groups],
            )
        return [to_instance(i) for i in resp.get("Instances", [])]

    def terminate_instances(self, ids: Sequence[str]) -> None:
        with backend_errors("TerminateInstances"):
            self.ec2.terminate_instances(InstanceIds=list(ids))

    def instances(
        self,
        *,
        ids: Sequence[str] | None = None,
        group: str | None = None,
        states: Sequence[str] | None = None,
    ) -> list[Instance]:
        kwargs: dict[str, Any] = {}
        filters: list[dict[str, Any]] = []
        if ids is not None:
            kwargs["InstanceIds"] = list(ids)
        if group is not None:
            filters.append({"Name": "instance.group-name", "Values": [group]})
        if states is not None:
            filters.append({"Name": "instance-state-name", "Values": list(states)})
        if filters:
            kwargs["Filters"] = filters

        found: list[Instance] = []
        with backend_errors("DescribeInstances"):
            while True:
                resp = self.ec2.describe_instances(**kwargs)
                for reservation in resp.get("Reservations", []):
                    found.extend(to_instance(i) for i in reservation.get("Instances", []))
                token = resp.get("NextToken")
                if not token:
                    break
                kwargs["NextToken"] = token
        return found

    def security_groups(self, names: Sequence[str] | None = None) -> list[SecurityGroup]:
        kwargs: dict[str, Any] = {}
        if names is not None:
            kwargs["Filters"] = [{"Name": "group-name", "Values": list(names)}]
        with backend_errors("DescribeSecurityGroups"):
            resp = self.ec2.describe_security_groups(**kwargs)
        return [SecurityGroup(g["GroupName"], g["GroupId"]) for g in resp.get("SecurityGroups", [])]

    def create_security_group(self, name: str, description: str) -> SecurityGroup:
        with backend_errors("CreateSecurityGroup"):
            resp = self.ec2.create_security_group(GroupName=name, Description=description)
        log.debug("Created security group {name} ({id})", name=name, id=resp["GroupId"])
        return SecurityGroup(name, resp["GroupId"])

    def delete_security_group(self, group: SecurityGroup) -> None:
        with backend_errors("DeleteSecurityGroup"):
            self.ec2.delete_security_group(GroupId=group.id)

    def authorize_ingress(self, group: SecurityGroup, perms: Sequence[IPPermission]) -> None:
        with backend_errors("AuthorizeSecurityGroupIngress"):
            self.ec2.authorize_security_group_ingress(
                GroupId=group.id,
                IpPermissions=[to_ip_permission(p) for p in perms],
            )
