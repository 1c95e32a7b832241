"""CloudAPI compute backend.

CloudAPI has no security groups. A group is modelled with machine tags
and firewall rules:

- machines in group ``G`` carry the tag ``G=true``;
- the group itself is an anchor rule allowing traffic between members,
  with description ``group:G <description>``; its rule id is the group id;
- each ingress permission is one more rule ``FROM ... TO tag "G" ...``
  with description ``ingress:G``.

Deleting a group removes the anchor and its ingress rules, and fails with
``InvalidGroup.InUse`` while a live machine still carries the tag.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from loguru import logger

from cloudenv.conc import for_each_async, map_async
from cloudenv.constants import ANYWHERE, ErrorCode, InstanceState
from cloudenv.exceptions import BackendError
from cloudenv.providers.joyent.client import NOT_FOUND, JoyentClient
from cloudenv.types import ImageConstraint, ImageSpec, Instance, IPPermission, RunSpec, SecurityGroup

log = logger.bind(component="joyent")

MAX_CONCURRENCY = 10

_STATES = {
    "provisioning": InstanceState.PENDING,
    "running": InstanceState.RUNNING,
    "stopping": InstanceState.STOPPING,
    "stopped": InstanceState.STOPPED,
    "deleted": InstanceState.TERMINATED,
}

SERIES_VERSIONS = {"focal": "20.04", "jammy": "22.04", "noble": "24.04"}

_ANCHOR = "group:"
_INGRESS = "ingress:"


def to_instance(raw: Mapping[str, Any]) -> Instance:
    state = raw.get("state", "")
    return Instance(
        id=raw["id"],
        dns_name=raw.get("primaryIp") or "",
        state=_STATES.get(state, state),
        raw=MappingProxyType(dict(raw)),
    )


def _source(cidr: str) -> str:
    if cidr == ANYWHERE:
        return "any"
    if cidr.endswith("/32"):
        return f"ip {cidr.removesuffix('/32')}"
    return f"subnet {cidr}"


def _ports(perm: IPPermission) -> str:
    if perm.from_port == perm.to_port:
        return f"PORT {perm.from_port}"
    return f"PORTS {perm.from_port} - {perm.to_port}"


def ingress_rules(group: str, perm: IPPermission) -> list[str]:
    return [
        f'FROM {_source(cidr)} TO tag "{group}" ALLOW {perm.protocol} {_ports(perm)}'
        for cidr in perm.source_ips
    ]


def _group_of(rule: Mapping[str, Any]) -> tuple[str, str] | None:
    """(kind, group name) encoded in a rule description, if any."""
    head = (rule.get("description") or "").split(" ", 1)[0]
    for kind in (_ANCHOR, _INGRESS):
        if head.startswith(kind):
            return kind, head.removeprefix(kind)
    return None


class JoyentCompute:
    """ComputeBackend over CloudAPI machines and firewall rules."""

    def __init__(self, api: JoyentClient, user: str) -> None:
        self.api = api
        self.user = user

    # =========================================================================
    # Instances
    # =========================================================================

    def run_instances(self, spec: RunSpec) -> list[Instance]:
        body: dict[str, Any] = {
            "image": spec.image_id,
            "package": spec.instance_type,
            "firewall_enabled": True,
            "metadata.user-data": spec.user_data.decode(),
        }
        for g in spec.groups:
            body[f"tag.{g.name}"] = "true"

        started = []
        for _ in range(spec.count):
            raw = self.api.json("POST", f"/{self.user}/machines", "CreateMachine", json=body)
            started.append(to_instance(raw))
        return started

    def terminate_instances(self, ids: Sequence[str]) -> None:
        # CloudAPI has no bulk delete.
        def delete(id: str) -> None:
            self.api.request("DELETE", f"/{self.user}/machines/{id}", "DeleteMachine")

        for_each_async(delete, ids, concurrency=min(MAX_CONCURRENCY, len(ids) or 1))

    def instances(
        self,
        *,
        ids: Sequence[str] | None = None,
        group: str | None = None,
        states: Sequence[str] | None = None,
    ) -> list[Instance]:
        if ids is not None:
            found = [
                inst
                for inst in map_async(self._machine, ids, concurrency=min(MAX_CONCURRENCY, len(ids) or 1))
                if inst is not None
            ]
        else:
            params = {f"tag.{group}": "true"} if group is not None else {}
            raw = self.api.json("GET", f"/{self.user}/machines", "ListMachines", params=params)
            found = [to_instance(m) for m in raw or []]

        if group is not None:
            found = [i for i in found if i.raw.get("tags", {}).get(group) in ("true", True)]
        if states is not None:
            found = [i for i in found if i.state in states]
        return found

    def _machine(self, id: str) -> Instance | None:
        try:
            raw = self.api.json("GET", f"/{self.user}/machines/{id}", "GetMachine")
        except BackendError as e:
            if e.code == NOT_FOUND:
                return None
            raise
        return to_instance(raw)

    # =========================================================================
    # Security Groups
    # =========================================================================

    def _rules(self) -> list[dict[str, Any]]:
        return self.api.json("GET", f"/{self.user}/fwrules", "ListFirewallRules") or []

    def security_groups(self, names: Sequence[str] | None = None) -> list[SecurityGroup]:
        groups = []
        for rule in self._rules():
            owner = _group_of(rule)
            if owner is None or owner[0] != _ANCHOR:
                continue
            if names is None or owner[1] in names:
                groups.append(SecurityGroup(owner[1], rule["id"]))
        return groups

    def create_security_group(self, name: str, description: str) -> SecurityGroup:
        if self.security_groups([name]):
            raise BackendError(ErrorCode.GROUP_DUPLICATE, f"group {name!r} already exists", "CreateFirewallRule")
        rule = self.api.json(
            "POST",
            f"/{self.user}/fwrules",
            "CreateFirewallRule",
            json={
                "enabled": True,
                "rule": f'FROM tag "{name}" TO tag "{name}" ALLOW tcp PORT all',
                "description": f"{_ANCHOR}{name} {description}",
            },
        )
        return SecurityGroup(name, rule["id"])

    def delete_security_group(self, group: SecurityGroup) -> None:
        live = [
            i for i in self.instances(group=group.name)
            if i.state != InstanceState.TERMINATED
        ]
        if live:
            raise BackendError(
                ErrorCode.GROUP_IN_USE,
                f"group {group.name!r} is used by {live[0].id}",
                "DeleteFirewallRule",
            )

        owned: list[dict[str, Any]] = []
        anchored = False
        for rule in self._rules():
            owner = _group_of(rule)
            if owner is None or owner[1] != group.name:
                continue
            anchored = anchored or owner[0] == _ANCHOR
            owned.append(rule)
        if not anchored:
            raise BackendError(ErrorCode.GROUP_NOT_FOUND, f"group {group.name!r} not found", "DeleteFirewallRule")
        for rule in owned:
            self.api.request("DELETE", f"/{self.user}/fwrules/{rule['id']}", "DeleteFirewallRule")

    def authorize_ingress(self, group: SecurityGroup, perms: Sequence[IPPermission]) -> None:
        if not self.security_groups([group.name]):
            raise BackendError(ErrorCode.GROUP_NOT_FOUND, f"group {group.name!r} not found", "CreateFirewallRule")
        for perm in perms:
            for rule in ingress_rules(group.name, perm):
                self.api.json(
                    "POST",
                    f"/{self.user}/fwrules",
                    "CreateFirewallRule",
                    json={"enabled": True, "rule": rule, "description": f"{_INGRESS}{group.name}"},
                )

    # =========================================================================
    # Images
    # =========================================================================

    def resolve_image(self, constraint: ImageConstraint, image_id: str | None = None) -> ImageSpec:
        """The newest Ubuntu certified image for the constraint's series."""
        if image_id:
            return ImageSpec(image_id, constraint.series, constraint.arch)
        version = SERIES_VERSIONS.get(constraint.series)
        if version is None:
            raise BackendError("UnknownSeries", f"unsupported series {constraint.series!r}", "ListImages")
        images = self.api.json(
            "GET",
            f"/{self.user}/images",
            "ListImages",
            params={"os": "linux", "name": f"ubuntu-certified-{version}", "state": "active"},
        ) or []
        if not images:
            raise BackendError(
                NOT_FOUND, f"no ubuntu-certified-{version} image available", "ListImages"
            )
        latest = max(images, key=lambda i: i.get("published_at", ""))
        log.debug("Resolved image {id} ({version})", id=latest["id"], version=latest.get("version"))
        return ImageSpec(latest["id"], constraint.series, constraint.arch)
