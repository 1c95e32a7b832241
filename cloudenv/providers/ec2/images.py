"""Ubuntu AMI resolution through the SSM public parameters Canonical publishes."""

from __future__ import annotations

from typing import Any

from loguru import logger

from cloudenv.providers.ec2.clients import backend_errors
from cloudenv.types import ImageConstraint, ImageSpec

log = logger.bind(component="ec2")

UBUNTU_SSM = "/aws/service/canonical/ubuntu/server/{series}/stable/current/{arch}/hvm/ebs-gp2/ami-id"


class SSMImageResolver:
    """ImageResolver returning a fixed AMI, or the latest Ubuntu AMI for the series."""

    def __init__(self, ssm: Any, image_id: str | None = None) -> None:
        self.ssm = ssm
        self.image_id = image_id
        self._cache: dict[ImageConstraint, ImageSpec] = {}

    def __call__(self, constraint: ImageConstraint) -> ImageSpec:
        if self.image_id:
            return ImageSpec(self.image_id, constraint.series, constraint.arch)
        if constraint in self._cache:
            return self._cache[constraint]

        name = UBUNTU_SSM.format(series=constraint.series, arch=constraint.arch)
        log.debug("Resolving AMI from {name}", name=name)
        with backend_errors("GetParameter"):
            resp = self.ssm.get_parameter(Name=name)
        spec = ImageSpec(resp["Parameter"]["Value"], constraint.series, constraint.arch)
        self._cache[constraint] = spec
        log.info("Resolved AMI {ami} for {series}/{arch}", ami=spec.image_id, series=spec.series, arch=spec.arch)
        return spec
