"""Manta storage backend for the bootstrap state."""

from __future__ import annotations

from loguru import logger

from cloudenv.constants import ErrorCode
from cloudenv.exceptions import BackendError, NotFoundError
from cloudenv.providers.joyent.client import NOT_FOUND, JoyentClient

log = logger.bind(component="manta")

DIRECTORY_TYPE = "application/json; type=directory"


class MantaStorage:
    """StorageBackend over one Manta directory, ``/<user>/stor/<bucket>``.

    Manta offers no create-if-absent write here, so the double-bootstrap
    race is accepted for Joyent environments.
    """

    supports_conditional_put = False

    def __init__(self, manta: JoyentClient, user: str, bucket: str) -> None:
        self.manta = manta
        self.dir = f"/{user}/stor/{bucket}"

    def _path(self, key: str) -> str:
        return f"{self.dir}/{key}"

    def ensure_container(self) -> None:
        log.debug("Ensuring Manta directory {dir}", dir=self.dir)
        self.manta.request("PUT", self.dir, "PutDirectory", headers={"Content-Type": DIRECTORY_TYPE})

    def get(self, key: str) -> bytes:
        try:
            resp = self.manta.request("GET", self._path(key), "GetObject")
        except BackendError as e:
            if e.code == NOT_FOUND:
                raise NotFoundError(key) from e
            raise
        return resp.content

    def put(self, key: str, data: bytes) -> None:
        self.manta.request(
            "PUT",
            self._path(key),
            "PutObject",
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def put_if_absent(self, key: str, data: bytes) -> bool:
        raise BackendError(
            ErrorCode.UNSUPPORTED, "Manta storage does not support conditional writes", "PutObject"
        )

    def delete(self, key: str) -> None:
        try:
            self.manta.request("DELETE", self._path(key), "DeleteObject")
        except BackendError as e:
            if e.code != NOT_FOUND:
                raise
