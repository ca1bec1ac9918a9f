"""
vSphere backend connection.

BackendConnection is the set of primitive operations the driver sequences.
GovcConnection implements it on top of the ``govc`` command line client; a
new connection is built for every driver operation.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List

from vsphere_machine.config import MachineConfig
from vsphere_machine.errors import BackendError
from vsphere_machine.utils import run_subprocess

logger = logging.getLogger(__name__)


class BackendConnection(ABC):
    """Primitive, synchronous operations against the virtualization platform."""

    @abstractmethod
    def create_directory(self, name: str) -> None:
        """Create a datastore directory; an existing directory is not an error."""

    @abstractmethod
    def upload_file(self, local_path: str, remote_path: str) -> None:
        """Upload a local file to remote_path on the datastore."""

    @abstractmethod
    def create_vm(self, image_path: str) -> None:
        """Create the (powered off) VM with the datastore image attached."""

    @abstractmethod
    def create_disk(self) -> None: ...

    @abstractmethod
    def attach_network(self) -> None: ...

    @abstractmethod
    def power_on(self) -> None: ...

    @abstractmethod
    def power_off(self) -> None: ...

    @abstractmethod
    def destroy(self) -> None: ...

    @abstractmethod
    def query_power_state(self) -> str:
        """Return the raw VM info text, which includes the power state."""

    @abstractmethod
    def fetch_guest_ip(self) -> str:
        """Block until the guest reports an IP and return the raw output."""

    @abstractmethod
    def guest_create_directory(self, user: str, group: str, path: str) -> None: ...

    @abstractmethod
    def guest_upload_file(self, user: str, group: str, local_path: str, remote_path: str) -> None: ...


class GovcConnection(BackendConnection):
    """BackendConnection that shells out to govc."""

    def __init__(self, config: MachineConfig, govc: str = "govc", debug: bool = False) -> None:
        self.config = config
        self.govc = govc
        self.debug = debug
        self.log_dir = Path(config.store_path) / "logs" if config.store_path else None

    def _env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["GOVC_URL"] = self.config.endpoint
        env["GOVC_USERNAME"] = self.config.username
        env["GOVC_PASSWORD"] = self.config.password
        env["GOVC_INSECURE"] = "1"
        env["GOVC_DATACENTER"] = self.config.datacenter
        return env

    def _run(self, operation: str, args: List[str]) -> str:
        cmd = [self.govc, *args]
        try:
            result = run_subprocess(
                cmd,
                log_dir=self.log_dir,
                log_prefix=f"{self.config.name or 'govc'}_",
                debug=self.debug,
                env=self._env(),
            )
        except OSError as e:
            raise BackendError(operation, f"could not run {self.govc}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise BackendError(operation, detail)
        return result.stdout

    def _guest_login(self, user: str, group: str) -> str:
        # boot2docker guests log in as docker with tcuser as the password
        return f"{user}:{group}"

    def create_directory(self, name: str) -> None:
        self._run("datastore mkdir", [
            "datastore.mkdir", "-p", f"-ds={self.config.datastore}", name
        ])

    def upload_file(self, local_path: str, remote_path: str) -> None:
        self._run("datastore upload", [
            "datastore.upload", f"-ds={self.config.datastore}", str(local_path), remote_path
        ])

    def create_vm(self, image_path: str) -> None:
        args = [
            "vm.create",
            f"-m={self.config.memory}",
            f"-c={self.config.cpu}",
            f"-ds={self.config.datastore}",
            f"-iso={image_path}",
            f"-iso-datastore={self.config.datastore}",
            f"-net={self.config.network}",
            "-net.adapter=vmxnet3",
            "-disk.controller=pvscsi",
            "-on=false",
        ]
        if self.config.pool:
            args.append(f"-pool={self.config.pool}")
        if self.config.host_ip:
            args.append(f"-host.ip={self.config.host_ip}")
        args.append(self.config.name)
        self._run("vm create", args)

    def create_disk(self) -> None:
        self._run("vm disk create", [
            "vm.disk.create",
            f"-vm={self.config.name}",
            f"-ds={self.config.datastore}",
            f"-name={self.config.name}/{self.config.name}",
            f"-size={self.config.disk_size}MiB",
        ])

    def attach_network(self) -> None:
        self._run("vm network add", [
            "vm.network.add",
            f"-vm={self.config.name}",
            f"-net={self.config.network}",
            "-net.adapter=vmxnet3",
        ])

    def power_on(self) -> None:
        self._run("vm power on", ["vm.power", "-on", self.config.name])

    def power_off(self) -> None:
        self._run("vm power off", ["vm.power", "-off", self.config.name])

    def destroy(self) -> None:
        self._run("vm destroy", ["vm.destroy", self.config.name])

    def query_power_state(self) -> str:
        return self._run("vm info", ["vm.info", self.config.name])

    def fetch_guest_ip(self) -> str:
        return self._run("vm ip", ["vm.ip", self.config.name])

    def guest_create_directory(self, user: str, group: str, path: str) -> None:
        self._run("guest mkdir", [
            "guest.mkdir",
            f"-l={self._guest_login(user, group)}",
            f"-vm={self.config.name}",
            "-p",
            path,
        ])

    def guest_upload_file(self, user: str, group: str, local_path: str, remote_path: str) -> None:
        self._run("guest upload", [
            "guest.upload",
            f"-l={self._guest_login(user, group)}",
            f"-vm={self.config.name}",
            "-f",
            str(local_path),
            remote_path,
        ])


def govc_connection_factory(debug: bool = False):
    """Return a connection factory that builds GovcConnection objects."""
    def factory(config: MachineConfig) -> BackendConnection:
        return GovcConnection(config, debug=debug)
    return factory
