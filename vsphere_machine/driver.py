"""
vSphere machine driver.

VSphereDriver provisions a boot2docker VM on vSphere and manages its
lifecycle: create, start, stop, restart, kill and remove. The machine's state
is never cached; every query goes to the backend.
"""

import logging
import shlex
from pathlib import Path
from typing import Callable, List, Optional, Union

from vsphere_machine.backend import BackendConnection, govc_connection_factory
from vsphere_machine.config import MachineConfig, check_config, generate_vm_name
from vsphere_machine.download import fetch_image
from vsphere_machine.errors import (
    BackendError,
    BackendQueryError,
    ConfigError,
    IncompleteConfigError,
    InvalidStateError,
    RemoteConfigError,
    RemoveError,
    UnsupportedOperationError,
)
from vsphere_machine.registry import DriverRegistry
from vsphere_machine.ssh import build_ssh_command, generate_ssh_key
from vsphere_machine.state import LifecycleState, classify_power_state
from vsphere_machine.utils import run_subprocess

logger = logging.getLogger(__name__)

DRIVER_NAME = "vsphere"

DATASTORE_DIR = "boot2docker-iso"
B2D_ISO_NAME = "boot2docker.iso"
# Docker 1.3 boot2docker image with identity auth and vmtoolsd
DEFAULT_B2D_URL = (
    "https://github.com/cloudnativeapps/boot2docker/releases/download/"
    "1.3.1_vmw-identity/boot2docker.iso"
)
SSH_KEY_NAME = "id_docker_host_vsphere"
DOCKER_PORT = 2376

GUEST_USER = "docker"
GUEST_GROUP = "tcuser"
GUEST_SSH_DIR = "/home/docker/.ssh"
GUEST_AUTHORIZED_KEYS = f"{GUEST_SSH_DIR}/authorized_keys"
GUEST_AUTHORIZED_KEYS_DIR = "/root/.docker/authorized-keys.d"
DOCKER_RESTART_COMMAND = "sudo /etc/init.d/docker restart"

ConnectionFactory = Callable[[MachineConfig], BackendConnection]


class VSphereDriver:
    """Lifecycle driver for a single boot2docker VM on vSphere."""

    def __init__(self, store_path: Union[str, Path],
                 connection_factory: Optional[ConnectionFactory] = None,
                 fetch: Callable[..., Path] = fetch_image,
                 keygen: Callable[..., None] = generate_ssh_key,
                 debug: bool = False) -> None:
        self._store_path = Path(store_path)
        self._connection_factory = connection_factory or govc_connection_factory(debug=debug)
        self._fetch = fetch
        self._keygen = keygen
        self.debug = debug
        self.config = MachineConfig(store_path=str(self._store_path))

    @property
    def driver_name(self) -> str:
        return DRIVER_NAME

    @property
    def machine_name(self) -> str:
        return self.config.name

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def ssh_key_path(self) -> Path:
        return self._store_path / SSH_KEY_NAME

    @property
    def public_ssh_key_path(self) -> Path:
        return self._store_path / f"{SSH_KEY_NAME}.pub"

    @property
    def iso_path(self) -> Path:
        return self._store_path / B2D_ISO_NAME

    @property
    def log_dir(self) -> Path:
        return self._store_path / "logs"

    def set_config(self, config: MachineConfig) -> None:
        """
        Apply a machine configuration.

        An empty name is replaced with a generated one. Once the driver has a
        name it cannot be changed; an empty name in config keeps it.
        """
        if self.config.name and config.name and config.name != self.config.name:
            raise ConfigError(
                f"Machine name is immutable: {self.config.name} cannot become {config.name}"
            )
        config.name = config.name or self.config.name
        config.store_path = str(self._store_path)
        config.iso = str(self.iso_path)
        self.config = config
        self._set_machine_name_if_not_set()

    def _set_machine_name_if_not_set(self) -> None:
        if not self.config.name:
            self.config.name = generate_vm_name()

    def _connection(self) -> BackendConnection:
        return self._connection_factory(self.config)

    # State queries

    def get_state(self) -> LifecycleState:
        """Query the backend for the VM's power state."""
        try:
            raw = self._connection().query_power_state()
        except BackendError as e:
            raise BackendQueryError(e.operation, e.detail) from e
        state = classify_power_state(raw)
        logger.debug(f"Machine {self.machine_name} state: {state}")
        return state

    def get_ip(self) -> str:
        """Return the guest IP; the machine must be running."""
        if self.get_state() != LifecycleState.RUNNING:
            raise InvalidStateError(self.machine_name)
        try:
            raw_ip = self._connection().fetch_guest_ip()
        except BackendError as e:
            raise BackendQueryError(e.operation, e.detail) from e
        return raw_ip.split("\n")[0].strip(" ")

    def get_url(self) -> str:
        """
        Return the Docker daemon URL, or an empty string without an IP.

        Failing to get an IP is not an error here: callers poll the URL while
        the machine comes up.
        """
        try:
            ip = self.get_ip()
        except (BackendError, InvalidStateError) as e:
            logger.debug(f"No URL for {self.machine_name} yet: {e}")
            return ""
        if not ip:
            return ""
        return f"tcp://{ip}:{DOCKER_PORT}"

    # Lifecycle

    def create(self) -> None:
        """
        Provision the VM and boot it.

        Steps run in order and the first failure aborts the rest. Completed
        remote steps are not rolled back; remove() or a new create() is
        left to the caller.
        """
        self._set_machine_name_if_not_set()
        check_config(self.config)

        iso_url = self.config.boot2docker_url or DEFAULT_B2D_URL
        logger.info("Downloading boot2docker...")
        self._fetch(self._store_path, B2D_ISO_NAME, iso_url, progress=True)

        logger.info("Generating SSH keypair...")
        self._keygen(self.ssh_key_path, log_dir=self.log_dir)

        conn = self._connection()
        logger.info("Uploading boot2docker ISO...")
        conn.create_directory(DATASTORE_DIR)

        if not self.iso_path.exists():
            logger.error(f"Unable to find boot2docker ISO at {self.iso_path}")
            raise IncompleteConfigError(str(self.iso_path))

        iso_datastore_path = f"{DATASTORE_DIR}/{B2D_ISO_NAME}"
        conn.upload_file(str(self.iso_path), iso_datastore_path)
        conn.create_vm(iso_datastore_path)

        logger.info(f"🔧 Configuring the virtual machine {self.machine_name}...")
        conn.create_disk()
        conn.attach_network()

        self.start()
        logger.info(f"✅ Machine {self.machine_name} created")

    def start(self) -> None:
        """Power on and configure a stopped VM; a running VM is left alone."""
        machine_state = self.get_state()

        if machine_state == LifecycleState.RUNNING:
            logger.info(f"VM {self.machine_name} has already been started")
            return

        if machine_state != LifecycleState.STOPPED:
            raise InvalidStateError(self.machine_name)

        logger.info(f"🚀 Starting VM {self.machine_name}...")
        conn = self._connection()
        conn.power_on()
        # vm.ip only answers once VMware tools run in the guest, so this is
        # also the readiness gate for the guest operations below.
        conn.fetch_guest_ip()

        logger.info(f"Configuring virtual machine {self.machine_name}...")
        conn.guest_create_directory(GUEST_USER, GUEST_GROUP, GUEST_SSH_DIR)
        conn.guest_upload_file(GUEST_USER, GUEST_GROUP, str(self.public_ssh_key_path),
                               GUEST_AUTHORIZED_KEYS)

        self._add_authorized_keys()

        self.run_ssh_command(self.get_ssh_command(DOCKER_RESTART_COMMAND))
        logger.info(f"✅ VM {self.machine_name} started")

    def stop(self) -> None:
        """Power off the VM, whatever its current state."""
        logger.info(f"Stopping VM {self.machine_name}...")
        self._connection().power_off()

    def restart(self) -> None:
        self.stop()
        self.start()

    def kill(self) -> None:
        self.stop()

    def remove(self) -> None:
        """Destroy the VM, stopping it first if it is running."""
        machine_state = self.get_state()
        if machine_state == LifecycleState.RUNNING:
            try:
                self.stop()
            except BackendError as e:
                raise RemoveError(f"can't stop VM: {e}") from e

        logger.info(f"Destroying VM {self.machine_name}...")
        self._connection().destroy()

    def upgrade(self) -> None:
        raise UnsupportedOperationError(
            "upgrade is not supported for vsphere driver at this moment"
        )

    # Remote access

    def get_ssh_command(self, *args: str) -> List[str]:
        """Return an SSH invocation against the running machine."""
        ip = self.get_ip()
        return build_ssh_command(ip, self.config.ssh_port, GUEST_USER, self.ssh_key_path, *args)

    def run_ssh_command(self, cmd: List[str]) -> str:
        """Run an SSH invocation built by get_ssh_command and return its stdout."""
        try:
            result = run_subprocess(cmd, log_dir=self.log_dir,
                                    log_prefix=f"{self.machine_name}_ssh_", debug=self.debug)
        except OSError as e:
            raise RemoteConfigError(f"Could not run ssh: {e}") from e
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise RemoteConfigError(
                f"Remote command failed with exit code {result.returncode}: {detail}"
            )
        return result.stdout

    def _add_authorized_keys(self) -> None:
        """Copy the configured extra public keys into the guest's docker key dir."""
        for key_file in self.config.authorized_keys:
            key_path = Path(key_file).expanduser()
            try:
                key = key_path.read_text().strip()
            except OSError as e:
                raise RemoteConfigError(f"Cannot read authorized key {key_path}: {e}") from e

            target = f"{GUEST_AUTHORIZED_KEYS_DIR}/{key_path.name}"
            remote = (
                f"sudo mkdir -p {GUEST_AUTHORIZED_KEYS_DIR} && "
                f"printf '%s\\n' {shlex.quote(key)} | sudo tee {shlex.quote(target)} > /dev/null"
            )
            logger.debug(f"Adding authorized key {key_path.name} to {self.machine_name}")
            self.run_ssh_command(self.get_ssh_command(remote))


def new_driver(store_path: Union[str, Path], **kwargs) -> VSphereDriver:
    return VSphereDriver(store_path, **kwargs)


def register_builtin_drivers(registry: DriverRegistry) -> DriverRegistry:
    """Register the drivers shipped with this package into registry."""
    registry.register(DRIVER_NAME, new_driver)
    return registry
