"""
Test configuration and shared fixtures for vsphere-machine tests.
"""

import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Tuple
from unittest.mock import Mock

import pytest

from vsphere_machine.backend import BackendConnection
from vsphere_machine.config import MachineConfig
from vsphere_machine.driver import VSphereDriver


class RecordingBackend(BackendConnection):
    """
    In-memory backend that records every call.

    ``power_state`` is the raw text returned by query_power_state; power_on and
    power_off update it. ``failures`` maps a method name to the BackendError
    that method raises.
    """

    MUTATING = {
        "create_directory", "upload_file", "create_vm", "create_disk",
        "attach_network", "power_on", "power_off", "destroy",
        "guest_create_directory", "guest_upload_file",
    }

    def __init__(self, power_state: str = "Power state: poweredOff",
                 guest_ip: str = "10.0.0.5\n") -> None:
        self.power_state = power_state
        self.guest_ip = guest_ip
        self.calls: List[Tuple] = []
        self.failures: Dict[str, Exception] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    @property
    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    @property
    def mutating_calls(self) -> List[Tuple]:
        return [call for call in self.calls if call[0] in self.MUTATING]

    def create_directory(self, name):
        self._record("create_directory", name)

    def upload_file(self, local_path, remote_path):
        self._record("upload_file", local_path, remote_path)

    def create_vm(self, image_path):
        self._record("create_vm", image_path)

    def create_disk(self):
        self._record("create_disk")

    def attach_network(self):
        self._record("attach_network")

    def power_on(self):
        self._record("power_on")
        self.power_state = "Power state: poweredOn"

    def power_off(self):
        self._record("power_off")
        self.power_state = "Power state: poweredOff"

    def destroy(self):
        self._record("destroy")

    def query_power_state(self):
        self._record("query_power_state")
        return self.power_state

    def fetch_guest_ip(self):
        self._record("fetch_guest_ip")
        return self.guest_ip

    def guest_create_directory(self, user, group, path):
        self._record("guest_create_directory", user, group, path)

    def guest_upload_file(self, user, group, local_path, remote_path):
        self._record("guest_upload_file", user, group, local_path, remote_path)


@pytest.fixture
def temp_store_dir() -> Generator[Path, None, None]:
    """Create a temporary machine store directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / "docker-host-test"


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def full_config() -> MachineConfig:
    """A configuration with every required field set."""
    return MachineConfig(
        name="docker-host-test",
        endpoint="vcenter.example.com",
        username="administrator@vsphere.local",
        password="secret",
        network="VM Network",
        datastore="datastore1",
        datacenter="dc1",
    )


def _fake_fetch(destination_dir, file_name, source_url, progress=False):
    destination = Path(destination_dir) / file_name
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(b"iso-bytes")
    return destination


def _fake_keygen(key_path, log_dir=None):
    key_path = Path(key_path)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text("fake-private-key")
    Path(f"{key_path}.pub").write_text("ssh-rsa AAAAB3NzaFakeKeyData vsphere-machine-test")


@pytest.fixture
def fake_fetch() -> Mock:
    return Mock(side_effect=_fake_fetch)


@pytest.fixture
def fake_keygen() -> Mock:
    return Mock(side_effect=_fake_keygen)


@pytest.fixture
def driver(temp_store_dir, backend, full_config, fake_fetch, fake_keygen) -> VSphereDriver:
    """A configured driver wired to the recording backend."""
    vsphere_driver = VSphereDriver(
        temp_store_dir,
        connection_factory=lambda config: backend,
        fetch=fake_fetch,
        keygen=fake_keygen,
    )
    vsphere_driver.set_config(full_config)
    return vsphere_driver


@pytest.fixture
def mock_ssh_run(driver):
    """Replace the SSH runner so no real ssh process is started."""
    driver.run_ssh_command = Mock(return_value="")
    return driver.run_ssh_command


pytest_markers = [
    pytest.mark.unit,
    pytest.mark.integration,
]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    for marker in pytest_markers:
        config.addinivalue_line("markers", f"{marker.name}: {marker.name} tests")
