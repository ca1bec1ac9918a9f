"""
Machine configuration model, validation and persistence.

A machine's configuration lives in ``<store_path>/config.json`` next to its
SSH key pair and boot image.
"""

import json
import logging
import os
import secrets
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from vsphere_machine.errors import ConfigError, IncompleteConfigError

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_CPU_COUNT = 2
DEFAULT_MEMORY_MB = 2048
DEFAULT_DISK_SIZE_MB = 20000
DEFAULT_STORAGE_ROOT = Path.home() / ".local" / "share" / "vsphere-machines"

CONFIG_FILE_NAME = "config.json"
VM_NAME_PREFIX = "docker-host-"

# Checked in this order; the first missing one is reported.
REQUIRED_FIELDS = (
    ("endpoint", "vCenter endpoint"),
    ("username", "vSphere username"),
    ("password", "vSphere password"),
    ("network", "vSphere network"),
    ("datastore", "vSphere datastore"),
    ("datacenter", "vSphere datacenter"),
)


@dataclass
class MachineConfig:
    """Everything needed to address and provision one machine."""

    name: str = ""
    ssh_port: int = DEFAULT_SSH_PORT
    cpu: int = DEFAULT_CPU_COUNT
    memory: int = DEFAULT_MEMORY_MB
    disk_size: int = DEFAULT_DISK_SIZE_MB
    boot2docker_url: str = ""
    endpoint: str = ""
    username: str = ""
    password: str = ""
    network: str = ""
    datastore: str = ""
    datacenter: str = ""
    pool: str = ""
    host_ip: str = ""
    store_path: str = ""
    iso: str = ""
    authorized_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MachineConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def generate_vm_name() -> str:
    """Return a fresh ``docker-host-<random-id>`` machine name."""
    return f"{VM_NAME_PREFIX}{secrets.token_hex(6)}"


def missing_required_field(config: MachineConfig) -> Optional[str]:
    """Return the first required field that is empty, or None."""
    for name, _ in REQUIRED_FIELDS:
        if not getattr(config, name):
            return name
    return None


def check_config(config: MachineConfig) -> None:
    """Raise IncompleteConfigError naming the first missing required field."""
    missing = missing_required_field(config)
    if missing is not None:
        label = dict(REQUIRED_FIELDS)[missing]
        logger.error(f"Missing required configuration: {label}")
        raise IncompleteConfigError(missing)


def config_file_for(store_path: Path) -> Path:
    return Path(store_path) / CONFIG_FILE_NAME


def machine_store_path(storage_root: Path, name: str) -> Path:
    """
    Return the store directory for machine name under storage_root.

    The name must be a single path component, so the store and every file in
    it stay inside the storage root.
    """
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ConfigError(f"Invalid machine name: {name!r}")

    root = Path(storage_root).expanduser().resolve()
    store_path = (root / name).resolve()
    if store_path.parent != root:
        raise ConfigError(f"Invalid machine name: {name!r}")
    return store_path


def save_machine_config(store_path: Path, config: MachineConfig) -> Path:
    """
    Write the machine configuration to ``config.json`` under store_path.

    The file holds the vSphere password, so it is only readable by the owner.
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)
    config_file = config_file_for(store_path)

    # mkstemp creates the file with mode 0600
    fd, tmp_name = tempfile.mkstemp(prefix=f".{CONFIG_FILE_NAME}.tmp-", dir=str(store_path))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2)
        os.replace(tmp_name, config_file)
    finally:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass

    logger.debug(f"Saved machine configuration: {config_file}")
    return config_file


def load_machine_config(store_path: Path) -> MachineConfig:
    """Read the machine configuration from ``config.json`` under store_path."""
    config_file = config_file_for(store_path)
    if not config_file.exists():
        raise ConfigError(f"No machine configuration found at: {config_file}")

    try:
        with config_file.open() as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Invalid machine configuration {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid machine configuration {config_file}: expected an object")

    return MachineConfig.from_dict(data)
