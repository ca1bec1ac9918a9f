"""
Main entry point for the vsphere-machine command-line interface.

This module contains the CLI command definitions. Each machine lives in its
own directory under the storage root, holding config.json, the SSH key pair
and the downloaded boot image. The lifecycle logic is in driver.py.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

import typer

from vsphere_machine.config import (
    DEFAULT_CPU_COUNT,
    DEFAULT_DISK_SIZE_MB,
    DEFAULT_MEMORY_MB,
    DEFAULT_STORAGE_ROOT,
    MachineConfig,
    config_file_for,
    generate_vm_name,
    load_machine_config,
    machine_store_path,
    save_machine_config,
)
from vsphere_machine.driver import DRIVER_NAME, VSphereDriver, register_builtin_drivers
from vsphere_machine.errors import (
    ConfigError,
    DownloadError,
    RemoteConfigError,
    SSHKeyError,
    VSphereMachineError,
)
from vsphere_machine.registry import DriverRegistry
from vsphere_machine.utils import setup_logging

logger = logging.getLogger(__name__)

# Global state for options
_global_state = {
    "storage_path": None,
    "verbose": False,
    "debug": False,
    "registry": None,
}

app = typer.Typer(
    name="vsphere-machine",
    help="Provision and manage Docker hosts on VMware vSphere",
    epilog="""
Examples:
  vsphere-machine create --vsphere-vcenter=vc.example.com --vsphere-username=admin ...
  vsphere-machine start docker-host-1a2b3c4d5e6f
  vsphere-machine url docker-host-1a2b3c4d5e6f
  vsphere-machine ssh docker-host-1a2b3c4d5e6f -- docker ps
  vsphere-machine rm docker-host-1a2b3c4d5e6f
    """
)


@app.callback()
def main_callback(
    storage_path: Optional[str] = typer.Option(
        None, envvar="VSPHERE_MACHINE_STORAGE_PATH", help="Override default machine storage directory"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging and keep command logs"),
) -> None:
    """Set up global options that apply to all commands."""
    _global_state["storage_path"] = storage_path
    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["registry"] = register_builtin_drivers(DriverRegistry())

    if debug:
        setup_logging(verbose=True)
        logger.debug("Debug mode enabled - command logs are kept")
    else:
        setup_logging(verbose=verbose)


def _storage_root() -> Path:
    if _global_state["storage_path"]:
        return Path(_global_state["storage_path"]).expanduser().resolve()
    return DEFAULT_STORAGE_ROOT


def _new_driver(store_path: Path) -> VSphereDriver:
    registry: DriverRegistry = _global_state["registry"]
    return registry.create(DRIVER_NAME, store_path, debug=_global_state["debug"])


def _load_driver(name: str) -> VSphereDriver:
    store_path = machine_store_path(_storage_root(), name)
    config = load_machine_config(store_path)
    driver = _new_driver(store_path)
    driver.set_config(config)
    return driver


def _run(action: Callable[[], None]) -> None:
    """Run a command body and convert failures to exit codes."""
    try:
        action()
    except VSphereMachineError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        raise typer.Exit(130)


@app.command()
def create(
    name: Optional[str] = typer.Option(None, help="Machine name (default: docker-host-<random-id>)"),
    vsphere_cpu_count: int = typer.Option(
        DEFAULT_CPU_COUNT, min=1, envvar="VSPHERE_CPU_COUNT", help="vSphere CPU number for docker VM"
    ),
    vsphere_memory_size: int = typer.Option(
        DEFAULT_MEMORY_MB, min=1, envvar="VSPHERE_MEMORY_SIZE",
        help="vSphere size of memory for docker VM (in MB)"
    ),
    vsphere_disk_size: int = typer.Option(
        DEFAULT_DISK_SIZE_MB, min=1, envvar="VSPHERE_DISK_SIZE",
        help="vSphere size of disk for docker VM (in MB)"
    ),
    vsphere_boot2docker_url: str = typer.Option(
        "", envvar="VSPHERE_BOOT2DOCKER_URL", help="vSphere URL for boot2docker image"
    ),
    vsphere_vcenter: str = typer.Option("", envvar="VSPHERE_VCENTER", help="vSphere IP/hostname for vCenter"),
    vsphere_username: str = typer.Option("", envvar="VSPHERE_USERNAME", help="vSphere username"),
    vsphere_password: str = typer.Option(
        "", envvar="VSPHERE_PASSWORD", help="vSphere password", show_default=False
    ),
    vsphere_network: str = typer.Option(
        "", envvar="VSPHERE_NETWORK", help="vSphere network where the docker VM will be attached"
    ),
    vsphere_datastore: str = typer.Option("", envvar="VSPHERE_DATASTORE", help="vSphere datastore for docker VM"),
    vsphere_datacenter: str = typer.Option(
        "", envvar="VSPHERE_DATACENTER", help="vSphere datacenter for docker VM"
    ),
    vsphere_pool: str = typer.Option("", envvar="VSPHERE_POOL", help="vSphere resource pool for docker VM"),
    vsphere_compute_ip: str = typer.Option(
        "", envvar="VSPHERE_COMPUTE_IP",
        help="vSphere compute host IP where the docker VM will be instantiated"
    ),
    authorized_key: Optional[List[str]] = typer.Option(
        None, help="Extra public key file to authorize on the Docker daemon (repeatable)"
    ),
) -> None:
    """Create and boot a new machine."""
    machine_name = name or generate_vm_name()

    def action() -> None:
        store_path = machine_store_path(_storage_root(), machine_name)
        if config_file_for(store_path).exists():
            logger.info(f"Use 'vsphere-machine rm {machine_name}' to remove it first")
            raise ConfigError(f"Machine already exists: {machine_name}")

        driver = _new_driver(store_path)
        driver.set_config(MachineConfig(
            name=machine_name,
            cpu=vsphere_cpu_count,
            memory=vsphere_memory_size,
            disk_size=vsphere_disk_size,
            boot2docker_url=vsphere_boot2docker_url,
            endpoint=vsphere_vcenter,
            username=vsphere_username,
            password=vsphere_password,
            network=vsphere_network,
            datastore=vsphere_datastore,
            datacenter=vsphere_datacenter,
            pool=vsphere_pool,
            host_ip=vsphere_compute_ip,
            authorized_keys=list(authorized_key or []),
        ))
        save_machine_config(store_path, driver.config)

        logger.info(f"Creating machine {machine_name} in {store_path}")
        try:
            driver.create()
        except (ConfigError, DownloadError, SSHKeyError):
            # No VM has been created yet
            shutil.rmtree(store_path, ignore_errors=True)
            raise

        logger.info(f"🚀 Machine {machine_name} is running: {driver.get_url()}")

    _run(action)


@app.command()
def start(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Start a machine."""
    _run(lambda: _load_driver(name).start())


@app.command()
def stop(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Stop a machine."""
    _run(lambda: _load_driver(name).stop())


@app.command()
def restart(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Restart a machine (stop then start)."""
    _run(lambda: _load_driver(name).restart())


@app.command()
def kill(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Kill a machine."""
    _run(lambda: _load_driver(name).kill())


@app.command()
def upgrade(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Upgrade a machine."""
    _run(lambda: _load_driver(name).upgrade())


@app.command("rm")
def remove(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Remove a machine and its local files."""
    def action() -> None:
        driver = _load_driver(name)
        driver.remove()
        shutil.rmtree(driver.store_path, ignore_errors=True)
        logger.info(f"Machine removed: {name}")

    _run(action)


@app.command()
def state(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Print the machine's lifecycle state."""
    _run(lambda: typer.echo(str(_load_driver(name).get_state())))


@app.command()
def ip(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Print the machine's IP address."""
    _run(lambda: typer.echo(_load_driver(name).get_ip()))


@app.command()
def url(name: str = typer.Argument(..., help="Machine name")) -> None:
    """Print the Docker daemon URL (empty while the machine has no IP)."""
    _run(lambda: typer.echo(_load_driver(name).get_url()))


@app.command()
def ssh(
    name: str = typer.Argument(..., help="Machine name"),
    command: Optional[List[str]] = typer.Argument(None, help="Command to run in the machine"),
) -> None:
    """Open an SSH session or run a command in the machine."""
    returncode = 0

    def action() -> None:
        nonlocal returncode
        ssh_cmd = _load_driver(name).get_ssh_command(*(command or []))
        # Interactive session, output is not captured
        try:
            returncode = subprocess.run(ssh_cmd).returncode
        except OSError as e:
            raise RemoteConfigError(f"Could not run ssh: {e}") from e

    _run(action)
    if returncode != 0:
        raise typer.Exit(returncode)


@app.command("ls")
def list_machines() -> None:
    """List machines in the storage directory."""
    root = _storage_root()
    machine_dirs = sorted(
        path for path in root.iterdir() if config_file_for(path).exists()
    ) if root.exists() else []

    if not machine_dirs:
        logger.info("No machines found")
        return

    for machine_dir in machine_dirs:
        try:
            driver = _load_driver(machine_dir.name)
            machine_state = str(driver.get_state())
        except VSphereMachineError as e:
            logger.debug(f"Cannot query {machine_dir.name}: {e}")
            typer.echo(f"{machine_dir.name}\tError")
            continue
        typer.echo(f"{machine_dir.name}\t{machine_state}\t{driver.get_url()}")


def main() -> None:
    """Main entry point for the vsphere-machine command."""
    app()


if __name__ == "__main__":
    main()
