"""SSH key pair generation and SSH command construction."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from vsphere_machine.errors import SSHKeyError
from vsphere_machine.utils import run_subprocess

logger = logging.getLogger(__name__)

SSH_OPTIONS = [
    "-o", "IdentitiesOnly=yes",
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=quiet",
    "-o", "ConnectionAttempts=3",
    "-o", "ConnectTimeout=10",
]


def generate_ssh_key(key_path: Path, log_dir: Optional[Path] = None) -> None:
    """
    Generate an RSA key pair at key_path (and key_path.pub).

    An existing private key is reused as is.
    """
    key_path = Path(key_path)
    if key_path.exists():
        logger.info(f"Reusing existing SSH key: {key_path}")
        return

    try:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        run_subprocess([
            "ssh-keygen", "-t", "rsa", "-b", "2048", "-f", str(key_path),
            "-N", "", "-q", "-C", f"vsphere-machine-{key_path.parent.name}"
        ], log_dir=log_dir, check=True)
        key_path.chmod(0o600)
    except subprocess.CalledProcessError as e:
        raise SSHKeyError(f"ssh-keygen failed for {key_path}: {(e.stderr or '').strip()}") from e
    except OSError as e:
        raise SSHKeyError(f"Cannot generate SSH key at {key_path}: {e}") from e


def build_ssh_command(ip: str, port: int, user: str, key_path: Path, *args: str) -> List[str]:
    """Return the argv for an SSH invocation against user@ip."""
    cmd = ["ssh", *SSH_OPTIONS, "-p", str(port), "-i", str(key_path), f"{user}@{ip}"]
    cmd.extend(args)
    return cmd
