"""
vSphere machine driver - Docker host provisioning on VMware vSphere.

This package provisions a boot2docker VM on vSphere and manages its lifecycle
(create, start, stop, restart, kill, remove) for an orchestrating caller.
"""

from .driver import VSphereDriver, register_builtin_drivers
from .main import main

__version__ = "1.0.0"
__all__ = ["VSphereDriver", "register_builtin_drivers", "main"]
