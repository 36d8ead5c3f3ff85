"""
Gateway integration for the state sync sidecar.

- GatewayProcess: the supervised child process
- inject_gateway_config: Railway overrides merged into the gateway config
"""

from .config_inject import inject_gateway_config, merge_railway_config
from .process import GatewayProcess, shell_exit_code

__all__ = [
    "GatewayProcess",
    "shell_exit_code",
    "inject_gateway_config",
    "merge_railway_config",
]
