"""
Command-line tools for the state sync sidecar.

- sync_cli: statesync {restore|backup|loop}
"""
