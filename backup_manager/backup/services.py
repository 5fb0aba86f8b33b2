"""
Docker Compose service control.

Containers of a service are stopped before archiving and started again
afterwards. Both operations are keyed by the compose project directory and are
idempotent: stopping a stopped project or starting a running one is a no-op.
"""

import os
import shutil
import logging
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)


class ServiceControlError(Exception):
    """Raised when containers cannot be stopped or started."""
    pass


def detect_compose_command() -> List[str]:
    """
    Determine which compose command to use.

    Prefers the ``docker compose`` plugin and falls back to the standalone
    ``docker-compose`` binary.
    """
    if shutil.which('docker'):
        try:
            subprocess.run(['docker', 'compose', 'version'], capture_output=True, check=True, timeout=5)
            return ['docker', 'compose']
        except (subprocess.SubprocessError, OSError):
            pass
    if shutil.which('docker-compose'):
        return ['docker-compose']
    # Last resort: let the call fail with a clear error
    return ['docker', 'compose']


class ComposeController:
    """Stops and starts the containers of a compose project directory."""

    def __init__(self, compose_command: Optional[List[str]] = None):
        self._compose_command = list(compose_command) if compose_command else None

    @property
    def compose_command(self) -> List[str]:
        if self._compose_command is None:
            self._compose_command = detect_compose_command()
        return self._compose_command

    def pause(self, working_dir: str):
        """
        Stop all containers of the project in ``working_dir``.

        Raises:
            ServiceControlError: If the directory is missing or compose fails
        """
        self._run('stop', working_dir, "Stopping")

    def resume(self, working_dir: str):
        """
        Start all containers of the project in ``working_dir``.

        Raises:
            ServiceControlError: If the directory is missing or compose fails
        """
        self._run('start', working_dir, "Starting")

    def _run(self, action: str, working_dir: str, action_text: str):
        if not os.path.isdir(working_dir):
            raise ServiceControlError(f"Failed to navigate to {working_dir}: directory not found")

        cmd = self.compose_command + [action]
        logger.debug(f"{action_text} containers in {working_dir}: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, cwd=working_dir, capture_output=True, text=True)
        except OSError as e:
            raise ServiceControlError(f"{action_text} containers in {working_dir} failed: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise ServiceControlError(
                f"{action_text} containers in {working_dir} failed (exit {result.returncode}): {stderr}"
            )
