"""
Production image handling.

Whether a pull changed anything is decided by comparing the local image
id before and after the pull, not by reading docker's progress output.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from .runner import ProcessRunner

logger = logging.getLogger(__name__)

UP_TO_DATE = "up-to-date"
UPDATED = "updated"
PULLED = "pulled"


def engine_config(insecure_registry: str) -> dict:
    """Docker Engine settings the production registry requires"""
    return {
        "builder": {
            "gc": {
                "defaultKeepStorage": "20GB",
                "enabled": True,
            }
        },
        "experimental": False,
        "features": {
            "buildkit": True,
        },
        "insecure-registries": [insecure_registry],
    }


def engine_config_text(insecure_registry: str) -> str:
    return json.dumps(engine_config(insecure_registry), indent=2)


class DockerImage:
    def __init__(self, image: str, runner: Optional[ProcessRunner] = None, platform: str = "linux/amd64",
                 insecure_registry: str = ""):
        self.image = image
        self.platform = platform
        self.insecure_registry = insecure_registry
        self.runner = runner or ProcessRunner()

    @classmethod
    def from_config(cls, config, runner=None) -> "DockerImage":
        return cls(config.docker_image, runner, config.docker_platform, config.insecure_registry)

    def local_id(self) -> Optional[str]:
        result = self.runner.run(["docker", "image", "inspect", "--format", "{{.Id}}", self.image])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def pull(self) -> str:
        """
        Pull the image and report what changed.

        Returns:
            UP_TO_DATE, UPDATED or PULLED
        """
        logger.info("Checking for Docker image updates...")
        before = self.local_id()
        if before is None:
            logger.info("Docker image not found locally. Pulling from registry...")

        remediation = (
            "Make sure Docker is running and the registry is allowed in the Docker Engine "
            "configuration (Docker Desktop > Settings > Docker Engine):\n"
            + engine_config_text(self.insecure_registry)
        )
        self.runner.check(
            ["docker", "pull", self.image],
            message=f"Failed to pull {self.image}",
            remediation=remediation,
        )
        after = self.local_id()

        if before is None:
            outcome = PULLED
            logger.info("Docker image pulled.")
        elif before == after:
            outcome = UP_TO_DATE
            logger.info("Docker image is up to date.")
        else:
            outcome = UPDATED
            logger.info("Docker image updated. New image pulled.")
        return outcome

    def run_args(self, *command: str, volume: Optional[str] = None, detach: bool = False, remove: bool = True):
        """docker run argument list for a one-off command in the image"""
        args = ["docker", "run"]
        if detach:
            args.append("-d")
        if remove:
            args.append("--rm")
        args += ["--platform", self.platform]
        if volume:
            args += ["-v", volume]
        args.append(self.image)
        args.extend(command)
        return args
