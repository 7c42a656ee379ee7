"""
Conda environment mirroring the production image
- Requirements frozen from the image, then amended
- Python version matched to the image
- Environment variables from the staging launcher exported on activation
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .docker_env import DockerImage
from .errors import BootstrapError, FilesystemError, MissingArtifactError
from .runner import ProcessRunner
from .system import DARWIN

logger = logging.getLogger(__name__)

ENV_LINE_PREFIX = "  -e "
MACOS_PROCESS_DATE = 'export PROCESS_DATE=$(date -v-1d +"%Y-%m-%d")'

_VERSION = re.compile(r"Python\s+(\d+)\.(\d+)")


def parse_python_version(text: str) -> str:
    """'Python 3.10.12' -> '3.10'"""
    match = _VERSION.search(text)
    if not match:
        raise MissingArtifactError(f"Could not determine the image's Python version from {text!r}")
    return f"{match.group(1)}.{match.group(2)}"


def amend_requirements(lines: Iterable[str], drop: Sequence[str], extra: Sequence[str]) -> List[str]:
    dropped = set(drop)
    kept = [line for line in lines if line.strip() not in dropped]
    return kept + list(extra)


def build_activation_scripts(lines: Iterable[str], system: str) -> Tuple[str, str]:
    """
    Turn `  -e NAME=VALUE \\` lines of the staging launcher into conda hooks.

    Returns:
        (activation script text, deactivation script text)
    """
    activate = ["#!/bin/sh"]
    deactivate = ["#!/bin/sh"]

    for line in lines:
        if not line.startswith(ENV_LINE_PREFIX):
            continue
        assignment = line[len(ENV_LINE_PREFIX):]
        if assignment.endswith(" \\"):
            assignment = assignment[:-2]
        name = assignment.split("=", 1)[0]
        logger.info("Adding to activation script: %s", assignment)

        # BSD date on macOS has no -d; yesterday is computed with -v-1d
        if system == DARWIN and name == "PROCESS_DATE":
            activate.append(MACOS_PROCESS_DATE)
        else:
            activate.append(f"export {assignment}")
        deactivate.append(f"unset {name}")

    return "\n".join(activate) + "\n", "\n".join(deactivate) + "\n"


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class PythonEnvironment:
    def __init__(self, config, conda: str, system: str, runner: Optional[ProcessRunner] = None,
                 image: Optional[DockerImage] = None):
        self.config = config
        self.conda = conda
        self.system = system
        self.runner = runner or ProcessRunner()
        self.image = image or DockerImage.from_config(config, self.runner)

    def setup(self) -> None:
        self.generate_requirements()
        version = self.image_python_version()
        self.recreate_environment(version)
        self.write_activation_scripts()
        logger.info("Environment '%s' created and packages installed successfully.", self.config.env_name)

    def generate_requirements(self) -> Path:
        """Freeze the image's packages into requirements.txt and amend the list"""
        req_dir = self.config.requirements_dir
        requirements = self.config.requirements_file

        # Stale output from a previous run must not pass the existence check
        try:
            req_dir.mkdir(parents=True, exist_ok=True)
            if requirements.exists():
                requirements.unlink()
        except OSError as e:
            raise FilesystemError(
                f"Cannot prepare {requirements}: {e}",
                f"Check the ownership and permissions of {req_dir}, then run the setup again.",
            ) from e

        result = self.runner.run(
            self.image.run_args("sh", "-c", "pip freeze > /tmp/requirements.txt", volume=f"{req_dir}:/tmp")
        )
        if not requirements.is_file():
            reason = f": {result.describe()}" if not result.ok else ""
            raise MissingArtifactError(
                f"Failed to generate requirements.txt{reason}",
                f"docker run --rm -v {req_dir}:/tmp {self.config.docker_image} sh -c \"pip freeze > /tmp/requirements.txt\"",
            )

        lines = requirements.read_text(encoding="utf-8").splitlines()
        amended = amend_requirements(lines, self.config.requirements_drop, self.config.requirements_extra)
        try:
            requirements.write_text("\n".join(amended) + "\n", encoding="utf-8")
        except OSError as e:
            raise FilesystemError(f"Cannot write {requirements}: {e}") from e
        logger.info("Wrote %d requirements to %s", len(amended), requirements)
        return requirements

    def image_python_version(self) -> str:
        result = self.runner.check(
            self.image.run_args("python3", "--version"),
            message="Could not run python3 in the production image",
        )
        version = parse_python_version(result.stdout + result.stderr)
        logger.info("Production image uses Python %s", version)
        return version

    def existing_environments(self) -> List[str]:
        result = self.runner.check([self.conda, "env", "list", "--json"], message="Cannot list conda environments")
        try:
            envs = json.loads(result.stdout).get("envs", [])
        except ValueError as e:
            raise BootstrapError(f"Unexpected output from conda env list: {e}") from e
        return [os.path.basename(path.rstrip("/")) for path in envs]

    def recreate_environment(self, python_version: str) -> None:
        name = self.config.env_name
        if name in self.existing_environments():
            logger.info("Environment '%s' exists. Removing it...", name)
            self.runner.check([self.conda, "env", "remove", "-n", name, "--yes"],
                              message=f"Failed to remove environment '{name}'")

        logger.info("Creating new environment '%s'...", name)
        self.runner.check([self.conda, "create", "-n", name, f"python={python_version}", "--yes"],
                          message=f"Failed to create environment '{name}'", stream=True)

        pip = [self.conda, "run", "-n", name, "python", "-m", "pip", "install"]
        self.runner.check(pip + ["-r", str(self.config.requirements_file)],
                          message="Failed to install packages from requirements.txt", stream=True)
        # Jupyter kernel for the environment
        self.runner.check(pip + ["ipykernel"], message="Failed to install ipykernel", stream=True)

    def write_activation_scripts(self) -> Tuple[Path, Path]:
        launcher = self.config.staging_env_script
        if not launcher.is_file():
            raise MissingArtifactError(
                f"Staging launcher {launcher} not found",
                "Re-run the script after the staging folder has been synchronized from the jump host.",
            )
        try:
            _make_executable(launcher)
            lines = launcher.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            raise FilesystemError(
                f"Cannot prepare staging launcher {launcher}: {e}",
                f"chmod +x {launcher}",
            ) from e
        activate_text, deactivate_text = build_activation_scripts(lines, self.system)

        activation = self.config.activation_script
        deactivation = self.config.deactivation_script
        for path, text in ((activation, activate_text), (deactivation, deactivate_text)):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(text, encoding="utf-8")
                _make_executable(path)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot write conda hook {path}: {e}",
                    f"Create {path} by hand with these contents and make it executable:\n{text}",
                ) from e

        logger.info("Activation script contents:\n%s", activate_text)
        logger.info("Environment variables have been added to the Conda environment '%s'.", self.config.env_name)
        return activation, deactivation
