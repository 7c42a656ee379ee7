"""
Package and application installation.

Every install step is "install if missing" and reports success as a
bool. A package that cannot be installed is logged and skipped; only the
conda installation, which later steps depend on, is fatal.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import psutil

from .docker_env import engine_config_text
from .errors import BootstrapError
from .runner import ProcessRunner
from .system import DEBIAN, REDHAT, SystemInfo, miniconda_installer_name

logger = logging.getLogger(__name__)

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
HOMEBREW_PREFIX = Path("/opt/homebrew")
DOCKER_INSTALL_URL = "https://get.docker.com"
MINICONDA_BASE_URL = "https://repo.anaconda.com/miniconda"

MACOS_PACKAGES = ("git", "rsync", "vim", "postgresql")
LINUX_PACKAGES = ("git", "rsync", "postgresql")


class SoftwareInstaller:
    """Installs the workstation toolchain for the detected platform"""

    volumes_dir = Path("/Volumes")

    def __init__(self, config, system: SystemInfo, runner: Optional[ProcessRunner] = None):
        self.config = config
        self.system = system
        self.runner = runner or ProcessRunner()

    # Packages

    def install_package(self, name: str) -> bool:
        logger.info("Checking for %s...", name)
        if self.runner.which(name):
            logger.info("%s is already installed.", name)
            return True

        logger.info("Installing %s...", name)
        if self.system.is_macos:
            if self.runner.run(["brew", "list", name]).ok:
                return True
            steps = [["brew", "install", name]]
        elif self.system.is_linux and self.system.distribution == DEBIAN:
            if self.runner.run(["dpkg", "-l", name]).ok:
                return True
            steps = [
                ["sudo", "apt-get", "update"],
                ["sudo", "apt-get", "install", "-y", name],
            ]
        elif self.system.is_linux and self.system.distribution == REDHAT:
            if self.runner.run(["rpm", "-q", name]).ok:
                return True
            steps = [["sudo", "yum", "install", "-y", name]]
        elif self.system.is_linux:
            logger.warning("Unsupported Linux distribution for automatic installation of %s.", name)
            return False
        else:
            logger.warning("Unsupported platform for %s installation.", name)
            return False

        return self._run_steps(steps, f"install {name}")

    def install_docker(self) -> bool:
        if self.runner.which("docker"):
            logger.info("Docker is already installed.")
            ok = True
        else:
            logger.info("Installing Docker...")
            if self.system.is_macos:
                ok = self._run_steps([["brew", "install", "--cask", "docker"]], "install Docker")
            elif self.system.is_linux:
                ok = self._run_steps(
                    [["sh", "-c", f"curl -fsSL {DOCKER_INSTALL_URL} | sh"]], "install Docker", stream=True
                )
            else:
                logger.warning("Docker installation is not supported on this platform.")
                return False

        logger.info("After installing Docker, apply the following Docker Engine configuration:")
        logger.info("%s", engine_config_text(self.config.insecure_registry))
        return ok

    def ensure_homebrew(self) -> bool:
        if self.runner.which("brew"):
            return True

        logger.info("Installing Homebrew...")
        if not self._run_steps(
            [["/bin/bash", "-c", f'/bin/bash -c "$(curl -fsSL {HOMEBREW_INSTALL_URL})"']],
            "install Homebrew",
            stream=True,
        ):
            return False

        shellenv = f'eval "$({HOMEBREW_PREFIX}/bin/brew shellenv)"'
        zprofile = self.config.home / ".zprofile"
        try:
            existing = zprofile.read_text(encoding="utf-8") if zprofile.exists() else ""
            if shellenv not in existing:
                with open(zprofile, "a", encoding="utf-8") as f:
                    f.write(shellenv + "\n")
        except OSError as e:
            logger.warning("Could not update %s (%s). Add this line to it manually:\n%s", zprofile, e, shellenv)
            return False

        # Equivalent of evaluating shellenv for the rest of this run
        os.environ["PATH"] = f"{HOMEBREW_PREFIX / 'bin'}{os.pathsep}{os.environ.get('PATH', '')}"
        return True

    # Services

    @staticmethod
    def postgres_running() -> bool:
        for proc in psutil.process_iter(["name"]):
            name = (proc.info.get("name") or "").lower()
            if name.startswith("postgres"):
                return True
        return False

    def ensure_postgres_running(self) -> bool:
        if self.postgres_running():
            logger.info("PostgreSQL is already running.")
            return True

        logger.info("Starting PostgreSQL...")
        if self.system.is_macos:
            return self._run_steps([["brew", "services", "start", "postgresql"]], "start PostgreSQL")
        if self.system.is_linux:
            return self._run_steps(
                [["sudo", "systemctl", "enable", "--now", "postgresql"]], "start PostgreSQL"
            )
        logger.warning("Unsupported platform for service management.")
        return False

    def ensure_software_installed(self) -> bool:
        """Install the base toolchain; True only if every item succeeded"""
        logger.info("Ensuring required software is installed...")
        results: List[bool] = []

        if self.system.is_macos:
            results.append(self.ensure_homebrew())
            results.append(self.install_docker())
            docker_app = self.config.applications_dir / "Docker.app"
            if docker_app.is_dir():
                self.runner.run(["open", str(docker_app)])
            packages = MACOS_PACKAGES
        elif self.system.is_linux:
            results.append(self.install_docker())
            packages = LINUX_PACKAGES
        else:
            logger.warning("Unsupported platform for software installation: %s", self.system.system)
            return False

        results.extend(self.install_package(name) for name in packages)
        results.append(self.ensure_postgres_running())
        return all(results)

    # Conda

    def conda_executable(self) -> Optional[str]:
        bundled = self.config.conda_prefix / "bin" / "conda"
        if bundled.exists():
            return str(bundled)
        return self.runner.which("conda")

    def install_anaconda(self) -> str:
        """
        Make sure conda exists and its base environment has Python 3.

        Returns:
            Path of the conda executable

        Raises:
            UnsupportedPlatformError: no installer exists for this OS
            CommandFailedError: download or installer failed
        """
        conda = self.conda_executable()
        if conda is None:
            installer_name = miniconda_installer_name(self.system)
            installer = self.config.downloads_dir / installer_name
            installer.parent.mkdir(parents=True, exist_ok=True)

            logger.info("Installing Anaconda (%s)...", installer_name)
            self.runner.check(
                ["curl", "-fsSL", "-o", str(installer), f"{MINICONDA_BASE_URL}/{installer_name}"],
                message="Failed to download the Miniconda installer",
            )
            self.runner.check(
                ["bash", str(installer), "-b", "-p", str(self.config.conda_prefix)],
                message="Miniconda installer failed",
                stream=True,
            )
            conda = str(self.config.conda_prefix / "bin" / "conda")
            self.runner.check([conda, "init"], message="conda init failed")

        result = self.runner.check([conda, "list", "--json", "^python$"], message="Cannot list conda packages")
        try:
            packages = json.loads(result.stdout or "[]")
        except ValueError as e:
            raise BootstrapError(f"Unexpected output from conda list: {e}") from e

        if not any(p.get("name") == "python" and str(p.get("version", "")).startswith("3.") for p in packages):
            logger.info("Installing Python 3 into the base conda environment...")
            self.runner.check([conda, "install", "python=3", "-y"], message="Failed to install Python 3", stream=True)
        return conda

    # macOS applications

    def install_slack(self) -> bool:
        if not self.system.is_macos:
            logger.info("Slack installer only runs on macOS, skipping.")
            return False

        app = self.config.applications_dir / "Slack.app"
        if app.is_dir():
            logger.info("Slack is already installed.")
            return True

        logger.info("Slack not found. Installing...")
        dmg = self.config.downloads_dir / "Slack.dmg"
        dmg.parent.mkdir(parents=True, exist_ok=True)
        try:
            if not self._run_steps(
                [
                    ["curl", "-L", self.config.slack_url, "-o", str(dmg)],
                    ["hdiutil", "attach", str(dmg), "-nobrowse"],
                ],
                "download and mount Slack",
            ):
                return False

            volumes = sorted(self.volumes_dir.glob("Slack*"))
            if not volumes:
                logger.warning("Slack disk image mounted but no /Volumes/Slack* volume was found.")
                return False
            volume = volumes[0]
            copied = self._run_steps(
                [["cp", "-R", str(volume / "Slack.app"), str(self.config.applications_dir)]], "install Slack"
            )
            self.runner.run(["hdiutil", "detach", str(volume)])
        finally:
            if dmg.exists():
                dmg.unlink()

        if copied:
            logger.info("Slack installation complete.")
        return copied

    def install_outlook(self) -> bool:
        if not self.system.is_macos:
            logger.info("Outlook installer only runs on macOS, skipping.")
            return False

        app = self.config.applications_dir / "Microsoft Outlook.app"
        if app.is_dir():
            logger.info("Microsoft Outlook is already installed.")
            return True

        logger.info("Microsoft Outlook not found. Installing Office 365...")
        pkg = self.config.downloads_dir / "OfficeInstaller.pkg"
        pkg.parent.mkdir(parents=True, exist_ok=True)
        try:
            ok = self._run_steps(
                [
                    ["curl", "-L", self.config.office_url, "-o", str(pkg)],
                    ["sudo", "installer", "-pkg", str(pkg), "-target", "/"],
                ],
                "install Office 365",
                stream=True,
            )
        finally:
            if pkg.exists():
                pkg.unlink()

        if ok:
            logger.info("Microsoft Outlook installation complete as part of Office 365.")
        return ok

    def _run_steps(self, steps: Sequence[Sequence[str]], what: str, stream: bool = False) -> bool:
        for step in steps:
            result = self.runner.run(step, stream=stream)
            if not result.ok:
                logger.warning("Failed to %s: %s", what, result.describe())
                return False
        return True
