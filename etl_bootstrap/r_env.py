"""
R runtime matching the production image, plus the .Rprofile hook that
loads the conda environment's variables into interactive R sessions.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Optional

from .docker_env import DockerImage
from .errors import FilesystemError, MissingArtifactError
from .runner import ProcessRunner
from .system import DEBIAN, SystemInfo

logger = logging.getLogger(__name__)

CRAN_MACOS_URL = "https://cran.r-project.org/bin/macosx/base/R-{version}.pkg"
CRAN_UBUNTU_REPO = "deb https://cloud.r-project.org/bin/linux/ubuntu {codename}-cran40/"
CRAN_KEY = "E298A3A825C0D65DFD57CBB651716619E084DAB9"

EXPORT_PACKAGES = "write.csv(installed.packages()[,'Package'], '/r_packages_list.csv')"
INSTALL_MISSING = (
    "packages <- read.csv('{csv}', stringsAsFactors = FALSE)$x; "
    "new.packages <- packages[!(packages %in% installed.packages()[,'Package'])]; "
    "if(length(new.packages)) install.packages(new.packages)"
)

RPROFILE_TEMPLATE = '''if (interactive()) {{
  library(reticulate)

  py_code <- "
import subprocess
import os

command = 'source activate {env_name} && env'
proc = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, shell=True, executable='/bin/bash')
out, err = proc.communicate()

for line in out.splitlines():
    key, value = line.decode('utf-8').split('=', 1)
    os.environ[key] = value
"

  py_run_string(py_code)
}}
'''


def parse_r_version(text: str) -> str:
    """'R version 4.3.1 (2023-06-16) ...' -> '4.3.1'"""
    lines = text.strip().splitlines()
    tokens = lines[0].split() if lines else []
    if len(tokens) < 3:
        raise MissingArtifactError(f"Could not determine the image's R version from {text!r}")
    return tokens[2]


def render_rprofile(env_name: str) -> str:
    return RPROFILE_TEMPLATE.format(env_name=env_name)


class REnvironment:
    def __init__(self, config, system: SystemInfo, runner: Optional[ProcessRunner] = None,
                 image: Optional[DockerImage] = None):
        self.config = config
        self.system = system
        self.runner = runner or ProcessRunner()
        self.image = image or DockerImage.from_config(config, self.runner)

    def check_and_install_r(self) -> bool:
        if self.runner.which("R"):
            logger.info("R is already set up.")
        else:
            logger.info("Setting up R...")
            if self.system.is_macos:
                installed = self._install_macos()
            elif self.system.is_linux and self.system.distribution == DEBIAN:
                logger.info("Linux platform detected. Installing R...")
                installed = self._install_debian()
            else:
                logger.warning("Unsupported platform for automatic R installation.")
                return False
            if not installed:
                return False
            self.sync_r_packages()

        self.write_rprofile()
        return True

    def image_r_version(self) -> str:
        result = self.runner.check(self.image.run_args("R", "--version"),
                                   message="Could not run R in the production image")
        return parse_r_version(result.stdout)

    def _install_macos(self) -> bool:
        version = self.image_r_version()
        pkg = self.config.downloads_dir / f"R-{version}.pkg"
        pkg.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Downloading R version %s...", version)
        download = self.runner.run(["curl", "-L", "-o", str(pkg), CRAN_MACOS_URL.format(version=version)])
        if not download.ok:
            logger.warning("Failed to download R %s: %s", version, download.describe())
            return False

        logger.info("Installing R...")
        result = self.runner.run(["sudo", "installer", "-pkg", str(pkg), "-target", "/"], stream=True)
        if not result.ok:
            logger.warning("R installer failed: %s", result.describe())
            return False
        return True

    def _install_debian(self) -> bool:
        codename = self.runner.run(["lsb_release", "-cs"])
        if not codename.ok:
            logger.warning("Could not determine the Ubuntu release: %s", codename.describe())
            return False

        steps = [
            ["sudo", "add-apt-repository", CRAN_UBUNTU_REPO.format(codename=codename.stdout.strip())],
            ["sudo", "apt-key", "adv", "--keyserver", "keyserver.ubuntu.com", "--recv-keys", CRAN_KEY],
            ["sudo", "apt-get", "update"],
            ["sudo", "apt-get", "install", "-y", "r-base"],
        ]
        for step in steps:
            result = self.runner.run(step, stream=True)
            if not result.ok:
                logger.warning("R installation step failed: %s", result.describe())
                return False
        return True

    def sync_r_packages(self) -> None:
        """Install locally every R package present in the production image"""
        logger.info("Extracting R packages list from Docker image...")
        started = self.runner.check(
            self.image.run_args("tail", "-f", "/dev/null", detach=True),
            message="Could not start a container from the production image",
        )
        container = started.stdout.strip()

        with tempfile.TemporaryDirectory() as tmp:
            csv = Path(tmp) / "r_packages_list.csv"
            try:
                self.runner.check(["docker", "exec", container, "R", "--slave", "-e", EXPORT_PACKAGES],
                                  message="Could not list R packages in the container")
                self.runner.check(["docker", "cp", f"{container}:/r_packages_list.csv", str(csv)],
                                  message="Could not copy the R package list out of the container")
            finally:
                self.runner.run(["docker", "stop", container])

            logger.info("Installing R packages locally...")
            self.runner.check(["R", "--slave", "-e", INSTALL_MISSING.format(csv=csv.as_posix())],
                              message="Failed to install R packages", stream=True)

    def write_rprofile(self) -> Path:
        rprofile = self.config.rprofile
        if rprofile.exists():
            logger.info("Global .Rprofile exists. Clearing original contents and adding new setup.")
        else:
            logger.info("Creating global .Rprofile and adding required setup.")
        try:
            rprofile.write_text(render_rprofile(self.config.env_name), encoding="utf-8")
        except OSError as e:
            raise FilesystemError(
                f"Cannot write {rprofile}: {e}",
                f"Check the ownership and permissions of {rprofile}, then run the setup again.",
            ) from e
        logger.info("Updated global .Rprofile for Reticulate/Python code execution.")
        return rprofile
