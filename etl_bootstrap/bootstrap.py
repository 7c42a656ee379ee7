"""
Workstation bootstrap sequence
- Installs the toolchain and conda
- Refreshes the ETL checkout and derives local script folders from it
- Pulls credentials, the production image, and mirrors its Python and R runtimes
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .docker_env import DockerImage
from .extractor import PayloadExtractor
from .installers import SoftwareInstaller
from .localizer import localize
from .python_env import PythonEnvironment
from .r_env import REnvironment
from .repository import RepositorySync
from .runner import ProcessRunner
from .sync import KeyRetriever
from .system import SystemInfo, detect_system, run_system_checks

logger = logging.getLogger(__name__)


class EnvironmentBootstrapper:
    """Runs every setup step in order; a BootstrapError stops the run"""

    def __init__(self, config, runner: Optional[ProcessRunner] = None, system: Optional[SystemInfo] = None):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.system = system or detect_system(config.home)
        self.installer = SoftwareInstaller(config, self.system, self.runner)
        self.image = DockerImage.from_config(config, self.runner)
        self.conda: Optional[str] = None
        self.results: Dict[str, bool] = {}

    # Individual steps

    def run_system_checks(self):
        run_system_checks(self.system, self.config.min_memory_gb, self.config.min_free_disk_gb)
        return True

    def ensure_software_installed(self):
        return self.installer.ensure_software_installed()

    def install_anaconda(self):
        self.conda = self.installer.install_anaconda()
        return True

    def update_repository(self):
        RepositorySync.from_config(self.config, self.runner).update()
        return True

    def localize_repo_pathing(self):
        report = localize(self.config.scripts_dir, self.config.path_rules, self.config.script_suffixes)
        logger.info("Production paths have been replaced with local pathing in all applicable scripts.")
        return report.ok

    def extract_repo_scripts(self):
        PayloadExtractor.from_config(self.config).run()
        return True

    def retrieve_keys(self):
        KeyRetriever(self.config, self.runner).retrieve_keys()
        return True

    def prepare_docker_image(self):
        self.image.pull()
        return True

    def setup_python_environment(self):
        conda = self.conda or self.installer.install_anaconda()
        PythonEnvironment(self.config, conda, self.system.system, self.runner, self.image).setup()
        return True

    def check_and_install_r(self):
        return REnvironment(self.config, self.system, self.runner, self.image).check_and_install_r()

    def install_slack(self):
        return self.installer.install_slack()

    def install_outlook(self):
        return self.installer.install_outlook()

    def steps(self):
        return [
            ("system checks", self.run_system_checks),
            ("software", self.ensure_software_installed),
            ("anaconda", self.install_anaconda),
            ("repository", self.update_repository),
            ("localize", self.localize_repo_pathing),
            ("extract", self.extract_repo_scripts),
            ("keys", self.retrieve_keys),
            ("docker image", self.prepare_docker_image),
            ("python environment", self.setup_python_environment),
            ("R", self.check_and_install_r),
            ("slack", self.install_slack),
            ("outlook", self.install_outlook),
        ]

    def execute(self) -> Dict[str, bool]:
        """Run full setup sequence"""
        logger.info("===== Starting workstation setup =====")
        for name, step in self.steps():
            logger.info("--- %s ---", name)
            self.results[name] = bool(step())

        logger.info("Setup and synchronization complete.")
        skipped = [name for name, ok in self.results.items() if not ok]
        if skipped:
            logger.warning("Steps that did not fully succeed: %s", ", ".join(skipped))
        return self.results
