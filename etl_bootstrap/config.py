"""
Bootstrap configuration
- Defaults describe the reporting workstation layout under the home directory
- Stored as an INI file that is created with defaults on first run
- Loaded once and passed to every component
"""

from __future__ import annotations

import configparser
import dataclasses
import getpass
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import ConfigError
from .extractor import PYTHON, R, DestinationSet
from .localizer import PathRule

logger = logging.getLogger(__name__)

CONFIG_RELPATH = ".config/etl_bootstrap/bootstrap.ini"
RULE_SEPARATOR = "=>"


def create_default_config(config: configparser.ConfigParser) -> None:
    """Fill a parser with the default workstation configuration"""
    config["Paths"] = {
        "etl_dir": "~/Documents/etl",
        "key_dir": "~/key",
        "staging_dir": "~/staging",
        "requirements_dir": "~/Documents/python_folder",
        "r_folder": "~/Documents/r_folder",
        "conda_prefix": "~/anaconda3",
        "gspread_dir": "~/.config/gspread_pandas",
        "rprofile": "~/.Rprofile",
        "downloads_dir": "~/Downloads",
    }

    # {user} is replaced with the local account name
    config["Remote"] = {
        "git_https_url": "https://github.com/ad-net/etl.git",
        "git_ssh_url": "git@github.com:ad-net/etl.git",
        "git_branch": "master",
        "remote_key_dir": "{user}@jump.ad.net:/home/{user}/key/",
        "remote_staging_dir": "{user}@jump.ad.net:/home/{user}/staging/",
    }

    config["Docker"] = {
        "image": "airflow.ad.net:5000/ad.net/report-script-file:latest",
        "platform": "linux/amd64",
        "insecure_registry": "https://airflow.ad.net:5000",
    }

    config["Python"] = {
        "env_name": "current_staging_environ",
        "requirements_drop": "\npolars==0.14.1",
        "requirements_extra": "\nmxnet\ngluonts\npathlib\npolars==1.0.0",
    }

    # One rule per line, applied top to bottom
    config["Localize"] = {
        "suffixes": ".py .sh",
        "rules": "\n/key => ~/key\n/root/.config/gspread_pandas => ~/key\n/tmp/ => ~/Downloads/",
    }

    config["Extract"] = {
        "scripts_subdir": "external-reporting/docker-images/report-script-file/scripts",
        "helpers_name": "addotnet_functions",
    }

    config["Apps"] = {
        "applications_dir": "/Applications",
        "slack_url": "https://downloads.slack-edge.com/releases/macos/4.27.156/prod/x64/Slack-4.27.156-macOS.dmg",
        "office_url": "https://go.microsoft.com/fwlink/?linkid=525133",
    }

    config["System"] = {
        "min_free_disk_gb": "20",
        "min_memory_gb": "4",
    }

    config["Logging"] = {
        "level": "INFO",
        "file": "~/etl_bootstrap.log",
    }


def _expand(value: str, home: Path) -> str:
    if value == "~":
        return str(home)
    if value.startswith("~/"):
        return str(home) + value[1:]
    return value


def _lines(value: str) -> List[str]:
    return [line.strip() for line in value.splitlines() if line.strip()]


def parse_rules(value: str, home: Path) -> Tuple[PathRule, ...]:
    rules = []
    for line in _lines(value):
        if RULE_SEPARATOR not in line:
            raise ConfigError(f"Path rule is missing '{RULE_SEPARATOR}': {line!r}")
        search, replace = (part.strip() for part in line.split(RULE_SEPARATOR, 1))
        try:
            rules.append(PathRule(search, _expand(replace, home)))
        except ValueError as e:
            raise ConfigError(f"Invalid path rule {line!r}: {e}") from e
    return tuple(rules)


@dataclass(frozen=True)
class BootstrapConfig:
    home: Path
    etl_dir: Path
    key_dir: Path
    staging_dir: Path
    requirements_dir: Path
    r_folder: Path
    conda_prefix: Path
    gspread_dir: Path
    rprofile: Path
    downloads_dir: Path

    git_https_url: str
    git_ssh_url: str
    git_branch: str
    remote_key_dir: str
    remote_staging_dir: str

    docker_image: str
    docker_platform: str
    insecure_registry: str

    env_name: str
    requirements_drop: Tuple[str, ...]
    requirements_extra: Tuple[str, ...]

    path_rules: Tuple[PathRule, ...]
    script_suffixes: Tuple[str, ...]

    scripts_subdir: str
    helpers_name: str

    applications_dir: Path
    slack_url: str
    office_url: str

    min_free_disk_gb: float = 20.0
    min_memory_gb: float = 4.0

    log_level: str = "INFO"
    log_file: Optional[Path] = None

    source: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def from_parser(cls, config: configparser.ConfigParser, home: Path, user: Optional[str] = None):
        user = user or getpass.getuser()

        def path(section, key):
            return Path(_expand(config[section][key], home))

        def remote(key):
            return config["Remote"][key].replace("{user}", user)

        try:
            log_file = config["Logging"].get("file", "").strip()
            return cls(
                home=home,
                etl_dir=path("Paths", "etl_dir"),
                key_dir=path("Paths", "key_dir"),
                staging_dir=path("Paths", "staging_dir"),
                requirements_dir=path("Paths", "requirements_dir"),
                r_folder=path("Paths", "r_folder"),
                conda_prefix=path("Paths", "conda_prefix"),
                gspread_dir=path("Paths", "gspread_dir"),
                rprofile=path("Paths", "rprofile"),
                downloads_dir=path("Paths", "downloads_dir"),
                git_https_url=remote("git_https_url"),
                git_ssh_url=remote("git_ssh_url"),
                git_branch=config["Remote"]["git_branch"],
                remote_key_dir=remote("remote_key_dir"),
                remote_staging_dir=remote("remote_staging_dir"),
                docker_image=config["Docker"]["image"],
                docker_platform=config["Docker"]["platform"],
                insecure_registry=config["Docker"]["insecure_registry"],
                env_name=config["Python"]["env_name"],
                requirements_drop=tuple(_lines(config["Python"]["requirements_drop"])),
                requirements_extra=tuple(_lines(config["Python"]["requirements_extra"])),
                path_rules=parse_rules(config["Localize"]["rules"], home),
                script_suffixes=tuple(config["Localize"]["suffixes"].split()),
                scripts_subdir=config["Extract"]["scripts_subdir"],
                helpers_name=config["Extract"]["helpers_name"],
                applications_dir=path("Apps", "applications_dir"),
                slack_url=config["Apps"]["slack_url"],
                office_url=config["Apps"]["office_url"],
                min_free_disk_gb=config["System"].getfloat("min_free_disk_gb"),
                min_memory_gb=config["System"].getfloat("min_memory_gb"),
                log_level=config["Logging"]["level"].upper(),
                log_file=Path(_expand(log_file, home)) if log_file else None,
            )
        except KeyError as e:
            raise ConfigError(f"Missing configuration entry: {e}") from e
        except ValueError as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    # Derived locations

    @property
    def scripts_dir(self) -> Path:
        return self.etl_dir / self.scripts_subdir

    @property
    def helpers_dir(self) -> Path:
        return self.scripts_dir / self.helpers_name

    @property
    def python_dest_dir(self) -> Path:
        return self.requirements_dir / "production_python_scripts"

    @property
    def r_dest_dir(self) -> Path:
        return self.r_folder / "production_r_scripts"

    @property
    def requirements_file(self) -> Path:
        return self.requirements_dir / "requirements.txt"

    @property
    def staging_env_script(self) -> Path:
        return self.staging_dir / "report-scripts.sh"

    @property
    def env_dir(self) -> Path:
        return self.conda_prefix / "envs" / self.env_name

    @property
    def activation_script(self) -> Path:
        return self.env_dir / "etc" / "conda" / "activate.d" / "env_vars.sh"

    @property
    def deactivation_script(self) -> Path:
        return self.env_dir / "etc" / "conda" / "deactivate.d" / "env_vars.sh"

    def destination_set(self) -> DestinationSet:
        return DestinationSet(
            payload_dirs={PYTHON: self.python_dest_dir, R: self.r_dest_dir},
            helper_dirs={
                PYTHON: (
                    self.python_dest_dir / self.helpers_name,
                    self.requirements_dir / self.helpers_name,
                ),
                R: (
                    self.r_folder / self.helpers_name,
                    self.r_dest_dir / self.helpers_name,
                ),
            },
        )


def load_or_create_config(path=None, home=None, user=None) -> BootstrapConfig:
    """
    Load the bootstrap configuration, writing defaults on first use.

    Entries missing from an existing file fall back to the defaults.
    """
    home = Path(home) if home else Path.home()
    path = Path(path) if path else home / CONFIG_RELPATH

    config = configparser.ConfigParser(interpolation=None)
    create_default_config(config)

    if path.exists():
        try:
            config.read(path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        logger.info("Loaded existing config: %s", path)
    else:
        logger.info("Creating new bootstrap configuration: %s", path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as configfile:
            config.write(configfile)

    loaded = BootstrapConfig.from_parser(config, home, user=user)
    return dataclasses.replace(loaded, source=path)
