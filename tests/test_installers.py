import dataclasses
import json
import os
from unittest import mock

import pytest

from etl_bootstrap.errors import UnsupportedPlatformError
from etl_bootstrap.installers import SoftwareInstaller
from etl_bootstrap.system import LINUX, SystemInfo


@pytest.fixture
def apps_config(config, tmp_path):
    apps = tmp_path / "Applications"
    apps.mkdir()
    return dataclasses.replace(config, applications_dir=apps)


def processes(*names):
    return [mock.MagicMock(info={"name": name}) for name in names]


def test_package_on_path_is_left_alone(config, debian, runner):
    runner.installed["git"] = "/usr/bin/git"

    assert SoftwareInstaller(config, debian, runner).install_package("git")
    assert runner.calls == []


def test_debian_package_is_installed_with_apt(config, debian, runner):
    runner.on("dpkg", returncode=1)

    assert SoftwareInstaller(config, debian, runner).install_package("rsync")
    assert runner.calls[1:] == [
        ("sudo", "apt-get", "update"),
        ("sudo", "apt-get", "install", "-y", "rsync"),
    ]


def test_brew_package_already_installed(config, macos, runner):
    assert SoftwareInstaller(config, macos, runner).install_package("postgresql")
    assert runner.calls == [("brew", "list", "postgresql")]


def test_failed_install_is_not_fatal(config, macos, runner):
    runner.on("brew", "list", returncode=1)
    runner.on("brew", "install", returncode=1, stderr="No available formula")

    assert not SoftwareInstaller(config, macos, runner).install_package("vim")


def test_unknown_distribution_is_skipped(config, runner):
    other = SystemInfo(LINUX, None, "x86_64", "cpu", 0, 0)

    assert not SoftwareInstaller(config, other, runner).install_package("git")
    assert runner.calls == []


def test_postgres_detection():
    with mock.patch("etl_bootstrap.installers.psutil.process_iter", return_value=processes("bash", "postgres")):
        assert SoftwareInstaller.postgres_running()
    with mock.patch("etl_bootstrap.installers.psutil.process_iter", return_value=processes("bash", None)):
        assert not SoftwareInstaller.postgres_running()


def test_postgres_is_started_when_not_running(config, debian, runner):
    with mock.patch("etl_bootstrap.installers.psutil.process_iter", return_value=[]):
        assert SoftwareInstaller(config, debian, runner).ensure_postgres_running()
    assert runner.calls == [("sudo", "systemctl", "enable", "--now", "postgresql")]


def test_linux_toolchain(config, debian, runner):
    for name in ("docker", "git", "rsync", "postgresql"):
        runner.installed[name] = f"/usr/bin/{name}"

    with mock.patch("etl_bootstrap.installers.psutil.process_iter", return_value=processes("postgres")):
        assert SoftwareInstaller(config, debian, runner).ensure_software_installed()
    assert runner.calls == []


def test_existing_conda_with_python3(config, debian, runner):
    runner.installed["conda"] = "/opt/conda/bin/conda"
    runner.on("list", stdout=json.dumps([{"name": "python", "version": "3.11.5"}]))

    assert SoftwareInstaller(config, debian, runner).install_anaconda() == "/opt/conda/bin/conda"
    assert runner.called("install") == []


def test_existing_conda_without_python3(config, debian, runner):
    runner.installed["conda"] = "/opt/conda/bin/conda"
    runner.on("list", stdout="[]")

    SoftwareInstaller(config, debian, runner).install_anaconda()

    assert runner.called("install") == [("/opt/conda/bin/conda", "install", "python=3", "-y")]


def test_miniconda_is_installed_when_conda_is_missing(config, macos, runner):
    runner.on("list", stdout=json.dumps([{"name": "python", "version": "3.12.1"}]))

    conda = SoftwareInstaller(config, macos, runner).install_anaconda()

    installer = config.downloads_dir / "Miniconda3-latest-MacOSX-arm64.sh"
    assert conda == str(config.conda_prefix / "bin" / "conda")
    assert runner.calls[:3] == [
        ("curl", "-fsSL", "-o", str(installer),
         "https://repo.anaconda.com/miniconda/Miniconda3-latest-MacOSX-arm64.sh"),
        ("bash", str(installer), "-b", "-p", str(config.conda_prefix)),
        (conda, "init"),
    ]


def test_conda_on_unsupported_platform(config, runner):
    windows = SystemInfo("Windows", None, "x86_64", "cpu", 0, 0)

    with pytest.raises(UnsupportedPlatformError):
        SoftwareInstaller(config, windows, runner).install_anaconda()


def test_slack_only_on_macos(apps_config, debian, runner):
    assert not SoftwareInstaller(apps_config, debian, runner).install_slack()
    assert runner.calls == []


def test_slack_already_installed(apps_config, macos, runner):
    (apps_config.applications_dir / "Slack.app").mkdir()

    assert SoftwareInstaller(apps_config, macos, runner).install_slack()
    assert runner.calls == []


def test_slack_is_copied_from_mounted_volume(apps_config, macos, runner, tmp_path):
    volumes = tmp_path / "Volumes"
    (volumes / "Slack 4.27").mkdir(parents=True)
    installer = SoftwareInstaller(apps_config, macos, runner)
    installer.volumes_dir = volumes

    assert installer.install_slack()

    assert runner.called("cp") == [
        ("cp", "-R", str(volumes / "Slack 4.27" / "Slack.app"), str(apps_config.applications_dir)),
    ]
    assert runner.called("detach") == [("hdiutil", "detach", str(volumes / "Slack 4.27"))]


def test_outlook_install_cleans_up_package(apps_config, macos, runner):
    def download(args):
        apps_config.downloads_dir.joinpath("OfficeInstaller.pkg").write_bytes(b"pkg")

    runner.on("curl", effect=download)

    assert SoftwareInstaller(apps_config, macos, runner).install_outlook()
    assert runner.called("installer")
    assert not (apps_config.downloads_dir / "OfficeInstaller.pkg").exists()


def test_homebrew_install_adds_shellenv_once(config, macos, runner, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin")
    installer = SoftwareInstaller(config, macos, runner)

    assert installer.ensure_homebrew()
    assert installer.ensure_homebrew()

    zprofile = (config.home / ".zprofile").read_text()
    assert zprofile.count('eval "$(/opt/homebrew/bin/brew shellenv)"') == 1
    assert os.environ["PATH"].startswith("/opt/homebrew/bin")


def test_unwritable_zprofile_is_not_fatal(config, macos, runner, monkeypatch, caplog):
    monkeypatch.setenv("PATH", "/usr/bin")
    (config.home / ".zprofile").mkdir(parents=True)

    assert not SoftwareInstaller(config, macos, runner).ensure_homebrew()
    assert "Add this line to it manually" in caplog.text
    assert not os.environ["PATH"].startswith("/opt/homebrew/bin")


def test_docker_install_on_linux(config, debian, runner):
    assert SoftwareInstaller(config, debian, runner).install_docker()
    assert runner.calls == [("sh", "-c", "curl -fsSL https://get.docker.com | sh")]
