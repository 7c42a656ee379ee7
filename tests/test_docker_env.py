import json

import pytest

from etl_bootstrap.docker_env import PULLED, UP_TO_DATE, UPDATED, DockerImage, engine_config_text
from etl_bootstrap.errors import CommandFailedError

IMAGE = "airflow.ad.net:5000/ad.net/report-script-file:latest"


def image(runner):
    return DockerImage(IMAGE, runner, insecure_registry="https://airflow.ad.net:5000")


def test_first_pull(runner):
    runner.on("inspect", returncode=1, times=1)
    runner.on("inspect", stdout="sha256:new\n")

    assert image(runner).pull() == PULLED
    assert runner.called("pull") == [("docker", "pull", IMAGE)]


def test_pull_without_change(runner):
    runner.on("inspect", stdout="sha256:same\n")

    assert image(runner).pull() == UP_TO_DATE


def test_pull_with_new_image(runner):
    runner.on("inspect", stdout="sha256:old\n", times=1)
    runner.on("inspect", stdout="sha256:new\n")

    assert image(runner).pull() == UPDATED


def test_failed_pull_explains_engine_configuration(runner):
    runner.on("pull", returncode=1, stderr="http: server gave HTTP response to HTTPS client")

    with pytest.raises(CommandFailedError) as info:
        image(runner).pull()

    assert '"insecure-registries"' in info.value.remediation
    assert "https://airflow.ad.net:5000" in info.value.remediation


def test_engine_config_lists_registry():
    config = json.loads(engine_config_text("https://registry:5000"))

    assert config["insecure-registries"] == ["https://registry:5000"]
    assert config["features"]["buildkit"] is True


def test_run_args(runner):
    img = image(runner)

    assert img.run_args("python", "--version") == [
        "docker", "run", "--rm", "--platform", "linux/amd64", IMAGE, "python", "--version",
    ]
    assert img.run_args("tail", "-f", "/dev/null", volume="/tmp/x:/data", detach=True) == [
        "docker", "run", "-d", "--rm", "--platform", "linux/amd64", "-v", "/tmp/x:/data", IMAGE,
        "tail", "-f", "/dev/null",
    ]


def test_from_config(config, runner):
    img = DockerImage.from_config(config, runner)

    assert img.image == IMAGE
    assert img.platform == "linux/amd64"
