import pytest

from etl_bootstrap.config import load_or_create_config
from etl_bootstrap.runner import EXIT_STATUS, OK, CommandResult, ProcessRunner
from etl_bootstrap.system import DARWIN, DEBIAN, LINUX, SystemInfo

GB = 1024 ** 3


class FakeRunner(ProcessRunner):
    """
    Records commands instead of running them.

    Rules match when every token appears in the command; the first
    unexhausted matching rule decides the result. Unmatched commands
    succeed with no output.
    """

    def __init__(self, installed=()):
        self.calls = []
        self.rules = []
        self.installed = {name: f"/usr/bin/{name}" for name in installed}

    def on(self, *tokens, returncode=0, stdout="", stderr="", times=None, effect=None):
        self.rules.append({
            "tokens": tokens, "returncode": returncode, "stdout": stdout,
            "stderr": stderr, "times": times, "effect": effect,
        })
        return self

    def run(self, args, *, cwd=None, env=None, stream=False):
        args = tuple(str(a) for a in args)
        self.calls.append(args)
        for rule in self.rules:
            if rule["times"] == 0:
                continue
            if all(token in args for token in rule["tokens"]):
                if rule["times"] is not None:
                    rule["times"] -= 1
                if rule["effect"]:
                    rule["effect"](args)
                reason = OK if rule["returncode"] == 0 else EXIT_STATUS
                return CommandResult(args, rule["returncode"], rule["stdout"], rule["stderr"], reason)
        return CommandResult(args, 0)

    def which(self, name):
        return self.installed.get(name)

    def called(self, *tokens):
        return [c for c in self.calls if all(t in c for t in tokens)]


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path, home):
    return load_or_create_config(tmp_path / "bootstrap.ini", home=home, user="tester")


@pytest.fixture
def macos():
    return SystemInfo(DARWIN, None, "arm64", "Apple M2", 16 * GB, 200 * GB)


@pytest.fixture
def debian():
    return SystemInfo(LINUX, DEBIAN, "x86_64", "AMD Ryzen 5 4600H", 8 * GB, 100 * GB)
