"""ETL repository clone/update with a single HTTPS -> SSH fallback."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .errors import RepositoryError
from .runner import CommandResult, ProcessRunner

logger = logging.getLogger(__name__)

HTTPS = "https"
SSH = "ssh"


def ssh_key_instructions() -> str:
    return "\n".join([
        "If you encounter an error or if Git prompts for a username, you may need to set up SSH keys.",
        'To generate a new SSH key, run: ssh-keygen -t ed25519 -C "your_email@example.com"',
        'Ensure you replace "your_email@example.com" with your actual email address.',
        'To start the ssh-agent run: eval "$(ssh-agent -s)"',
        "Add your private key to the ssh-agent by running: ssh-add ~/.ssh/id_ed25519",
        "Copy the key to your clipboard by running: pbcopy < ~/.ssh/id_ed25519.pub (macOS) "
        "or xclip -sel clip < ~/.ssh/id_ed25519.pub (Linux)",
        "Navigate to your GitHub account. Under settings, select SSH and GPG Keys",
        "Select New SSH Key, and paste in your key under the 'key' box, and provide a title.",
        "Click Add SSH key. Restart your terminal, and run this script again.",
    ])


class RepositorySync:
    """
    Clone or update the ETL checkout.

    The first attempt uses the HTTPS remote. If it fails, the remote is
    switched to SSH and the operation is tried exactly once more.
    """

    def __init__(self, checkout: Path, https_url: str, ssh_url: str, branch: str = "master",
                 runner: Optional[ProcessRunner] = None):
        self.checkout = Path(checkout)
        self.https_url = https_url
        self.ssh_url = ssh_url
        self.branch = branch
        self.runner = runner or ProcessRunner()
        self.transport = HTTPS

    @classmethod
    def from_config(cls, config, runner=None) -> "RepositorySync":
        return cls(config.etl_dir, config.git_https_url, config.git_ssh_url, config.git_branch, runner)

    @property
    def exists(self) -> bool:
        return (self.checkout / ".git").exists()

    def update(self) -> str:
        """Returns the transport that finally succeeded"""
        if not self.exists:
            logger.info("ETL directory does not exist. Cloning from Git repository...")
            self._with_ssh_fallback(self._clone, "clone")
        else:
            logger.info("ETL directory exists. Updating from Git repository...")
            self._with_ssh_fallback(self._fetch, "fetch updates from")
            self._reset()
        logger.info("ETL repository is at origin/%s (%s)", self.branch, self.transport)
        return self.transport

    def _with_ssh_fallback(self, attempt, action: str) -> None:
        result = attempt()
        if result.ok:
            return

        logger.warning("Failed to %s the Git repository over %s: %s", action, self.transport, result.describe())
        logger.warning("%s", ssh_key_instructions())
        self.switch_to_ssh()

        result = attempt()
        if not result.ok:
            raise RepositoryError(
                f"Failed to {action} the Git repository even after switching to SSH: {result.describe()}",
                ssh_key_instructions(),
            )

    def switch_to_ssh(self) -> None:
        logger.info("Setting Git remote URL to use SSH...")
        self.transport = SSH
        if self.exists:
            result = self.runner.run(["git", "-C", str(self.checkout), "remote", "set-url", "origin", self.ssh_url])
            if not result.ok:
                raise RepositoryError(
                    f"Could not switch the Git remote to SSH: {result.describe()}",
                    f"git -C {self.checkout} remote set-url origin {self.ssh_url}",
                )
        logger.info("Git remote URL has been updated to use SSH.")

    def _clone(self) -> CommandResult:
        url = self.ssh_url if self.transport == SSH else self.https_url
        self.checkout.parent.mkdir(parents=True, exist_ok=True)
        return self.runner.run(["git", "clone", url, str(self.checkout)], stream=True)

    def _fetch(self) -> CommandResult:
        return self.runner.run(["git", "-C", str(self.checkout), "fetch", "origin"], stream=True)

    def _reset(self) -> None:
        result = self.runner.run(["git", "-C", str(self.checkout), "reset", "--hard", f"origin/{self.branch}"])
        if not result.ok:
            raise RepositoryError(
                f"Failed to reset the ETL checkout to origin/{self.branch}: {result.describe()}",
                f"cd {self.checkout} && git status",
            )
