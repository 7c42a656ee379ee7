"""
Credential and staging retrieval from the jump host.

rsync over ssh is the only transfer attempted. When it fails the
operator gets the manual copy procedure and the run stops.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from .errors import FilesystemError, MissingArtifactError, RemoteSyncError
from .runner import ProcessRunner

logger = logging.getLogger(__name__)

GOOGLE_SECRET = "google_secret.json"

SSH_SETUP = """This will require you generate ssh keys via:
    ssh-keygen -t rsa -b 2048
if you haven't already. Then:
    ssh-copy-id {user_host}
and provide password"""

KEY_COPY_SCRIPT = """#!/bin/bash

# Path to the directory you want to copy
SOURCE_DIR="root@airflow3.data:/usr/local/airflow/external-reporting-key"

# Destination path on the server
DESTINATION="{remote_path}"

# Using scp to transfer the folder. Note the use of -r for recursive copy.
scp -r $SOURCE_DIR $DESTINATION"""

STAGING_COPY_SCRIPT = """#!/bin/bash

# Path to the directory you want to copy
SECOND_SOURCE_DIR="root@airflow3.data:/root/bi_production_environment"

# Destination path on the server
SECOND_DESTINATION="{remote_path}"

# Using scp to transfer the folder. Note the use of -r for recursive copy.
scp -r $SECOND_SOURCE_DIR $SECOND_DESTINATION"""


def _split_remote(endpoint: str):
    """'user@host:/path/' -> ('user@host', '/path')"""
    user_host, _, path = endpoint.partition(":")
    return user_host, path.rstrip("/") or path


def remediation_text(endpoint: str, copy_script: str) -> str:
    user_host, remote_path = _split_remote(endpoint)
    return "\n".join([
        "Please set up and run the following script on your jump drive:",
        copy_script.format(remote_path=remote_path),
        "",
        SSH_SETUP.format(user_host=user_host),
    ])


class KeyRetriever:
    def __init__(self, config, runner: Optional[ProcessRunner] = None):
        self.config = config
        self.runner = runner or ProcessRunner()

    def retrieve_keys(self) -> None:
        """Mirror the key and staging folders, then place the Google secret"""
        self.config.key_dir.mkdir(parents=True, exist_ok=True)
        self.config.staging_dir.mkdir(parents=True, exist_ok=True)

        self._rsync(self.config.remote_key_dir, self.config.key_dir, "keys", KEY_COPY_SCRIPT)
        self._rsync(self.config.remote_staging_dir, self.config.staging_dir, "staging", STAGING_COPY_SCRIPT)
        self.position_google_secret()

    def _rsync(self, endpoint: str, local_dir: Path, label: str, copy_script: str) -> None:
        logger.info("Synchronizing %s from %s...", label, endpoint)
        result = self.runner.run(["rsync", "-avzhe", "ssh", endpoint, f"{local_dir}/"], stream=True)
        if not result.ok:
            raise RemoteSyncError(
                f"Failed to synchronize {label} with rsync: {result.describe()}",
                remediation_text(endpoint, copy_script),
            )

    def position_google_secret(self) -> Path:
        """Put google_secret.json where gspread_pandas looks for it"""
        secret = self.config.key_dir / GOOGLE_SECRET
        if not secret.is_file():
            raise MissingArtifactError(
                f"{secret} was not found after synchronizing keys",
                f"Check that {GOOGLE_SECRET} exists in {self.config.remote_key_dir} on the jump host.",
            )
        gspread_dir = self.config.gspread_dir
        try:
            gspread_dir.mkdir(parents=True, exist_ok=True)
            target = shutil.copy(secret, gspread_dir)
        except OSError as e:
            raise FilesystemError(
                f"Cannot place {GOOGLE_SECRET} in {gspread_dir}: {e}",
                f"mkdir -p {gspread_dir} && cp {secret} {gspread_dir}/",
            ) from e
        logger.info("Positioned %s for Google Sheets access", target)
        return Path(target)
