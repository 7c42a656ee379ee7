"""
Path localization for the production script tree.

Production scripts hard-code container paths (/key, /tmp/, ...). This
module rewrites those fragments to workstation paths, in place, across
every script under a directory.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from .errors import LocalizationError

logger = logging.getLogger(__name__)

DEFAULT_SUFFIXES = (".py", ".sh")

# Undecodable bytes survive a decode/encode round trip unchanged
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


@dataclass(frozen=True)
class PathRule:
    """Literal substring replacement, no pattern syntax"""
    search: str
    replace: str

    def __post_init__(self):
        if not self.search:
            raise ValueError("search fragment must not be empty")

    def apply(self, text: str) -> str:
        return text.replace(self.search, self.replace)


@dataclass
class LocalizeReport:
    scanned: int = 0
    changed: List[Path] = field(default_factory=list)
    failures: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def apply_rules(text: str, rules: Iterable[PathRule]) -> str:
    for rule in rules:
        text = rule.apply(text)
    return text


def localize_file(path: Path, rules: Sequence[PathRule]) -> bool:
    """Rewrite one file; returns True if its content changed"""
    raw = path.read_bytes()
    text = raw.decode(_ENCODING, errors=_ERRORS)
    updated = apply_rules(text, rules)
    if updated == text:
        return False
    path.write_bytes(updated.encode(_ENCODING, errors=_ERRORS))
    return True


def localize(root_dir, rules: Sequence[PathRule], suffixes: Sequence[str] = DEFAULT_SUFFIXES) -> LocalizeReport:
    """
    Apply path rules to every script file under root_dir.

    Args:
        root_dir: Directory tree to rewrite in place
        rules: Ordered rules; later rules see the output of earlier ones
        suffixes: File name endings that mark a script file

    Returns:
        LocalizeReport with per-file failures collected rather than raised
    """
    root = Path(root_dir)
    if not root.is_dir():
        raise LocalizationError(f"Script directory not found: {root}")

    suffixes = tuple(suffixes)
    report = LocalizeReport()

    def on_walk_error(err):
        report.failures.append((Path(err.filename or root), err.strerror or str(err)))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            if not name.endswith(suffixes):
                continue
            path = Path(dirpath) / name
            report.scanned += 1
            try:
                if localize_file(path, rules):
                    report.changed.append(path)
                    logger.debug("Localized %s", path)
            except OSError as e:
                logger.warning("Could not localize %s: %s", path, e)
                report.failures.append((path, e.strerror or str(e)))

    logger.info(
        "Localized %d of %d script files under %s",
        len(report.changed), report.scanned, root,
    )
    if report.failures:
        logger.warning("%d file(s) could not be localized:", len(report.failures))
        for path, reason in report.failures:
            logger.warning("  %s: %s", path, reason)
    return report
