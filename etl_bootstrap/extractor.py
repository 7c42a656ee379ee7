"""
Payload extraction from shell wrappers.

Production report scripts are shell files that carry a Python or R
program inline, either as a here-document captured into a variable:

    SCRIPT=$(cat <<EOF
    print(\\"hi\\")
    EOF
    )
    python3 -c "$SCRIPT"

or as a multi-line quoted assignment:

    r_script="
    x <- \\$value
    "
    Rscript -e "$r_script"

Each embedded program is written out as a standalone .py or .R file
with the quoting applied for the shell undone.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import ExtractionError

logger = logging.getLogger(__name__)

PYTHON = "python"
R = "r"
SHELL_SUFFIX = ".sh"

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"

# Embedding styles
HEREDOC = "heredoc"
QUOTED_ASSIGNMENT = "quoted-assignment"
NO_EMBEDDING = "none"

# Scanner states
SCANNING = "scanning"
INSIDE_HEREDOC = "inside-heredoc"
INSIDE_QUOTED_BLOCK = "inside-quoted-block"

HEREDOC_OPEN = re.compile(
    r"""^\s*(?:export\s+|local\s+)?(?P<name>[A-Za-z_]\w*)=\s*\$\(\s*cat\s*<<-?\s*(?P<quote>['"]?)(?P<tag>\w+)(?P=quote)"""
)
QUOTED_OPEN = re.compile(r'^\s*(?:export\s+|local\s+)?(?P<name>[A-Za-z_]\w*)="(?P<rest>.*)$')


@dataclass(frozen=True)
class PayloadKind:
    """An embedded language: how it is invoked, unescaped and saved"""
    name: str
    extension: str
    markers: Tuple[str, ...]
    unescapes: Tuple[Tuple[str, str], ...]

    def invoked_on(self, line: str) -> bool:
        return any(marker in line for marker in self.markers)

    def unescape(self, text: str) -> str:
        for escaped, literal in self.unescapes:
            text = text.replace(escaped, literal)
        return text


PYTHON_KIND = PayloadKind(
    name=PYTHON,
    extension=".py",
    markers=("python3 -c", "python -c"),
    unescapes=(('\\"', '"'),),
)
# R interpolates $, so escaped dollars must be restored as well
R_KIND = PayloadKind(
    name=R,
    extension=".R",
    markers=("Rscript -",),
    unescapes=(('\\"', '"'), ("\\$", "$")),
)
KINDS: Dict[str, PayloadKind] = {PYTHON: PYTHON_KIND, R: R_KIND}


@dataclass(frozen=True)
class EmbeddedBlock:
    style: str
    variable: str
    line: int
    body: Tuple[str, ...]
    terminated: bool

    def text(self) -> str:
        return "\n".join(self.body) + "\n" if self.body else ""


@dataclass(frozen=True)
class Payload:
    source: Path
    kind: PayloadKind
    text: str
    destination: Path


@dataclass(frozen=True)
class DestinationSet:
    """Where payloads and the shared helper tree are materialized, per kind"""
    payload_dirs: Dict[str, Path]
    helper_dirs: Dict[str, Tuple[Path, ...]]

    def all_helper_dirs(self) -> List[Path]:
        return [d for dirs in self.helper_dirs.values() for d in dirs]


def _has_unescaped_quote(text: str) -> bool:
    backslashes = 0
    for ch in text:
        if ch == "\\":
            backslashes += 1
            continue
        if ch == '"' and backslashes % 2 == 0:
            return True
        backslashes = 0
    return False


def scan_blocks(lines: Sequence[str]) -> Tuple[List[EmbeddedBlock], List[str]]:
    """
    Split shell source into embedded blocks and the lines outside them.

    A block left open at end of input is returned with terminated=False.
    """
    blocks: List[EmbeddedBlock] = []
    outside: List[str] = []

    state = SCANNING
    variable = tag = ""
    start = 0
    body: List[str] = []

    for number, line in enumerate(lines, start=1):
        if state == SCANNING:
            match = HEREDOC_OPEN.match(line)
            if match:
                state, variable, tag, start, body = INSIDE_HEREDOC, match["name"], match["tag"], number, []
                continue
            match = QUOTED_OPEN.match(line)
            if match and not _has_unescaped_quote(match["rest"]):
                state, variable, start, body = INSIDE_QUOTED_BLOCK, match["name"], number, []
                continue
            outside.append(line)

        elif state == INSIDE_HEREDOC:
            # "EOF)" closes the inline $(cat <<EOF ... EOF) form
            if line.strip() in (tag, tag + ")"):
                blocks.append(EmbeddedBlock(HEREDOC, variable, start, tuple(body), True))
                state = SCANNING
            else:
                body.append(line)

        elif state == INSIDE_QUOTED_BLOCK:
            if line.strip() == '"':
                blocks.append(EmbeddedBlock(QUOTED_ASSIGNMENT, variable, start, tuple(body), True))
                state = SCANNING
            else:
                body.append(line)

    if state != SCANNING:
        style = HEREDOC if state == INSIDE_HEREDOC else QUOTED_ASSIGNMENT
        blocks.append(EmbeddedBlock(style, variable, start, tuple(body), False))

    return blocks, outside


def _references(line: str, variable: str) -> bool:
    return re.search(r"\$\{?" + re.escape(variable) + r"\b", line) is not None


class ScriptFile:
    """A shell wrapper and the blocks embedded in it"""

    def __init__(self, path: Path, text: str):
        self.path = Path(path)
        self.text = text
        self.blocks, self.outside = scan_blocks(text.splitlines())

    @classmethod
    def read(cls, path) -> "ScriptFile":
        path = Path(path)
        return cls(path, path.read_bytes().decode(_ENCODING, errors=_ERRORS))

    @property
    def base_name(self) -> str:
        name = self.path.name
        return name[: -len(SHELL_SUFFIX)] if name.endswith(SHELL_SUFFIX) else self.path.stem

    def invokes(self, kind: PayloadKind) -> bool:
        return any(kind.invoked_on(line) for line in self.outside)

    def _referenced_by(self, kind: PayloadKind) -> Set[str]:
        marker_lines = [line for line in self.outside if kind.invoked_on(line)]
        return {
            block.variable
            for block in self.blocks
            if any(_references(line, block.variable) for line in marker_lines)
        }

    def block_for(self, kind: PayloadKind) -> Optional[EmbeddedBlock]:
        """The block holding this kind's program, if the file runs one"""
        if not self.invokes(kind):
            return None

        referenced = self._referenced_by(kind)
        for block in self.blocks:
            if block.variable in referenced:
                return block

        # Marker line names no block; take the first one no other kind claims
        claimed: Set[str] = set()
        for other in KINDS.values():
            if other is not kind and self.invokes(other):
                claimed |= self._referenced_by(other)
        for block in self.blocks:
            if block.variable not in claimed:
                return block
        return None

    def style(self, kind: PayloadKind) -> str:
        block = self.block_for(kind)
        return block.style if block else NO_EMBEDDING

    def payload(self, kind: PayloadKind, dest_dir: Path) -> Optional[Payload]:
        block = self.block_for(kind)
        if block is None:
            return None
        if not block.terminated:
            logger.warning(
                "Skipping %s payload in %s: %s block opened on line %d is never closed",
                kind.name, self.path, block.style, block.line,
            )
            return None
        destination = Path(dest_dir) / f"{self.base_name}{kind.extension}"
        return Payload(self.path, kind, kind.unescape(block.text()), destination)


def _reset_dir(path: Path) -> None:
    try:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
    except OSError as e:
        raise ExtractionError(f"Cannot recreate destination directory {path}: {e}") from e


def _shell_files(source: Path) -> List[Path]:
    if not source.is_dir():
        raise ExtractionError(f"Script source directory not found: {source}")
    try:
        return sorted(p for p in source.iterdir() if p.name.endswith(SHELL_SUFFIX) and p.is_file())
    except OSError as e:
        raise ExtractionError(f"Cannot read script source directory {source}: {e}") from e


def extract(source_dir, dest_dirs: Mapping[str, Path]) -> List[Payload]:
    """
    Extract embedded programs from every shell file directly in source_dir.

    Args:
        source_dir: Directory holding the *.sh wrappers
        dest_dirs: Output directory per kind name ("python", "r"); each is
            deleted and recreated before anything is written

    Returns:
        The payloads written, in source file order
    """
    source = Path(source_dir)
    files = _shell_files(source)

    targets = {KINDS[name]: Path(path) for name, path in dest_dirs.items()}
    for path in targets.values():
        _reset_dir(path)

    written: List[Payload] = []
    for path in files:
        try:
            script = ScriptFile.read(path)
        except OSError as e:
            logger.warning("Skipping unreadable script %s: %s", path, e)
            continue

        for kind, dest_dir in targets.items():
            payload = script.payload(kind, dest_dir)
            if payload is None:
                continue
            try:
                payload.destination.write_bytes(payload.text.encode(_ENCODING, errors=_ERRORS))
            except OSError as e:
                raise ExtractionError(f"Cannot write {payload.destination}: {e}") from e
            logger.debug("Extracted %s payload: %s -> %s", kind.name, path.name, payload.destination)
            written.append(payload)

    for kind in targets:
        count = sum(1 for p in written if p.kind is kind)
        logger.info("Extracted %d %s script(s) from %s", count, kind.name, source)
    return written


def replicate_helpers(helpers_dir, destinations: Iterable[Path]) -> None:
    """Copy the shared helper tree, verbatim, into each destination"""
    helpers = Path(helpers_dir)
    if not helpers.is_dir():
        raise ExtractionError(f"Helper directory not found: {helpers}")

    for dest in destinations:
        dest = Path(dest)
        try:
            if dest.exists():
                shutil.rmtree(dest)
            shutil.copytree(helpers, dest)
        except OSError as e:
            raise ExtractionError(f"Cannot copy helpers to {dest}: {e}") from e
        logger.debug("Copied %s -> %s", helpers, dest)


class PayloadExtractor:
    """Produces the per-language script folders from the production tree"""

    def __init__(self, source_dir, destinations: DestinationSet, helpers_dir=None):
        self.source_dir = Path(source_dir)
        self.destinations = destinations
        self.helpers_dir = Path(helpers_dir) if helpers_dir is not None else None

    @classmethod
    def from_config(cls, config) -> "PayloadExtractor":
        return cls(config.scripts_dir, config.destination_set(), config.helpers_dir)

    def run(self) -> List[Payload]:
        payloads = extract(self.source_dir, self.destinations.payload_dirs)
        if self.helpers_dir is not None:
            replicate_helpers(self.helpers_dir, self.destinations.all_helper_dirs())
        logger.info("Python/R script extraction complete")
        return payloads
