"""
Host detection
- Operating system and Linux distribution family
- CPU architecture and brand (py-cpuinfo)
- Memory and free disk space (psutil)
"""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import cpuinfo
import psutil

from .errors import UnsupportedPlatformError

logger = logging.getLogger(__name__)

GB = 1024 ** 3

DARWIN = "Darwin"
LINUX = "Linux"
DEBIAN = "debian"
REDHAT = "redhat"

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "arm64",
    "aarch64": "aarch64",
}


@dataclass(frozen=True)
class SystemInfo:
    system: str
    distribution: Optional[str]
    arch: str
    cpu_brand: str
    total_memory: int  # bytes
    free_disk: int  # bytes, filesystem holding the home directory

    @property
    def is_macos(self) -> bool:
        return self.system == DARWIN

    @property
    def is_linux(self) -> bool:
        return self.system == LINUX


def detect_distribution(root="/") -> Optional[str]:
    """Linux distribution family, judged by its release marker files"""
    root = Path(root)
    if (root / "etc" / "debian_version").is_file():
        return DEBIAN
    if (root / "etc" / "redhat-release").is_file():
        return REDHAT
    return None


def normalize_arch(raw: str) -> str:
    return _ARCH_ALIASES.get(raw.lower(), raw)


def detect_system(home=None) -> SystemInfo:
    """Collect the host facts the install steps branch on"""
    system = platform.system()
    info = cpuinfo.get_cpu_info()
    raw_arch = info.get("arch_string_raw") or platform.machine()
    home = Path(home) if home else Path.home()

    return SystemInfo(
        system=system,
        distribution=detect_distribution() if system == LINUX else None,
        arch=normalize_arch(raw_arch),
        cpu_brand=info.get("brand_raw", "unknown"),
        total_memory=psutil.virtual_memory().total,
        free_disk=psutil.disk_usage(os.fspath(home)).free,
    )


def miniconda_installer_name(info: SystemInfo) -> str:
    if info.is_macos:
        os_name = "MacOSX"
    elif info.is_linux:
        os_name = "Linux"
    else:
        raise UnsupportedPlatformError(
            f"No Miniconda installer for platform {info.system}",
            "Install Anaconda or Miniconda manually, then run this script again.",
        )
    return f"Miniconda3-latest-{os_name}-{info.arch}.sh"


def run_system_checks(info: SystemInfo, min_memory_gb: float, min_free_disk_gb: float) -> List[str]:
    """Log warnings for resource shortfalls; never fails the run"""
    warnings = []

    mem_gb = info.total_memory / GB
    if mem_gb < min_memory_gb:
        warnings.append(f"Only {mem_gb:.1f}GB RAM available - the production image and R may struggle")

    disk_gb = info.free_disk / GB
    if disk_gb < min_free_disk_gb:
        warnings.append(f"Only {disk_gb:.1f}GB free disk - image pulls and the conda environment may not fit")

    if info.system not in (DARWIN, LINUX):
        warnings.append(f"Platform {info.system} is not supported by most setup steps")

    for message in warnings:
        logger.warning("WARNING: %s", message)

    logger.info("System summary:")
    logger.info("  OS: %s%s", info.system, f" ({info.distribution})" if info.distribution else "")
    logger.info("  CPU: %s [%s]", info.cpu_brand, info.arch)
    logger.info("  RAM: %.2f GB", mem_gb)
    logger.info("  Free disk: %.2f GB", disk_gb)
    return warnings
