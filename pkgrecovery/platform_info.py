"""
Platform detection.

Supplies the coarse platform hint used to filter error patterns, and maps a
hint to the package manager family the fix interpreter should drive.
"""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

OS_RELEASE_PATH = Path("/etc/os-release")

# Known platform ids, checked in order against ID then ID_LIKE
KNOWN_PLATFORMS = ("ubuntu", "debian", "fedora", "rhel", "centos", "arch")

PLATFORM_FAMILIES = {
    "ubuntu": "apt",
    "debian": "apt",
    "linuxmint": "apt",
    "pop": "apt",
    "fedora": "dnf",
    "rhel": "dnf",
    "centos": "dnf",
    "rocky": "dnf",
    "almalinux": "dnf",
    "arch": "pacman",
    "manjaro": "pacman",
    "endeavouros": "pacman",
}

# Fallback detection when the platform is unknown
_FAMILY_EXECUTABLES = (("apt-get", "apt"), ("dnf", "dnf"), ("yum", "dnf"), ("pacman", "pacman"))


def read_os_release(path: Path = OS_RELEASE_PATH) -> dict[str, str]:
    """Parse an os-release file into a dict. Missing file gives {}."""
    info: dict[str, str] = {}
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                info[key] = value.strip("\"'")
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
    return info


def detect_platform(path: Path = OS_RELEASE_PATH) -> str | None:
    """Return a coarse platform id such as "ubuntu" or "arch", or None."""
    info = read_os_release(path)
    distro_id = info.get("ID", "").lower()
    if distro_id in PLATFORM_FAMILIES:
        return distro_id

    like = info.get("ID_LIKE", "").lower().split()
    for candidate in KNOWN_PLATFORMS:
        if candidate in like:
            return candidate

    if distro_id:
        logger.debug("Unrecognized distribution id: %s", distro_id)
    return None


def package_manager_family(platform_hint: str | None) -> str | None:
    """Map a platform hint to "apt", "dnf" or "pacman".

    Unknown hints fall back to whichever package manager is on PATH.
    """
    if platform_hint:
        family = PLATFORM_FAMILIES.get(platform_hint.lower())
        if family:
            return family

    for executable, family in _FAMILY_EXECUTABLES:
        if shutil.which(executable):
            return family
    return None
