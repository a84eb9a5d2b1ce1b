# config_parser.py

"""Parsing of guest and node configuration text.

Proxmox keeps free-form notes as ``#`` comment lines at the top of a guest or
node config. This tool reads ``key=value`` pairs from those lines to learn
migration constraints (``nomigrate``, ``hostcpumodel``, ``withvm``,
``without``) and host flags (``hostprovision``, ``hoststate``). Parsing never
raises: malformed input yields empty metadata or a zero size.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .config import GIB, HOST_STATE_UNSET

logger = logging.getLogger(__name__)

DISK_KEY_RE = re.compile(r"^(?:(?:scsi|ide|virtio|sata|efidisk|tpmstate|mp)\d+|rootfs)$")
DISK_SIZE_RE = re.compile(r"size=(\d+)([KMGT]?)")
PAIR_START_RE = re.compile(r"^\s*[A-Za-z0-9_.-]+\s*=")

UNIT_MULTIPLIERS = {
    "K": 1024,
    "M": 1024 ** 2,
    "G": GIB,
    "T": 1024 ** 4,
    "": GIB,  # Sizes without a unit are written in gigabytes
}


@dataclass
class GuestConfigMeta:
    """Metadata extracted from one guest config."""
    meta: Dict[str, str] = field(default_factory=dict)
    creation_time: int = 0

    @property
    def no_migrate(self) -> bool:
        return self.meta.get("nomigrate", "").lower() == "true"

    @property
    def host_cpu_model(self) -> str:
        return self.meta.get("hostcpumodel", "").strip()

    @property
    def with_vms(self) -> List[str]:
        return split_names(self.meta.get("withvm", ""))

    @property
    def without_vms(self) -> List[str]:
        return split_names(self.meta.get("without", ""))


def split_names(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def parse_comment_pairs(comment: str) -> Dict[str, str]:
    """Parse ``k1=v1,k2=v2`` from a comment body.

    A comma-separated chunk without ``=`` continues the previous value, so
    ``withvm=a,b,nomigrate=true`` keeps both names under ``withvm``.
    """
    pairs: Dict[str, str] = {}
    last_key = None
    for chunk in comment.split(","):
        if PAIR_START_RE.match(chunk):
            key, value = chunk.split("=", 1)
            last_key = key.strip().lower()
            pairs[last_key] = value.strip()
        elif last_key is not None and chunk.strip():
            pairs[last_key] = f"{pairs[last_key]},{chunk.strip()}"
    return pairs


def _config_lines(text: str):
    """Yield stripped lines of the current config, stopping at snapshot sections."""
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("["):
            break
        yield line


def parse_comment_meta(text: str) -> Dict[str, str]:
    """Collect key=value pairs from every comment line."""
    meta: Dict[str, str] = {}
    for line in _config_lines(text or ""):
        if line.startswith("#") and "=" in line:
            meta.update(parse_comment_pairs(line[1:]))
    return meta


def parse_guest_config(text: str) -> GuestConfigMeta:
    """Parse comment metadata and the creation time of a guest config."""
    result = GuestConfigMeta()
    for line in _config_lines(text or ""):
        if line.startswith("#"):
            if "=" in line:
                result.meta.update(parse_comment_pairs(line[1:]))
            continue
        if line.startswith("meta:"):
            for key, value in parse_comment_pairs(line[len("meta:"):]).items():
                if key == "ctime":
                    try:
                        result.creation_time = int(value)
                    except ValueError:
                        logger.debug(f"Ignoring malformed ctime {value!r}")
    return result


def parse_node_config(text: str) -> Dict[str, str]:
    return parse_comment_meta(text)


def node_allows_provisioning(meta: Mapping[str, str]) -> bool:
    return meta.get("hostprovision", "").lower() == "true"


def node_host_state(meta: Mapping[str, str]) -> int:
    value = meta.get("hoststate")
    if value is None:
        return HOST_STATE_UNSET
    try:
        state = int(value)
    except ValueError:
        logger.debug(f"Ignoring malformed hoststate {value!r}")
        return HOST_STATE_UNSET
    return state if 0 <= state <= 3 else HOST_STATE_UNSET


def disk_size_from_value(value: str) -> int:
    """Size in bytes of one disk attachment value, 0 for removable media."""
    value = value.strip()
    if value == "none" or "media=cdrom" in value:
        return 0
    match = DISK_SIZE_RE.search(value)
    if not match:
        return 0
    return int(match.group(1)) * UNIT_MULTIPLIERS[match.group(2)]


def parse_disk_sizes_from_text(text: str) -> int:
    """Sum allocated disk sizes declared in raw config text."""
    total = 0
    for line in _config_lines(text or ""):
        if line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        if DISK_KEY_RE.match(key.strip()):
            total += disk_size_from_value(value)
    return total


def parse_disk_sizes_from_config(config: Mapping[str, Any]) -> int:
    """Sum allocated disk sizes from a decoded config mapping."""
    total = 0
    for key, value in (config or {}).items():
        if DISK_KEY_RE.match(str(key)) and isinstance(value, str):
            total += disk_size_from_value(value)
    return total


def render_config_text(config: Mapping[str, Any]) -> str:
    """Rebuild config file text from a decoded config mapping.

    The API returns comment lines folded into ``description``; they are written
    back as ``#`` lines so both transports feed the same parser.
    """
    lines = []
    description = config.get("description") or ""
    for line in str(description).splitlines():
        lines.append(f"#{line}")
    for key in sorted(config):
        if key in ("description", "digest"):
            continue
        lines.append(f"{key}: {config[key]}")
    return "\n".join(lines) + "\n"
