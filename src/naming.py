"""
Revision naming.

Revision names are a deterministic function of the package name and the
content identity of its source, so repeated passes over the same content
always land on the same revision.
"""

import re

MAX_NAME_LENGTH = 63
MAX_PACKAGE_PART_LENGTH = 50
IDENTITY_LENGTH = 12

_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")


def to_dns_label(value: str) -> str:
    """Lowercase, replace invalid characters with '-', trim to 63 characters."""
    label = _INVALID_CHARS.sub("-", value.lower())
    return label[:MAX_NAME_LENGTH].strip("-")


def revision_name(package_name: str, identity: str) -> str:
    """
    Build the revision name for a package and a content identity.

    Args:
        package_name: Name of the owning package.
        identity: Content identity, usually a digest hex string.

    Returns:
        ``<package>-<identity prefix>``, a valid DNS label.
    """
    package_part = package_name[:MAX_PACKAGE_PART_LENGTH].rstrip("-")
    return to_dns_label(f"{package_part}-{identity[:IDENTITY_LENGTH]}")
