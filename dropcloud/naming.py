"""Droplet names that attribute a droplet to its pool and template.

Every droplet created by dropcloud is named
``jenkins-<pool>-<template>-<uuid>``. Pool and template names are restricted
to ``[A-Za-z0-9.]`` so the ``-`` delimiter can never appear inside a field,
which keeps the match below unambiguous. No other state is needed to tell
which pool owns a droplet found in the provider's inventory.
"""

from __future__ import annotations

import re
import uuid

from dropcloud.constants import DROPLET_PREFIX

_NAME_REGEX = r"([a-zA-Z0-9.]+)"
_UUID_REGEX = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

_NAME_PATTERN = re.compile(f"^{_NAME_REGEX}$")
_DROPLET_PATTERN = re.compile(
    f"^{DROPLET_PREFIX}-{_NAME_REGEX}-{_NAME_REGEX}-{_UUID_REGEX}$"
)


def is_valid_cloud_name(name: str) -> bool:
    return bool(_NAME_PATTERN.match(name))


def is_valid_template_name(name: str) -> bool:
    return bool(_NAME_PATTERN.match(name))


def generate_droplet_name(cloud_name: str, template_name: str) -> str:
    """Build a fresh droplet name for a template of a pool."""
    return f"{DROPLET_PREFIX}-{cloud_name}-{template_name}-{uuid.uuid4()}"


def parse_droplet_name(droplet_name: str | None) -> tuple[str, str] | None:
    """Return ``(cloud, template)`` for a dropcloud name, None for anything else."""
    if not droplet_name:
        return None
    m = _DROPLET_PATTERN.match(droplet_name)
    if m is None:
        return None
    return m.group(1), m.group(2)


def is_instance_of_cloud(droplet_name: str | None, cloud_name: str) -> bool:
    parsed = parse_droplet_name(droplet_name)
    return parsed is not None and parsed[0] == cloud_name


def is_instance_of_template(droplet_name: str | None, cloud_name: str, template_name: str) -> bool:
    return parse_droplet_name(droplet_name) == (cloud_name, template_name)


__all__ = [
    "generate_droplet_name",
    "is_instance_of_cloud",
    "is_instance_of_template",
    "is_valid_cloud_name",
    "is_valid_template_name",
    "parse_droplet_name",
]
