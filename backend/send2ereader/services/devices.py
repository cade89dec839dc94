"""Coarse device classification from the User-Agent string."""

from __future__ import annotations

from enum import Enum


class DeviceClass(str, Enum):
    """Drives both conversion policy and download delivery."""

    KINDLE = "kindle"
    KOBO = "kobo"
    GENERIC = "generic"


def classify_device(agent: str | None) -> DeviceClass:
    agent = agent or ""
    if "Kindle" in agent:
        return DeviceClass.KINDLE
    if "Kobo" in agent:
        return DeviceClass.KOBO
    return DeviceClass.GENERIC


def is_ereader(agent: str | None) -> bool:
    """True for browsers that should land on the receiving page."""
    agent = agent or ""
    return (
        "Kobo" in agent
        or "Kindle" in agent
        or "tolino" in agent.lower()
        or "eReader" in agent
    )
