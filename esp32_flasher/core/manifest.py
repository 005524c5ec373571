"""
Firmware Manifest
=================

Parses the remote device catalog into :class:`DeviceDescriptor` records.

The catalog is a JSON object mapping a category name to a list of
``{"id": ..., "name": ...}`` records.  Parsing is best effort: anything that
does not fit that shape is skipped so the user can always retry.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceDescriptor:
    """A flashable device listed in the manifest."""
    id: str
    display_name: str
    category: str = "Device"

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'name': self.display_name,
            'category': self.category,
        }


def _descriptor_from_record(record: Any, category: str):
    if not isinstance(record, dict):
        return None
    device_id = record.get('id')
    name = record.get('name')
    if not isinstance(device_id, str) or not isinstance(name, str):
        return None
    device_id = device_id.strip()
    if not device_id:
        return None
    return DeviceDescriptor(id=device_id, display_name=name.strip(), category=category)


def parse_manifest(document: str) -> List[DeviceDescriptor]:
    """Parse a manifest document.

    Records are returned in document order.  Duplicate ids are all kept;
    deduplication, if wanted, is left to whoever renders the list.
    Malformed input yields an empty list rather than an exception.
    """
    if not document or not document.strip():
        return []

    try:
        data = json.loads(document)
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed manifest: {e}")
        return []

    if not isinstance(data, dict):
        logger.warning("Manifest is not a JSON object, ignoring")
        return []

    devices: List[DeviceDescriptor] = []
    for category, records in data.items():
        if not isinstance(records, list):
            logger.debug(f"Skipping manifest category {category!r}: not a list")
            continue
        for record in records:
            descriptor = _descriptor_from_record(record, str(category))
            if descriptor is None:
                logger.debug(f"Skipping manifest record in {category!r}: {record!r}")
                continue
            devices.append(descriptor)

    logger.debug(f"Parsed {len(devices)} devices from manifest")
    return devices


def fetch_manifest(url: str, downloader: Callable[[str], bytes]) -> List[DeviceDescriptor]:
    """Download the manifest at *url* and parse it.

    Network failures are logged and produce an empty list, the same as an
    empty catalog.
    """
    try:
        raw = downloader(url)
    except (requests.RequestException, OSError) as e:
        logger.error(f"Failed to download manifest from {url}: {e}")
        return []
    return parse_manifest(raw.decode('utf-8', errors='replace'))


__all__ = ["DeviceDescriptor", "parse_manifest", "fetch_manifest"]
