"""
Device ID generation and management.
Ensures each display device has a stable identifier across restarts.
"""

import platform
import socket
import uuid
from pathlib import Path


def get_or_create_device_id(config_path: str = "data/device_id.txt") -> str:
    """
    Get existing device ID or create a new one.

    Device ID is stored persistently so it survives reboots and
    registration resets.
    """
    id_file = Path(config_path)

    if id_file.exists():
        with open(id_file, 'r') as f:
            device_id = f.read().strip()
            if device_id:
                return device_id

    device_id = f"signage-{uuid.uuid4().hex[:16]}"

    id_file.parent.mkdir(parents=True, exist_ok=True)
    with open(id_file, 'w') as f:
        f.write(device_id)

    return device_id


def get_mac_address() -> str:
    """Format the host MAC address as aa:bb:cc:dd:ee:ff."""
    node = uuid.getnode()
    return ':'.join('{:02x}'.format((node >> shift) & 0xff)
                    for shift in range(40, -1, -8))


def get_device_info(device_id: str) -> dict:
    """
    Describe this host for the registration request body.
    """
    return {
        "device_id": device_id,
        "hostname": socket.gethostname(),
        "mac_address": get_mac_address(),
        "platform": platform.system(),
        "platform_release": platform.release(),
        "machine": platform.machine(),
    }
