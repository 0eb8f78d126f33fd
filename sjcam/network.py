# sjcam/network.py
import logging
import socket
from typing import Optional

import netifaces

logger = logging.getLogger(__name__)


def find_interface_address(subnet_prefix: str) -> Optional[str]:
    """Finds the interface IP connected to the camera network"""
    for iface in netifaces.interfaces():
        addrs = netifaces.ifaddresses(iface)
        if netifaces.AF_INET in addrs:
            for link in addrs[netifaces.AF_INET]:
                ip = link.get('addr')
                if ip and ip.startswith(subnet_prefix):
                    logger.debug(f"[NETWORK] {iface} has camera subnet address {ip}")
                    return ip
    return None


def find_local_address(camera_ip: str, subnet_prefix: str) -> str:
    """
    Local IPv4 address the camera should send file data to.

    Prefers an interface inside the camera subnet. Otherwise asks the OS which
    source address it would route to the camera with (no packet is sent).
    """
    local_ip = find_interface_address(subnet_prefix)
    if local_ip:
        return local_ip

    logger.warning(f"[NETWORK] No interface in {subnet_prefix}x range, asking routing table")
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect((camera_ip, 80))
            local_ip = probe.getsockname()[0]
    except OSError as e:
        raise ConnectionError(f"No network route to camera {camera_ip}: {e}") from e

    if not local_ip or local_ip == "0.0.0.0":
        raise ConnectionError(f"No network route to camera {camera_ip}")
    return local_ip
