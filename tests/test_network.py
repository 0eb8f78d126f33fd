# tests/test_network.py
from unittest.mock import MagicMock, patch

import pytest

from sjcam import network


def fake_netifaces(addresses):
    fake = MagicMock()
    fake.AF_INET = 2
    fake.interfaces.return_value = list(addresses)
    fake.ifaddresses.side_effect = lambda iface: addresses[iface]
    return fake


INTERFACES = {
    "lo": {2: [{"addr": "127.0.0.1"}]},
    "eth0": {2: [{"addr": "10.0.0.5"}], 10: [{"addr": "fe80::1"}]},
    "wlan0": {2: [{"addr": "192.168.42.2", "netmask": "255.255.255.0"}]},
    "usb0": {},
}


def test_finds_camera_subnet_interface():
    with patch.object(network, "netifaces", fake_netifaces(INTERFACES)):
        assert network.find_interface_address("192.168.42.") == "192.168.42.2"


def test_no_camera_subnet_interface():
    interfaces = {k: v for k, v in INTERFACES.items() if k != "wlan0"}
    with patch.object(network, "netifaces", fake_netifaces(interfaces)):
        assert network.find_interface_address("192.168.42.") is None


def test_local_address_prefers_interface():
    with patch.object(network, "netifaces", fake_netifaces(INTERFACES)):
        assert network.find_local_address("192.168.42.1", "192.168.42.") == "192.168.42.2"


def test_local_address_falls_back_to_routing_table():
    with patch.object(network, "netifaces", fake_netifaces({})):
        assert network.find_local_address("127.0.0.1", "192.168.42.") == "127.0.0.1"


def test_no_route_raises_connection_error():
    probe = MagicMock()
    probe.__enter__.return_value.connect.side_effect = OSError("Network is unreachable")
    with patch.object(network, "netifaces", fake_netifaces({})), \
            patch.object(network.socket, "socket", return_value=probe):
        with pytest.raises(ConnectionError):
            network.find_local_address("192.168.42.1", "192.168.42.")
