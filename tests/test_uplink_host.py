"""Tests for the uplink selector host facilities.

Commands are mocked at subprocess.run; LEDs use a fake sysfs tree.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from openwrt_relay.config import Settings
from openwrt_relay.profiles.defaults import default_profile
from openwrt_relay.uplink.host import (
    HostCommandError,
    HostFacilities,
    InterfaceTable,
    KernelLog,
    LedBank,
    ProcessTable,
    UciStore,
    parse_ipv4_address,
    parse_usb_port,
)

RUN = "openwrt_relay.uplink.host.subprocess.run"


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


class TestUciStore:
    """Tests for UciStore."""

    def test_get(self):
        """Should return the stripped option value."""
        with patch(RUN, return_value=completed(stdout="lan WAN_WIFI_5\n")) as run:
            value = UciStore().get("network.stabridge.network")

        assert value == "lan WAN_WIFI_5"
        assert run.call_args[0][0] == ["uci", "-q", "get", "network.stabridge.network"]

    def test_get_unset(self):
        """Should return None for an unset option."""
        with patch(RUN, return_value=completed(returncode=1)):
            assert UciStore().get("network.stabridge.ipaddr") is None

    def test_set(self):
        """Should stage key=value."""
        with patch(RUN, return_value=completed()) as run:
            UciStore().set("network.stabridge.ipaddr", "10.0.0.9")

        assert run.call_args[0][0] == [
            "uci",
            "set",
            "network.stabridge.ipaddr=10.0.0.9",
        ]

    def test_set_failure(self):
        """Should raise when uci rejects the value."""
        with (
            patch(RUN, return_value=completed(returncode=1, stderr="Invalid argument")),
            pytest.raises(HostCommandError) as exc_info,
        ):
            UciStore().set("network.missing.ipaddr", "10.0.0.9")
        assert exc_info.value.code == "uci_set_failed"

    def test_commit_failure(self):
        """Should raise when the commit fails."""
        with (
            patch(RUN, return_value=completed(returncode=1)),
            pytest.raises(HostCommandError) as exc_info,
        ):
            UciStore().commit("network")
        assert exc_info.value.code == "uci_commit_failed"

    def test_missing_binary(self):
        """Should wrap OSError from a missing uci binary."""
        with (
            patch(RUN, side_effect=FileNotFoundError("uci")),
            pytest.raises(HostCommandError) as exc_info,
        ):
            UciStore().commit("network")
        assert exc_info.value.code == "execution_error"

    def test_timeout(self):
        """Should wrap a command timeout."""
        with (
            patch(RUN, side_effect=subprocess.TimeoutExpired(["uci"], 30)),
            pytest.raises(HostCommandError) as exc_info,
        ):
            UciStore().get("network.stabridge.ipaddr")
        assert exc_info.value.code == "timeout"


class TestParseIpv4Address:
    """Tests for parse_ipv4_address."""

    def test_one_line_output(self):
        """Should extract the address from ip -o output."""
        output = (
            "12: wlan0    inet 10.0.0.9/24 brd 10.0.0.255 scope global wlan0\\"
            "       valid_lft forever preferred_lft forever\n"
        )
        assert parse_ipv4_address(output) == "10.0.0.9"

    def test_no_address(self):
        """Should return None without an inet line."""
        assert parse_ipv4_address("") is None

    def test_skips_malformed(self):
        """Should skip octets out of range."""
        output = "inet 300.1.1.1/24 scope global\ninet 192.168.42.20/24 scope global\n"
        assert parse_ipv4_address(output) == "192.168.42.20"


class TestInterfaceTable:
    """Tests for InterfaceTable."""

    def test_get_address(self):
        """Should query the device with ip -4 -o addr show."""
        output = "5: usb0    inet 192.168.42.20/24 scope global usb0\n"
        with patch(RUN, return_value=completed(stdout=output)) as run:
            address = InterfaceTable().get_address("usb0")

        assert address == "192.168.42.20"
        assert run.call_args[0][0] == ["ip", "-4", "-o", "addr", "show", "dev", "usb0"]

    def test_missing_device(self):
        """Should return None if the device does not exist."""
        result = completed(returncode=1, stderr='Device "eth1" does not exist.')
        with patch(RUN, return_value=result):
            assert InterfaceTable().get_address("eth1") is None

    def test_device_without_address(self):
        """Should return None for a device that is up without a lease."""
        with patch(RUN, return_value=completed(stdout="")):
            assert InterfaceTable().get_address("wlan1") is None


@pytest.fixture
def leds_root(tmp_path: Path) -> Path:
    """Create a fake LED class directory."""
    for name, max_brightness in (("wlan5g", "255"), ("wlan2g", "1"), ("usb1", None)):
        device = tmp_path / f"green:{name}"
        device.mkdir()
        (device / "brightness").write_text("0\n")
        if max_brightness is not None:
            (device / "max_brightness").write_text(f"{max_brightness}\n")
    return tmp_path


class TestLedBank:
    """Tests for LedBank."""

    def test_set_on_uses_max_brightness(self, leds_root):
        """Switching on should write max_brightness."""
        leds = LedBank(leds_root, "green:")
        leds.set("wlan2g", True)

        assert (leds_root / "green:wlan2g" / "brightness").read_text() == "1\n"
        assert leds.is_on("wlan2g")

    def test_set_on_default_max(self, leds_root):
        """Without max_brightness the default should be used."""
        leds = LedBank(leds_root, "green:")
        leds.set("usb1", True)

        assert (leds_root / "green:usb1" / "brightness").read_text() == "255\n"

    def test_set_off(self, leds_root):
        """Switching off should write zero."""
        (leds_root / "green:wlan5g" / "brightness").write_text("255\n")
        leds = LedBank(leds_root, "green:")
        leds.set("wlan5g", False)

        assert not leds.is_on("wlan5g")

    def test_partial_brightness_is_off(self, leds_root):
        """Anything below full brightness should count as off."""
        (leds_root / "green:wlan5g" / "brightness").write_text("128\n")
        assert not LedBank(leds_root, "green:").is_on("wlan5g")

    def test_exists(self, leds_root):
        """Only indicators with a brightness file should exist."""
        leds = LedBank(leds_root, "green:")
        assert leds.exists("wlan5g")
        assert not leds.exists("usb2")
        assert not LedBank(leds_root, "amber:").exists("wlan5g")

    def test_missing_led(self, leds_root, caplog):
        """A missing LED should read as off and warn on write."""
        leds = LedBank(leds_root, "green:")
        assert not leds.is_on("usb2")

        with caplog.at_level("WARNING"):
            leds.set("usb2", True)
        assert "Cannot set indicator usb2" in caplog.text


class TestProcessTable:
    """Tests for ProcessTable."""

    def test_is_running(self):
        """pgrep exit status 0 should mean running."""
        with patch(RUN, return_value=completed(stdout="1234\n")) as run:
            assert ProcessTable().is_running("relayd .*-I wlan0( |$)")
        assert run.call_args[0][0] == ["pgrep", "-f", "relayd .*-I wlan0( |$)"]

    def test_not_running(self):
        """pgrep exit status 1 should mean not running."""
        with patch(RUN, return_value=completed(returncode=1)):
            assert not ProcessTable().is_running("relayd .*-I eth1( |$)")

    def test_restart(self, tmp_path):
        """Should run the init script with restart."""
        with patch(RUN, return_value=completed()) as run:
            ProcessTable(init_dir=tmp_path).restart("network")
        assert run.call_args[0][0] == [str(tmp_path / "network"), "restart"]

    def test_restart_failure(self):
        """Should raise when the init script fails."""
        with (
            patch(RUN, return_value=completed(returncode=1, stderr="boom")),
            pytest.raises(HostCommandError) as exc_info,
        ):
            ProcessTable().restart("network")
        assert exc_info.value.code == "restart_failed"


DMESG = """\
[   12.100000] usb 1-1: new high-speed USB device number 2 using ehci-platform
[   12.400000] rndis_host 1-1:1.0 usb0: register 'rndis_host' at usb-ehci, RNDIS device
[  300.000000] usb 1-1: USB disconnect, device number 2
[  312.500000] rndis_host 1-2:1.0 usb0: register 'rndis_host' at usb-ehci, RNDIS device
[  400.000000] ipheth 1-2:4.2: Apple iPhone USB Ethernet device attached
"""


class TestParseUsbPort:
    """Tests for parse_usb_port."""

    def test_last_registration_wins(self):
        """Should return the port of the most recent registration."""
        assert parse_usb_port(DMESG, "rndis_host") == 2

    def test_ipheth(self):
        """Should parse ipheth attach lines."""
        assert parse_usb_port(DMESG, "ipheth") == 2

    def test_hub_port(self):
        """Should return the root port for devices behind a hub."""
        log = "[ 1.0] rndis_host 1-1.3:1.0 usb0: register 'rndis_host'\n"
        assert parse_usb_port(log, "rndis_host") == 1

    def test_not_found(self):
        """Should return None when the driver never registered."""
        assert parse_usb_port(DMESG, "cdc_ether") is None


class TestKernelLog:
    """Tests for KernelLog."""

    def test_find_last_usb_port(self):
        """Should parse the dmesg output."""
        with patch(RUN, return_value=completed(stdout=DMESG)):
            assert KernelLog().find_last_usb_port("rndis_host") == 2

    def test_dmesg_failure(self):
        """Should return None if dmesg fails."""
        with patch(RUN, return_value=completed(returncode=1)):
            assert KernelLog().find_last_usb_port("ipheth") is None


class TestHostFacilities:
    """Tests for HostFacilities.from_settings."""

    def test_led_prefix_from_profile(self, tmp_path):
        """LEDs should use the settings root and profile prefix."""
        host = HostFacilities.from_settings(
            Settings(leds_root=tmp_path), default_profile()
        )
        assert host.leds.root == tmp_path
        assert host.leds.prefix == "green:"
