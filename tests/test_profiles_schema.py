"""Tests for profile schema validation.

These tests verify the Pydantic schema models for relay profiles.
"""

import pytest
from pydantic import ValidationError

from openwrt_relay.profiles.defaults import default_profile
from openwrt_relay.profiles.schema import ProfileSchema, RadioSchema, UplinkSchema
from openwrt_relay.types import UplinkKind


def make_profile_data(**overrides):
    data = {
        "profile_id": "test.relay",
        "name": "Test relay",
        "device_id": "test-device",
        "openwrt_release": "23.05.5",
        "target": "ath79",
        "subtarget": "generic",
        "imagebuilder_profile": "test-profile",
        "radios": [{"name": "radio0", "band": "5g", "path": "pci0"}],
        "uplinks": [
            {
                "uplink_id": "WAN_WIFI_5",
                "kind": "wifi",
                "interface": "wlan0",
                "indicator": "wlan5g",
                "radio": "radio0",
            },
            {
                "uplink_id": "WAN_ANDROID_USB",
                "kind": "usb",
                "interface": "usb0",
                "driver": "rndis_host",
            },
        ],
    }
    data.update(overrides)
    return data


class TestRadioSchema:
    """Test RadioSchema validation."""

    def test_valid_radio(self):
        """Should accept a valid radio with defaults."""
        radio = RadioSchema(name="radio1", band="2g", path="platform/ahb")
        assert radio.channel == "auto"
        assert radio.htmode == "HT20"
        assert radio.country is None

    def test_invalid_band(self):
        """Should reject unknown bands."""
        with pytest.raises(ValidationError) as exc_info:
            RadioSchema(name="radio0", band="6g", path="pci0")
        assert "band must be" in str(exc_info.value)


class TestUplinkSchema:
    """Test UplinkSchema validation."""

    def test_valid_wifi_uplink(self):
        """Should accept a Wi-Fi uplink with indicator and radio."""
        uplink = UplinkSchema(
            uplink_id="WAN_WIFI_2",
            kind="wifi",
            interface="wlan1",
            indicator="wlan2g",
            radio="radio1",
        )
        assert uplink.kind == UplinkKind.WIFI
        assert uplink.encryption == "psk2"

    def test_wifi_requires_indicator(self):
        """Should reject a Wi-Fi uplink without indicator."""
        with pytest.raises(ValidationError) as exc_info:
            UplinkSchema(
                uplink_id="WAN_WIFI_2", kind="wifi", interface="wlan1", radio="radio1"
            )
        assert "need an indicator" in str(exc_info.value)

    def test_wifi_requires_radio(self):
        """Should reject a Wi-Fi uplink without radio."""
        with pytest.raises(ValidationError) as exc_info:
            UplinkSchema(
                uplink_id="WAN_WIFI_2",
                kind="wifi",
                interface="wlan1",
                indicator="wlan2g",
            )
        assert "need a radio" in str(exc_info.value)

    def test_usb_requires_driver(self):
        """Should reject a USB uplink without driver tag."""
        with pytest.raises(ValidationError) as exc_info:
            UplinkSchema(uplink_id="WAN_IPHONE_USB", kind="usb", interface="eth1")
        assert "need a driver tag" in str(exc_info.value)

    @pytest.mark.parametrize("uplink_id", ["WAN-WIFI", "wan wifi", "wan.5", ""])
    def test_invalid_uplink_id(self, uplink_id):
        """Should reject ids that are not valid UCI section names."""
        with pytest.raises(ValidationError):
            UplinkSchema(
                uplink_id=uplink_id, kind="usb", interface="usb0", driver="rndis_host"
            )

    def test_invalid_interface(self):
        """Should reject interface names longer than IFNAMSIZ."""
        with pytest.raises(ValidationError) as exc_info:
            UplinkSchema(
                uplink_id="WAN_USB",
                kind="usb",
                interface="a-very-long-interface",
                driver="rndis_host",
            )
        assert "invalid interface name" in str(exc_info.value)


class TestProfileSchema:
    """Test ProfileSchema validation."""

    def test_minimal_profile(self):
        """Should accept a minimal profile and fill defaults."""
        profile = ProfileSchema.model_validate(make_profile_data())

        assert profile.hostname == "OpenWrt-Relay"
        assert profile.lan_ipaddr == "192.168.1.1"
        assert profile.lan_ports == ["eth0.1"]
        assert profile.led_prefix == ""
        assert profile.usb_indicator_fallback == "usb1"

    def test_requires_uplinks(self):
        """Should reject a profile without uplinks."""
        with pytest.raises(ValidationError):
            ProfileSchema.model_validate(make_profile_data(uplinks=[]))

    def test_rejects_unknown_fields(self):
        """Should reject fields the schema does not define."""
        with pytest.raises(ValidationError):
            ProfileSchema.model_validate(make_profile_data(firewall_zones=["wan"]))

    def test_invalid_profile_id(self):
        """Should reject unsafe profile ids."""
        with pytest.raises(ValidationError) as exc_info:
            ProfileSchema.model_validate(make_profile_data(profile_id="bad id"))
        assert "profile_id must match pattern" in str(exc_info.value)

    def test_package_whitespace_rejected(self):
        """Should reject package names containing whitespace."""
        with pytest.raises(ValidationError) as exc_info:
            ProfileSchema.model_validate(make_profile_data(packages=["relayd luci"]))
        assert "whitespace" in str(exc_info.value)

    def test_duplicate_uplink_ids(self):
        """Should reject duplicate uplink ids."""
        data = make_profile_data()
        data["uplinks"][1]["uplink_id"] = "WAN_WIFI_5"
        with pytest.raises(ValidationError) as exc_info:
            ProfileSchema.model_validate(data)
        assert "uplink_id values must be unique" in str(exc_info.value)

    def test_duplicate_interfaces(self):
        """Should reject two uplinks on the same interface."""
        data = make_profile_data()
        data["uplinks"][1]["interface"] = "wlan0"
        with pytest.raises(ValidationError) as exc_info:
            ProfileSchema.model_validate(data)
        assert "interfaces must be unique" in str(exc_info.value)

    def test_unknown_radio(self):
        """Should reject a Wi-Fi uplink on an undefined radio."""
        with pytest.raises(ValidationError) as exc_info:
            ProfileSchema.model_validate(make_profile_data(radios=[]))
        assert "unknown radio 'radio0'" in str(exc_info.value)


class TestKnownIndicators:
    """Test ProfileSchema.known_indicators."""

    def test_order_and_dedup(self):
        """Wi-Fi indicators come first, then USB ports, then the fallback."""
        profile = ProfileSchema.model_validate(
            make_profile_data(usb_indicators=["usb1", "usb2"])
        )
        assert profile.known_indicators() == ["wlan5g", "usb1", "usb2"]

    def test_fallback_added_when_not_listed(self):
        """The fallback indicator is known even without usb_indicators."""
        profile = ProfileSchema.model_validate(
            make_profile_data(usb_indicator_fallback="usb")
        )
        assert profile.known_indicators() == ["wlan5g", "usb"]


class TestDefaultProfile:
    """Test the built-in WDR4300 profile."""

    def test_scan_order(self):
        """Uplinks should be scanned Wi-Fi first, phones last."""
        profile = default_profile()
        assert [u.uplink_id for u in profile.uplinks] == [
            "WAN_WIFI_5",
            "WAN_WIFI_2",
            "WAN_ANDROID_USB",
            "WAN_IPHONE_USB",
        ]

    def test_interfaces_and_drivers(self):
        """Each uplink should be bound to its device."""
        profile = default_profile()
        by_id = {u.uplink_id: u for u in profile.uplinks}

        assert by_id["WAN_WIFI_5"].interface == "wlan0"
        assert by_id["WAN_WIFI_5"].indicator == "wlan5g"
        assert by_id["WAN_WIFI_2"].interface == "wlan1"
        assert by_id["WAN_WIFI_2"].indicator == "wlan2g"
        assert by_id["WAN_ANDROID_USB"].interface == "usb0"
        assert by_id["WAN_ANDROID_USB"].driver == "rndis_host"
        assert by_id["WAN_IPHONE_USB"].interface == "eth1"
        assert by_id["WAN_IPHONE_USB"].driver == "ipheth"

    def test_indicators(self):
        """Indicators should cover both radios and both USB ports."""
        profile = default_profile()
        assert profile.led_prefix == "green:"
        assert profile.known_indicators() == ["wlan5g", "wlan2g", "usb1", "usb2"]

    def test_relay_packages(self):
        """The relay daemon and tethering drivers should be installed."""
        profile = default_profile()
        for package in ("relayd", "kmod-usb-net-rndis", "kmod-usb-net-ipheth"):
            assert package in profile.packages

    def test_returns_fresh_copy(self):
        """Each call should return an independent profile."""
        first = default_profile()
        first.packages.append("htop")
        assert "htop" not in default_profile().packages
