"""Built-in profile for the TP-Link TL-WDR4300 v1 relay.

The WDR4300 has a 5 GHz radio on PCIe, a 2.4 GHz radio on the SoC, and two
USB ports with their own LEDs. Android phones tether through rndis_host and
show up as usb0; iPhones tether through ipheth and show up as eth1.
"""

from openwrt_relay.profiles.schema import ProfileSchema

DEFAULT_RELEASE = "23.05.5"

DEFAULT_PACKAGES = [
    "relayd",
    "luci-proto-relay",
    "kmod-usb2",
    "kmod-usb-net",
    "kmod-usb-net-rndis",
    "kmod-usb-net-cdc-ether",
    "kmod-usb-net-ipheth",
    "usbmuxd",
    "libimobiledevice",
    "python3",
    "python3-pydantic",
    "python3-yaml",
]


def default_profile() -> ProfileSchema:
    """Return the built-in relay profile."""
    return ProfileSchema.model_validate(
        {
            "profile_id": "tplink_tl-wdr4300-v1.relay",
            "name": "TL-WDR4300 v1 tethering relay",
            "device_id": "tplink_tl-wdr4300-v1",
            "openwrt_release": DEFAULT_RELEASE,
            "target": "ath79",
            "subtarget": "generic",
            "imagebuilder_profile": "tplink_tl-wdr4300-v1",
            "packages": list(DEFAULT_PACKAGES),
            "packages_remove": ["ppp", "ppp-mod-pppoe"],
            "radios": [
                {
                    "name": "radio0",
                    "band": "5g",
                    "path": "pci0000:00/0000:00:00.0",
                    "channel": "36",
                    "htmode": "HT20",
                },
                {
                    "name": "radio1",
                    "band": "2g",
                    "path": "platform/ahb/18100000.wmac",
                    "channel": "1",
                    "htmode": "HT20",
                },
            ],
            "uplinks": [
                {
                    "uplink_id": "WAN_WIFI_5",
                    "kind": "wifi",
                    "interface": "wlan0",
                    "indicator": "wlan5g",
                    "radio": "radio0",
                },
                {
                    "uplink_id": "WAN_WIFI_2",
                    "kind": "wifi",
                    "interface": "wlan1",
                    "indicator": "wlan2g",
                    "radio": "radio1",
                },
                {
                    "uplink_id": "WAN_ANDROID_USB",
                    "kind": "usb",
                    "interface": "usb0",
                    "driver": "rndis_host",
                },
                {
                    "uplink_id": "WAN_IPHONE_USB",
                    "kind": "usb",
                    "interface": "eth1",
                    "driver": "ipheth",
                },
            ],
            "led_prefix": "green:",
            "usb_indicators": ["usb1", "usb2"],
            "usb_indicator_fallback": "usb1",
        }
    )


__all__ = ["DEFAULT_PACKAGES", "DEFAULT_RELEASE", "default_profile"]
