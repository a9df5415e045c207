"""Rendering of the relay overlay files.

Each render_* function returns the text of one file placed into the image.
render_overlay() collects them into a mapping of image path to OverlayFile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from openwrt_relay.types import UplinkKind

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

SELECTOR_COMMAND = "/usr/bin/uplink-select"
SELECTOR_SHARE_DIR = "/usr/share/openwrt-relay"
PROFILE_IMAGE_PATH = "/etc/openwrt-relay/profile.json"


@dataclass(frozen=True)
class OverlayFile:
    """A rendered file and its mode inside the image."""

    content: str
    mode: int = 0o644


def _quote(value: str) -> str:
    """Quote a value for a UCI config file."""
    return "'" + value.replace("'", "'\\''") + "'"


def _section(kind: str, name: str | None, options: list[tuple[str, str]]) -> str:
    header = f"config {kind}" + (f" {_quote(name)}" if name else "")
    lines = [header]
    for key, value in options:
        if key.startswith("list "):
            lines.append(f"\tlist {key[5:]} {_quote(value)}")
        else:
            lines.append(f"\toption {key} {_quote(value)}")
    return "\n".join(lines) + "\n"


def render_network(profile: ProfileSchema, settings: Settings) -> str:
    """Render /etc/config/network.

    Defines the LAN bridge, one DHCP client interface per uplink, and the
    relay interface bridging the LAN with the first uplink. The selector
    rewrites the relay's ``network`` and ``ipaddr`` options at runtime.
    """
    sections = [
        _section(
            "interface",
            "loopback",
            [
                ("device", "lo"),
                ("proto", "static"),
                ("ipaddr", "127.0.0.1"),
                ("netmask", "255.0.0.0"),
            ],
        ),
        _section(
            "device",
            None,
            [("name", "br-lan"), ("type", "bridge")]
            + [("list ports", port) for port in profile.lan_ports],
        ),
        _section(
            "interface",
            settings.lan_network,
            [
                ("device", "br-lan"),
                ("proto", "static"),
                ("ipaddr", profile.lan_ipaddr),
                ("netmask", profile.lan_netmask),
            ],
        ),
    ]

    for uplink in profile.uplinks:
        options = [("proto", "dhcp")]
        if uplink.kind == UplinkKind.USB:
            # Wi-Fi uplinks are bound from /etc/config/wireless instead
            options.insert(0, ("device", uplink.interface))
        sections.append(_section("interface", uplink.uplink_id, options))

    first = profile.uplinks[0].uplink_id
    sections.append(
        _section(
            "interface",
            settings.relay_section,
            [
                ("proto", "relay"),
                ("network", f"{settings.lan_network} {first}"),
            ],
        )
    )
    return "\n".join(sections)


def render_wireless(profile: ProfileSchema) -> str:
    """Render /etc/config/wireless with one client interface per Wi-Fi uplink."""
    sections = []
    for radio in profile.radios:
        options = [
            ("type", "mac80211"),
            ("path", radio.path),
            ("band", radio.band),
            ("channel", radio.channel),
            ("htmode", radio.htmode),
        ]
        if radio.country:
            options.append(("country", radio.country))
        sections.append(_section("wifi-device", radio.name, options))

    for uplink in profile.uplinks:
        if uplink.kind != UplinkKind.WIFI or uplink.radio is None:
            continue
        options = [
            ("device", uplink.radio),
            ("mode", "sta"),
            ("network", uplink.uplink_id),
            ("ifname", uplink.interface),
            ("encryption", uplink.encryption if uplink.key else "none"),
        ]
        if uplink.ssid:
            options.append(("ssid", uplink.ssid))
        if uplink.key:
            options.append(("key", uplink.key))
        if not uplink.ssid:
            options.append(("disabled", "1"))
        sections.append(
            _section("wifi-iface", f"sta_{uplink.uplink_id.lower()}", options)
        )
    return "\n".join(sections)


def render_system(profile: ProfileSchema) -> str:
    """Render /etc/config/system with every uplink indicator off."""
    sections = [
        _section(
            "system",
            None,
            [
                ("hostname", profile.hostname),
                ("timezone", "UTC"),
                ("ttylogin", "0"),
                ("log_size", "64"),
            ],
        )
    ]
    for name in profile.known_indicators():
        sections.append(
            _section(
                "led",
                f"led_{name}",
                [
                    ("name", name),
                    ("sysfs", f"{profile.led_prefix}{name}"),
                    ("trigger", "none"),
                    ("default", "0"),
                ],
            )
        )
    return "\n".join(sections)


def render_crontab() -> str:
    """Render /etc/crontabs/root running the selector every minute."""
    return f"* * * * * {SELECTOR_COMMAND}\n"


def render_hotplug() -> str:
    """Render the iface hotplug hook that runs the selector on uplink events."""
    return (
        "#!/bin/sh\n"
        '[ "$ACTION" = ifup ] || [ "$ACTION" = ifdown ] || exit 0\n'
        'case "$INTERFACE" in\n'
        f"\tWAN_*) {SELECTOR_COMMAND} >/dev/null 2>&1 & ;;\n"
        "esac\n"
    )


def render_launcher() -> str:
    """Render the selector launcher script."""
    return (
        "#!/bin/sh\n"
        f"export PYTHONPATH={SELECTOR_SHARE_DIR}\n"
        f"export OWRT_RELAY_PROFILE_PATH={PROFILE_IMAGE_PATH}\n"
        'exec python3 -m openwrt_relay uplink select "$@"\n'
    )


def render_overlay(
    profile: ProfileSchema, settings: Settings
) -> dict[str, OverlayFile]:
    """Render every generated overlay file.

    Args:
        profile: Device profile.
        settings: Settings naming the LAN and relay sections.

    Returns:
        Mapping of absolute image path to OverlayFile.
    """
    return {
        "/etc/config/network": OverlayFile(render_network(profile, settings), 0o600),
        "/etc/config/wireless": OverlayFile(render_wireless(profile), 0o600),
        "/etc/config/system": OverlayFile(render_system(profile)),
        "/etc/crontabs/root": OverlayFile(render_crontab(), 0o600),
        "/etc/hotplug.d/iface/99-uplink-select": OverlayFile(render_hotplug()),
        SELECTOR_COMMAND: OverlayFile(render_launcher(), 0o755),
        PROFILE_IMAGE_PATH: OverlayFile(
            profile.model_dump_json(indent=2, exclude_none=True) + "\n", 0o600
        ),
    }


__all__ = [
    "PROFILE_IMAGE_PATH",
    "SELECTOR_COMMAND",
    "SELECTOR_SHARE_DIR",
    "OverlayFile",
    "render_crontab",
    "render_hotplug",
    "render_launcher",
    "render_network",
    "render_overlay",
    "render_system",
    "render_wireless",
]
