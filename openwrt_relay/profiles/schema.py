"""Pydantic models for the relay device profile.

A profile pins everything device-specific: which Image Builder to fetch,
which packages to install, the Wi-Fi radios, and the ordered list of
candidate uplinks the selector scans on the router.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from openwrt_relay.types import UplinkKind

PROFILE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
# UCI section names only allow alphanumerics and underscore
UPLINK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
IFNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,15}$")


class RadioSchema(BaseModel):
    """A wifi-device section of /etc/config/wireless.

    Attributes:
        name: UCI section name (e.g., 'radio0').
        band: '2g' or '5g'.
        path: Platform path of the PHY as reported by the board.
        channel: Channel number or 'auto'.
        htmode: HT/VHT mode.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="UCI section name")
    band: str = Field(description="Radio band (2g or 5g)")
    path: str = Field(description="PHY platform path")
    channel: str = Field(default="auto")
    htmode: str = Field(default="HT20")
    country: str | None = Field(default=None)

    @field_validator("band")
    @classmethod
    def validate_band(cls, v: str) -> str:
        """Validate band is one the driver understands."""
        if v not in {"2g", "5g"}:
            raise ValueError(f"band must be '2g' or '5g', got '{v}'")
        return v


class UplinkSchema(BaseModel):
    """A candidate uplink.

    Wi-Fi uplinks have a fixed indicator and a client (STA) interface on a
    radio. USB uplinks derive their indicator from the USB port the tethered
    phone sits on, found by scanning the kernel log for ``driver``.
    """

    model_config = ConfigDict(extra="forbid")

    uplink_id: str = Field(description="UCI interface name of the uplink")
    kind: UplinkKind
    interface: str = Field(description="Linux network device bound to the uplink")
    indicator: str | None = Field(
        default=None, description="LED name (Wi-Fi uplinks only)"
    )
    driver: str | None = Field(
        default=None, description="Kernel driver tag (USB uplinks only)"
    )
    radio: str | None = Field(default=None, description="Radio for Wi-Fi uplinks")
    ssid: str | None = Field(default=None, description="Upstream hotspot SSID")
    encryption: str = Field(default="psk2")
    key: str | None = Field(default=None, description="Upstream hotspot passphrase")

    @field_validator("uplink_id")
    @classmethod
    def validate_uplink_id(cls, v: str) -> str:
        """Validate uplink_id is usable as a UCI section name."""
        if not UPLINK_ID_PATTERN.match(v):
            raise ValueError(
                f"uplink_id must match pattern {UPLINK_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("interface")
    @classmethod
    def validate_interface(cls, v: str) -> str:
        """Validate interface is a plausible Linux device name."""
        if not IFNAME_PATTERN.match(v):
            raise ValueError(f"invalid interface name: '{v}'")
        return v

    @model_validator(mode="after")
    def check_kind_fields(self) -> "UplinkSchema":
        """Require the fields each uplink kind depends on."""
        if self.kind == UplinkKind.WIFI:
            if not self.indicator:
                raise ValueError(f"{self.uplink_id}: Wi-Fi uplinks need an indicator")
            if not self.radio:
                raise ValueError(f"{self.uplink_id}: Wi-Fi uplinks need a radio")
        elif not self.driver:
            raise ValueError(f"{self.uplink_id}: USB uplinks need a driver tag")
        return self


class ProfileSchema(BaseModel):
    """Complete relay device profile.

    Attributes:
        profile_id: Unique stable identifier.
        name: Human-readable name.
        device_id: Device identifier.
        openwrt_release: OpenWrt release version.
        target: Target platform.
        subtarget: Subtarget.
        imagebuilder_profile: Image Builder profile name.
        packages: Extra packages to install.
        packages_remove: Packages to remove from defaults.
        hostname: System hostname.
        lan_ipaddr: Static LAN address of the router.
        lan_netmask: LAN netmask.
        lan_ports: Devices bridged into br-lan.
        radios: Wi-Fi radios.
        uplinks: Candidate uplinks in scan order.
        led_prefix: Prefix of LED class device names (e.g., 'green:').
        usb_indicators: Indicators of the physical USB ports.
        usb_indicator_fallback: Indicator used when the USB port is unknown.
        overlay_dir: Optional directory of extra overlay files.
        extra_image_name: Optional extra name suffix for images.
    """

    model_config = ConfigDict(extra="forbid")

    profile_id: Annotated[
        str, Field(description="Unique stable identifier", min_length=1, max_length=255)
    ]
    name: Annotated[
        str, Field(description="Human-readable name", min_length=1, max_length=255)
    ]
    device_id: Annotated[
        str, Field(description="Device identifier", min_length=1, max_length=255)
    ]

    openwrt_release: Annotated[str, Field(min_length=1, max_length=50)]
    target: Annotated[str, Field(min_length=1, max_length=100)]
    subtarget: Annotated[str, Field(min_length=1, max_length=100)]
    imagebuilder_profile: Annotated[str, Field(min_length=1, max_length=255)]

    packages: list[str] = Field(default_factory=list)
    packages_remove: list[str] = Field(default_factory=list)

    hostname: str = Field(default="OpenWrt-Relay")
    lan_ipaddr: str = Field(default="192.168.1.1")
    lan_netmask: str = Field(default="255.255.255.0")
    lan_ports: list[str] = Field(default_factory=lambda: ["eth0.1"])

    radios: list[RadioSchema] = Field(default_factory=list)
    uplinks: Annotated[list[UplinkSchema], Field(min_length=1)]

    led_prefix: str = Field(default="")
    usb_indicators: list[str] = Field(default_factory=list)
    usb_indicator_fallback: str = Field(default="usb1")

    overlay_dir: str | None = Field(default=None)
    extra_image_name: str | None = Field(default=None)

    @field_validator("profile_id")
    @classmethod
    def validate_profile_id(cls, v: str) -> str:
        """Validate profile_id matches safe pattern."""
        if not PROFILE_ID_PATTERN.match(v):
            raise ValueError(
                f"profile_id must match pattern {PROFILE_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("packages", "packages_remove")
    @classmethod
    def validate_package_list(cls, v: list[str]) -> list[str]:
        """Validate package lists have valid entries."""
        for item in v:
            if not item or not item.strip():
                raise ValueError("list items must be non-empty strings")
            if any(c.isspace() for c in item):
                raise ValueError(
                    f"list items must not contain whitespace, got '{item}'"
                )
        return v

    @model_validator(mode="after")
    def check_uplinks(self) -> "ProfileSchema":
        """Validate uplinks are unique and reference known radios."""
        ids = [u.uplink_id for u in self.uplinks]
        if len(set(ids)) != len(ids):
            raise ValueError("uplink_id values must be unique")
        interfaces = [u.interface for u in self.uplinks]
        if len(set(interfaces)) != len(interfaces):
            raise ValueError("uplink interfaces must be unique")

        radio_names = {r.name for r in self.radios}
        for uplink in self.uplinks:
            if uplink.kind == UplinkKind.WIFI and uplink.radio not in radio_names:
                raise ValueError(
                    f"{uplink.uplink_id}: unknown radio '{uplink.radio}'"
                )
        return self

    def known_indicators(self) -> list[str]:
        """Return every uplink indicator, in scan order, without duplicates."""
        names = [u.indicator for u in self.uplinks if u.indicator]
        names.extend(self.usb_indicators)
        names.append(self.usb_indicator_fallback)
        return list(dict.fromkeys(names))


__all__ = [
    "ProfileSchema",
    "RadioSchema",
    "UplinkSchema",
]
