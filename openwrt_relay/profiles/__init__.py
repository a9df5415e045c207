"""Device profile package.

This package provides:
- ProfileSchema: validated description of the relay router
- default_profile(): the built-in TL-WDR4300 v1 profile
- YAML/JSON load and export helpers
"""

from openwrt_relay.profiles.defaults import default_profile
from openwrt_relay.profiles.io import (
    ProfileLoadError,
    export_profile,
    load_active_profile,
    load_profile,
)
from openwrt_relay.profiles.schema import ProfileSchema, RadioSchema, UplinkSchema

__all__ = [
    "ProfileLoadError",
    "ProfileSchema",
    "RadioSchema",
    "UplinkSchema",
    "default_profile",
    "export_profile",
    "load_active_profile",
    "load_profile",
]
