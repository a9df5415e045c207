"""OpenWrt Relay - firmware assembly and uplink selection for a tethering relay.

This package builds an OpenWrt image for a Wi-Fi/USB tethering relay router
using the official Image Builder, and provides the uplink selector that runs
on the router to follow whichever uplink is currently active.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
