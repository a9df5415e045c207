"""Allow running the CLI with ``python -m openwrt_relay``."""

from openwrt_relay.cli import app

if __name__ == "__main__":
    app()
