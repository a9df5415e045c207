"""Build orchestration package.

This package handles:
- Rendering and staging the relay overlay
- Running Image Builder
- Discovering the factory and sysupgrade images
"""

# Submodules are imported directly (openwrt_relay.builds.runner, etc.)
# since imagebuilder.service depends on builds.runner.
