"""Profile load/export helpers.

Profiles are stored as YAML or JSON files. The active profile comes from
``Settings.profile_path`` when set, otherwise the built-in default is used.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from openwrt_relay.profiles.defaults import default_profile
from openwrt_relay.profiles.schema import ProfileSchema

if TYPE_CHECKING:
    from openwrt_relay.config import Settings


class ProfileLoadError(Exception):
    """Raised when a profile file cannot be read or validated."""

    def __init__(self, message: str, code: str = "profile_load_error") -> None:
        super().__init__(message)
        self.code = code


def _read_mapping(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ProfileLoadError(
                f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json",
                code="unsupported_format",
            )
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProfileLoadError(
            f"Expected a mapping in {path}, got {type(data).__name__}",
            code="not_a_mapping",
        )
    return data


def load_profile(path: Path) -> ProfileSchema:
    """Load and validate a profile from a YAML or JSON file.

    Args:
        path: Path to the profile file.

    Returns:
        Validated ProfileSchema instance.

    Raises:
        ProfileLoadError: If the file is missing, unparsable or invalid.
    """
    try:
        data = _read_mapping(path)
    except FileNotFoundError:
        raise ProfileLoadError(
            f"Profile not found: {path}", code="profile_not_found"
        ) from None
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ProfileLoadError(
            f"Failed to parse {path}: {e}", code="parse_error"
        ) from e

    try:
        return ProfileSchema.model_validate(data)
    except ValidationError as e:
        raise ProfileLoadError(
            f"Invalid profile {path}: {e}", code="validation_error"
        ) from e


def load_active_profile(settings: Settings) -> ProfileSchema:
    """Return the profile named by settings, or the built-in one."""
    if settings.profile_path is None:
        return default_profile()
    return load_profile(settings.profile_path)


def profile_to_yaml_string(profile: ProfileSchema) -> str:
    """Convert a profile to a YAML string."""
    data = profile.model_dump(mode="json", exclude_none=True)
    result: str = yaml.safe_dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return result


def profile_to_json_string(profile: ProfileSchema) -> str:
    """Convert a profile to a JSON string."""
    data = profile.model_dump(mode="json", exclude_none=True)
    return json.dumps(data, indent=2, ensure_ascii=False)


def export_profile(profile: ProfileSchema, path: Path) -> None:
    """Export a profile to a file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        profile: ProfileSchema instance to export.
        path: Path where file should be written.

    Raises:
        ProfileLoadError: If file extension is not supported.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        text = profile_to_yaml_string(profile)
    elif suffix == ".json":
        text = profile_to_json_string(profile) + "\n"
    else:
        raise ProfileLoadError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json",
            code="unsupported_format",
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


__all__ = [
    "ProfileLoadError",
    "export_profile",
    "load_active_profile",
    "load_profile",
    "profile_to_json_string",
    "profile_to_yaml_string",
]
