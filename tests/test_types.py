"""Tests for shared types module."""

from openwrt_relay.types import ArtifactInfo, BuildStatus, SelectorOutcome, UplinkKind


class TestEnums:
    """Test enum definitions."""

    def test_build_status_values(self) -> None:
        """BuildStatus should have expected values."""
        assert BuildStatus.SUCCEEDED.value == "succeeded"
        assert BuildStatus.FAILED.value == "failed"

    def test_uplink_kind_values(self) -> None:
        """UplinkKind should parse from profile strings."""
        assert UplinkKind("wifi") is UplinkKind.WIFI
        assert UplinkKind("usb") is UplinkKind.USB

    def test_selector_outcome_values(self) -> None:
        """SelectorOutcome should have expected values."""
        assert SelectorOutcome.SWITCHED.value == "switched"
        assert SelectorOutcome.UNCHANGED.value == "unchanged"
        assert SelectorOutcome.NO_UPLINK.value == "no_uplink"
        assert SelectorOutcome.SKIPPED.value == "skipped"

    def test_enums_compare_as_strings(self) -> None:
        """Enums should compare equal to their string values."""
        assert SelectorOutcome.SKIPPED == "skipped"
        assert UplinkKind.WIFI == "wifi"


class TestArtifactInfo:
    """Test ArtifactInfo dataclass."""

    def test_defaults(self) -> None:
        """Kind and labels should default to empty."""
        info = ArtifactInfo(
            filename="image.bin",
            relative_path="image.bin",
            size_bytes=10,
            sha256="abc",
        )
        assert info.kind is None
        assert info.labels == []
