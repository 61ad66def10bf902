"""Tests for schema capability flags."""

import pytest

from parish_notify.config import LATEST_SCHEMA_VERSION
from parish_notify.core.schema import SchemaCapabilities, get_schema_capabilities


class TestSchemaCapabilities:
    """Tests for SchemaCapabilities."""

    def test_version_one_has_no_optional_columns(self):
        """The oldest schema falls back to every documented default."""
        caps = SchemaCapabilities.for_version(1)

        assert caps.membership_greeting_opt_in is False
        assert caps.parish_greeting_settings is False
        assert caps.channel_audience_mode is False

    def test_version_two_adds_membership_opt_in(self):
        """Version 2 only adds the membership-level greeting opt-in."""
        caps = SchemaCapabilities.for_version(2)

        assert caps.membership_greeting_opt_in is True
        assert caps.parish_greeting_settings is False
        assert caps.channel_audience_mode is False

    def test_latest_version_has_everything(self):
        """The latest schema exposes all optional columns."""
        caps = SchemaCapabilities.for_version(LATEST_SCHEMA_VERSION)

        assert caps.membership_greeting_opt_in is True
        assert caps.parish_greeting_settings is True
        assert caps.channel_audience_mode is True

    @pytest.mark.parametrize("version", [0, LATEST_SCHEMA_VERSION + 1])
    def test_rejects_unknown_versions(self, version):
        """Should refuse versions it does not know about."""
        with pytest.raises(ValueError):
            SchemaCapabilities.for_version(version)

    def test_reads_version_from_settings(self, test_env):
        """Should follow SCHEMA_VERSION from the environment."""
        test_env(SCHEMA_VERSION="2")

        caps = get_schema_capabilities()

        assert caps.version == 2
        assert caps.membership_greeting_opt_in is True
        assert caps.channel_audience_mode is False
