"""Schema capability flags derived from the deployed schema version.

Some environments lag behind the latest migration. Readers ask these
capabilities which optional columns exist instead of probing the database,
and substitute the documented defaults for the columns that don't.
"""

from dataclasses import dataclass

from parish_notify.config import LATEST_SCHEMA_VERSION, get_settings

# Schema version that introduced each optional column group.
MEMBERSHIP_GREETING_OPT_IN_VERSION = 2
PARISH_GREETING_SETTINGS_VERSION = 3
CHANNEL_AUDIENCE_MODE_VERSION = 3


@dataclass(frozen=True)
class SchemaCapabilities:
    """Which optional column groups the deployed schema provides."""

    version: int
    membership_greeting_opt_in: bool
    parish_greeting_settings: bool
    channel_audience_mode: bool

    @classmethod
    def for_version(cls, version: int) -> "SchemaCapabilities":
        if version < 1 or version > LATEST_SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported schema version {version} (latest is {LATEST_SCHEMA_VERSION})"
            )
        return cls(
            version=version,
            membership_greeting_opt_in=version >= MEMBERSHIP_GREETING_OPT_IN_VERSION,
            parish_greeting_settings=version >= PARISH_GREETING_SETTINGS_VERSION,
            channel_audience_mode=version >= CHANNEL_AUDIENCE_MODE_VERSION,
        )


def get_schema_capabilities() -> SchemaCapabilities:
    """Capabilities for the schema version configured in settings."""
    return SchemaCapabilities.for_version(get_settings().schema_version)
