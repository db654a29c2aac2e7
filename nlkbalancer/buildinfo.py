"""Version information stamped in by the build pipeline."""

SEMVER = ""
SHORT_HASH = ""


def semver() -> str:
    """The version number of this build, empty when not stamped."""
    return SEMVER


def short_hash() -> str:
    """The eight-character commit hash of this build, empty when not stamped."""
    return SHORT_HASH