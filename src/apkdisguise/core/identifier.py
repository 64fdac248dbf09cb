"""Package name derivation and validation."""

import re
from pathlib import PurePath

from apkdisguise.exceptions import InvalidIdentifierError
from apkdisguise.models.apk import PackageIdentifier

# PackageManager rejects names longer than this
MAX_PACKAGE_NAME_LENGTH = 223

MAX_DERIVED_SUFFIX_LENGTH = 12
FALLBACK_SUFFIX = "app"

# Generated identifiers are held to the lower-case form
SEGMENT_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# What the platform itself accepts for an installed package
PACKAGE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z][A-Za-z0-9_]*)+$")


def is_valid_package_name(name: str) -> bool:
    """Check a name against the platform package-name grammar.

    Requires at least two dot-separated segments, each starting with a
    letter and containing only letters, digits and underscores.
    """
    return bool(name) and len(name) <= MAX_PACKAGE_NAME_LENGTH and bool(
        PACKAGE_NAME_RE.match(name)
    )


class PackageIdentifierPolicy:
    """Builds the disguised package name for an APK and checks it."""

    def __init__(
        self,
        max_length: int = MAX_PACKAGE_NAME_LENGTH,
        fallback_suffix: str = FALLBACK_SUFFIX,
    ):
        self.max_length = max_length
        self.fallback_suffix = fallback_suffix

    def derive_suffix(self, apk_file_name: str) -> str:
        """Turn an APK file name into a single-segment suffix.

        Strips the extension, lower-cases, drops everything that is not an
        ASCII letter or digit and keeps the first 12 characters. A result
        that would start with a digit gets the fallback suffix in front, and
        an empty result becomes the fallback suffix.
        """
        stem = PurePath(apk_file_name).stem.lower()
        clean = re.sub(r"[^a-z0-9]", "", stem)[:MAX_DERIVED_SUFFIX_LENGTH]

        if not clean:
            return self.fallback_suffix
        if clean[0].isdigit():
            clean = (self.fallback_suffix + clean)[:MAX_DERIVED_SUFFIX_LENGTH]
        return clean

    def derive(
        self,
        prefix: str,
        apk_file_name: str,
        custom_suffix: str | None = None,
    ) -> PackageIdentifier:
        """Compose the target identifier.

        Args:
            prefix: Trusted dotted prefix (e.g., cn.chinapost).
            apk_file_name: Source APK file name, used when no suffix is given.
            custom_suffix: Explicit dotted suffix. Blank counts as absent.

        Returns:
            The composed PackageIdentifier (not yet validated).
        """
        prefix = prefix.strip().strip(".")
        suffix = (custom_suffix or "").strip().strip(".").lower()
        if not suffix:
            suffix = self.derive_suffix(apk_file_name)
        return PackageIdentifier(prefix=prefix, suffix=suffix)

    def validate(
        self,
        identifier: PackageIdentifier,
        original: str | None = None,
    ) -> PackageIdentifier:
        """Check an identifier against the naming rules.

        Args:
            identifier: Identifier to check.
            original: Package name of the source APK, if known. The composed
                name must differ from it.

        Returns:
            The same identifier, for chaining.

        Raises:
            InvalidIdentifierError: On the first violated rule.
        """
        name = identifier.name

        for part, label in ((identifier.prefix, "prefix"), (identifier.suffix, "suffix")):
            if not part:
                raise InvalidIdentifierError(name, f"{label} is empty")
            for segment in part.split("."):
                if not segment:
                    raise InvalidIdentifierError(name, f"{label} has an empty segment")
                if not SEGMENT_RE.match(segment):
                    raise InvalidIdentifierError(
                        name,
                        f"segment '{segment}' must start with a-z and contain only a-z, 0-9 or _",
                    )

        if len(name) > self.max_length:
            raise InvalidIdentifierError(
                name, f"length {len(name)} exceeds the {self.max_length} character limit"
            )

        if original is not None and name == original:
            raise InvalidIdentifierError(name, "identical to the source package name")

        return identifier
