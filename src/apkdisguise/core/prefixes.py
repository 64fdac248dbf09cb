"""Ranking package-name prefixes the device installer likely trusts."""

import logging
from collections import Counter
from collections.abc import Iterable

from apkdisguise.core.inventory import AppInventory
from apkdisguise.models.apps import InstalledApp, PrefixOrigin, TrustedPrefixCandidate
from apkdisguise.models.device import Device

logger = logging.getLogger(__name__)

# Curated allowlist, best first
RECOMMENDED_PREFIXES: tuple[str, ...] = ("cn.chinapost", "com.nlscan")

# Platform namespaces that are never a useful disguise
PLATFORM_PREFIXES: tuple[str, ...] = (
    "com.android",
    "com.google",
    "android.hardware",
    "vendor.mediatek",
)


def prefix_of(package_name: str) -> str | None:
    """First two dotted segments, or None for single-segment names."""
    parts = package_name.split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return f"{parts[0]}.{parts[1]}"


def rank_prefixes(
    apps: Iterable[InstalledApp],
    recommended: Iterable[str] = RECOMMENDED_PREFIXES,
    min_occurrences: int = 1,
    excluded_prefixes: Iterable[str] = (),
) -> list[TrustedPrefixCandidate]:
    """Group apps by prefix and put the recommended seeds on top.

    Observed prefixes are sorted by count (ties by name). Recommended
    entries are dropped from the observed list and given counts above the
    observed maximum, so they sort first whatever the device reports.

    Args:
        apps: Installed apps to sample.
        recommended: Seed prefixes, in preferred order.
        min_occurrences: Drop observed prefixes seen fewer times.
        excluded_prefixes: Drop observed prefixes starting with any of these.
    """
    recommended = list(dict.fromkeys(recommended))
    excluded = tuple(excluded_prefixes)

    counts = Counter(p for app in apps if (p := prefix_of(app.package_name)))

    observed = [
        TrustedPrefixCandidate(prefix=prefix, occurrence_count=count, origin=PrefixOrigin.OBSERVED)
        for prefix, count in counts.items()
        if prefix not in recommended
        and count >= min_occurrences
        and not (excluded and prefix.startswith(excluded))
    ]
    observed.sort(key=lambda c: (-c.occurrence_count, c.prefix))

    ceiling = max((c.occurrence_count for c in observed), default=0)
    seeded = [
        TrustedPrefixCandidate(
            prefix=prefix,
            occurrence_count=ceiling + len(recommended) - index,
            origin=PrefixOrigin.RECOMMENDED,
        )
        for index, prefix in enumerate(recommended)
    ]

    return seeded + observed


class PrefixScanner:
    """Derives trusted prefix candidates from a device's installed apps."""

    def __init__(
        self,
        inventory: AppInventory,
        recommended: Iterable[str] = RECOMMENDED_PREFIXES,
        min_occurrences: int = 1,
        excluded_prefixes: Iterable[str] = (),
    ):
        self.inventory = inventory
        self.recommended = tuple(recommended)
        self.min_occurrences = min_occurrences
        self.excluded_prefixes = tuple(excluded_prefixes)

    def scan(self, device: Device | str) -> list[TrustedPrefixCandidate]:
        """Rank prefixes seen on the device, recommended ones first."""
        apps = self.inventory.list(device)
        candidates = rank_prefixes(
            apps,
            recommended=self.recommended,
            min_occurrences=self.min_occurrences,
            excluded_prefixes=self.excluded_prefixes,
        )
        logger.info(
            "scanned %d apps into %d prefix candidates", len(apps), len(candidates)
        )
        return candidates
