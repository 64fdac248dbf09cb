"""apkdisguise - repackage Android apps under a trusted package name."""

__version__ = "0.1.0"
