"""Filesystem helpers: scanning, atomic writes, fingerprints, backups."""
