"""Reconciliation — keep an installation root in line with its source packages.

This package provides the primitives for:
- State detection: classify what is already in a target directory
- Manifests: durable records of what was installed, per package
- Integrity: detect files that went missing or were edited since install
- File sync: idempotent, backup-safe copies with path placeholder substitution
- Reconciliation: the install / upgrade / repair / reinstall state machine
"""
