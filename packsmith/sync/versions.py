"""Three-part numeric version ordering."""

from __future__ import annotations

from packsmith.errors import InvalidVersionError


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``"1.2.3"`` into ``(1, 2, 3)``.

    Missing components default to 0 (``"1.2"`` is ``(1, 2, 0)``). Anything
    that is not up to three dot-separated non-negative integers raises
    InvalidVersionError; nothing is guessed.
    """
    if not isinstance(version, str):
        raise InvalidVersionError(str(version))

    text = version.strip()
    parts = text.split(".")
    if not text or len(parts) > 3:
        raise InvalidVersionError(version)

    numbers = []
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            raise InvalidVersionError(version)
        numbers.append(int(part))

    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as *a* is older than, equal to, or newer than *b*."""
    left = parse_version(a)
    right = parse_version(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0
