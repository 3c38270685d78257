"""Version string comparison used by the resolver and the update reconciler.

Comparison is deliberately simpler than semantic versioning: a leading
``v``/``V`` is dropped, the string is split on ``.``, and each segment
contributes only its leading run of digits. ``1.0.0-beta`` therefore compares
equal to ``1.0.0``.
"""

import re

_LEADING_DIGITS_RE = re.compile(r"^(\d*)")


def parse_version(version: str) -> list[int]:
    """Return the numeric segments of *version* (``"v1.2-rc"`` → ``[1, 2]``)."""
    stripped = version.strip()
    if stripped[:1] in ("v", "V"):
        stripped = stripped[1:]

    parts: list[int] = []
    for segment in stripped.split("."):
        digits = _LEADING_DIGITS_RE.match(segment).group(1)  # type: ignore[union-attr]
        parts.append(int(digits) if digits else 0)
    return parts


def compare_versions(v1: str, v2: str) -> int:
    """Return -1, 0 or 1 as *v1* is older than, equal to, or newer than *v2*."""
    a = parse_version(v1)
    b = parse_version(v2)

    width = max(len(a), len(b))
    a.extend([0] * (width - len(a)))
    b.extend([0] * (width - len(b)))

    for left, right in zip(a, b, strict=True):
        if left < right:
            return -1
        if left > right:
            return 1
    return 0


def is_newer_version(current: str, candidate: str) -> bool:
    """Return True if *candidate* is strictly newer than *current*."""
    return compare_versions(current, candidate) < 0


def highest_version(versions: list[str]) -> str:
    """Return the highest of *versions*; the first wins among equals."""
    best = versions[0]
    for version in versions[1:]:
        if compare_versions(best, version) < 0:
            best = version
    return best
