"""Xcode scheme selection for package products.

Pure functions: no process calls, no filesystem access.
"""

from __future__ import annotations

from collections.abc import Iterable

from spmx.core.models import PackageDump

__all__ = ["PLATFORM_KEYWORDS", "resolve_scheme", "sanitize_identity", "score_scheme"]

PLATFORM_KEYWORDS = ("ios", "macos", "catalyst", "tvos", "watchos", "visionos")


def sanitize_identity(name: str) -> str:
    """Map non-alphanumerics to ``-`` and trim them; ``product`` if nothing is left."""
    sanitized = "".join(c if c.isalnum() else "-" for c in name).strip("-")
    return sanitized or "product"


def _normalize(value: str) -> str:
    return "".join(c.lower() for c in value if c.isalnum())


def score_scheme(scheme: str, dump: PackageDump) -> int:
    """Preference score of a related, non-exact scheme (higher is better)."""
    lower = scheme.lower()
    score = 0

    if lower.endswith("-package") or lower.endswith(" package"):
        score += 5
    if not any(keyword in lower for keyword in PLATFORM_KEYWORDS):
        score += 4

    prefers_ios = dump.declares("ios")
    prefers_macos = dump.declares("macos")

    if "ios" in lower:
        score += 3 if prefers_ios else -3
    if "macos" in lower:
        score += 2 if prefers_macos else -2
    if "catalyst" in lower:
        score += 1 if prefers_ios or prefers_macos else -1
    if "tvos" in lower:
        score -= 1
    if "watchos" in lower:
        score -= 2

    return score


def resolve_scheme(product: str, dump: PackageDump, schemes: Iterable[str]) -> str | None:
    """Pick the scheme that builds ``product``.

    Exact names are tried first (``<product>-Package``, ``<product>``, then the
    same for the package name, case-insensitively). Otherwise non-test schemes
    whose normalized name starts with a normalized candidate are scored with
    ``score_scheme``; ties go to the shorter, then alphabetically first name.

    Returns:
        The scheme name as listed by xcodebuild, or None.
    """
    by_lower: dict[str, str] = {}
    for scheme in schemes:
        by_lower.setdefault(scheme.lower(), scheme)

    candidates: list[str] = []
    for name in (product, dump.name):
        if name.strip() and name.lower() not in (c.lower() for c in candidates):
            candidates.append(name)

    for candidate in candidates:
        for exact in (f"{candidate}-Package", candidate):
            found = by_lower.get(exact.lower())
            if found is not None:
                return found

    prefixes = [p for p in (_normalize(c) for c in candidates) if p]
    related = [
        scheme
        for scheme in by_lower.values()
        if "test" not in scheme.lower() and any(_normalize(scheme).startswith(p) for p in prefixes)
    ]
    if not related:
        return None

    return min(related, key=lambda s: (-score_scheme(s, dump), len(s), s.lower()))
