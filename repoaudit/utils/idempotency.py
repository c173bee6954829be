"""Content keys used to deduplicate job submissions."""

from __future__ import annotations

import hashlib

__all__ = ["make_dedupe_key"]


def make_dedupe_key(*parts: str | int) -> str:
    """Return a stable 32 character SHA256 based key for ``parts``.

    Each part is length-prefixed so ``("ab", "c")`` and ``("a", "bc")`` differ.
    """

    if not parts:
        raise ValueError("at least one part must be provided")
    digest = hashlib.sha256()
    for part in parts:
        if isinstance(part, bool) or not isinstance(part, (str, int)):
            raise TypeError("dedupe key parts must be str or int")
        data = str(part).encode("utf-8")
        digest.update(len(data).to_bytes(4, "big"))
        digest.update(data)
    return digest.hexdigest()[:32]
