"""Stable property identity for tracking repeat analyses."""

import hashlib
import json
import unicodedata

from cma_analyst.models import PropertyDescriptor

FINGERPRINT_FIELDS = ("address", "city", "province")


def canonicalize(text: str) -> str:
    """NFKC-normalise, case-fold and collapse whitespace."""
    return " ".join(unicodedata.normalize("NFKC", text).casefold().split())


def property_fingerprint(prop: PropertyDescriptor) -> str:
    """SHA-256 of the canonical JSON form of the property's location fields.

    Insensitive to case, Unicode composition and whitespace, so
    "Calle Mar 1" and " calle  MAR 1 " share a fingerprint.
    """
    canonical = {name: canonicalize(getattr(prop, name)) for name in FINGERPRINT_FIELDS}
    payload = json.dumps(canonical, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
