"""Identity keys and content digests for job candidates.

Pure functions, no I/O and no clock. ``None`` stands for a field the
extractor marked unknown; an empty mapping means the source stated none.

The identity key covers the source, the normalized title and a coarse hash
of the *names* of the eligibility criteria and fee categories. Values are
not part of the key, so a changed fee amount updates the existing record
instead of creating a new one. The content digest covers the values.
"""

import hashlib
import json
from collections.abc import Iterable, Mapping, Sequence

_SEPARATOR = "\x1f"


def normalize_text(value: str) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(value.casefold().split())


def _sha256(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _names(mapping: Mapping[str, str] | None) -> list[str] | None:
    if mapping is None:
        return None
    return sorted({normalize_text(k) for k in mapping})


def _normalized_mapping(mapping: Mapping[str, str] | None) -> dict[str, str] | None:
    if mapping is None:
        return None
    return {normalize_text(k): normalize_text(v) for k, v in mapping.items()}


def compute_identity_key(
    source_id: str,
    title: str,
    eligibility: Mapping[str, str] | None,
    fees: Mapping[str, str] | None,
) -> str:
    """Return the stable fingerprint used to match a candidate to a stored job."""
    coarse = json.dumps(
        {"eligibility": _names(eligibility), "fees": _names(fees)},
        sort_keys=True,
        ensure_ascii=False,
    )
    payload = _SEPARATOR.join((source_id, normalize_text(title), _sha256(coarse)[:16]))
    return f"{source_id}:{_sha256(payload)[:32]}"


def compute_content_digest(
    eligibility: Mapping[str, str] | None,
    fees: Mapping[str, str] | None,
    application_process: Sequence[str] | None,
    links: Iterable[tuple[str, str]],
) -> str:
    """Return a digest of the mutable fields, used to tell updates from duplicates."""
    steps = (
        None if application_process is None
        else [normalize_text(step) for step in application_process]
    )
    payload = json.dumps(
        {
            "eligibility": _normalized_mapping(eligibility),
            "fees": _normalized_mapping(fees),
            "application_process": steps,
            "links": sorted({(role, url.strip()) for role, url in links}),
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return _sha256(payload)
