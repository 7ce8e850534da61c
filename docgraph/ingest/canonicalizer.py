"""
Entity canonicalization for DocGraph.

Maps free-text entity names to stable storage ids so that the same entity
mentioned in different chunks resolves to one node:

    "Apple Inc."  -> "apple_inc_"
    " Sam Altman" -> "sam_altman"

The id is the only identity key for entity upserts. Names that differ
only in case or in which punctuation they use collapse into one entity:
"Acme Inc." and "acme-inc." both become "acme_inc_".
"""

from functools import lru_cache

from docgraph.db.graph_store import ENTITY, RecordRef


@lru_cache(maxsize=4096)
def canonicalize(name: str) -> str:
    """
    Canonical id for a name: trimmed, lowercased, every non-alphanumeric
    character replaced by '_'.

    Total and deterministic; ``canonicalize(canonicalize(x)) == canonicalize(x)``.
    Unicode letters and digits (e.g. Hangul) are kept as-is.
    """
    return "".join(c if c.isalnum() else "_" for c in name.strip().lower())


def is_storable_id(canonical_id: str) -> bool:
    """An id made only of underscores (or empty) names nothing."""
    return bool(canonical_id.strip("_"))


def entity_ref(name: str) -> RecordRef:
    """Reference of the entity node a display name resolves to."""
    return RecordRef(ENTITY, canonicalize(name))
