"""
Comma-separated tag handling for caption files.
"""
from typing import List, Tuple


def split_tags(text: str) -> List[str]:
    """Splits on commas, trims each tag and drops empties."""
    if not text:
        return []
    return [t.strip() for t in text.split(",") if t.strip()]


def append_global_tags(caption: str, global_tags: str) -> str:
    """Generation-time append: the whole tag string is added as-is, no dedup."""
    if not global_tags or not global_tags.strip():
        return caption
    return f"{caption}, {global_tags.strip()}"


def merge_tags(caption: str, tags: List[str]) -> Tuple[str, List[str]]:
    """
    Appends each tag not already present as a whole tag in the caption.

    Comparison is per comma-separated tag, trimmed and case-sensitive, so
    ``cat`` is not considered present in ``category``.
    Returns the new caption and the tags that were added.
    """
    present = set(split_tags(caption))
    caption = caption.strip()
    added = []
    for tag in tags:
        if tag in present:
            continue
        present.add(tag)
        added.append(tag)
        caption = f"{caption}, {tag}" if caption else tag
    return caption, added
