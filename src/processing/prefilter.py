from typing import Iterable

from ingestion.base import IngestedItem


def keyword_match(text: str, keywords: Iterable[str]) -> bool:
    text = text.lower()
    return any(k.lower() in text for k in keywords)


def passes_prefilter(
    item: IngestedItem,
    *,
    keywords: Iterable[str],
    min_length: int = 0,
) -> bool:
    """Relevance prefilter: keyword match against title + body. No keywords means everything passes."""
    content = f"{item.title} {item.content}"

    if len(content.strip()) < min_length:
        return False

    keywords = list(keywords)
    if keywords and not keyword_match(content, keywords):
        return False

    return True
