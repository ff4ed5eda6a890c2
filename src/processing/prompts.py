"""
Prompt builders for story synthesis and lyrics generation.
"""
from typing import List, Sequence, Tuple

from core.entities import SourceItem, StoryAngle
from core.styles import StyleDefinition

MAX_TITLE_WORDS = 6


def build_synthesis_prompt(items: Sequence[SourceItem], target_count: int) -> Tuple[str, str]:
    system = (
        "You are a radio news editor. You merge overlapping reports of the same event "
        "and pick the most important distinct stories of the moment."
    )

    lines = []
    for idx, item in enumerate(items):
        preview = item.body[:300].replace("\n", " ").strip()
        lines.append(f"[{idx}] ({item.origin}) {item.title}\n    {preview}")
    items_text = "\n".join(lines)

    user = f"""Here are {len(items)} news items:

{items_text}

Select exactly {target_count} DISTINCT stories. Items that report the same event must be merged into one story.
For each story return a JSON object with:
- headline: short factual headline
- summary: 2-3 sentence summary of what happened
- angle: the human or emotional angle a songwriter should focus on
- importance: integer 1-10
- sources: list of item numbers this story is built from

Return ONLY a JSON array with exactly {target_count} objects, most important first.
Example: [{{"headline": "...", "summary": "...", "angle": "...", "importance": 8, "sources": [0, 3]}}]

JSON array:"""
    return system, user


def _structure(style: StyleDefinition) -> str:
    sections: List[str] = []
    for i in range(style.verse_count):
        sections.append(f"[Verse] {i + 1}")
        if style.has_chorus and i < style.verse_count - 1:
            sections.append("[Chorus]")
    if style.has_chorus:
        sections.append("[Chorus] (final)")
    if style.has_bridge:
        sections.append("[Bridge]")
        if style.has_chorus:
            sections.append("[Chorus] (outro)")
    sections.append("[Outro]")
    return " -> ".join(sections)


def build_script_prompt(
    story: StoryAngle,
    style: StyleDefinition,
    language: str = "en",
) -> Tuple[str, str]:
    system = f"""You are a {style.personality}.

Turn a real news story into authentic {style.name} song lyrics.

RULES:
1. Output ONLY valid JSON: {{"title": "...", "lyrics": "..."}}
2. Title: at most {MAX_TITLE_WORDS} words, specific, no cliches
3. Lyrics: 250-400 words
4. Use the section markers [Verse], [Chorus], [Bridge], [Outro]
5. Structure: {_structure(style)}
6. Language: {language}
7. Concrete imagery drawn from the story, no generic sentiment"""

    user = f"""Write {style.name} lyrics for this story:

HEADLINE: {story.headline}
SUMMARY: {story.summary}
ANGLE: {story.angle}

JSON only: {{"title": "...", "lyrics": "..."}}"""
    return system, user


def trim_title(title: str, max_words: int = MAX_TITLE_WORDS) -> str:
    words = title.strip().split()
    return " ".join(words[:max_words])
