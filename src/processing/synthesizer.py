import json
import logging
import re
from typing import Any, List, Sequence

from pydantic import ValidationError

from core.entities import ScriptPayload, SourceItem, StoryAngle
from core.errors import ScriptGenerationError, SynthesisError
from core.schemas import ScriptSchema, StoryAngleSchema
from core.styles import StyleDefinition
from processing.prompts import build_script_prompt, build_synthesis_prompt, trim_title
from services.clock import utcnow
from services.llm import OllamaClient

logger = logging.getLogger(__name__)


def _extract_json(content: str) -> str:
    """
    Extract JSON from LLM response, stripping markdown code blocks if present.
    """
    content = content.strip()

    # Remove markdown code blocks (```json ... ``` or ``` ... ```)
    pattern = r'^```(?:json)?\s*\n?(.*?)\n?```$'
    match = re.match(pattern, content, re.DOTALL)
    if match:
        return match.group(1).strip()

    if content.startswith("[") or content.startswith("{"):
        return content

    # Fall back to the first JSON array or object embedded in prose
    embedded = re.search(r'(\[.*\]|\{.*\})', content, re.DOTALL)
    if embedded:
        return embedded.group(0)

    return content


def _load_json(content: str) -> Any:
    return json.loads(_extract_json(content))


class NarrativeSynthesizer:
    """
    Turns scraped items into story angles and story angles into lyrics.
    Both calls fail explicitly when the model output does not have the expected shape.
    """

    def __init__(self, llm: OllamaClient, language: str = "en"):
        self.llm = llm
        self.language = language

    async def synthesize(self, items: Sequence[SourceItem], target_count: int) -> List[StoryAngle]:
        if not items:
            return []

        system, prompt = build_synthesis_prompt(items, target_count)
        logger.info(f"Synthesizing {len(items)} items into {target_count} stories")

        try:
            response = await self.llm.evaluate(prompt, system=system)
        except Exception as e:
            raise SynthesisError(f"LLM call failed: {e}") from e

        raw_content = response["content"]
        logger.debug(f"Raw synthesis response: {raw_content[:500]}...")

        try:
            parsed = _load_json(raw_content)
        except json.JSONDecodeError as e:
            raise SynthesisError(f"Invalid JSON response from LLM: {e}") from e

        if isinstance(parsed, dict):
            parsed = parsed.get("stories")
        if not isinstance(parsed, list):
            raise SynthesisError("Expected a JSON array of stories")

        stories: List[StoryAngle] = []
        for index, entry in enumerate(parsed[:target_count]):
            try:
                validated = StoryAngleSchema.model_validate(entry)
            except ValidationError as e:
                raise SynthesisError(f"Story {index} has the wrong shape: {e}") from e

            source_ids = tuple(
                items[i].id for i in validated.sources if 0 <= i < len(items)
            )
            stories.append(
                StoryAngle(
                    headline=validated.headline.strip(),
                    summary=validated.summary.strip(),
                    angle=validated.angle.strip(),
                    importance=validated.importance,
                    source_item_ids=source_ids,
                )
            )

        logger.info(
            f"Synthesis complete: {len(stories)} stories",
            extra={"headlines": [s.headline for s in stories]},
        )
        return stories

    async def generate_script(self, story: StoryAngle, style: StyleDefinition) -> ScriptPayload:
        system, prompt = build_script_prompt(story, style, self.language)

        try:
            response = await self.llm.evaluate(prompt, system=system)
        except Exception as e:
            raise ScriptGenerationError(f"LLM call failed for '{story.headline}': {e}") from e

        try:
            validated = ScriptSchema.model_validate(_load_json(response["content"]))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ScriptGenerationError(
                f"Lyrics for '{story.headline}' did not match {{title, lyrics}}: {e}"
            ) from e

        payload = ScriptPayload(
            title=trim_title(validated.title),
            body=validated.lyrics.strip(),
            style=style.name,
            style_tags=style.render_style,
            story_headline=story.headline,
            story_angle=story.angle,
            generated_at=utcnow(),
        )
        logger.info(f"Lyrics generated: {payload.title} ({style.name})")
        return payload
