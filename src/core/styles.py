import random
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class StyleDefinition:
    """
    Declarative song style definition.
    """
    name: str
    render_style: str
    personality: str
    verse_count: int
    has_chorus: bool
    has_bridge: bool
    weight: int


PUNK_ROCK = StyleDefinition(
    name="punk-rock",
    render_style="punk rock, distorted guitar, fast tempo, raw energy",
    personality="angry punk band writing protest songs about the day's headlines",
    verse_count=2,
    has_chorus=True,
    has_bridge=False,
    weight=5,
)

HIP_HOP = StyleDefinition(
    name="hip-hop",
    render_style="hip hop, boom bap, conscious rap, storytelling flow",
    personality="street journalist rapper turning dispatches into bars with vivid imagery",
    verse_count=3,
    has_chorus=True,
    has_bridge=True,
    weight=5,
)

FOLK = StyleDefinition(
    name="folk",
    render_style="acoustic folk, fingerpicking guitar, storytelling, melancholic",
    personality="traveling folk singer bearing witness, melancholic but hopeful",
    verse_count=3,
    has_chorus=True,
    has_bridge=False,
    weight=5,
)

ELECTRONIC = StyleDefinition(
    name="electronic",
    render_style="dark synth, electronic, driving beat, atmospheric",
    personality="cyberpunk poet writing about machinery, surveillance and power",
    verse_count=2,
    has_chorus=True,
    has_bridge=True,
    weight=5,
)

BLUES = StyleDefinition(
    name="blues",
    render_style="delta blues, slide guitar, soulful vocals, slow groove",
    personality="blues musician singing about loss, displacement and resilience",
    verse_count=3,
    has_chorus=False,
    has_bridge=False,
    weight=3,
)

COUNTRY = StyleDefinition(
    name="country",
    render_style="country, twang guitar, heartfelt storytelling, Americana",
    personality="country songwriter telling the human stories behind the headlines",
    verse_count=2,
    has_chorus=True,
    has_bridge=False,
    weight=3,
)


ALL_STYLES = {
    style.name: style
    for style in (PUNK_ROCK, HIP_HOP, FOLK, ELECTRONIC, BLUES, COUNTRY)
}


class StyleRotator:
    """
    Weighted random style selection that never repeats the previous style.
    """

    def __init__(
        self,
        styles: Optional[Sequence[StyleDefinition]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.styles = list(styles or ALL_STYLES.values())
        if not self.styles:
            raise ValueError("StyleRotator needs at least one style")
        self.rng = rng or random.Random()
        self.last_style: Optional[str] = None

    def next(self) -> StyleDefinition:
        pool = [s for s in self.styles if s.name != self.last_style] or self.styles

        total = sum(s.weight for s in pool)
        roll = self.rng.uniform(0, total)
        for style in pool:
            roll -= style.weight
            if roll <= 0:
                self.last_style = style.name
                return style

        self.last_style = pool[-1].name
        return pool[-1]

    def reset(self) -> None:
        self.last_style = None
