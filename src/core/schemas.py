"""
Pydantic schemas for validating LLM output.
"""
from typing import List
from pydantic import BaseModel, Field


class StoryAngleSchema(BaseModel):
    """
    Pydantic schema for one synthesized story
    """
    headline: str = Field(..., min_length=1)
    summary: str
    angle: str
    importance: int = Field(..., ge=1, le=10)
    sources: List[int] = []


class ScriptSchema(BaseModel):
    """
    Pydantic schema for generated lyrics
    """
    title: str = Field(..., min_length=1)
    lyrics: str = Field(..., min_length=1)
