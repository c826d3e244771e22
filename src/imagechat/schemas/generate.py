"""Pydantic models for generation requests and error payloads."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

AspectRatio = Literal[
    "auto", "1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"
]
Resolution = Literal["1k", "2k", "4k"]
Modality = Literal["Image", "Text", "Image_Text"]
ThinkingLevel = Literal["low", "high"]


class ConversationTurn(BaseModel):
    """A prior conversation turn replayed as plain text."""

    role: Literal["user", "assistant"]
    content: str


class GenerateRequest(BaseModel):
    """Incoming image generation request payload."""

    prompt: str = Field(min_length=1)
    reference_images: List[str] = Field(default_factory=list, alias="referenceImages")
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list, alias="conversationHistory"
    )
    system_style: Optional[str] = Field(default=None, alias="systemStyle")

    model: Optional[str] = None
    aspect_ratio: AspectRatio = Field(default="16:9", alias="aspectRatio")
    resolution: Optional[Resolution] = None
    modalities: Modality = "Image_Text"
    thinking_level: Optional[ThinkingLevel] = Field(
        default=None, alias="thinkingLevel"
    )
    model_mapping: Optional[Dict[str, str]] = Field(default=None, alias="modelMapping")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Prompt must not be blank")
        return value


class StyleRequest(BaseModel):
    """Request to describe the visual style of a single image."""

    image_data: str = Field(min_length=1, alias="imageData")
    style_generator_model: Optional[str] = Field(
        default=None, alias="styleGeneratorModel"
    )
    style_generator_prompt: Optional[str] = Field(
        default=None, alias="styleGeneratorPrompt"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


__all__ = [
    "AspectRatio",
    "ConversationTurn",
    "GenerateRequest",
    "Modality",
    "Resolution",
    "StyleRequest",
    "ThinkingLevel",
]
