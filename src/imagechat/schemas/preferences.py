"""Client-side preference schemas.

Preferences are loaded once, merged with defaults and handed explicitly to
every generation call; nothing reads them from global state.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from .generate import AspectRatio, Modality, Resolution, ThinkingLevel

DEFAULT_STYLE_GENERATOR_PROMPT = (
    "你是一个专业的图像风格分析师。请分析用户提供的图片，提取其整体视觉风格特征，"
    "生成一段简洁的风格描述提示词。\n\n"
    "要求：\n"
    "1. 描述应该简洁有力，适合作为图像生成的风格指导\n"
    "2. 包含：色调、光影、氛围、艺术风格、质感等关键特征\n"
    "3. 使用中文描述\n"
    "4. 长度控制在50-150字之间\n"
    "5. 直接输出风格描述，不要有多余的解释"
)


class StudioPreferences(BaseModel):
    """Generation and connection preferences for a studio workspace."""

    api_key: str = Field(default="", description="Secret sent as X-API-Key")
    server_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the imagechat server",
    )
    model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model catalog key",
    )
    aspect_ratio: AspectRatio = Field(default="16:9")
    resolution: Optional[Resolution] = Field(
        default=None,
        description="Output size, honoured only by models that support it",
    )
    modality: Modality = Field(default="Image_Text")
    thinking_level: Optional[ThinkingLevel] = Field(
        default=None,
        description="Thinking level for text models; None disables thinking",
    )
    model_mapping: Dict[str, str] = Field(
        default_factory=dict,
        description="Catalog key to upstream model name overrides",
    )
    system_style: str = Field(
        default="",
        description="Overall style text sent as the system instruction",
    )
    history_turns: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Number of prior messages replayed as context",
    )
    style_generator_model: str = Field(default="gemini-2.5-flash")
    style_generator_prompt: str = Field(default=DEFAULT_STYLE_GENERATOR_PROMPT)


class StudioPreferencesUpdate(BaseModel):
    """Partial update for studio preferences."""

    api_key: Optional[str] = None
    server_url: Optional[str] = None
    model: Optional[str] = None
    aspect_ratio: Optional[AspectRatio] = None
    resolution: Optional[Resolution] = None
    modality: Optional[Modality] = None
    thinking_level: Optional[ThinkingLevel] = None
    model_mapping: Optional[Dict[str, str]] = None
    system_style: Optional[str] = None
    history_turns: Optional[int] = Field(default=None, ge=0, le=100)
    style_generator_model: Optional[str] = None
    style_generator_prompt: Optional[str] = None


__all__ = [
    "DEFAULT_STYLE_GENERATOR_PROMPT",
    "StudioPreferences",
    "StudioPreferencesUpdate",
]
