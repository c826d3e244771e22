"""Catalog of supported model families."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping

ModelKind = Literal["image", "text"]


@dataclass(frozen=True)
class ModelSpec:
    key: str
    kind: ModelKind
    upstream: str
    label: str
    supports_resolution: bool
    supports_image_config: bool


MODEL_CATALOG: dict[str, ModelSpec] = {
    "gemini-2.5-flash-image": ModelSpec(
        key="gemini-2.5-flash-image",
        kind="image",
        upstream="gemini-2.5-flash-image-preview",
        label="Gemini 2.5 Flash Image",
        supports_resolution=False,
        supports_image_config=True,
    ),
    "gemini-3-pro-image": ModelSpec(
        key="gemini-3-pro-image",
        kind="image",
        upstream="gemini-3-pro-image-preview",
        label="Gemini 3 Pro Image",
        supports_resolution=True,
        supports_image_config=True,
    ),
    "gemini-3-pro": ModelSpec(
        key="gemini-3-pro",
        kind="text",
        upstream="gemini-3-pro-preview",
        label="Gemini 3 Pro",
        supports_resolution=False,
        supports_image_config=False,
    ),
}

DEFAULT_MODEL_KEY = "gemini-2.5-flash-image"


def resolve_model(
    key: str | None,
    *,
    default_key: str = DEFAULT_MODEL_KEY,
    mapping: Mapping[str, str] | None = None,
) -> tuple[ModelSpec, str]:
    """Return the catalog entry and the upstream model name for ``key``.

    Unknown keys are treated as raw upstream names of an image model so
    callers can target new preview releases without a catalog change.
    """

    requested = key or default_key
    spec = MODEL_CATALOG.get(requested)
    if spec is None:
        spec = ModelSpec(
            key=requested,
            kind="image",
            upstream=requested,
            label=requested,
            supports_resolution=False,
            supports_image_config=True,
        )
    upstream = spec.upstream
    if mapping:
        override = mapping.get(spec.key)
        if isinstance(override, str) and override.strip():
            upstream = override.strip()
    return spec, upstream


__all__ = ["DEFAULT_MODEL_KEY", "MODEL_CATALOG", "ModelKind", "ModelSpec", "resolve_model"]
