"""Generation session: request snapshot, commit and retry-as-replace."""

from __future__ import annotations

import inspect
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from ..generation.events import DEFAULT_DONE_CONTENT, StreamEvent
from ..repository import MessageRecord, StudioRepository
from ..schemas.preferences import StudioPreferences
from ..services.assets import (
    GENERATED_SPACE,
    MATERIAL_SPACE,
    Asset,
    AssetIndex,
    AssetNotFound,
)
from ..services.references import (
    Reference,
    ReferenceAddStatus,
    ReferenceList,
)
from .api import GenerationRequestError, StudioApiClient
from .stream_consumer import StreamAccumulator, StreamOutcome

logger = logging.getLogger(__name__)

NO_IMAGE_FALLBACK = "本次未生成图片,请尝试重试"

EventListener = Callable[[StreamEvent], Union[Awaitable[None], None]]


class GenerationState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMMITTED_WITH_IMAGE = "committed_with_image"
    COMMITTED_TEXT_ONLY = "committed_text_only"
    FAILED = "failed"


class GenerationBusyError(RuntimeError):
    """Raised when a generation is started while another is in flight."""


class RetryUnavailableError(LookupError):
    """Raised when a message has no retryable request snapshot."""


@dataclass(frozen=True)
class RequestSnapshot:
    """The fully resolved request of one attempt, replayed verbatim on retry."""

    prompt: str
    payload: dict[str, Any]
    api_key: str
    user_message_id: Optional[str] = None


@dataclass
class GenerationOutcome:
    state: GenerationState
    message: MessageRecord
    assets: list[Asset] = field(default_factory=list)
    primary: Optional[Asset] = None
    error: Optional[dict[str, str]] = None
    warnings: list[str] = field(default_factory=list)
    thought: str = ""
    usage: Optional[dict[str, Any]] = None


def build_generation_payload(
    prompt: str,
    images: list[str],
    history: list[dict[str, str]],
    preferences: StudioPreferences,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "referenceImages": images,
        "conversationHistory": history,
        "model": preferences.model,
        "aspectRatio": preferences.aspect_ratio,
        "modalities": preferences.modality,
    }
    if preferences.resolution:
        payload["resolution"] = preferences.resolution
    if preferences.thinking_level:
        payload["thinkingLevel"] = preferences.thinking_level
    if preferences.model_mapping:
        payload["modelMapping"] = dict(preferences.model_mapping)
    if preferences.system_style.strip():
        payload["systemStyle"] = preferences.system_style
    return payload


def asset_label(prompt: str, position: int, total: int) -> str:
    """Label for the ``position``-th (1-based) of ``total`` images of a turn."""

    if position < total:
        return f"{prompt} (图片{position}/{total})"
    if total > 1:
        return f"{prompt} (主图 {total}/{total})"
    return prompt


class GenerationSession:
    """Drive one conversation's generations against a client-local store.

    Only one request may be in flight at a time. Every attempt keeps a
    snapshot of its resolved request so a retry replays exactly what was sent.
    """

    def __init__(
        self,
        repository: StudioRepository,
        conversation_id: str,
        api: StudioApiClient,
        *,
        references: Optional[ReferenceList] = None,
        on_event: Optional[EventListener] = None,
    ):
        self._repo = repository
        self.conversation_id = conversation_id
        self._api = api
        self.references = references if references is not None else ReferenceList()
        self.generated = AssetIndex(repository, GENERATED_SPACE)
        self.materials = AssetIndex(repository, MATERIAL_SPACE)
        self._on_event = on_event
        self._state = GenerationState.IDLE
        self._snapshots: dict[str, RequestSnapshot] = {}

    @property
    def state(self) -> GenerationState:
        return self._state

    def index(self, space: str) -> AssetIndex:
        if space == GENERATED_SPACE:
            return self.generated
        if space == MATERIAL_SPACE:
            return self.materials
        raise ValueError(f"Unknown asset index space: {space}")

    def snapshot_for(self, message_id: str) -> Optional[RequestSnapshot]:
        return self._snapshots.get(message_id)

    def _begin(self) -> None:
        if self._state is not GenerationState.IDLE:
            raise GenerationBusyError(
                f"A generation is already {self._state.value}"
            )
        self._state = GenerationState.SENDING

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    async def add_reference(self, space: str, asset_id: str) -> ReferenceAddStatus:
        asset = await self.index(space).get(asset_id)
        if asset is None:
            raise AssetNotFound(space, asset_id)
        return self.references.add(Reference.for_asset(asset))

    async def select_primary(self, space: str, asset_id: str) -> Optional[Reference]:
        asset = await self.index(space).get(asset_id)
        if asset is None:
            raise AssetNotFound(space, asset_id)
        return self.references.select_primary(Reference.for_asset(asset))

    async def delete_asset(self, space: str, asset_id: str) -> Asset:
        """Remove an asset everywhere it is referenced and relabel survivors."""

        removed = await self.index(space).remove(asset_id)
        self.references.remove(asset_id)
        primary = self.references.primary
        if primary is not None and primary.asset_id == asset_id:
            self.references.clear_primary()
        if space == GENERATED_SPACE:
            await self._repo.clear_generated_asset(asset_id)
        self.references.relabel(space, await self.index(space).numbers())
        return removed

    async def _resolve_reference_images(self) -> tuple[list[str], list[str]]:
        """Load primary then list blobs; vanished assets are skipped."""

        images: list[str] = []
        warnings: list[str] = []
        candidates: list[Reference] = []
        if self.references.primary is not None:
            candidates.append(self.references.primary)
        candidates.extend(self.references.items)
        for ref in candidates:
            blob = await self.index(ref.type).load(ref.asset_id)
            if blob is None:
                logger.warning("Reference %s is gone; skipping", ref.asset_id)
                warnings.append(f"参考图片{ref.display_name}已不存在,已跳过")
                continue
            images.append(blob)
        return images, warnings

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _history(self, limit: int) -> list[dict[str, str]]:
        if limit <= 0:
            return []
        history = [
            {"role": message["role"], "content": message["content"]}
            for message in await self._repo.get_messages(self.conversation_id)
            if message.get("content") and "error" not in message
        ]
        return history[-limit:]

    async def generate(
        self, prompt: str, preferences: StudioPreferences
    ) -> GenerationOutcome:
        """Send ``prompt`` with the current references and commit the result."""

        self._begin()
        try:
            purged = await self._repo.delete_error_messages(self.conversation_id)
            if purged:
                logger.debug("Purged %d stale error message(s)", purged)
            history = await self._history(preferences.history_turns)
            user_message = await self._repo.add_message(
                self.conversation_id, "user", content=prompt
            )
            images, warnings = await self._resolve_reference_images()
            snapshot = RequestSnapshot(
                prompt=prompt,
                payload=build_generation_payload(prompt, images, history, preferences),
                api_key=preferences.api_key,
                user_message_id=user_message["id"],
            )
            result = await self._stream(snapshot)
            outcome = await self._commit(snapshot, result)
            outcome.warnings[:0] = warnings
            return outcome
        finally:
            self._state = GenerationState.IDLE

    async def retry(self, message_id: str) -> GenerationOutcome:
        """Replay an attempt and replace its assistant message in place."""

        old = await self._repo.get_message(message_id)
        if old is None or old["role"] != "assistant":
            raise RetryUnavailableError(f"Message {message_id} cannot be retried")
        snapshot = self._snapshots.get(message_id)
        if snapshot is None:
            raise RetryUnavailableError(f"No request snapshot for {message_id}")

        self._begin()
        try:
            result = await self._stream(snapshot)
            if not result.succeeded:
                # Assets and the primary stay; only the message is swapped.
                await self._repo.delete_message(message_id)
                return await self._commit(
                    snapshot, result, position=old["position"], message_id=message_id
                )
            await self._discard_turn(old)
            self._snapshots.pop(message_id, None)
            return await self._commit(snapshot, result, position=old["position"])
        finally:
            self._state = GenerationState.IDLE

    async def _discard_turn(self, message: MessageRecord) -> None:
        """Delete an assistant message and every asset it produced."""

        await self._repo.delete_message(message["id"])
        owned = [
            asset
            for asset in await self.generated.list()
            if asset.originating_message_id == message["id"]
            or asset.id == message.get("generated_asset_id")
        ]
        for asset in owned:
            try:
                await self.delete_asset(GENERATED_SPACE, asset.id)
            except AssetNotFound:
                logger.debug("Asset %s already removed", asset.id)

    async def _notify(self, event: StreamEvent) -> None:
        if self._on_event is None:
            return
        result = self._on_event(event)
        if inspect.isawaitable(result):
            await result

    async def _stream(self, snapshot: RequestSnapshot) -> StreamOutcome:
        self._state = GenerationState.SENDING
        accumulator = StreamAccumulator()
        try:
            async with aclosing(
                self._api.stream_generate(snapshot.payload, snapshot.api_key)
            ) as events:
                async for event in events:
                    if self._state is GenerationState.SENDING:
                        self._state = GenerationState.STREAMING
                    accumulator.apply(event)
                    await self._notify(event)
                    if accumulator.finished:
                        break
        except GenerationRequestError as exc:
            accumulator.fail(exc.error)
        return accumulator.outcome()

    async def _commit(
        self,
        snapshot: RequestSnapshot,
        result: StreamOutcome,
        *,
        position: Optional[int] = None,
        message_id: Optional[str] = None,
    ) -> GenerationOutcome:
        message_id = message_id or uuid.uuid4().hex
        self._snapshots[message_id] = snapshot

        if not result.succeeded:
            message = await self._repo.add_message(
                self.conversation_id,
                "assistant",
                error=result.error,
                position=position,
                message_id=message_id,
            )
            self._state = GenerationState.FAILED
            logger.info("Generation failed: %s", (result.error or {}).get("message"))
            return GenerationOutcome(
                state=GenerationState.FAILED, message=message, error=result.error
            )

        total = len(result.images)
        if total == 0:
            message = await self._repo.add_message(
                self.conversation_id,
                "assistant",
                content=result.text or NO_IMAGE_FALLBACK,
                thought=result.thought or None,
                thought_signature=result.thought_signature,
                position=position,
                message_id=message_id,
            )
            self._state = GenerationState.COMMITTED_TEXT_ONLY
            logger.info("Generation committed without images")
            return GenerationOutcome(
                state=GenerationState.COMMITTED_TEXT_ONLY,
                message=message,
                thought=result.thought,
                usage=result.usage,
            )

        assets: list[Asset] = []
        for offset, image in enumerate(result.images, start=1):
            assets.append(
                await self.generated.add(
                    image,
                    asset_label(snapshot.prompt, offset, total),
                    originating_message_id=message_id,
                )
            )
        primary = assets[-1]

        content = result.text or DEFAULT_DONE_CONTENT
        if total > 1:
            content += f"\n\n生成了{total}张图片,已使用最后一张作为修改主图"
        message = await self._repo.add_message(
            self.conversation_id,
            "assistant",
            content=content,
            thought=result.thought or None,
            thought_signature=result.thought_signature,
            generated_asset_id=primary.id,
            position=position,
            message_id=message_id,
        )

        warnings: list[str] = []
        evicted = self.references.select_primary(Reference.for_asset(primary))
        if evicted is not None:
            warnings.append(f"参考列表已满,已移除{evicted.display_name}")
        self._state = GenerationState.COMMITTED_WITH_IMAGE
        logger.info(
            "Generation committed: %d image(s), primary asset #%d",
            total,
            primary.number,
        )
        return GenerationOutcome(
            state=GenerationState.COMMITTED_WITH_IMAGE,
            message=message,
            assets=assets,
            primary=primary,
            warnings=warnings,
            thought=result.thought,
            usage=result.usage,
        )

    async def generate_style(
        self, image_data: str, preferences: StudioPreferences
    ) -> str:
        """Ask the server for a style description of ``image_data``."""

        payload = {
            "imageData": image_data,
            "styleGeneratorModel": preferences.style_generator_model,
            "styleGeneratorPrompt": preferences.style_generator_prompt,
        }
        accumulator = StreamAccumulator()
        try:
            async with aclosing(
                self._api.stream_style(payload, preferences.api_key)
            ) as events:
                async for event in events:
                    accumulator.apply(event)
                    if accumulator.finished:
                        break
        except GenerationRequestError as exc:
            accumulator.fail(exc.error)
        result = accumulator.outcome()
        if not result.succeeded:
            raise GenerationRequestError(result.error or {})
        return result.text.strip()


__all__ = [
    "GenerationBusyError",
    "GenerationOutcome",
    "GenerationSession",
    "GenerationState",
    "NO_IMAGE_FALLBACK",
    "RequestSnapshot",
    "RetryUnavailableError",
    "asset_label",
    "build_generation_payload",
]
