"""
Builders for visual memory writes.

Each builder returns the ``(content, context, metadata)`` triple a store
expects, so the service only decides which store to call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from core.services.memory_envelopes import (
    VisualCaption,
    VisualContextEnvelope,
    VisualMemoryEnvelope,
    VisualReferenceEnvelope,
)

APP_NAME = "Desktop Application"


@dataclass(frozen=True)
class VisualMemoryRequest:
    query: Optional[str] = None
    image_data: Optional[str] = None
    is_descriptive: bool = False
    metadata: dict = field(default_factory=dict)

    @staticmethod
    def from_value(value: Optional[Mapping[str, Any]]) -> "VisualMemoryRequest":
        if isinstance(value, VisualMemoryRequest):
            return value
        data = dict(value or {})
        image_data = data.get("image_data", data.get("imageData"))
        is_descriptive = data.get("is_descriptive", data.get("isDescriptive", False))
        return VisualMemoryRequest(
            query=data.get("query") or None,
            image_data=image_data or None,
            is_descriptive=bool(is_descriptive),
            metadata=dict(data.get("metadata") or {}),
        )

    @property
    def session_id(self) -> Optional[str]:
        return self.metadata.get("session_id", self.metadata.get("sessionId"))

    @property
    def screenshot_size(self) -> str:
        width = self.metadata.get("width")
        height = self.metadata.get("height")
        if width is None and height is None:
            return "unknown"
        return f"{width}x{height}"


def working_visual_write(request: VisualMemoryRequest, caption: str) -> tuple[dict, dict, dict]:
    content = VisualContextEnvelope(
        caption_summary=caption,
        user_query=request.query or "",
        metadata=request.metadata,
    ).to_content()
    context = {"session_id": request.session_id, "hasScreenshot": True, "isCurrentScreen": True}
    metadata = {
        "isAttentionSink": True,
        "isTemporary": True,
        "captureSource": request.metadata.get("captured_for"),
    }
    return content, context, metadata


def episodic_visual_write(request: VisualMemoryRequest, caption: str) -> tuple[dict, dict, dict]:
    visual_caption = VisualCaption(
        user_query=request.query or "",
        ai_caption=caption,
        timestamp=request.metadata.get("timestamp"),
        screenshot_size=request.screenshot_size,
        app_detected=APP_NAME,
    )
    envelope = VisualMemoryEnvelope(
        screenshot=request.image_data,
        caption=visual_caption,
        metadata=request.metadata,
        **({"privacy_check": request.metadata["privacy_check"]} if request.metadata.get("privacy_check") else {}),
    )
    context = {
        "session_id": request.session_id,
        "episodeType": "visual_learning",
        "userInitiated": True,
        "hasScreenshot": True,
    }
    metadata = {
        "query_length": len(request.query) if request.query else 0,
        "app_name": APP_NAME,
        "has_llm_caption": True,
    }
    return envelope.to_content(), context, metadata


def working_reference_write(request: VisualMemoryRequest, visual_memory_id: str, caption: str) -> tuple[dict, dict, dict]:
    content = VisualReferenceEnvelope(visual_memory_id=visual_memory_id, caption_summary=caption).to_content()
    context = {"hasScreenshot": True, "session_id": request.session_id}
    return content, context, {"isAttentionSink": True}
