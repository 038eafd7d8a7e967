"""
Typed content envelopes for memory writes.

Producers build one of these and call ``to_content()`` so every store sees the
same payload shape for a given kind of record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class StorageTargets:
    working: bool = False
    episodic: bool = False
    semantic: bool = False
    procedural: bool = False

    def as_list(self) -> list[str]:
        return [
            name
            for name in ("working", "episodic", "semantic", "procedural")
            if getattr(self, name)
        ]

    def any(self) -> bool:
        return self.working or self.episodic or self.semantic or self.procedural


@dataclass(frozen=True)
class VisualContextEnvelope:
    """Working-memory view of a screenshot: caption only, marked temporary."""

    caption_summary: str
    user_query: str = ""
    metadata: dict = field(default_factory=dict)
    ai_caption: Optional[str] = None

    def to_content(self) -> dict:
        meta = dict(self.metadata)
        meta["ai_caption"] = self.ai_caption if self.ai_caption is not None else self.caption_summary
        meta["is_temporary"] = True
        return {
            "type": "visual_context",
            "caption_summary": self.caption_summary,
            "has_screenshot": True,
            "user_query": self.user_query,
            "metadata": meta,
        }


@dataclass(frozen=True)
class VisualCaption:
    user_query: str
    ai_caption: str
    timestamp: str
    screenshot_size: str = "unknown"
    app_detected: str = "Desktop Application"
    browser_url: Optional[str] = None
    domain: Optional[str] = None

    def to_content(self) -> dict:
        return {
            "user_query": self.user_query,
            "ai_caption": self.ai_caption,
            "app_detected": self.app_detected,
            "browser_url": self.browser_url,
            "domain": self.domain,
            "screenshot_size": self.screenshot_size,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class VisualMemoryEnvelope:
    """Episodic-memory view of a screenshot: image plus structured caption."""

    screenshot: Any
    caption: VisualCaption
    privacy_check: dict = field(default_factory=lambda: {"hasSensitiveContent": False})
    metadata: dict = field(default_factory=dict)

    def to_content(self) -> dict:
        return {
            "type": "visual_memory",
            "screenshot": self.screenshot,
            "caption": self.caption.to_content(),
            "privacy_check": dict(self.privacy_check),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class VisualReferenceEnvelope:
    """Working-memory back-reference to an episodic visual memory."""

    visual_memory_id: str
    caption_summary: str

    def to_content(self) -> dict:
        return {
            "type": "visual_context",
            "visual_memory_id": self.visual_memory_id,
            "caption_summary": self.caption_summary,
            "has_screenshot": True,
        }
