from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

from ..core.logging import get_logger
from ..core.metrics import record_extraction

logger = get_logger(name=__name__)

__all__ = [
    "ExtractionResult",
    "OutputExtractor",
    "extract_post_copy",
    "find_json_object",
    "normalize_content",
]


@dataclass(slots=True)
class ExtractionResult:
    status: Literal["success", "failed"]
    payload: dict[str, Any] | None = None
    document: Any = None
    error: str | None = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def _nested_text(entry: Any) -> str | None:
    if not isinstance(entry, Mapping):
        return None
    text = entry.get("text")
    if isinstance(text, Mapping) and isinstance(text.get("value"), str):
        return text["value"]
    return None


def normalize_content(raw: Any) -> Any:
    """Reduce a message list to the content of its final assistant message.

    Strings and mappings pass through untouched. For a list, the last entry with
    the ``assistant`` role wins and its first text part is preferred over the raw
    ``content``. A bare list of content parts yields the first part's text.
    """
    if isinstance(raw, (str, bytes, Mapping)) or raw is None:
        return raw
    if not isinstance(raw, Sequence):
        return raw
    for message in reversed(raw):
        if not isinstance(message, Mapping) or message.get("role") != "assistant":
            continue
        content = message.get("content")
        if isinstance(content, Sequence) and not isinstance(content, (str, bytes)) and content:
            text = _nested_text(content[0])
            if text is not None:
                return text
        return content
    if raw:
        text = _nested_text(raw[0])
        if text is not None:
            return text
    return None


def find_json_object(text: str) -> Any:
    """Decode the span between the first '{' and the last '}' of ``text``.

    Returns ``None`` when no such span exists or it does not decode.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None


def _decode(content: Any) -> tuple[Any, str]:
    if isinstance(content, Mapping):
        return dict(content), "mapping"
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if not isinstance(content, str):
        return None, "none"
    try:
        return json.loads(content), "direct"
    except json.JSONDecodeError:
        pass
    decoded = find_json_object(content)
    if decoded is None:
        return None, "none"
    return decoded, "fallback"


def _locate_post_copy(document: Any) -> Any:
    if not isinstance(document, Mapping):
        return None
    payload = document.get("payload")
    if isinstance(payload, Mapping) and "postCopy" in payload:
        return payload["postCopy"]
    return document.get("postCopy")


class OutputExtractor:
    """Pulls the structured post copy out of the planner's final answer. Never raises."""

    def extract(self, raw: Any) -> ExtractionResult:
        content = normalize_content(raw)
        document, strategy = _decode(content)
        if document is None:
            return self._failed(
                "Agent response did not contain a JSON object",
                raw=raw,
                strategy=strategy,
            )
        post_copy = _locate_post_copy(document)
        if post_copy is None:
            return self._failed(
                "Agent response is missing payload.postCopy",
                raw=raw,
                document=document,
                strategy=strategy,
            )
        if not isinstance(post_copy, Mapping):
            return self._failed(
                "payload.postCopy must be an object",
                raw=raw,
                document=document,
                strategy=strategy,
            )
        record_extraction(outcome="success", strategy=strategy)
        return ExtractionResult(status="success", payload=dict(post_copy), document=document, raw=raw)

    @staticmethod
    def _failed(message: str, *, raw: Any, strategy: str, document: Any = None) -> ExtractionResult:
        logger.warning("post_copy_extraction_failed", reason=message, strategy=strategy)
        record_extraction(outcome="failed", strategy=strategy)
        return ExtractionResult(status="failed", document=document, error=message, raw=raw)


def extract_post_copy(raw: Any) -> ExtractionResult:
    return OutputExtractor().extract(raw)
