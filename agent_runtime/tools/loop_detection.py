"""Detect an agent calling the same tool with the same arguments twice."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from ..constants import DEFAULT_LOOP_MESSAGE

logger = logging.getLogger(__name__)


def fingerprint_arguments(arguments: Optional[Dict[str, Any]]) -> str:
    """Digest of the canonical JSON form of ``arguments``.

    Keys are sorted, so key order never changes the fingerprint.
    """
    canonical = json.dumps(arguments or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolLoopDetectionConfig(BaseModel):
    """Per-agent loop detection settings.

    ``message_template`` may contain ``{tool_name}`` and ``{previous_result}``
    placeholders.
    """

    enabled: bool = True
    message_template: Optional[str] = None

    def render_message(self, tool_name: str, previous_result: Any) -> str:
        template = self.message_template or DEFAULT_LOOP_MESSAGE
        return template.replace("{tool_name}", tool_name).replace(
            "{previous_result}", _render_result(previous_result)
        )


class ToolCallRecord(BaseModel):
    tool_name: str
    fingerprint: str
    arguments: Dict[str, Any]
    result: Any = None
    repeat_count: int = 0


class ToolCallTracker:
    """Remembers tool results for the duration of one agent execution."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], ToolCallRecord] = {}

    def lookup(self, tool_name: str, arguments: Optional[Dict[str, Any]]) -> Optional[ToolCallRecord]:
        """Return the earlier record for an identical call, counting the repeat."""
        record = self._records.get((tool_name, fingerprint_arguments(arguments)))
        if record is not None:
            record.repeat_count += 1
            logger.info(f"Repeated call to {tool_name} detected ({record.repeat_count} repeats)")
        return record

    def record(self, tool_name: str, arguments: Optional[Dict[str, Any]], result: Any) -> ToolCallRecord:
        fingerprint = fingerprint_arguments(arguments)
        record = ToolCallRecord(
            tool_name=tool_name,
            fingerprint=fingerprint,
            arguments=dict(arguments or {}),
            result=result,
        )
        self._records[(tool_name, fingerprint)] = record
        return record

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
