"""Audit logging for MCP Bridge.

Logs all tool executions for compliance and debugging.
Captures: user, tool, arguments, timestamp, result.
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.config import AuditSettings
from shared.logging import get_logger, redact
from shared.models import AuditEntry, AuditStatus, Principal, ToolDescriptor

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for MCP tool executions.

    All tool executions are logged with:
    - User identity
    - Tool name and kind
    - Arguments (with sensitive data redaction)
    - Timestamp
    - Result status
    """

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: AuditSettings) -> "AuditLogger":
        return cls(
            log_path=settings.log_path,
            enabled=settings.enabled,
            buffer_size=settings.buffer_size,
        )

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def create_entry(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        principal: Optional[Principal],
        error: Optional[str] = None,
        execution_time_ms: float = 0,
        tool: Optional[ToolDescriptor] = None,
        session_id: Optional[str] = None
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            session_id=session_id,
            user_login=principal.login if principal else None,
            user_id=principal.id if principal else None,
            tool_name=tool_name,
            kind=tool.kind if tool else None,
            arguments=redact(arguments),
            status=AuditStatus.ERROR if error else AuditStatus.SUCCESS,
            error=error,
            execution_time_ms=execution_time_ms,
        )

    async def log(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        principal: Optional[Principal],
        error: Optional[str] = None,
        execution_time_ms: float = 0,
        tool: Optional[ToolDescriptor] = None,
        session_id: Optional[str] = None
    ) -> Optional[AuditEntry]:
        """
        Log a tool execution.

        Returns:
            The recorded entry, None when auditing is disabled
        """
        if not self.enabled:
            return None

        entry = self.create_entry(
            tool_name, arguments, principal,
            error=error,
            execution_time_ms=execution_time_ms,
            tool=tool,
            session_id=session_id,
        )

        # Log to structured logger immediately
        logger.info(
            "Tool executed",
            audit_id=entry.id,
            user=entry.user_login,
            tool=entry.tool_name,
            status=entry.status.value,
            error=entry.error,
            execution_time_ms=round(entry.execution_time_ms, 2)
        )

        # Buffer for batch file writing
        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

        return entry

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e), path=str(self.log_path))
            # Keep entries for the next flush
            self._buffer[:0] = entries_to_write

    async def flush(self) -> None:
        """Public method to flush audit buffer."""
        async with self._lock:
            await self._flush()

    async def read_entries(
        self,
        tool_name: Optional[str] = None,
        user_login: Optional[str] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """Read back flushed entries, newest last."""
        results: list[AuditEntry] = []

        if not self.log_path.exists():
            return results

        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                if len(results) >= limit:
                    break
                try:
                    entry = AuditEntry(**json.loads(line.strip()))
                except (json.JSONDecodeError, ValueError):
                    continue
                if tool_name and entry.tool_name != tool_name:
                    continue
                if user_login and entry.user_login != user_login:
                    continue
                results.append(entry)

        return results
