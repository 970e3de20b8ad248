"""Scheduled ("send later") messages through the bridge's command-line mode."""
import asyncio
import json
import logging
from typing import Any, List, Optional

from config.settings import settings
from core.errors import BridgeNotRunning, BridgeTimeout, Rejected, TransportFailure
from models.action import ScheduledMessage

logger = logging.getLogger(__name__)


class ScheduleBridge:
    """
    Runs the bridge executable once per request. Every invocation prints a
    single ``{"ok": bool, "data": ..., "error": str}`` JSON object on stdout.
    """

    def __init__(self, executable: Optional[str] = None, timeout_s: Optional[float] = None):
        self.executable = executable or settings.SCHEDULE_BRIDGE_PATH
        self.timeout_s = timeout_s or settings.SCHEDULE_BRIDGE_TIMEOUT_S

    async def run(self, args: List[str]) -> Any:
        """Run one CLI command and return its ``data`` payload."""
        command = args[0] if args else ""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BridgeNotRunning(f"Schedule bridge not found at {self.executable}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise BridgeTimeout(f"Schedule bridge '{command}' timed out after {self.timeout_s}s") from e

        try:
            result = json.loads(stdout.decode("utf-8"))
        except ValueError as e:
            logger.error(
                f"Schedule bridge '{command}' exited {proc.returncode} with unparseable output: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )
            raise TransportFailure(f"Schedule bridge '{command}' returned invalid output") from e

        if not result.get("ok"):
            raise Rejected(result.get("error") or "Bridge command failed", action=command)
        return result.get("data")

    async def list(self, chat_guid: Optional[str] = None) -> List[ScheduledMessage]:
        args = ["list", chat_guid] if chat_guid else ["list-all"]
        data = await self.run(args) or []
        return [ScheduledMessage.model_validate(item) for item in data]

    async def schedule(self, chat_guid: str, text: str, scheduled_at: int) -> Any:
        return await self.run(["schedule", chat_guid, text, str(scheduled_at)])

    async def edit_text(self, guid: str, chat_guid: str, text: str) -> Any:
        return await self.run(["edit-text", guid, chat_guid, text])

    async def edit_time(self, guid: str, chat_guid: str, scheduled_at: int) -> Any:
        return await self.run(["edit-time", guid, chat_guid, str(scheduled_at)])

    async def cancel(self, guid: str, chat_guid: str) -> Any:
        return await self.run(["cancel", guid, chat_guid])
