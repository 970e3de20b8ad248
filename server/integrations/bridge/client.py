"""
Command bridge client.

The external executor watches a single-slot file mailbox: one JSON command
file in, one JSON response file out, matched by correlation id. It handles
one request at a time, so every send here goes through one FIFO lock.
"""
import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from config.settings import settings
from core.errors import BridgeNotRunning, BridgeTimeout, Rejected
from core.polling import Predicate, poll_until
from models.action import LONG_RUNNING_ACTIONS, BridgeCommand, BridgeResponse

logger = logging.getLogger(__name__)

LivenessProbe = Callable[[], Awaitable[bool]]


async def process_running(name: str) -> bool:
    """Process-existence check via pgrep."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "pgrep", "-x", name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError:
        # No pgrep on this host; the response timeout still bounds the wait
        logger.warning("pgrep not available, skipping bridge liveness check")
        return True
    return await proc.wait() == 0


class CommandBridge:
    """Serialized request/response exchange with the command executor."""

    def __init__(
        self,
        command_path: Optional[str] = None,
        response_path: Optional[str] = None,
        process_name: Optional[str] = None,
        poll_interval_ms: Optional[int] = None,
        liveness_interval_ms: Optional[int] = None,
        liveness_probe: Optional[LivenessProbe] = None,
    ):
        self.command_path = Path(command_path or settings.COMMAND_PATH)
        self.response_path = Path(response_path or settings.RESPONSE_PATH)
        self.process_name = process_name or settings.BRIDGE_PROCESS_NAME
        self.poll_interval_ms = poll_interval_ms or settings.BRIDGE_POLL_INTERVAL_MS
        self.liveness_interval_ms = liveness_interval_ms or settings.BRIDGE_LIVENESS_INTERVAL_MS
        self._liveness_probe = liveness_probe or (lambda: process_running(self.process_name))
        # asyncio.Lock wakes waiters in FIFO order
        self._queue_lock = asyncio.Lock()

    async def is_running(self) -> bool:
        return await self._liveness_probe()

    def timeout_for(self, command: BridgeCommand) -> int:
        if command.action in LONG_RUNNING_ACTIONS:
            return settings.BRIDGE_LONG_TIMEOUT_MS
        return settings.BRIDGE_DEFAULT_TIMEOUT_MS

    async def send(self, command: BridgeCommand, timeout_ms: Optional[int] = None) -> BridgeResponse:
        """
        Deliver one command and wait for its response.

        Raises:
            BridgeNotRunning: executor process is not alive
            BridgeTimeout: no matching response before the deadline
            Rejected: executor answered with success=false
        """
        timeout_ms = timeout_ms or self.timeout_for(command)

        async with self._queue_lock:
            logger.info(f"Bridge command {command.action.value} ({command.id})")
            response = await self._exchange(command, timeout_ms)

        if not response.success:
            logger.warning(f"Bridge rejected {command.action.value}: {response.error}")
            raise Rejected(
                response.error or f"Bridge rejected {command.action.value}",
                action=command.action.value,
            )
        return response

    async def verify(
        self,
        predicate: Predicate,
        timeout_ms: Optional[int] = None,
        poll_ms: Optional[int] = None,
    ) -> bool:
        """Poll until the store reflects the command's effect; False on deadline."""
        return await poll_until(
            predicate,
            timeout_ms or settings.VERIFY_TIMEOUT_MS,
            poll_ms or settings.VERIFY_POLL_MS,
        )

    async def _exchange(self, command: BridgeCommand, timeout_ms: int) -> BridgeResponse:
        if not await self.is_running():
            raise BridgeNotRunning(f"{self.process_name} is not running")

        # A response left behind by an aborted run must not be matched
        await asyncio.to_thread(self._discard_response)
        await asyncio.to_thread(self._write_command, command)

        deadline = time.monotonic() + timeout_ms / 1000
        next_liveness = time.monotonic() + self.liveness_interval_ms / 1000

        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval_ms / 1000)

            response = await asyncio.to_thread(self._read_response, command.id)
            if response is not None:
                return response

            if time.monotonic() >= next_liveness:
                next_liveness = time.monotonic() + self.liveness_interval_ms / 1000
                if not await self.is_running():
                    raise BridgeNotRunning(
                        f"{self.process_name} stopped while waiting for {command.action.value}"
                    )

        raise BridgeTimeout(f"No bridge response for {command.action.value} within {timeout_ms}ms")

    def _write_command(self, command: BridgeCommand) -> None:
        tmp_path = self.command_path.with_name(self.command_path.name + ".tmp")
        tmp_path.write_text(json.dumps(command.to_wire()), encoding="utf-8")
        os.replace(tmp_path, self.command_path)

    def _discard_response(self) -> None:
        try:
            self.response_path.unlink()
        except FileNotFoundError:
            pass

    def _read_response(self, command_id: str) -> Optional[BridgeResponse]:
        try:
            data = json.loads(self.response_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            # Partially written; try again on the next poll
            return None

        if not isinstance(data, dict) or data.get("id") != command_id:
            return None

        self._discard_response()
        try:
            return BridgeResponse.model_validate(data)
        except ValidationError:
            logger.warning(f"Malformed bridge response: {data}")
            return BridgeResponse(id=command_id, success=False, error="Malformed bridge response")
