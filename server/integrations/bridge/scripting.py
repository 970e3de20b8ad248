"""Plain text sends through the Messages app's scripting interface (osascript)."""
import asyncio
import logging

from core.errors import BridgeTimeout, Rejected, TransportFailure

logger = logging.getLogger(__name__)

SEND_TIMEOUT_S = 10


def escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def chat_send_script(chat_guid: str, text: str) -> str:
    return (
        'tell application "Messages"\n'
        f'    set targetChat to a reference to chat id "{escape_applescript(chat_guid)}"\n'
        f'    send "{escape_applescript(text)}" to targetChat\n'
        "end tell"
    )


def handle_send_script(handle: str, text: str, service: str = "iMessage") -> str:
    return (
        'tell application "Messages"\n'
        f"    set targetService to 1st account whose service type = {service}\n"
        f'    set targetBuddy to participant "{escape_applescript(handle)}" of targetService\n'
        f'    send "{escape_applescript(text)}" to targetBuddy\n'
        "end tell"
    )


class ScriptingSender:
    """Sends text to an existing chat or a bare handle."""

    def __init__(self, executable: str = "osascript", timeout_s: float = SEND_TIMEOUT_S):
        self.executable = executable
        self.timeout_s = timeout_s

    async def send_to_chat(self, chat_guid: str, text: str) -> None:
        await self._run(chat_send_script(chat_guid, text))

    async def send_to_handle(self, handle: str, text: str, service: str = "iMessage") -> None:
        if service not in ("iMessage", "SMS"):
            raise ValueError(f"Unsupported service: {service}")
        await self._run(handle_send_script(handle, text, service))

    async def _run(self, script: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, "-e", script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransportFailure(f"{self.executable} is not available on this host") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise BridgeTimeout(f"Scripted send timed out after {self.timeout_s}s") from e

        if proc.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip()
            logger.warning(f"Scripted send failed ({proc.returncode}): {error}")
            raise Rejected(error or "Scripted send failed", action="send")
