# wolmgr/agent.py
"""
Reference waking agent.

Polls the task API, claims a batch of pending tasks, runs the configured wake
command for each MAC address and reports ``success`` or ``failed`` depending
on the command's exit status. The wake packet itself is sent by the external
command (``wakeonlan``, ``etherwake``, a router CLI...).

Environment:
    WOLMGR_URL              Base URL of the task API (default http://127.0.0.1:8000)
    WOLMGR_TOKEN            Agent token (one of the server's AUTHORIZED_TOKENS)
    POLL_INTERVAL_SECONDS   Delay between polls (default 10)
    CLAIM_LIMIT             Tasks claimed per poll (default 50)
    WAKE_COMMAND            Command template, ``{mac}`` is substituted (default ``wakeonlan {mac}``)
    WAKE_COMMAND_TIMEOUT    Seconds before the wake command is killed (default 30)
"""

import argparse
import asyncio
import os
import shlex
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from wolmgr.__version__ import __version__
from wolmgr.core.config import _parse_int
from wolmgr.core.setup_logging import LogContext, setup_default_logging

logger = setup_default_logging()

WakeRunner = Callable[[str], Awaitable[bool]]


@dataclass
class AgentSettings:
    server_url: str = "http://127.0.0.1:8000"
    token: str = ""
    poll_interval: int = 10
    claim_limit: int = 50
    wake_command: str = "wakeonlan {mac}"
    command_timeout: int = 30

    @classmethod
    def from_env(cls) -> "AgentSettings":
        return cls(
            server_url=os.getenv("WOLMGR_URL", cls.server_url).rstrip("/"),
            token=os.getenv("WOLMGR_TOKEN", ""),
            poll_interval=_parse_int(os.getenv("POLL_INTERVAL_SECONDS"), 10, min_value=1),
            claim_limit=_parse_int(os.getenv("CLAIM_LIMIT"), 50, min_value=1),
            wake_command=os.getenv("WAKE_COMMAND", cls.wake_command),
            command_timeout=_parse_int(os.getenv("WAKE_COMMAND_TIMEOUT"), 30, min_value=1),
        )


def build_wake_command(template: str, mac_address: str) -> List[str]:
    """Split the command template into argv with ``{mac}`` substituted."""
    return [part.replace("{mac}", mac_address) for part in shlex.split(template)]


async def run_wake_command(mac_address: str, template: str, timeout: int) -> bool:
    """
    Run the wake command for one MAC address.

    Returns:
        bool: True if the command exited with status 0
    """
    argv = build_wake_command(template, mac_address)
    if not argv:
        logger.error("WAKE_COMMAND is empty")
        return False

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as exc:
        logger.error(f"Cannot start wake command {argv[0]!r}: {exc}")
        return False

    try:
        output, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.error(f"Wake command timed out after {timeout}s")
        return False

    if process.returncode != 0:
        text = (output or b"").decode(errors="replace").strip()
        logger.warning(f"Wake command exited with {process.returncode}: {text}")
        return False
    return True


class WakingAgent:
    """
    Claim-wake-report loop against the task API.

    Args:
        settings: Agent settings
        client: HTTP client; created from ``settings.server_url`` if omitted
        wake_runner: Coroutine waking one MAC address; defaults to the configured command
    """

    def __init__(
        self,
        settings: AgentSettings,
        client: Optional[httpx.AsyncClient] = None,
        wake_runner: Optional[WakeRunner] = None,
    ):
        self.settings = settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=settings.server_url, timeout=10.0)
        self.wake_runner = wake_runner or self._default_wake_runner

    async def _default_wake_runner(self, mac_address: str) -> bool:
        return await run_wake_command(
            mac_address, self.settings.wake_command, self.settings.command_timeout
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": f"wolmgr-agent/{__version__}"}
        if self.settings.token:
            headers["X-API-Token"] = self.settings.token
        return headers

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def claim(self) -> List[Dict[str, Any]]:
        """Claim up to ``claim_limit`` tasks; returns ``[]`` on any failure."""
        try:
            response = await self.client.post(
                "/api/wol/tasks/claim",
                json={"limit": self.settings.claim_limit},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.error(f"Failed to claim tasks: {exc}")
            return []

        if response.status_code != 200:
            logger.error(f"Claim rejected ({response.status_code}): {response.text}")
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.error(f"Claim response is not JSON: {response.text[:200]!r}")
            return []

        tasks = payload.get("tasks") if isinstance(payload, dict) else None
        if not isinstance(tasks, list):
            logger.error(f"Claim response has no task list: {payload!r}")
            return []
        if tasks:
            logger.info(f"Claimed {len(tasks)} task(s)")
        return tasks

    async def report(self, task_id: str, status: str) -> bool:
        try:
            response = await self.client.put(
                "/api/wol/tasks",
                json={"id": task_id, "status": status},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.error(f"Failed to report {status} for task {task_id}: {exc}")
            return False

        if response.status_code != 200:
            logger.error(
                f"Status report for task {task_id} rejected ({response.status_code}): {response.text}"
            )
            return False
        return True

    async def process_task(self, task: Dict[str, Any]) -> Optional[str]:
        task_id = task.get("id") if isinstance(task, dict) else None
        mac_address = task.get("macAddress") if isinstance(task, dict) else None
        if not task_id or not mac_address:
            logger.warning(f"Ignoring malformed claimed task: {task!r}")
            return None

        with LogContext(logger, task_id=task_id, mac_address=mac_address, component="agent"):
            try:
                woke = await self.wake_runner(mac_address)
            except Exception:
                # The task is ours until reported; never leave it in processing
                logger.exception(f"Wake command crashed for {mac_address} (task {task_id})")
                woke = False
            status = "success" if woke else "failed"
            if woke:
                logger.info(f"WOL sent: {mac_address} (task {task_id})")
            else:
                logger.warning(f"WOL failed: {mac_address} (task {task_id})")
            await self.report(task_id, status)
        return status

    async def run_once(self) -> int:
        """One poll: claim, wake and report. Returns the number of tasks handled."""
        handled = 0
        for task in await self.claim():
            if await self.process_task(task) is not None:
                handled += 1
        return handled

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info(
            f"Waking agent started: server={self.settings.server_url} "
            f"poll={self.settings.poll_interval}s limit={self.settings.claim_limit}"
        )
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.poll_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Waking agent exiting")


async def _run(settings: AgentSettings, once: bool) -> None:
    agent = WakingAgent(settings)
    try:
        if once:
            await agent.run_once()
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:  # Windows event loops
                signal.signal(sig, lambda signum, frame: stop_event.set())
        await agent.run(stop_event)
    finally:
        await agent.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Wake-on-LAN waking agent")
    parser.add_argument("--once", action="store_true", help="Process a single batch and exit")
    args = parser.parse_args(argv)

    settings = AgentSettings.from_env()
    if not settings.token:
        logger.warning("WOLMGR_TOKEN is not set, requests are sent without a token")

    asyncio.run(_run(settings, args.once))


if __name__ == "__main__":
    main()
