"""HTTP and subprocess helpers used by providers.

Both helpers enforce a timeout and raise ``asyncio.TimeoutError`` when it
expires, so callers can classify the failure as a timeout.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import aiohttp

API_TIMEOUT_SECONDS = 5.0
CLI_TIMEOUT_SECONDS = 10.0


@dataclass
class HttpResponse:
    """Status and decoded JSON body (None when the body is not JSON)."""
    status: int
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class CommandResult:
    """Exit code and captured output of a CLI call."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


async def aiohttp_request(
    method: str,
    url: str,
    *,
    headers: Optional[Mapping[str, str]] = None,
    json_body: Any = None,
    timeout: float = API_TIMEOUT_SECONDS,
    proxy: Optional[str] = None,
) -> HttpResponse:
    """Perform one request with a total timeout."""
    async with aiohttp.ClientSession() as session:
        async with session.request(
            method,
            url,
            headers=dict(headers or {}),
            json=json_body,
            proxy=proxy,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            text = await response.text()
            try:
                data = json.loads(text) if text else None
            except ValueError:
                data = None
            return HttpResponse(status=response.status, data=data)


async def run_command(
    args: list[str],
    *,
    timeout: float = CLI_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """Run a CLI, killing it if it outlives ``timeout``."""
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env) if env is not None else None,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
