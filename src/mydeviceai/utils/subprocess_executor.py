"""Short-lived helper commands (archive tools and the like) with debug logging."""

import asyncio
import subprocess
from pathlib import Path

from mydeviceai.logger import get_logger

logger = get_logger(__name__)

# Output beyond this is cut from debug logs
MAX_LOGGED_OUTPUT = 4096


def _decode_for_log(data: bytes | None) -> str:
    text = (data or b"").decode("utf-8", errors="replace").strip()
    if len(text) > MAX_LOGGED_OUTPUT:
        return text[:MAX_LOGGED_OUTPUT] + "..."
    return text


class SubprocessExecutor:
    """Runs a helper command to completion and collects its output.

    Long-running processes (llama-server) are not started here; the server
    supervisor owns those.
    """

    @staticmethod
    async def run(
        *args: str,
        cwd: Path | str | None = None,
        check: bool = False,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[bytes]:
        """
        Run ``args`` and wait for it to exit.

        Args:
            *args: Program and arguments
            cwd: Working directory
            check: Raise CalledProcessError on a non-zero exit code
            timeout: Seconds before the process is killed

        Raises:
            subprocess.CalledProcessError: If check is set and the command failed
            asyncio.TimeoutError: If the timeout elapsed; the process is killed first
            OSError: If the program cannot be started
        """
        command = " ".join(args)
        logger.debug("Running helper command", command=command, cwd=str(cwd) if cwd else None)

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Helper command timed out after {timeout}s", command=command)
            process.kill()
            await process.wait()
            raise

        returncode = process.returncode if process.returncode is not None else -1
        logger.debug(
            "Helper command finished",
            command=command,
            returncode=returncode,
            stdout=_decode_for_log(stdout),
            stderr=_decode_for_log(stderr),
        )

        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, args, stdout, stderr)
        return subprocess.CompletedProcess(args, returncode, stdout, stderr)
