"""
External Process Runner for Sentinel
"""

import logging
import asyncio
from pathlib import Path
from typing import Optional, Sequence

from .interfaces import IProcessRunner, ProcessResult

logger = logging.getLogger('sentinel.integrations.process_runner')


class ProcessRunner(IProcessRunner):
    """Runs commands with asyncio subprocesses so the event loop never blocks"""

    async def run(self, args: Sequence[str], cwd: Optional[Path] = None,
                  timeout: Optional[float] = None) -> ProcessResult:
        logger.debug(f"Running command: {' '.join(args)}")

        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            logger.error(f"Command timed out after {timeout}s: {args[0]}")
            return ProcessResult(returncode=-1, stderr=f"timed out after {timeout}s")
        except BaseException:
            # cancelled: the child must not outlive the caller
            await self._kill(process)
            logger.warning(f"Command interrupted, killed {args[0]} (pid {process.pid})")
            raise

        result = ProcessResult(
            returncode=process.returncode,
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace')
        )

        if not result.ok:
            logger.warning(f"Command {args[0]} exited with {result.returncode}: {result.stderr.strip()}")

        return result

    async def _kill(self, process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
