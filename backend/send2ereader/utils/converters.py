"""Thin wrapper around external converter CLIs (kindlegen, kepubify)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConverterResult:
    returncode: int
    output: str


async def run_converter(executable: str, *args: str, cwd: Path) -> ConverterResult:
    """Execute ``executable`` with the given arguments inside ``cwd``.

    Parameters
    ----------
    executable:
        Name or path of the converter binary.
    *args:
        Arguments passed directly to the converter.
    cwd:
        Working directory; converters are given bare file names relative to it.

    Returns
    -------
    ConverterResult
        Exit status plus stdout and stderr interleaved as text.

    Raises
    ------
    OSError
        If the process could not be launched (e.g. the binary is missing).
    """

    cmd = [executable, *args]
    logger.info("Running %s in %s", " ".join(cmd), cwd)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await process.communicate()
    output = stdout.decode("utf-8", errors="replace") if stdout else ""

    logger.info("%s exited with code %s", executable, process.returncode)
    if output:
        logger.debug("%s output: %s", executable, output)
    return ConverterResult(returncode=process.returncode, output=output)
