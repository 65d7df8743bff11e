"""Cursor agent CLI subprocess management.

Runs ``cursor-agent`` as an async subprocess in either plan mode (read-only,
produces a plan) or write mode (edits the working tree). Output is streamed
line-by-line to the debug log while it is collected.

There is no timeout: agent runs for large steps legitimately take a long
time, and a hung run only ties up one queue slot.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

from src.linear_pilot.classifier.clarification import needs_clarification

logger = logging.getLogger(__name__)


class AgentRunError(Exception):
    """Raised when the agent CLI cannot be started or exits non-zero.

    Attributes:
        exit_code: Process exit code (-1 if the process could not be started).
        output: Captured stderr (or stdout when stderr is empty).
    """

    def __init__(self, message: str, exit_code: int = -1, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


@dataclass
class PlanResult:
    """Result of a plan-mode run.

    Attributes:
        raw: The agent's plan (or draft plan with questions) as markdown.
        needs_clarification: True when the output asks the user questions.
    """

    raw: str
    needs_clarification: bool


class CursorRunner:
    """Invokes the Cursor agent CLI against a checkout.

    Attributes:
        agent_path: Filesystem path to the cursor-agent executable.
        api_key: Cursor API key passed through the environment, if set.
    """

    def __init__(self, agent_path: str, api_key: Optional[str] = None):
        self.agent_path = agent_path
        self.api_key = api_key

    async def run_plan_mode(self, prompt: str, workdir: Union[str, Path]) -> PlanResult:
        """Ask the agent for a plan without touching the working tree.

        Raises:
            AgentRunError: On spawn failure or non-zero exit.
        """
        output = await self._run(prompt, Path(workdir), plan_mode=True)
        return PlanResult(raw=output, needs_clarification=needs_clarification(output))

    async def run_write_mode(self, prompt: str, workdir: Union[str, Path]) -> str:
        """Let the agent edit files in ``workdir`` and return its summary.

        Raises:
            AgentRunError: On spawn failure or non-zero exit.
        """
        return await self._run(prompt, Path(workdir), plan_mode=False)

    def _build_command(self, prompt: str, workdir: Path, plan_mode: bool) -> List[str]:
        command = [self.agent_path, "--print"]
        if plan_mode:
            command.append("--plan")
        command.extend(
            [
                "--trust",
                "--approve-mcps",
                "--workspace",
                str(workdir),
                prompt,
            ]
        )
        return command

    def _build_env(self) -> dict:
        env = dict(os.environ)
        if self.api_key:
            env["CURSOR_API_KEY"] = self.api_key
        return env

    async def _run(self, prompt: str, workdir: Path, plan_mode: bool) -> str:
        mode = "plan" if plan_mode else "write"
        start_time = time.monotonic()
        logger.info(
            "Starting cursor-agent",
            extra={"mode": mode, "workspace": str(workdir), "prompt_length": len(prompt)},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *self._build_command(prompt, workdir, plan_mode),
                cwd=str(workdir),
                env=self._build_env(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to start cursor-agent: %s", exc)
            raise AgentRunError(f"Failed to start cursor-agent: {exc}") from exc

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        async def collect(stream: Optional[asyncio.StreamReader], name: str, sink: List[str]) -> None:
            async for line in self._read_stream(stream):
                sink.append(line)
                logger.debug("cursor-agent %s: %s", name, line)

        await asyncio.gather(
            collect(process.stdout, "stdout", stdout_lines),
            collect(process.stderr, "stderr", stderr_lines),
        )
        exit_code = await process.wait()
        duration = time.monotonic() - start_time

        stdout = "\n".join(stdout_lines).strip()
        stderr = "\n".join(stderr_lines).strip()

        if exit_code != 0:
            logger.error(
                "cursor-agent failed with exit code %d in %.1fs",
                exit_code,
                duration,
            )
            detail = stderr or stdout
            raise AgentRunError(
                f"cursor-agent exited with code {exit_code}: {detail[:500]}",
                exit_code=exit_code,
                output=detail,
            )

        logger.info("cursor-agent %s run completed in %.1fs", mode, duration)
        return stdout or stderr

    async def _read_stream(
        self, stream: Optional[asyncio.StreamReader]
    ) -> AsyncIterator[str]:
        if stream is None:
            return

        while True:
            raw_line = await stream.readline()
            if not raw_line:
                break
            yield raw_line.decode("utf-8", errors="replace").rstrip("\n")
