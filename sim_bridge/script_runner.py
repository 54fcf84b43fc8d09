"""
Simulation script execution.

Runs shell scripts as asyncio subprocesses, either headless (collect all
output, return once) or streaming (callback per output line and on exit).
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = -1


@dataclass
class ScriptResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class SubprocessScriptRunner:
    """
    Executes simulation scripts with a shell interpreter.

    Args:
        shell: Interpreter used to run scripts
        default_timeout: Seconds before a run is killed (None = no limit)
        keep_scripts: Keep generated script files after the run
    """

    def __init__(self, shell: str = "bash", default_timeout: Optional[float] = None, keep_scripts: bool = False):
        self.shell = shell
        self.default_timeout = default_timeout
        self.keep_scripts = keep_scripts

    def _materialize(self, script: str, working_dir: Path) -> tuple:
        """Return (script_path, is_temporary) for a script name or script text."""
        if "\n" not in script and (working_dir / script).is_file():
            return working_dir / script, False

        path = working_dir / f".opt_script_{uuid.uuid4().hex[:12]}.sh"
        with open(path, 'w') as f:
            f.write(script)
        os.chmod(path, 0o755)
        return path, True

    async def execute(
        self,
        script: str,
        working_dir: str,
        on_output: Optional[Callable[[str], None]] = None,
        on_exit: Optional[Callable[[int], None]] = None,
        timeout: Optional[float] = None
    ) -> ScriptResult:
        """
        Run a script and wait for it to finish.

        Args:
            script: Script file name inside working_dir, or full script text
            working_dir: Directory the script runs in
            on_output: Streaming mode; called with each stdout/stderr line
            on_exit: Called with the exit code once the process ends
            timeout: Seconds before the process is killed (default_timeout if None)

        Returns:
            ScriptResult (exit code -1 on timeout)

        Raises:
            FileNotFoundError: If working_dir or the shell does not exist
        """
        working_dir = Path(working_dir)
        if not working_dir.is_dir():
            raise FileNotFoundError(f"Working directory not found: {working_dir}")

        timeout = timeout if timeout is not None else self.default_timeout
        script_path, temporary = self._materialize(script, working_dir)

        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, str(script_path),
                cwd=str(working_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )

            try:
                if on_output is None:
                    stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
                    stdout = stdout_bytes.decode("utf-8", errors="replace")
                    stderr = stderr_bytes.decode("utf-8", errors="replace")
                else:
                    stdout, stderr = await asyncio.wait_for(self._stream(proc, on_output), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error("Script %s timed out after %ss", script_path.name, timeout)
                proc.kill()
                await proc.wait()
                if on_exit is not None:
                    on_exit(TIMEOUT_EXIT_CODE)
                return ScriptResult(
                    exit_code=TIMEOUT_EXIT_CODE,
                    stderr=f"Execution timed out after {timeout}s",
                    timed_out=True,
                )

            if proc.returncode != 0:
                logger.warning(
                    "Script %s exited with code %d: %s",
                    script_path.name, proc.returncode, stderr[:500]
                )
            if on_exit is not None:
                on_exit(proc.returncode)

            return ScriptResult(exit_code=proc.returncode, stdout=stdout, stderr=stderr)

        finally:
            if temporary and not self.keep_scripts:
                script_path.unlink(missing_ok=True)

    async def _stream(self, proc, on_output: Callable[[str], None]) -> tuple:
        stdout_lines = []
        stderr_lines = []

        async def pump(stream, sink):
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace")
                sink.append(text)
                on_output(text)

        await asyncio.gather(pump(proc.stdout, stdout_lines), pump(proc.stderr, stderr_lines))
        await proc.wait()
        return "".join(stdout_lines), "".join(stderr_lines)
