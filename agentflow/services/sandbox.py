"""Out-of-process execution of user-supplied code node scripts.

User code never runs inside the server process. Each call starts a fresh
interpreter with an empty environment, feeds it a JSON payload on stdin and
reads a JSON envelope back from stdout. On POSIX systems CPU time and address
space are capped with :mod:`resource` before the child starts.
"""

import asyncio
import json
import os
import shutil
import sys
from typing import Any, Dict, List, Optional

from ..core.exceptions import SandboxError
from ..core.logging import get_logger

if os.name == "posix":
    import resource
else:
    resource = None

logger = get_logger(__name__)

_PYTHON_RUNNER = r"""
import json
import sys

payload = json.loads(sys.stdin.read())
lines = payload["code"].splitlines() or ["pass"]
source = "def __workflow_code(variables, context, previousResults):\n"
source += "\n".join("    " + line for line in lines) + "\n"

real_stdout = sys.stdout
sys.stdout = sys.stderr
try:
    namespace = {}
    exec(compile(source, "<workflow-code>", "exec"), namespace)
    variables = payload["variables"]
    result = namespace["__workflow_code"](variables, variables, payload["previousResults"])
    envelope = {"ok": True, "result": result}
    text = json.dumps(envelope)
except Exception as exc:
    text = json.dumps({"ok": False, "error": "%s: %s" % (type(exc).__name__, exc)})
sys.stdout = real_stdout
sys.stdout.write(text)
"""

_JAVASCRIPT_RUNNER = r"""
let input = '';
process.stdin.on('data', (chunk) => { input += chunk; });
process.stdin.on('end', async () => {
  const payload = JSON.parse(input);
  const log = console.log;
  console.log = console.error;
  let text;
  try {
    const fn = new Function('variables', 'context', 'previousResults', payload.code);
    let result = fn(payload.variables, payload.variables, payload.previousResults);
    if (result && typeof result.then === 'function') { result = await result; }
    text = JSON.stringify({ ok: true, result: result === undefined ? null : result });
  } catch (err) {
    text = JSON.stringify({ ok: false, error: String(err && err.message ? err.message : err) });
  }
  console.log = log;
  process.stdout.write(text);
});
"""


class CodeSandbox:
    """Runs short user scripts in a separate, resource-limited process."""

    def __init__(self, python_executable: Optional[str] = None, node_executable: Optional[str] = None,
                 memory_limit_mb: int = 256, max_output_bytes: int = 1024 * 1024):
        self.python_executable = python_executable or sys.executable
        self.node_executable = node_executable if node_executable is not None else shutil.which("node")
        self.memory_limit_mb = memory_limit_mb
        self.max_output_bytes = max_output_bytes

    def supported_languages(self) -> List[str]:
        languages = ["python"]
        if self.node_executable:
            languages.append("javascript")
        return languages

    def _command(self, language: str) -> List[str]:
        if language == "python":
            return [self.python_executable, "-I", "-c", _PYTHON_RUNNER]
        if language == "javascript" and self.node_executable:
            return [self.node_executable, "-e", _JAVASCRIPT_RUNNER]
        raise SandboxError(f"Unsupported language: {language}", language=language)

    def _limit_resources(self, timeout: float, limit_memory: bool):
        if resource is None:
            return None

        cpu_seconds = max(1, int(timeout) + 1)
        memory_bytes = self.memory_limit_mb * 1024 * 1024

        def apply_limits():
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds))
            if limit_memory:
                resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))

        return apply_limits

    async def run(self, code: str, language: str = "python", variables: Optional[Dict[str, Any]] = None,
                  previous_results: Optional[Dict[str, Any]] = None, timeout: float = 30) -> Any:
        """Execute ``code`` and return the value it returns.

        The code is the body of a function that receives ``variables`` (also
        bound as ``context``) and ``previousResults``.

        Raises:
            SandboxError: On an unsupported language, a timeout, a crash of the
                child process, or an exception raised by the user code.
        """
        language = (language or "python").lower()
        if not code or not code.strip():
            raise SandboxError("No code provided", language=language)
        command = self._command(language)

        try:
            payload = json.dumps({
                "code": code,
                "variables": variables or {},
                "previousResults": previous_results or {},
            }, default=str).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SandboxError(f"Could not serialise code inputs: {e}", language=language) from e

        # V8 reserves far more address space than it uses, so only cap python.
        preexec_fn = self._limit_resources(timeout, limit_memory=(language == "python"))
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={},
            preexec_fn=preexec_fn,
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise SandboxError(f"Code execution timed out after {timeout} seconds", language=language)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if len(stdout) > self.max_output_bytes:
            raise SandboxError("Code output exceeds the allowed size", language=language)

        if process.returncode != 0 and not stdout:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            message = detail[-1] if detail else f"exit status {process.returncode}"
            logger.warning(f"Sandboxed {language} process failed: {message}")
            raise SandboxError(f"Code execution failed: {message}", language=language)

        try:
            envelope = json.loads(stdout.decode("utf-8"))
        except ValueError as e:
            raise SandboxError("Code execution produced unreadable output", language=language) from e

        if not envelope.get("ok"):
            raise SandboxError(envelope.get("error") or "Code execution failed", language=language)
        return envelope.get("result")
