#!/usr/bin/env python3
"""
Terminal Tool Module

Runs shell commands on the local machine on behalf of the model and reports
the outcome as a structured result. Failures (non-zero exit, timeout, spawn
errors) are returned as data, never raised, so they flow back into the
conversation as an ordinary tool turn.

Result shape::

    {"success": True,  "output": "...", "exitCode": 0}
    {"success": False, "output": "...", "exitCode": 2, "error": "..."}

Environment variables:
- TERMINAL_TIMEOUT: default per-command timeout in seconds (60)
- TERMINAL_CWD: working directory for commands (process cwd)

Usage:
    from tools.terminal_tool import execute_command

    result = execute_command("ls -la")
"""

import logging
import os
import subprocess
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

EXECUTE_COMMAND_TOOL = "executeCommand"
DEFAULT_TIMEOUT = 60
TIMEOUT_EXIT_CODE = 124
MAX_OUTPUT_CHARS = 100_000

TERMINAL_TOOL_DESCRIPTION = (
    "Execute terminal commands as if opening a terminal and running them directly. "
    "Use this for any command-line operations."
)

EXECUTE_COMMAND_SCHEMA = {
    "type": "function",
    "function": {
        "name": EXECUTE_COMMAND_TOOL,
        "description": TERMINAL_TOOL_DESCRIPTION,
        "parameters": {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The terminal command to execute",
                },
            },
            "required": ["command"],
        },
    },
}


def _default_timeout() -> int:
    try:
        return int(os.getenv("TERMINAL_TIMEOUT", DEFAULT_TIMEOUT))
    except ValueError:
        return DEFAULT_TIMEOUT


class LocalEnvironment:
    """
    Local execution environment.

    - stdin is DEVNULL so interactive prompts fail fast instead of hanging
    - stderr is merged into stdout so the model sees both streams in order
    """

    def __init__(self, cwd: str = "", timeout: int = None, env: dict = None):
        self.cwd = cwd or os.getenv("TERMINAL_CWD") or os.getcwd()
        self.timeout = timeout or _default_timeout()
        self.env = env or {}

    def execute(self, command: str, cwd: str = "", *, timeout: Optional[int] = None) -> dict:
        """Execute a command locally. Returns ``{"output", "returncode"}``."""
        work_dir = cwd or self.cwd
        effective_timeout = timeout or self.timeout
        try:
            result = subprocess.run(
                command,
                shell=True,
                text=True,
                cwd=work_dir,
                env=os.environ | self.env,
                timeout=effective_timeout,
                encoding="utf-8",
                errors="replace",
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
            return {"output": result.stdout, "returncode": result.returncode}
        except subprocess.TimeoutExpired:
            return {
                "output": f"Command timed out after {effective_timeout}s",
                "returncode": TIMEOUT_EXIT_CODE,
                "timed_out": True,
            }
        except OSError as e:
            return {"output": f"Execution error: {e}", "returncode": 1}


def _truncate(output: str) -> str:
    if len(output) <= MAX_OUTPUT_CHARS:
        return output
    omitted = len(output) - MAX_OUTPUT_CHARS
    return output[:MAX_OUTPUT_CHARS] + f"\n... [{omitted} characters truncated]"


def execute_command(
    command: str,
    timeout: Optional[int] = None,
    cwd: Optional[str] = None,
    env: LocalEnvironment = None,
) -> Dict[str, Any]:
    """Run *command* and return the structured result. Never raises."""
    env = env or LocalEnvironment(cwd=cwd or "", timeout=timeout)
    if not command or not command.strip():
        return {"success": False, "output": "No command given", "exitCode": 1, "error": "empty command"}

    logger.debug("Executing command: %s", command)
    raw = env.execute(command, cwd=cwd or "", timeout=timeout)
    output = _truncate(raw.get("output") or "")
    exit_code = raw.get("returncode", 1)

    if exit_code == 0:
        return {"success": True, "output": output or "Command completed", "exitCode": 0}

    if raw.get("timed_out"):
        error = output
    else:
        error = f"Command failed with exit code {exit_code}"
    logger.info("%s: %s", error, command)
    return {"success": False, "output": output or error, "exitCode": exit_code, "error": error}


def handle_tool_call(name: str, arguments: Dict[str, Any], timeout: Optional[int] = None) -> Dict[str, Any]:
    """Dispatch a model tool call by name. Unknown tools yield a failure result."""
    if name == EXECUTE_COMMAND_TOOL:
        return execute_command(str(arguments.get("command", "")), timeout=timeout)
    return {"success": False, "output": f"Unknown tool: {name}", "exitCode": 1, "error": "unknown tool"}
