"""
Location and invocation of the Windows enrollment tools.

``certreq.exe`` and ``certutil.exe`` ship in ``%SystemRoot%\\System32``.
Every invocation is bounded by a timeout; callers decide how a timeout or
a missing executable is classified.
"""

import locale
import os
import subprocess
from typing import Dict, List, Optional

from certpilot.lib.constants import DEFAULT_SYSTEM_ROOT, TOOL_SUBDIRECTORY
from certpilot.lib.logger import logging


def tool_directory(environ: Optional[Dict[str, str]] = None) -> str:
    """Return the directory the enrollment tools are expected in."""
    environ = os.environ if environ is None else environ
    system_root = environ.get("SystemRoot") or environ.get("SYSTEMROOT")
    return os.path.join(system_root or DEFAULT_SYSTEM_ROOT, TOOL_SUBDIRECTORY)


def locate_tool(name: str, directory: Optional[str] = None) -> Optional[str]:
    """
    Find an enrollment tool.

    Args:
        name: Executable name, e.g. "certreq.exe"
        directory: Directory to look in instead of the system tool directory

    Returns:
        Full path to the tool, or None if it does not exist
    """
    path = os.path.join(directory or tool_directory(), name)
    if os.path.isfile(path):
        return path

    logging.debug(f"Tool {name!r} not found at {path!r}")
    return None


def output_encoding() -> str:
    """Return the code page the enrollment tools write their console output in."""
    if os.name == "nt":
        import ctypes

        return f"cp{ctypes.windll.kernel32.GetOEMCP()}"  # type: ignore
    return locale.getpreferredencoding(False)


def decode_output(data: Optional[bytes], encoding: Optional[str] = None) -> str:
    """
    Decode captured tool output.

    Bytes the code page cannot represent become U+FFFD.
    """
    if not data:
        return ""
    return data.decode(encoding or output_encoding(), errors="replace")


class ToolOutput:
    """Captured result of one tool invocation."""

    def __init__(self, returncode: int, stdout: str, stderr: str) -> None:
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined(self) -> str:
        """stdout followed by stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    def __repr__(self) -> str:
        return f"<ToolOutput returncode={self.returncode}>"


def run_tool(args: List[str], timeout: float, cwd: Optional[str] = None) -> ToolOutput:
    """
    Run a tool and capture its output.

    Args:
        args: Executable path followed by its arguments
        timeout: Seconds to wait before giving up
        cwd: Working directory for the process

    Returns:
        The captured output

    Raises:
        subprocess.TimeoutExpired: If the tool does not finish in time
        OSError: If the executable cannot be started
    """
    logging.debug(f"Running {' '.join(args)!r}")

    proc = subprocess.run(
        args,
        capture_output=True,
        timeout=timeout,
        cwd=cwd,
    )

    output = ToolOutput(
        proc.returncode, decode_output(proc.stdout), decode_output(proc.stderr)
    )
    logging.debug(f"{os.path.basename(args[0])} exited with {output.returncode}")
    return output
