"""Asterisk command-line wrapper.

Runs ``asterisk -rx "<command>"`` against the local daemon's control socket.
Used for reloads after pjsip.conf writes and for live endpoint status.
"""
import logging
import re
import subprocess
from typing import Optional

from ..utils.retry import with_retry

logger = logging.getLogger(__name__)

PJSIP_RELOAD = "module reload res_pjsip.so"
DIALPLAN_RELOAD = "dialplan reload"
SHOW_ENDPOINTS = "pjsip show endpoints"

_NUMERIC = re.compile(r"^\d+$")
_NOT_REGISTERED_STATES = ("Unavailable", "Invalid")


class TelephonyError(Exception):
    """An Asterisk CLI command could not be run or failed."""
    pass


class CommandResult:
    """Result of one Asterisk CLI command."""

    def __init__(
        self,
        success: bool,
        output: str = "",
        error: str = "",
        command: str = "",
        returncode: Optional[int] = None,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.command = command
        self.returncode = returncode

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "command": self.command,
            "returncode": self.returncode,
        }

    def __repr__(self) -> str:
        status = "OK" if self.success else "FAILED"
        return f"CommandResult({status}, command={self.command!r})"


def _hint_for(output: str, returncode: Optional[int]) -> str:
    text = output.lower()
    if "unable to connect to remote asterisk" in text:
        return "Asterisk does not appear to be running; try 'systemctl start asterisk'"
    if "permission denied" in text:
        return "run as root or as a member of the asterisk group"
    if "no such command" in text:
        return "the required Asterisk module may not be loaded"
    if returncode is not None and returncode != 0:
        return f"exit status {returncode}"
    return ""


def parse_endpoints(output: str) -> dict[str, bool]:
    """Parse ``pjsip show endpoints`` into {extension: registered}.

    Only numeric endpoints are reported. An endpoint counts as registered
    unless its state is Unavailable or Invalid.
    """
    registered: dict[str, bool] = {}
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue

        if fields[0] == "Endpoint:":
            if fields[1].startswith("<"):
                continue  # column header row
            name = fields[1]
        else:
            name = fields[0]

        name = name.split("/", 1)[0]
        if not _NUMERIC.match(name):
            continue

        registered[name] = not any(state in line for state in _NOT_REGISTERED_STATES)
    return registered


class AsteriskCLI:
    """
    Thin wrapper around the ``asterisk -rx`` command.

    Transient failures (timeouts, busy control socket) are retried with
    exponential backoff before surfacing as TelephonyError.
    """

    def __init__(self, binary: str = "asterisk", timeout: float = 10.0):
        """
        Args:
            binary: Asterisk executable name or path
            timeout: Seconds to wait for each command
        """
        self.binary = binary
        self.timeout = timeout

    @with_retry(max_attempts=3, min_wait=0.5, max_wait=4)
    def _run(self, command: str) -> subprocess.CompletedProcess:
        args = [self.binary, "-rx", command]
        logger.debug(f"Running: {' '.join(args)}")
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def run_command(self, command: str) -> CommandResult:
        """Run a CLI command and capture the outcome without raising."""
        try:
            proc = self._run(command)
        except FileNotFoundError:
            return CommandResult(
                success=False,
                error=f"{self.binary} not found; is Asterisk installed?",
                command=command,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            return CommandResult(success=False, error=str(e), command=command)

        output = proc.stdout or ""
        error = (proc.stderr or "").strip()
        failed = proc.returncode != 0 or "unable to connect to remote asterisk" in output.lower()
        if failed:
            hint = _hint_for(output + error, proc.returncode)
            error = "; ".join(part for part in (error or output.strip(), hint) if part)
        return CommandResult(
            success=not failed,
            output=output,
            error=error,
            command=command,
            returncode=proc.returncode,
        )

    def execute_command(self, command: str) -> str:
        """
        Run a CLI command and return its output.

        Raises:
            TelephonyError: The command could not be run or failed
        """
        result = self.run_command(command)
        if not result.success:
            logger.error(f"Asterisk command failed: {command}: {result.error}")
            raise TelephonyError(f"'{command}' failed: {result.error}")
        return result.output

    def reload(self) -> str:
        """Reload the PJSIP module so pjsip.conf changes take effect."""
        output = self.execute_command(PJSIP_RELOAD)
        logger.info("PJSIP configuration reloaded")
        return output

    def reload_dialplan(self) -> str:
        output = self.execute_command(DIALPLAN_RELOAD)
        logger.info("Dialplan reloaded")
        return output

    def show_endpoints(self) -> str:
        return self.execute_command(SHOW_ENDPOINTS)

    def registrations(self) -> dict[str, bool]:
        """Live registration status per numeric endpoint."""
        return parse_endpoints(self.show_endpoints())
