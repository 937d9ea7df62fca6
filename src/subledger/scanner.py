"""
External scanner collaborator.

Runs a subfinder-compatible enumeration tool as a subprocess and collects the
hostnames it reports as JSON lines.
"""

import asyncio
import json
import shutil
from typing import Iterable, Optional

from .audit_logger import AuditLogger, null_logger
from .config import ScanConfig
from .exceptions import ScanExecutionError, ToolNotFoundError
from .hostname import is_valid_hostname, normalize_host


class SubfinderScanner:
    """Async wrapper around the ``subfinder`` command line tool."""

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config or ScanConfig()
        self._log = (logger or null_logger()).for_component("Scanner")

    def build_command(self, executable: str, domain: str) -> list[str]:
        command = [executable, "-d", domain]
        if self._config.all_sources:
            command.append("-all")
        command.extend(["-silent", "-json"])
        return command

    async def scan(self, domain: str) -> set[str]:
        """
        Enumerate the subdomains of a root domain.

        Args:
            domain: Root domain to enumerate

        Returns:
            Normalized, unique hostnames reported by the tool

        Raises:
            ToolNotFoundError: If the executable is not on PATH
            ScanExecutionError: If the tool fails, exits non-zero or times out
        """
        executable = shutil.which(self._config.executable)
        if executable is None:
            raise ToolNotFoundError(
                code="tool_not_found",
                message=f"{self._config.executable} not found in PATH",
                details={
                    "executable": self._config.executable,
                    "install": "https://github.com/projectdiscovery/subfinder",
                },
            )

        command = self.build_command(executable, domain)
        self._log.info("Scan started", {"domain": domain, "command": command})

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ScanExecutionError(
                code="start_failed",
                message=f"Failed to start {executable}: {e}",
                details={"domain": domain},
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ScanExecutionError(
                code="timeout",
                message=f"Scan timed out after {self._config.timeout_seconds:.0f}s",
                details={"domain": domain},
            ) from e

        if proc.returncode != 0:
            raise ScanExecutionError(
                code="exit_status",
                message=f"{self._config.executable} exited with status {proc.returncode}",
                details={
                    "domain": domain,
                    "returncode": proc.returncode,
                    "stderr": (stderr or b"").decode(errors="replace")[-500:],
                },
            )

        hosts = self.parse_output((stdout or b"").decode(errors="replace").splitlines())
        self._log.info("Scan finished", {"domain": domain, "found": len(hosts)})
        return hosts

    def parse_output(self, lines: Iterable[str]) -> set[str]:
        """Extract normalized hosts from JSON lines, skipping lines that do not parse."""
        hosts: set[str] = set()
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except ValueError:
                self._log.warn("Invalid JSON from scanner", {"line": line[:200]})
                continue

            host = row.get("host") if isinstance(row, dict) else None
            if not isinstance(host, str):
                self._log.warn("Scanner line has no host", {"line": line[:200]})
                continue

            host = normalize_host(host)
            if not host:
                continue
            if not is_valid_hostname(host):
                self._log.debug("Scanner reported a non-FQDN host", {"host": host[:253]})
            hosts.add(host)
        return hosts
