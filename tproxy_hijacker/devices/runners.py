"""
Command runners: the local host via subprocess, or a remote host via SSH.
"""

import shlex
import subprocess
from typing import List, Optional

from ..core.credentials import credential_manager
from ..core.logging_config import get_logger
from .base import CommandResult, CommandRunner

logger = get_logger(__name__)

PRIVILEGED_COMMANDS = ("iptables", "iptables-save", "ip", "sh")


class LocalRunner(CommandRunner):
    """Runs commands on this host."""

    def _execute(self, argv: List[str], input_data: Optional[str]) -> CommandResult:
        command = shlex.join(argv)
        try:
            proc = subprocess.run(
                argv,
                input=input_data,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=f"Command not found: {e.filename or argv[0]}",
                execution_time=0.0,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=f"Command timed out after {self.timeout}s",
                execution_time=0.0,
            )

        return CommandResult(
            command=command,
            success=proc.returncode == 0,
            output=proc.stdout or "",
            error=proc.stderr or None,
            exit_code=proc.returncode,
            execution_time=0.0,
        )

    def _write(self, path: str, content: str) -> CommandResult:
        command = f"echo {shlex.quote(content)} > {shlex.quote(path)}"
        try:
            with open(path, "w") as f:
                f.write(f"{content}\n")
        except OSError as e:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=str(e),
                exit_code=1,
                execution_time=0.0,
            )
        return CommandResult(
            command=command, success=True, output="", exit_code=0, execution_time=0.0
        )


class SSHRunner(CommandRunner):
    """Runs commands on a remote Linux host over SSH, using sudo for firewall changes."""

    def __init__(
        self,
        host: str,
        username: str,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
        port: int = 22,
        use_sudo: bool = True,
        timeout: int = 30,
        dry_run: bool = False,
    ):
        super().__init__(timeout=timeout, dry_run=dry_run)
        self.host = host
        self.username = username
        self.password = password
        self.private_key = private_key
        self.port = port
        self.use_sudo = use_sudo
        self._ssh_client = None

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}"

    @property
    def is_connected(self) -> bool:
        return self._ssh_client is not None

    def _new_client(self):
        import paramiko

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        return client

    def _try_connect(self, **extra) -> bool:
        connect_kwargs = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "timeout": self.timeout,
            "look_for_keys": True,
            "allow_agent": credential_manager.allow_ssh_agent,
        }
        connect_kwargs.update(extra)

        client = self._new_client()
        try:
            client.connect(**connect_kwargs)
            stdin, stdout, stderr = client.exec_command("echo 'test'")
            stdout.read()
        except Exception as e:
            logger.debug("SSH authentication to %s failed: %s", self.target, e)
            client.close()
            return False

        self._ssh_client = client
        return True

    def connect(self) -> bool:
        """Connect to the remote host, trying key, password, agent and prompt in turn."""
        if self._ssh_client:
            return True

        if not self.username:
            logger.error("SSH username is required")
            return False

        if self.private_key:
            key = credential_manager.load_private_key(self.private_key)
            if key and self._try_connect(pkey=key, look_for_keys=False):
                logger.info("Connected to %s using private key", self.target)
                return True
            logger.warning("Could not authenticate with key %s", self.private_key)

        if self.password:
            if self._try_connect(
                password=self.password, look_for_keys=False, allow_agent=False
            ):
                logger.info("Connected to %s using password", self.target)
                return True
            logger.error("Password authentication failed for %s", self.target)
            return False

        if self._try_connect():
            logger.info("Connected to %s using default SSH authentication", self.target)
            return True

        password = credential_manager.get_ssh_password(self.username, self.host)
        if password and self._try_connect(
            password=password, look_for_keys=False, allow_agent=False
        ):
            logger.info("Connected to %s using prompted password", self.target)
            return True

        logger.error("No authentication method succeeded for %s", self.target)
        return False

    def close(self) -> None:
        if self._ssh_client:
            self._ssh_client.close()
            self._ssh_client = None

    def _build_shell_command(self, argv: List[str]) -> str:
        command = shlex.join(argv)
        if self.use_sudo and argv and argv[0] in PRIVILEGED_COMMANDS:
            return f"sudo -n {command}"
        return command

    def _run_remote(self, command: str, shell_command: str, input_data: Optional[str]) -> CommandResult:
        if not self._ssh_client:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error="Not connected to device",
                execution_time=0.0,
            )

        try:
            stdin, stdout, stderr = self._ssh_client.exec_command(
                shell_command, timeout=self.timeout
            )
            if input_data:
                stdin.write(input_data)
                stdin.channel.shutdown_write()
            stdout_data = stdout.read()
            stderr_data = stderr.read()
            exit_code = stdout.channel.recv_exit_status()
        except Exception as e:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=f"Command execution failed: {e}",
                execution_time=0.0,
            )

        output = stdout_data.decode("utf-8", errors="replace")
        error = stderr_data.decode("utf-8", errors="replace") if stderr_data else None

        return CommandResult(
            command=command,
            success=exit_code == 0,
            output=output,
            error=error,
            exit_code=exit_code,
            execution_time=0.0,
        )

    def _execute(self, argv: List[str], input_data: Optional[str]) -> CommandResult:
        return self._run_remote(shlex.join(argv), self._build_shell_command(argv), input_data)

    def _write(self, path: str, content: str) -> CommandResult:
        script = f"echo {shlex.quote(content)} > {shlex.quote(path)}"
        argv = ["sh", "-c", script]
        return self._run_remote(script, self._build_shell_command(argv), None)


def get_runner(
    host: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    private_key: Optional[str] = None,
    port: int = 22,
    timeout: int = 30,
    dry_run: bool = False,
) -> CommandRunner:
    """Return an SSHRunner when a host is given, otherwise a LocalRunner."""
    if host:
        return SSHRunner(
            host=host,
            username=username or "root",
            password=password,
            private_key=private_key,
            port=port,
            timeout=timeout,
            dry_run=dry_run,
        )
    return LocalRunner(timeout=timeout, dry_run=dry_run)


__all__ = ["LocalRunner", "SSHRunner", "get_runner"]
