"""SSH/SFTP session used for file deployment and service restarts."""

import logging
import stat

import paramiko
from paramiko_expect import SSHClientInteraction

logger = logging.getLogger(__name__)


class SshSession:
    """A paramiko SSH connection with password or keyboard-interactive auth.

    Usable as a context manager::

        with SshSession(host, user, password) as ssh:
            status, output = ssh.run("systemctl reload nginx")
    """

    def __init__(self, host: str, username: str, password: str, port: int = 22,
                 timeout: int = 30):
        self.host = host
        self.username = username
        self.password = password
        self.port = port
        self.timeout = timeout
        self.client = None

    def __enter__(self) -> "SshSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _answer_prompts(self, title, instructions, prompts):
        return [self.password for _ in prompts]

    def connect(self) -> None:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except paramiko.AuthenticationException:
            transport = client.get_transport()
            if transport is None or not transport.is_active():
                client.close()
                raise
            logger.info("Password auth rejected by %s; trying keyboard-interactive", self.host)
            try:
                transport.auth_interactive(self.username, self._answer_prompts)
            except paramiko.SSHException:
                client.close()
                raise
        self.client = client
        logger.info("SSH connected to %s as %s", self.host, self.username)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def run(self, command: str, timeout: int = 300) -> tuple[int, str]:
        """Run a command over an exec channel; returns (exit status, combined output)."""
        _, stdout, stderr = self.client.exec_command(command, timeout=timeout)
        output = stdout.read().decode("utf-8", errors="replace")
        errors = stderr.read().decode("utf-8", errors="replace")
        status = stdout.channel.recv_exit_status()
        return status, (output + errors).strip()

    def run_cli(self, command: str, prompt: str, timeout: int = 300) -> str:
        """Run a command in an interactive appliance CLI and return its output.

        Waits for ``prompt`` before sending and again for completion; raises
        TimeoutError when the prompt does not come back in time.
        """
        with SSHClientInteraction(self.client, timeout=self.timeout, display=False) as interact:
            if interact.expect(prompt) == -1:
                raise TimeoutError(f"No CLI prompt from {self.host}")
            interact.send(command)
            index = interact.expect(prompt, timeout=timeout)
            output = interact.current_output_clean
            if index == -1:
                raise TimeoutError(f"Command did not complete on {self.host}: {output[-200:]}")
        return output.strip()

    def upload(self, files: list[tuple[str, str]], backup_suffix: str = "",
               private_paths: tuple = ()) -> list[dict]:
        """Write each ``(content, remote_path)`` pair over SFTP.

        Existing remote files are renamed to ``<path>.<backup_suffix>`` first.
        Paths in ``private_paths`` are made owner-readable only.
        """
        results = []
        sftp = self.client.open_sftp()
        try:
            for content, remote_path in files:
                entry = {"path": remote_path, "backup": ""}
                if backup_suffix:
                    try:
                        if stat.S_ISREG(sftp.stat(remote_path).st_mode):
                            backup = f"{remote_path}.{backup_suffix}"
                            sftp.rename(remote_path, backup)
                            entry["backup"] = backup
                    except FileNotFoundError:
                        pass
                with sftp.open(remote_path, "w") as fh:
                    fh.write(content)
                if remote_path in private_paths:
                    sftp.chmod(remote_path, 0o600)
                logger.info("Uploaded %s to %s", remote_path, self.host)
                results.append(entry)
        finally:
            sftp.close()
        return results
