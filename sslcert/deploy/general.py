"""Generic target: SFTP upload of certificate files plus an optional restart command."""

import logging

import paramiko

from config.settings import DEFAULT_KEY_SIZE, SSH_COMMAND_TIMEOUT_SECONDS, SSH_TIMEOUT_SECONDS
from sslcert.bundle_store import CertificateBundle
from sslcert.csr import CsrMaterial, extract_csr, generate_csr
from sslcert.deploy.base import DeploymentAdapter, DeployResult, backup_suffix
from sslcert.deploy.ssh import SshSession
from sslcert.utils.helpers import extract_private_key

logger = logging.getLogger(__name__)


def ssh_host(connection) -> str:
    """``hostname.domain``, else ``domain``, else ``hostname``."""
    hostname = connection.hostname.strip()
    domain = connection.domain.strip()
    if domain:
        if hostname and hostname != "*":
            return f"{hostname}.{domain}"
        return domain
    return hostname


class GeneralAdapter(DeploymentAdapter):
    name = "general"

    def __init__(self, ssh_timeout: int = SSH_TIMEOUT_SECONDS,
                 command_timeout: int = SSH_COMMAND_TIMEOUT_SECONDS,
                 key_size: int = DEFAULT_KEY_SIZE):
        self.ssh_timeout = ssh_timeout
        self.command_timeout = command_timeout
        self.key_size = key_size

    def _session(self, connection) -> SshSession:
        return SshSession(ssh_host(connection), connection.username, connection.password,
                          timeout=self.ssh_timeout)

    def prepare_csr(self, connection, fqdn: str, identifiers: list[str]) -> CsrMaterial:
        if connection.custom_csr.strip():
            key = (extract_private_key(connection.custom_csr)
                   or extract_private_key(connection.general_private_key))
            if not key:
                logger.warning("Custom CSR for %s supplied without a private key", fqdn)
            return CsrMaterial(csr_pem=extract_csr(connection.custom_csr),
                               private_key_pem=key, source="supplied")
        return generate_csr(identifiers, key_size=self.key_size)

    def deploy(self, connection, bundle: CertificateBundle) -> DeployResult:
        if not connection.enable_ssh or not connection.username:
            return DeployResult(False, "Certificate ready for download", manual_install=True)
        if not connection.ssh_cert_path and not connection.ssh_key_path:
            return DeployResult(False, "No remote paths configured; certificate ready for download",
                                manual_install=True)
        host = ssh_host(connection)
        if not host:
            return DeployResult(False, "Cannot determine SSH host; certificate ready for download",
                                manual_install=True)

        files = []
        if connection.ssh_cert_path:
            files.append((bundle.certificate, connection.ssh_cert_path))
        if connection.ssh_key_path and bundle.private_key.strip():
            files.append((bundle.private_key, connection.ssh_key_path))
        if connection.ssh_chain_path:
            files.append((bundle.fullchain, connection.ssh_chain_path))
        if not files:
            return DeployResult(False, "No certificate files to upload", manual_install=True)

        try:
            with self._session(connection) as ssh:
                uploaded = ssh.upload(files, backup_suffix=backup_suffix(),
                                      private_paths=(connection.ssh_key_path,))
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SFTP upload to {host} failed: {e}",
                                details={"host": host, "error": str(e)})
        return DeployResult(True, f"Uploaded {len(uploaded)} file(s) to {host}",
                            details={"host": host, "files": uploaded})

    def supports_restart(self, connection) -> bool:
        return bool(connection.enable_ssh and connection.ssh_restart_command.strip())

    def restart_service(self, connection) -> DeployResult:
        host = ssh_host(connection)
        command = connection.ssh_restart_command.strip()
        try:
            with self._session(connection) as ssh:
                status, output = ssh.run(command, timeout=self.command_timeout)
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SSH to {host} failed: {e}", details={"error": str(e)})
        details = {"command": command, "exit_status": status, "output": output}
        if status != 0:
            return DeployResult(False, f"Restart command exited with status {status}", details=details)
        return DeployResult(True, "Restart command completed", details=details)

    def test_connection(self, connection) -> DeployResult:
        host = ssh_host(connection)
        try:
            with self._session(connection) as ssh:
                status, output = ssh.run("echo ok", timeout=self.ssh_timeout)
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SSH to {host} failed: {e}")
        return DeployResult(status == 0, f"Connected to {host}", details={"output": output})
