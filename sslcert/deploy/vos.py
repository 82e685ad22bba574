"""Cisco VOS (CUCM, CUC, IM&P, UCCX) target via the platform certificate API."""

import logging

import paramiko

from config.settings import SSH_COMMAND_TIMEOUT_SECONDS, SSH_TIMEOUT_SECONDS, TARGET_API_TIMEOUT_SECONDS
from renewal.errors import DeploymentError
from sslcert.bundle_store import CertificateBundle
from sslcert.csr import CsrMaterial, extract_csr
from sslcert.deploy.base import ApiClient, DeploymentAdapter, DeployResult, TargetApiError
from sslcert.deploy.ssh import SshSession
from sslcert.utils.helpers import fingerprint, parse_pem_chain

logger = logging.getLogger(__name__)

CERTMGR = "/platformcom/api/v1/certmgr/config"
SERVICE = "tomcat"
CLI_PROMPT = "admin:"
RESTART_COMMAND = "utils service restart Cisco Tomcat"


class VosAdapter(DeploymentAdapter):
    name = "vos"

    def __init__(self, api_timeout: int = TARGET_API_TIMEOUT_SECONDS,
                 ssh_timeout: int = SSH_TIMEOUT_SECONDS,
                 command_timeout: int = SSH_COMMAND_TIMEOUT_SECONDS):
        self.api_timeout = api_timeout
        self.ssh_timeout = ssh_timeout
        self.command_timeout = command_timeout

    def _api(self, connection) -> ApiClient:
        return ApiClient(connection.fqdn, connection.username, connection.password,
                         timeout=self.api_timeout)

    def prepare_csr(self, connection, fqdn: str, identifiers: list[str]) -> CsrMaterial:
        """Ask the appliance for a CSR; the private key never leaves it."""
        body = {
            "service": SERVICE,
            "distribution": "this-server",
            "commonName": fqdn,
            "keyType": "rsa",
            "keyLength": 2048,
            "hashAlgorithm": "sha256",
        }
        alt_names = [name for name in identifiers if name != fqdn]
        if alt_names:
            body["altNames"] = alt_names
        try:
            data = self._api(connection).request("POST", f"{CERTMGR}/csr", json=body)
        except TargetApiError as e:
            raise DeploymentError(f"CSR generation failed: {e}", details=e.to_details()) from e
        csr = extract_csr(data.get("csr", ""))
        if not csr:
            raise DeploymentError("Appliance returned no CSR", details={"response": data})
        return CsrMaterial(csr_pem=csr, source="target")

    def _trusted_fingerprints(self, api: ApiClient) -> set[str]:
        data = api.request("GET", f"{CERTMGR}/trust/certificate", params={"service": SERVICE})
        entries = data if isinstance(data, list) else data.get("certificates", [])
        found = set()
        for entry in entries or []:
            if isinstance(entry, dict):
                pem = entry.get("certificateData") or entry.get("certificate") or ""
            else:
                pem = str(entry)
            if pem:
                fp = fingerprint(pem)
                if fp:
                    found.add(fp)
        return found

    def upload_trust(self, api: ApiClient, ca_certificates: list[str]) -> dict:
        """Upload CA certificates not yet in the tomcat trust store."""
        try:
            existing = self._trusted_fingerprints(api)
        except TargetApiError as e:
            logger.warning("Could not read trust store on %s: %s", api.host, e)
            existing = set()
        missing = [pem for pem in ca_certificates if fingerprint(pem) not in existing]
        if missing:
            api.request("POST", f"{CERTMGR}/trust/certificates", json={
                "service": [SERVICE],
                "certificates": missing,
                "description": "Trust Certificate",
            })
        return {"uploaded": len(missing), "skipped": len(ca_certificates) - len(missing)}

    def deploy(self, connection, bundle: CertificateBundle) -> DeployResult:
        api = self._api(connection)
        try:
            trust = self.upload_trust(api, bundle.ca_certificates)
            leaf = parse_pem_chain(bundle.certificate)[0]
            response = api.request("POST", f"{CERTMGR}/identity/certificates", json={
                "service": SERVICE,
                "certificates": [leaf],
            })
        except TargetApiError as e:
            return DeployResult(False, str(e), details=e.to_details())
        logger.info("Installed tomcat identity certificate on %s", api.host)
        return DeployResult(True, "Certificate uploaded to tomcat service",
                            details={"trust": trust, "response": response})

    def restart_service(self, connection) -> DeployResult:
        try:
            with SshSession(connection.fqdn, connection.username, connection.password,
                            timeout=self.ssh_timeout) as ssh:
                output = ssh.run_cli(RESTART_COMMAND, CLI_PROMPT, timeout=self.command_timeout)
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SSH to {connection.fqdn} failed: {e}",
                                details={"error": str(e)})
        if "[FAILED]" in output or "ERROR" in output:
            return DeployResult(False, "Cisco Tomcat restart failed", details={"output": output})
        if "[STARTED]" in output or "[STARTING]" in output:
            return DeployResult(True, "Cisco Tomcat restarted", details={"output": output})
        return DeployResult(True, "Restart command completed", details={"output": output})

    def test_connection(self, connection) -> DeployResult:
        try:
            with SshSession(connection.fqdn, connection.username, connection.password,
                            timeout=self.ssh_timeout) as ssh:
                ssh.run_cli("show version active", CLI_PROMPT, timeout=self.ssh_timeout)
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SSH to {connection.fqdn} failed: {e}")
        return DeployResult(True, f"Connected to {connection.fqdn} (admin: prompt found)")
