"""Cisco ISE target: trust-store preload and system certificate import via the OpenAPI."""

import logging

import paramiko

from config.settings import SSH_COMMAND_TIMEOUT_SECONDS, SSH_TIMEOUT_SECONDS, TARGET_API_TIMEOUT_SECONDS
from renewal.connection import split_csv
from renewal.errors import DeploymentError
from sslcert.bundle_store import CertificateBundle
from sslcert.csr import CsrMaterial, extract_csr
from sslcert.deploy.base import ApiClient, DeploymentAdapter, DeployResult, TargetApiError
from sslcert.deploy.ssh import SshSession
from sslcert.utils.helpers import extract_private_key, fingerprint, normalize_fingerprint

logger = logging.getLogger(__name__)

CSR_PATH = "/api/v1/certs/certificate-signing-request"
TRUSTED_PATH = "/api/v1/certs/trusted-certificate"
TRUST_IMPORT_PATH = "/api/v1/certs/trusted-certificate/import"
SYSTEM_IMPORT_PATH = "/api/v1/certs/system-certificate/import"

CLI_PROMPT = r".*/\S*#\s*"
RESTART_COMMAND = "application restart ise"

ROLE_FLAGS = ("admin", "eap", "portal", "saml", "pxgrid", "ims", "radius")

SUBTYPE_ROLES = {
    "multi_use": ("admin", "eap", "portal"),
    "admin": ("admin",),
    "eap": ("eap",),
    "guest": ("portal",),
    "portal": ("portal",),
    "saml": ("saml",),
    "pxgrid": ("pxgrid",),
    "ims": ("ims",),
    "dtls": ("radius",),
}

DEFAULT_IMPORT_CONFIG = {
    "admin": False,
    "allowExtendedValidity": True,
    "allowOutOfDateCert": True,
    "allowPortalTagTransferForSameSubject": True,
    "allowReplacementOfCertificates": True,
    "allowReplacementOfPortalGroupTag": True,
    "allowRoleTransferForSameSubject": True,
    "allowSHA1Certificates": True,
    "allowWildCardCertificates": False,
    "eap": False,
    "ims": False,
    "name": "netssl Imported Certificate",
    "password": "",
    "portal": True,
    "portalGroupTag": "My Default Portal Certificate Group",
    "pxgrid": False,
    "radius": False,
    "saml": False,
    "validateCertificateExtensions": False,
}


def build_import_config(subtype: str, overrides: dict | None = None,
                        wildcard: bool = False) -> dict:
    """Default import flags, then the subtype's role flags, then explicit overrides."""
    config = dict(DEFAULT_IMPORT_CONFIG)
    roles = SUBTYPE_ROLES.get(subtype or "multi_use", SUBTYPE_ROLES["multi_use"])
    for flag in ROLE_FLAGS:
        config[flag] = flag in roles
    if wildcard:
        config["allowWildCardCertificates"] = True
    config.update(overrides or {})
    return config


class IseAdapter(DeploymentAdapter):
    name = "ise"

    def __init__(self, api_timeout: int = TARGET_API_TIMEOUT_SECONDS,
                 ssh_timeout: int = SSH_TIMEOUT_SECONDS,
                 command_timeout: int = SSH_COMMAND_TIMEOUT_SECONDS):
        self.api_timeout = api_timeout
        self.ssh_timeout = ssh_timeout
        self.command_timeout = command_timeout

    @staticmethod
    def nodes(connection) -> list[str]:
        return split_csv(connection.ise_nodes)

    def _api(self, connection, host: str) -> ApiClient:
        return ApiClient(host, connection.username, connection.password, timeout=self.api_timeout)

    def prepare_csr(self, connection, fqdn: str, identifiers: list[str]) -> CsrMaterial:
        if connection.custom_csr.strip():
            key = extract_private_key(connection.ise_private_key) or extract_private_key(connection.custom_csr)
            return CsrMaterial(csr_pem=extract_csr(connection.custom_csr),
                               private_key_pem=key, source="supplied")

        primary = self.nodes(connection)[0]
        body = {
            "subjectCommonName": fqdn,
            "subjectOrgName": "Organization",
            "subjectOrgUnit": "IT Department",
            "subjectLocation": "City",
            "subjectState": "State",
            "subjectCountry": "US",
            "keyType": "RSA",
            "keyLength": 2048,
            "digestType": "SHA256",
            "certificateUsage": "PORTAL",
            "subjectAlternativeNames": [name for name in identifiers if name != fqdn],
        }
        try:
            data = self._api(connection, primary).request("POST", CSR_PATH, json=body)
        except TargetApiError as e:
            raise DeploymentError(f"ISE CSR generation failed: {e}", details=e.to_details()) from e
        response = data.get("response", {}) if isinstance(data, dict) else {}
        csr = extract_csr(response.get("certificateSigningRequest", ""))
        if not csr:
            raise DeploymentError("ISE returned no CSR", details={"response": data})
        return CsrMaterial(csr_pem=csr, private_key_pem=response.get("privateKey", ""),
                           source="target")

    def trusted_fingerprints(self, api: ApiClient) -> set[str]:
        data = api.request("GET", TRUSTED_PATH)
        entries = data.get("response", []) if isinstance(data, dict) else []
        return {
            normalize_fingerprint(entry["sha256Fingerprint"])
            for entry in entries
            if isinstance(entry, dict) and entry.get("sha256Fingerprint")
        }

    def preload_trust(self, api: ApiClient, ca_certificates: list[str]) -> dict:
        """Import CA certificates ISE does not already trust. Safe to repeat."""
        try:
            existing = self.trusted_fingerprints(api)
        except TargetApiError as e:
            logger.warning("Could not list trusted certificates on %s: %s", api.host, e)
            existing = set()

        uploaded, skipped = 0, 0
        for pem in ca_certificates:
            fp = normalize_fingerprint(fingerprint(pem) or "")
            if fp in existing:
                logger.info("Trust certificate %s already present on %s", fp[:16], api.host)
                skipped += 1
                continue
            try:
                api.request("POST", TRUST_IMPORT_PATH, json={
                    "allowBasicConstraintCAFalse": True,
                    "allowOutOfDateCert": True,
                    "allowSHA1Certificates": True,
                    "data": pem,
                    "description": "Imported Trust Certificate",
                    "name": f"Trust Certificate {fp[:16]}",
                    "trustForCertificateBasedAdminAuth": False,
                    "trustForCiscoServicesAuth": False,
                    "trustForClientAuth": False,
                    "trustForIseAuth": False,
                    "validateCertificateExtensions": False,
                })
            except TargetApiError as e:
                if e.status == 409:
                    skipped += 1
                    continue
                raise
            existing.add(fp)
            uploaded += 1
        return {"uploaded": uploaded, "skipped": skipped}

    def deploy(self, connection, bundle: CertificateBundle) -> DeployResult:
        nodes = self.nodes(connection)
        private_key = extract_private_key(connection.ise_private_key) or bundle.private_key
        if not private_key:
            return DeployResult(False, "No private key available for ISE certificate import")

        try:
            trust = self.preload_trust(self._api(connection, nodes[0]), bundle.ca_certificates)
        except TargetApiError as e:
            return DeployResult(False, f"Trust certificate upload failed: {e}",
                                details=e.to_details())

        payload = build_import_config(
            connection.ise_application_subtype,
            connection.import_config(),
            wildcard=any(name.startswith("*.") for name in bundle.metadata.get("san", [])),
        )
        payload["data"] = bundle.certificate
        payload["privateKeyData"] = private_key

        results = []
        for node in nodes:
            try:
                response = self._api(connection, node).request("POST", SYSTEM_IMPORT_PATH,
                                                                json=payload)
                results.append({"node": node, "success": True, "response": response})
                logger.info("Imported system certificate on ISE node %s", node)
            except TargetApiError as e:
                logger.error("System certificate import failed on %s: %s", node, e)
                results.append({"node": node, "success": False, **e.to_details()})

        succeeded = sum(1 for r in results if r["success"])
        details = {"trust": trust, "nodes": results}
        if succeeded == 0:
            first = results[0].get("error", "unknown error") if results else "no nodes"
            return DeployResult(False, f"Certificate import failed on every ISE node: {first}",
                                details=details)
        if succeeded < len(results):
            details["warning"] = (
                f"Certificate imported to {succeeded}/{len(results)} nodes; "
                "remaining nodes need manual installation"
            )
        return DeployResult(True, f"Certificate imported to {succeeded}/{len(results)} ISE node(s)",
                            details=details)

    def restart_service(self, connection) -> DeployResult:
        host = self.nodes(connection)[0]
        try:
            with SshSession(host, connection.username, connection.password,
                            timeout=self.ssh_timeout) as ssh:
                output = ssh.run_cli(RESTART_COMMAND, CLI_PROMPT, timeout=self.command_timeout)
        except (paramiko.SSHException, OSError) as e:
            return DeployResult(False, f"SSH to {host} failed: {e}", details={"error": str(e)})
        if "% Error" in output or "ERROR" in output:
            return DeployResult(False, "ISE application restart failed", details={"output": output})
        return DeployResult(True, "ISE application restart issued", details={"output": output})

    def test_connection(self, connection) -> DeployResult:
        results = {}
        for node in self.nodes(connection):
            try:
                self._api(connection, node).request("GET", TRUSTED_PATH)
                results[node] = "ok"
            except TargetApiError as e:
                results[node] = str(e)
        ok = all(v == "ok" for v in results.values()) and bool(results)
        return DeployResult(ok, "All ISE nodes reachable" if ok else "Some ISE nodes unreachable",
                            details={"nodes": results})
