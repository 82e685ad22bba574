"""Deployment target interface and shared HTTP helpers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests
import urllib3

from sslcert.bundle_store import CertificateBundle
from sslcert.csr import CsrMaterial

logger = logging.getLogger(__name__)

# Appliances present self-signed management certificates until their first
# CA-signed certificate is installed.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

HTTP_FAILURES = {
    401: "Authentication failed - verify username and password",
    403: "Access denied - verify the account has certificate management permissions",
    404: "API endpoint not found - verify the target version supports this API",
    409: "Conflict - a certificate with the same key or name already exists",
}


@dataclass
class DeployResult:
    """Outcome of an install or restart step."""

    success: bool
    message: str = ""
    details: dict = field(default_factory=dict)
    manual_install: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "manual_install": self.manual_install,
        }


class TargetApiError(Exception):
    """Expected failure talking to a target's management API."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    def to_details(self) -> dict:
        details = {"error": str(self)}
        if self.status is not None:
            details["status"] = self.status
        if self.body:
            details["response"] = self.body[:500]
        return details


def backup_suffix(now: datetime | None = None) -> str:
    """``bak.<ISO timestamp>`` with ``:`` and ``.`` replaced for file names."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return "bak." + stamp.replace(":", "-").replace(".", "-")


class ApiClient:
    """Basic-auth JSON client for appliance management APIs."""

    def __init__(self, host: str, username: str, password: str, timeout: int = 60,
                 verify: bool = False):
        self.host = host
        self.base_url = f"https://{host}"
        self.auth = (username, password)
        self.timeout = timeout
        self.verify = verify

    def request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request and return the decoded JSON body (``{}`` when empty).

        Raises TargetApiError for unreachable hosts and non-2xx responses.
        """
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        try:
            response = requests.request(
                method,
                self.base_url + path,
                auth=self.auth,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify,
                **kwargs,
            )
        except requests.exceptions.SSLError as e:
            raise TargetApiError(f"TLS handshake with {self.host} failed: {e}") from e
        except requests.RequestException as e:
            raise TargetApiError(
                f"Connection failed to {self.host} - verify hostname and network connectivity: {e}"
            ) from e

        if not response.ok:
            message = HTTP_FAILURES.get(
                response.status_code, f"API request failed: HTTP {response.status_code}"
            )
            raise TargetApiError(f"{self.host}: {message}", status=response.status_code,
                                 body=response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}


class DeploymentAdapter(ABC):
    """Installs an issued bundle on one class of target system."""

    name = ""

    @abstractmethod
    def prepare_csr(self, connection, fqdn: str, identifiers: list[str]) -> CsrMaterial:
        """Produce the CSR (and the private key when it is held locally)."""

    @abstractmethod
    def deploy(self, connection, bundle: CertificateBundle) -> DeployResult:
        """Install ``bundle`` on the target."""

    def supports_restart(self, connection) -> bool:
        return bool(connection.enable_ssh and connection.auto_restart_service)

    def restart_service(self, connection) -> DeployResult:
        return DeployResult(False, f"{self.name or 'target'} does not support service restart")

    def test_connection(self, connection) -> DeployResult:
        return DeployResult(False, "Connection test not supported")
