"""Deployment adapters for certificate targets."""

from renewal.connection import ApplicationType
from renewal.errors import ValidationError
from sslcert.deploy.base import DeploymentAdapter, DeployResult
from sslcert.deploy.general import GeneralAdapter
from sslcert.deploy.ise import IseAdapter
from sslcert.deploy.vos import VosAdapter

__all__ = [
    "DeployResult",
    "DeploymentAdapter",
    "GeneralAdapter",
    "IseAdapter",
    "VosAdapter",
    "get_deployment_adapter",
]

_ADAPTERS = {
    ApplicationType.VOS: VosAdapter,
    ApplicationType.ISE: IseAdapter,
    ApplicationType.GENERAL: GeneralAdapter,
}


def get_deployment_adapter(connection) -> DeploymentAdapter:
    """Adapter for the connection's application type."""
    try:
        return _ADAPTERS[ApplicationType(connection.application_type)]()
    except (KeyError, ValueError):
        raise ValidationError(f"Unsupported application type: {connection.application_type}")
