"""Project-wide settings and defaults."""

import logging
import os
from pathlib import Path

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("NETSSL_DATA_DIR", str(PROJECT_ROOT / "data")))
ACCOUNTS_DIR = Path(os.environ.get("NETSSL_ACCOUNTS_DIR", str(DATA_DIR / "accounts")))
CONNECTIONS_PATH = DATA_DIR / "connections.json"
AUDIT_LOG_PATH = DATA_DIR / "audit_log.json"

# Settings store (runtime configuration)
SETTINGS_PATH = DATA_DIR / "settings.json"

# Issuer roots matched to ACME chains (ISRG X1/X2 are fetched when missing)
ROOT_CERTS_DIR = Path(os.environ.get("NETSSL_ROOT_CERTS_DIR", str(DATA_DIR / "root-certs")))
ROOT_CERTS_AUTO_DOWNLOAD = os.environ.get("ROOT_CERTS_AUTO_DOWNLOAD", "true").lower() != "false"

# Certificate defaults
DEFAULT_KEY_SIZE = 2048

# ACME
ACME_EMAIL = os.environ.get("ACME_EMAIL", os.environ.get("LETSENCRYPT_EMAIL", ""))
# Staging unless explicitly turned off, so testing never burns production quota
ACME_STAGING = os.environ.get("ACME_STAGING", "true").lower() != "false"
ACME_POLL_TIMEOUT_SECONDS = int(os.environ.get("ACME_POLL_TIMEOUT_SECONDS", "90"))
LETSENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"
ZEROSSL_DIRECTORY = "https://acme.zerossl.com/v2/DV90"
ZEROSSL_EAB_KID = os.environ.get("ZEROSSL_EAB_KID", "")
ZEROSSL_EAB_HMAC_KEY = os.environ.get("ZEROSSL_EAB_HMAC_KEY", "")

# DNS-01 validation
DNS_RESOLVERS = [
    s.strip() for s in os.environ.get("DNS_RESOLVERS", "8.8.8.8,1.1.1.1").split(",")
    if s.strip()
]
DNS_PROPAGATION_INTERVAL_SECONDS = float(os.environ.get("DNS_PROPAGATION_INTERVAL_SECONDS", "10"))
DNS_PROPAGATION_MAX_ATTEMPTS = int(os.environ.get("DNS_PROPAGATION_MAX_ATTEMPTS", "30"))
DNS_FALLBACK_TO_MANUAL = os.environ.get("DNS_FALLBACK_TO_MANUAL", "false").lower() == "true"
MANUAL_DNS_POLL_INTERVAL_SECONDS = float(os.environ.get("MANUAL_DNS_POLL_INTERVAL_SECONDS", "30"))
DNS_PROVIDER_MAX_RETRIES = int(os.environ.get("DNS_PROVIDER_MAX_RETRIES", "3"))
DNS_PROVIDER_RETRY_BACKOFF_SECONDS = float(os.environ.get("DNS_PROVIDER_RETRY_BACKOFF_SECONDS", "2"))

# DNS provider credentials (env var fallbacks for settings store)
CF_KEY = os.environ.get("CF_KEY", "")
CF_ZONE = os.environ.get("CF_ZONE", "")
AWS_ACCESS_KEY = os.environ.get("AWS_ACCESS_KEY", "")
AWS_SECRET_KEY = os.environ.get("AWS_SECRET_KEY", "")
AWS_ZONE_ID = os.environ.get("AWS_ZONE_ID", "")
AZURE_SUBSCRIPTION_ID = os.environ.get("AZURE_SUBSCRIPTION_ID", "")
AZURE_RESOURCE_GROUP = os.environ.get("AZURE_RESOURCE_GROUP", "")
AZURE_ZONE_NAME = os.environ.get("AZURE_ZONE_NAME", "")
AZURE_TENANT_ID = os.environ.get("AZURE_TENANT_ID", "")
AZURE_CLIENT_ID = os.environ.get("AZURE_CLIENT_ID", "")
AZURE_CLIENT_SECRET = os.environ.get("AZURE_CLIENT_SECRET", "")
GOOGLE_PROJECT_ID = os.environ.get("GOOGLE_PROJECT_ID", "")
GOOGLE_ZONE_NAME = os.environ.get("GOOGLE_ZONE_NAME", "")
DO_KEY = os.environ.get("DO_KEY", "")

# Deployment targets
SSH_TIMEOUT_SECONDS = int(os.environ.get("SSH_TIMEOUT_SECONDS", "30"))
SSH_COMMAND_TIMEOUT_SECONDS = int(os.environ.get("SSH_COMMAND_TIMEOUT_SECONDS", "300"))
TARGET_API_TIMEOUT_SECONDS = int(os.environ.get("TARGET_API_TIMEOUT_SECONDS", "60"))

# Active operations
OPERATION_RETENTION_SECONDS = int(os.environ.get("OPERATION_RETENTION_SECONDS", "300"))

# CLI commands that act on a running server
NETSSL_API_URL = os.environ.get("NETSSL_API_URL", "http://127.0.0.1:5000")
NETSSL_API_KEY = os.environ.get("NETSSL_API_KEY", "")

# Scheduler
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"
RENEWAL_CRON = os.environ.get("RENEWAL_CRON", "0 0 * * *")
RENEWAL_THRESHOLD_DAYS = int(os.environ.get("RENEWAL_THRESHOLD_DAYS", "7"))

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "") -> None:
    """Apply LOG_LEVEL / LOG_FORMAT to the root logger."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
