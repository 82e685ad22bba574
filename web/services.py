"""Backend service initialization for the web API, scheduler and CLI.

Stateful services (connection store, registry, broadcaster, orchestrator,
scheduler) are process-wide singletons; configuration is read from the
settings store with environment fallbacks from ``config.settings``.
"""

import logging
import threading

from config.settings import (
    ACCOUNTS_DIR,
    ACME_EMAIL,
    ACME_POLL_TIMEOUT_SECONDS,
    ACME_STAGING,
    AUDIT_LOG_PATH,
    AWS_ACCESS_KEY,
    AWS_SECRET_KEY,
    AWS_ZONE_ID,
    AZURE_CLIENT_ID,
    AZURE_CLIENT_SECRET,
    AZURE_RESOURCE_GROUP,
    AZURE_SUBSCRIPTION_ID,
    AZURE_TENANT_ID,
    AZURE_ZONE_NAME,
    CF_KEY,
    CF_ZONE,
    CONNECTIONS_PATH,
    DNS_FALLBACK_TO_MANUAL,
    DNS_PROPAGATION_INTERVAL_SECONDS,
    DNS_PROPAGATION_MAX_ATTEMPTS,
    DNS_PROVIDER_MAX_RETRIES,
    DNS_PROVIDER_RETRY_BACKOFF_SECONDS,
    DNS_RESOLVERS,
    DO_KEY,
    GOOGLE_PROJECT_ID,
    GOOGLE_ZONE_NAME,
    MANUAL_DNS_POLL_INTERVAL_SECONDS,
    OPERATION_RETENTION_SECONDS,
    RENEWAL_CRON,
    RENEWAL_THRESHOLD_DAYS,
    ROOT_CERTS_AUTO_DOWNLOAD,
    ROOT_CERTS_DIR,
    SCHEDULER_ENABLED,
    SETTINGS_PATH,
    ZEROSSL_EAB_HMAC_KEY,
    ZEROSSL_EAB_KID,
)

logger = logging.getLogger(__name__)

_lock = threading.RLock()
_instances: dict = {}


def _singleton(name, factory):
    with _lock:
        if name not in _instances:
            _instances[name] = factory()
        return _instances[name]


def reset_services() -> None:
    """Forget every singleton (tests, or after settings change)."""
    with _lock:
        scheduler = _instances.get("scheduler")
        if scheduler is not None:
            scheduler.shutdown()
        _instances.clear()


def _as_bool(value, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_settings_store():
    from web.settings_store import SettingsStore
    return SettingsStore(SETTINGS_PATH)


def get_audit_log():
    from renewal.audit import AuditLog
    return AuditLog(str(AUDIT_LOG_PATH))


def get_connection_store():
    from renewal.connection_store import ConnectionStore
    return _singleton("connections", lambda: ConnectionStore(str(CONNECTIONS_PATH)))


def get_bundle_store():
    from sslcert.bundle_store import CertificateBundleStore
    return _singleton("bundles", lambda: CertificateBundleStore(ACCOUNTS_DIR))


def get_root_store():
    from sslcert.root_store import RootCertificateStore
    return _singleton(
        "roots",
        lambda: RootCertificateStore(ROOT_CERTS_DIR, auto_download=ROOT_CERTS_AUTO_DOWNLOAD),
    )


def get_operation_registry():
    from renewal.registry import ActiveOperationRegistry
    return _singleton("registry", lambda: ActiveOperationRegistry(OPERATION_RETENTION_SECONDS))


def get_broadcaster():
    from renewal.broadcaster import ProgressBroadcaster
    return _singleton(
        "broadcaster",
        lambda: ProgressBroadcaster(snapshot_source=get_operation_registry().list_all),
    )


# ── DNS ──────────────────────────────────────────────────────────────

def get_dns_settings() -> dict:
    dns = get_settings_store().get_section("dns")
    resolvers = dns.get("resolvers") or DNS_RESOLVERS
    if isinstance(resolvers, str):
        resolvers = [r.strip() for r in resolvers.split(",") if r.strip()]
    return {
        "resolvers": resolvers,
        "propagation_interval": float(dns.get("propagation_interval") or DNS_PROPAGATION_INTERVAL_SECONDS),
        "propagation_attempts": int(dns.get("propagation_attempts") or DNS_PROPAGATION_MAX_ATTEMPTS),
        "fallback_to_manual": _as_bool(dns.get("fallback_to_manual"), DNS_FALLBACK_TO_MANUAL),
        "manual_poll_interval": float(dns.get("manual_poll_interval") or MANUAL_DNS_POLL_INTERVAL_SECONDS),
        "provider_retries": int(dns.get("provider_retries") or DNS_PROVIDER_MAX_RETRIES),
        "retry_backoff": float(dns.get("retry_backoff") or DNS_PROVIDER_RETRY_BACKOFF_SECONDS),
    }


def get_dns_credentials() -> dict:
    """Constructor arguments for every DNS provider, settings first then env."""
    store = get_settings_store()
    cloudflare = store.get_section("cloudflare")
    route53 = store.get_section("route53")
    azure = store.get_section("azure_dns")
    google = store.get_section("google_dns")
    digitalocean = store.get_section("digitalocean")
    return {
        "cloudflare": {
            "token": cloudflare.get("api_token") or CF_KEY,
            "zone_id": cloudflare.get("zone_id") or CF_ZONE,
        },
        "route53": {
            "access_key": route53.get("access_key") or AWS_ACCESS_KEY,
            "secret_key": route53.get("secret_key") or AWS_SECRET_KEY,
            "zone_id": route53.get("zone_id") or AWS_ZONE_ID,
        },
        "azure": {
            "subscription_id": azure.get("subscription_id") or AZURE_SUBSCRIPTION_ID,
            "resource_group": azure.get("resource_group") or AZURE_RESOURCE_GROUP,
            "zone_name": azure.get("zone_name") or AZURE_ZONE_NAME,
            "tenant_id": azure.get("tenant_id") or AZURE_TENANT_ID,
            "client_id": azure.get("client_id") or AZURE_CLIENT_ID,
            "client_secret": azure.get("client_secret") or AZURE_CLIENT_SECRET,
        },
        "google": {
            "project_id": google.get("project_id") or GOOGLE_PROJECT_ID,
            "zone_name": google.get("zone_name") or GOOGLE_ZONE_NAME,
            "credentials_file": google.get("credentials_file", ""),
        },
        "digitalocean": {
            "token": digitalocean.get("api_token") or DO_KEY,
            "base_domain": digitalocean.get("base_domain", ""),
        },
    }


def get_dns_provider_for(connection):
    from sslcert.dns_providers import PropagationChecker, get_dns_provider
    dns = get_dns_settings()
    return get_dns_provider(
        connection,
        get_dns_credentials(),
        checker=PropagationChecker(dns["resolvers"]),
        manual_poll_interval=int(dns["manual_poll_interval"]),
    )


# ── ACME ─────────────────────────────────────────────────────────────

def get_acme_settings() -> dict:
    acme = get_settings_store().get_section("acme")
    return {
        "email": acme.get("email") or ACME_EMAIL,
        "staging": _as_bool(acme.get("staging"), ACME_STAGING),
        "eab_kid": acme.get("eab_kid") or ZEROSSL_EAB_KID,
        "eab_hmac_key": acme.get("eab_hmac_key") or ZEROSSL_EAB_HMAC_KEY,
    }


def get_acme_client(connection, environment: str):
    from sslcert.acme_service import AcmeClientAdapter
    from sslcert.bundle_store import STAGING
    acme = get_acme_settings()
    return AcmeClientAdapter(
        account_dir=get_bundle_store().account_dir(environment),
        issuer=connection.ssl_provider.value,
        email=acme["email"],
        staging=environment == STAGING,
        eab_kid=acme["eab_kid"],
        eab_hmac_key=acme["eab_hmac_key"],
    )


# ── Engine ───────────────────────────────────────────────────────────

def _build_orchestrator():
    from renewal.orchestrator import RenewalOrchestrator
    dns = get_dns_settings()
    return RenewalOrchestrator(
        store=get_connection_store(),
        registry=get_operation_registry(),
        broadcaster=get_broadcaster(),
        bundle_store=get_bundle_store(),
        dns_provider_factory=get_dns_provider_for,
        acme_factory=get_acme_client,
        audit=get_audit_log(),
        staging=get_acme_settings()["staging"],
        propagation_interval=dns["propagation_interval"],
        propagation_attempts=dns["propagation_attempts"],
        fallback_to_manual=dns["fallback_to_manual"],
        manual_poll_interval=dns["manual_poll_interval"],
        provider_retries=dns["provider_retries"],
        retry_backoff=dns["retry_backoff"],
        acme_timeout=ACME_POLL_TIMEOUT_SECONDS,
        root_store=get_root_store(),
    )


def get_orchestrator():
    return _singleton("orchestrator", _build_orchestrator)


def get_scheduler_settings() -> dict:
    section = get_settings_store().get_section("scheduler")
    return {
        "enabled": _as_bool(section.get("enabled"), SCHEDULER_ENABLED),
        "cron_expression": section.get("cron") or RENEWAL_CRON,
        "threshold_days": int(section.get("threshold_days") or RENEWAL_THRESHOLD_DAYS),
    }


def _build_scheduler():
    from web.scheduler import AutoRenewalScheduler
    settings = get_scheduler_settings()
    return AutoRenewalScheduler(
        store=get_connection_store(),
        orchestrator=get_orchestrator(),
        cron_expression=settings["cron_expression"],
        threshold_days=settings["threshold_days"],
        enabled=settings["enabled"],
        audit=get_audit_log(),
    )


def get_scheduler():
    return _singleton("scheduler", _build_scheduler)


def reload_engine(start_scheduler: bool = True):
    """Rebuild the orchestrator and scheduler from current settings.

    Stores, registry and broadcaster are kept, so running operations and
    event subscribers are unaffected; in-flight renewals finish with the
    settings they started with.
    """
    with _lock:
        old = _instances.pop("scheduler", None)
        if old is not None:
            old.shutdown()
        _instances.pop("orchestrator", None)
        scheduler = get_scheduler()
    if start_scheduler and scheduler.enabled:
        scheduler.start()
    logger.info("Renewal engine reloaded: scheduler %s, threshold %d day(s)",
                "running" if scheduler.running else "stopped", scheduler.threshold_days)
    return scheduler
