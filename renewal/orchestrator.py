"""Renewal orchestrator: drives one connection from CSR to deployed certificate.

Each renewal runs in its own worker thread. Every state transition updates
the operation record, appends a log line (mirrored to the connection's
``renewal.log``) and is published through the progress broadcaster.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from renewal.audit import AuditAction, AuditLog
from renewal.broadcaster import ADMIN_UPDATED, ProgressBroadcaster
from renewal.connection import Connection, SslProvider, validate_connection
from renewal.connection_store import ConnectionStore
from renewal.errors import (
    CancelledError,
    DeploymentError,
    IssuerError,
    PropagationTimeout,
    RenewalError,
    retry_with_backoff,
)
from renewal.operation import ManualDNSEntry, OperationStatus, RenewalOperation
from renewal.registry import ActiveOperationRegistry
from sslcert.bundle_store import PRODUCTION, STAGING, CertificateBundle, CertificateBundleStore
from sslcert.deploy import get_deployment_adapter
from sslcert.dns_providers import ChallengeRecord, DnsChallengeProvider, ManualDnsProvider

logger = logging.getLogger(__name__)


class RenewalOrchestrator:
    """Start, run and cancel renewal operations."""

    def __init__(
        self,
        store: ConnectionStore,
        registry: ActiveOperationRegistry,
        broadcaster: ProgressBroadcaster,
        bundle_store: CertificateBundleStore,
        dns_provider_factory: Callable[[Connection], DnsChallengeProvider],
        acme_factory: Callable[[Connection, str], object],
        adapter_factory: Callable = get_deployment_adapter,
        audit: Optional[AuditLog] = None,
        staging: bool = True,
        propagation_interval: float = 10,
        propagation_attempts: int = 30,
        fallback_to_manual: bool = False,
        manual_poll_interval: float = 30,
        provider_retries: int = 3,
        retry_backoff: float = 2.0,
        acme_timeout: int = 90,
        root_store=None,
    ):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.bundle_store = bundle_store
        self.dns_provider_factory = dns_provider_factory
        self.acme_factory = acme_factory
        self.adapter_factory = adapter_factory
        self.audit = audit
        self.staging = staging
        self.propagation_interval = propagation_interval
        self.propagation_attempts = propagation_attempts
        self.fallback_to_manual = fallback_to_manual
        self.manual_poll_interval = manual_poll_interval
        self.provider_retries = provider_retries
        self.retry_backoff = retry_backoff
        self.acme_timeout = acme_timeout
        self.root_store = root_store
        self.broadcaster.set_snapshot_source(self.registry.list_all)

    def environment_for(self, connection: Connection) -> str:
        # ZeroSSL only offers a production directory
        if connection.ssl_provider == SslProvider.ZEROSSL or not self.staging:
            return PRODUCTION
        return STAGING

    # ── Entry points ─────────────────────────────────────────────

    def start_renewal(self, connection_id: str, created_by: str = "user",
                      background: bool = True) -> RenewalOperation:
        """Validate, claim and launch a renewal; returns the pending operation.

        Raises LookupError for an unknown connection, ValidationError for a
        misconfigured one and ConflictError when one is already running.
        """
        connection = self.store.get(str(connection_id))
        if connection is None:
            raise LookupError(f"Connection {connection_id} not found")
        validate_connection(connection)

        operation = RenewalOperation(
            connection_id=connection.id,
            created_by=created_by or "user",
            environment=self.environment_for(connection),
            connection_name=connection.name,
        )
        token = self.registry.claim(operation)
        self.registry.purge_expired()

        self._log(operation, f"Renewal started by {operation.created_by} for {connection.fqdn} "
                             f"({operation.environment})")
        self.broadcaster.publish_operation(operation, self.broadcaster.admin_event_for(operation))
        self._write_back(connection.id, auto_renew_status="in_progress")
        self._audit(AuditAction.RENEWAL_START, operation,
                    f"{connection.name} ({connection.fqdn}) {operation.environment}")

        if background:
            worker = threading.Thread(
                target=self._worker,
                args=(operation, connection, token),
                name=f"renewal-{operation.id[:8]}",
                daemon=True,
            )
            worker.start()
        else:
            self._worker(operation, connection, token)
        return operation

    def cancel(self, operation_id: str) -> bool:
        cancelled = self.registry.cancel(operation_id)
        if cancelled:
            operation = self.registry.get(operation_id)
            if operation is not None:
                self._log(operation, "Cancellation requested")
        return cancelled

    def _worker(self, operation: RenewalOperation, connection: Connection,
                token: threading.Event) -> None:
        try:
            self.run(operation, connection, token)
        finally:
            self.registry.release(operation.id)

    # ── State machine ────────────────────────────────────────────

    def run(self, operation: RenewalOperation, connection: Connection,
            token: Optional[threading.Event] = None) -> RenewalOperation:
        """Drive ``operation`` to a terminal state. Never raises."""
        token = token or self.registry.token(operation.id) or threading.Event()
        env = operation.environment
        provider: Optional[DnsChallengeProvider] = None
        records: list[ChallengeRecord] = []

        try:
            fqdn = connection.fqdn
            identifiers = connection.identifiers
            adapter = self.adapter_factory(connection)

            self._advance(operation, token, OperationStatus.GENERATING_CSR,
                          f"Generating CSR for {', '.join(identifiers)}")
            material = adapter.prepare_csr(connection, fqdn, identifiers)
            self.bundle_store.save_csr(connection.id, env, material.csr_pem, material.private_key_pem)
            self._log(operation, f"CSR ready (source: {material.source})")

            self._advance(operation, token, OperationStatus.CREATING_ACCOUNT,
                          f"Preparing {connection.ssl_provider.value} account")
            acme = self.acme_factory(connection, env)
            acme.ensure_account()

            self._advance(operation, token, OperationStatus.REQUESTING_CERTIFICATE,
                          "Requesting certificate order")
            order = acme.new_order(material.csr_pem, identifiers)
            self._log(operation, f"Order opened with {len(order.challenges)} DNS-01 challenge(s)")

            self._advance(operation, token, OperationStatus.CREATING_DNS_CHALLENGE,
                          "Creating DNS challenge records")
            provider = self.dns_provider_factory(connection)
            for chall in order.challenges:
                record = retry_with_backoff(
                    lambda c=chall: provider.create_challenge(c.domain, c.validation),
                    attempts=self.provider_retries,
                    backoff=self.retry_backoff,
                    cancel_event=token,
                    description=f"{provider.name} TXT record for {chall.domain}",
                )
                records.append(record)
                self._log(operation, f"TXT {record.name} = {record.value} ({provider.name})")

            if records and provider.is_manual:
                self._wait_manual(operation, token, provider, records, provider)
            elif records:
                self._wait_propagation(operation, token, provider, records)

            self._advance(operation, token, OperationStatus.COMPLETING_VALIDATION,
                          "Completing domain validation")
            acme.complete_challenges(order)
            fullchain = acme.finalize(order, timeout=self.acme_timeout)
            self._cleanup(operation, provider, records)
            records = []

            self._advance(operation, token, OperationStatus.DOWNLOADING_CERTIFICATE,
                          "Downloading certificate")
            bundle = CertificateBundle.from_fullchain(
                fullchain,
                private_key=material.private_key_pem,
                csr=material.csr_pem,
                fqdn=fqdn,
                environment=env,
                roots=self.root_store.roots() if self.root_store is not None else (),
            )
            if not bundle.root:
                self._log(operation, "Warning: issuer root certificate not found; "
                                     "root.crt not written")
            self.bundle_store.save_bundle(connection.id, bundle)
            self._write_back(connection.id,
                             last_cert_issued=bundle.issued_at or datetime.now(timezone.utc),
                             cert_expires_at=bundle.expires_at)
            self._log(operation, f"Certificate issued, serial {bundle.serial}, "
                                 f"expires {bundle.metadata.get('expires_at')}")

            self._advance(operation, token, OperationStatus.UPLOADING_CERTIFICATE,
                          f"Installing certificate on {adapter.name} target")
            result = adapter.deploy(connection, bundle)
            if result.manual_install:
                self._log(operation, result.message)
            elif not result.success:
                raise DeploymentError(result.message, details=result.details)
            else:
                self._log(operation, result.message)
                if result.details.get("warning"):
                    self._log(operation, f"Warning: {result.details['warning']}")

            if not result.manual_install and adapter.supports_restart(connection):
                self._advance(operation, token, OperationStatus.RESTARTING_SERVICE,
                              "Restarting service")
                restart = adapter.restart_service(connection)
                if not restart.success:
                    raise DeploymentError(restart.message, details=restart.details)
                self._log(operation, restart.message)

            message = ("Certificate ready for download" if result.manual_install
                       else "Certificate renewed and installed")
            self._advance(operation, token, OperationStatus.COMPLETED, message)
            self._write_back(connection.id, auto_renew_status="success",
                             auto_renew_last_attempt=datetime.now(timezone.utc))
            self._audit(AuditAction.RENEWAL_COMPLETE, operation,
                        f"{fqdn} expires {bundle.metadata.get('expires_at')}")
        except CancelledError as e:
            self._fail(operation, e, cancelled=True)
        except RenewalError as e:
            if isinstance(e, IssuerError) and e.rate_limited:
                self._log(operation, "Issuer rate limit reached; not retrying")
            self._fail(operation, e)
        except Exception as e:
            logger.exception("Renewal %s crashed", operation.id)
            self._fail(operation, e)
        finally:
            if records:
                self._cleanup(operation, provider, records)
        return operation

    def _wait_propagation(self, operation, token, provider, records) -> None:
        self._advance(operation, token, OperationStatus.WAITING_DNS_PROPAGATION,
                      f"Waiting for DNS propagation of {len(records)} record(s)")
        pending = list(records)
        for attempt in range(1, self.propagation_attempts + 1):
            pending = [r for r in pending if not provider.check_propagated(r)]
            if not pending:
                self._log(operation, "All challenge records visible in public DNS")
                return
            self._log(operation, f"Propagation check {attempt}/{self.propagation_attempts}: "
                                 f"{len(pending)} record(s) pending", publish=True)
            if attempt < self.propagation_attempts and token.wait(self.propagation_interval):
                raise CancelledError("Renewal cancelled")

        if not self.fallback_to_manual:
            raise PropagationTimeout(
                f"DNS records not visible after {self.propagation_attempts} checks",
                details={"pending": [r.name for r in pending]},
            )
        self._log(operation, "Propagation budget exhausted; waiting for operator confirmation")
        helper = ManualDnsProvider(checker=provider.checker, poll_interval=int(self.manual_poll_interval))
        self._wait_manual(operation, token, provider, pending, helper)

    def _wait_manual(self, operation, token, provider, records, instructions_from) -> None:
        first = records[0]
        entry = ManualDNSEntry(
            record_name=first.name,
            record_value=first.value,
            instructions="\n".join(instructions_from.instructions(r) for r in records),
        )
        self._advance(operation, token, OperationStatus.WAITING_MANUAL_DNS,
                      f"Add TXT record {first.name} to continue", manual_dns_entry=entry)
        pending = list(records)
        while True:
            pending = [r for r in pending if not provider.check_propagated(r)]
            if not pending:
                break
            if token.wait(self.manual_poll_interval):
                raise CancelledError("Renewal cancelled")
        self._log(operation, "Manual DNS record detected")

    # ── Helpers ──────────────────────────────────────────────────

    def _advance(self, operation: RenewalOperation, token: threading.Event,
                 status: OperationStatus, message: str,
                 manual_dns_entry: Optional[ManualDNSEntry] = None) -> None:
        if token.is_set():
            raise CancelledError("Renewal cancelled")
        operation.transition(status, message, manual_dns_entry)
        self._log(operation, message)
        self.broadcaster.publish_operation(operation, self.broadcaster.admin_event_for(operation))

    def _log(self, operation: RenewalOperation, line: str, publish: bool = False) -> None:
        stamped = operation.add_log(line)
        logger.info("[%s] %s", operation.id[:8], line)
        try:
            self.bundle_store.append_log(operation.connection_id, stamped)
        except OSError as e:
            logger.warning("Could not write renewal.log for %s: %s", operation.connection_id, e)
        if publish:
            self.broadcaster.publish_operation(operation, ADMIN_UPDATED)

    def _fail(self, operation: RenewalOperation, error: Exception, cancelled: bool = False) -> None:
        operation.fail(error, cancelled=cancelled)
        try:
            self.bundle_store.discard_pending(operation.connection_id, operation.environment)
        except OSError as e:
            logger.warning("Could not discard staged key for %s: %s", operation.connection_id, e)
        if cancelled:
            self._log(operation, "Renewal cancelled")
        else:
            self._log(operation, f"ERROR [{error.__class__.__name__}]: {operation.error}")
        self.broadcaster.publish_operation(operation, self.broadcaster.admin_event_for(operation))
        self._write_back(operation.connection_id,
                         auto_renew_status="cancelled" if cancelled else "failed",
                         auto_renew_last_attempt=datetime.now(timezone.utc))
        self._audit(AuditAction.RENEWAL_CANCEL if cancelled else AuditAction.RENEWAL_FAIL,
                    operation, operation.error or "")

    def _cleanup(self, operation, provider, records) -> None:
        for record in records:
            try:
                provider.delete_challenge(record)
                if not provider.is_manual:
                    self._log(operation, f"Removed TXT record {record.name}")
            except Exception as e:
                logger.warning("Cleanup of %s failed: %s", record.name, e)
                self._log(operation, f"Warning: could not remove TXT record {record.name}: {e}")

    def _write_back(self, connection_id: str, **fields) -> None:
        try:
            self.store.update(connection_id, **fields)
        except OSError as e:
            logger.error("Could not update connection %s: %s", connection_id, e)

    def _audit(self, action: AuditAction, operation: RenewalOperation, detail: str) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(action, operation.connection_id, detail, user=operation.created_by)
        except OSError as e:
            logger.warning("Audit write failed: %s", e)
