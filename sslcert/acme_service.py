"""ACME (RFC 8555) certificate issuance through the ``acme`` client library.

Wraps account registration/reuse, order creation, DNS-01 challenge
extraction, challenge answering and finalization. Every issuer-side failure
is normalized to :class:`renewal.errors.IssuerError`.
"""

import datetime
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import josepy as jose
from acme import challenges, client, errors, messages
from cryptography.hazmat.primitives.asymmetric import rsa

from config.settings import LETSENCRYPT_DIRECTORY, LETSENCRYPT_STAGING_DIRECTORY, ZEROSSL_DIRECTORY
from renewal.errors import IssuerError

logger = logging.getLogger(__name__)

USER_AGENT = "netssl"
ACCOUNT_KEY_BITS = 2048

LETSENCRYPT = "letsencrypt"
ZEROSSL = "zerossl"

RATE_LIMITED = messages.ERROR_PREFIX + "rateLimited"
_STALE_ACCOUNT_CODES = ("unauthorized", "accountDoesNotExist")


@dataclass
class AcmeChallenge:
    """One pending DNS-01 challenge of an order."""

    domain: str
    record_name: str
    validation: str
    challb: Any = field(default=None, repr=False)
    response: Any = field(default=None, repr=False)


@dataclass
class AcmeOrder:
    """An open order and the DNS-01 challenges it requires."""

    orderr: Any = field(repr=False)
    challenges: list[AcmeChallenge] = field(default_factory=list)

    @property
    def uri(self) -> str:
        return getattr(self.orderr, "uri", "") or ""


def issuer_error(exc: Exception, action: str) -> IssuerError:
    """Translate an ``acme`` exception into IssuerError, keeping the CA detail."""
    if isinstance(exc, IssuerError):
        return exc
    if isinstance(exc, messages.Error):
        detail = exc.detail or exc.description or str(exc)
        return IssuerError(
            f"{action}: {detail}",
            details={"type": exc.typ, "code": exc.code},
            rate_limited=exc.typ == RATE_LIMITED,
        )
    if isinstance(exc, errors.ValidationError):
        failures = []
        for authzr in exc.failed_authzrs:
            for challb in authzr.body.challenges:
                if challb.error is not None:
                    failures.append({
                        "domain": authzr.body.identifier.value,
                        "type": challb.error.typ,
                        "detail": challb.error.detail,
                    })
        summary = "; ".join(f"{f['domain']}: {f['detail']}" for f in failures) or str(exc)
        return IssuerError(f"{action}: challenge validation failed ({summary})",
                           details={"failures": failures})
    if isinstance(exc, errors.TimeoutError):
        return IssuerError(f"{action}: timed out waiting for the issuer")
    if isinstance(exc, errors.IssuanceError):
        return issuer_error(exc.error, action)
    return IssuerError(f"{action}: {exc}")


class AcmeClientAdapter:
    """ACME client bound to one issuer, environment and account email."""

    def __init__(
        self,
        account_dir: str | Path,
        issuer: str = LETSENCRYPT,
        email: str = "",
        staging: bool = True,
        eab_kid: str = "",
        eab_hmac_key: str = "",
        directory_urls: Optional[dict] = None,
    ):
        self.account_dir = Path(account_dir)
        self.issuer = issuer
        self.email = email
        self.staging = staging
        self.eab_kid = eab_kid
        self.eab_hmac_key = eab_hmac_key
        urls = {
            "letsencrypt_staging": LETSENCRYPT_STAGING_DIRECTORY,
            "letsencrypt": LETSENCRYPT_DIRECTORY,
            "zerossl": ZEROSSL_DIRECTORY,
        }
        urls.update(directory_urls or {})
        self._urls = urls
        self._client = None
        self._regr = None

    @property
    def directory_url(self) -> str:
        if self.issuer == ZEROSSL:
            # ZeroSSL has no staging directory
            return self._urls["zerossl"]
        if self.staging:
            return self._urls["letsencrypt_staging"]
        return self._urls["letsencrypt"]

    @property
    def account_path(self) -> Path:
        return self.account_dir / f"{self.issuer}.json"

    # ── Account ──────────────────────────────────────────────────

    def _build_client(self, key: jose.JWKRSA, regr=None) -> client.ClientV2:
        net = client.ClientNetwork(key, account=regr, user_agent=USER_AGENT)
        directory = client.ClientV2.get_directory(self.directory_url, net)
        return client.ClientV2(directory, net=net)

    def _load_account(self):
        if not self.account_path.exists():
            return None, None
        try:
            data = json.loads(self.account_path.read_text())
            if data.get("email", "") != self.email or data.get("directory") != self.directory_url:
                logger.info("Stored %s account does not match current settings; registering anew",
                            self.issuer)
                return None, None
            key = jose.JWKRSA.json_loads(json.dumps(data["key"]))
            regr = messages.RegistrationResource.json_loads(json.dumps(data["regr"]))
            return key, regr
        except (OSError, ValueError, KeyError, jose.DeserializationError) as e:
            logger.warning("Unreadable ACME account file %s: %s", self.account_path, e)
            return None, None

    def _save_account(self, key: jose.JWKRSA, regr) -> None:
        self.account_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "issuer": self.issuer,
            "email": self.email,
            "directory": self.directory_url,
            "created_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "key": json.loads(key.json_dumps()),
            "regr": json.loads(regr.json_dumps()),
        }
        self.account_path.write_text(json.dumps(data, indent=2))
        self.account_path.chmod(0o600)

    def _register(self, key: jose.JWKRSA, acme_client: client.ClientV2):
        eab = None
        if self.issuer == ZEROSSL:
            if not self.eab_kid or not self.eab_hmac_key:
                raise IssuerError("ZeroSSL requires EAB credentials (key ID and HMAC key)")
            eab = messages.ExternalAccountBinding.from_data(
                account_public_key=key.public_key(),
                kid=self.eab_kid,
                hmac_key=self.eab_hmac_key,
                directory=acme_client.directory,
            )
        kwargs = {"terms_of_service_agreed": True}
        if self.email:
            kwargs["email"] = self.email
        if eab is not None:
            kwargs["external_account_binding"] = eab
        return acme_client.new_account(messages.NewRegistration.from_data(**kwargs))

    def ensure_account(self) -> None:
        """Load the stored account for this issuer or register a new one."""
        if self._client is not None:
            return
        try:
            key, regr = self._load_account()
            if key is not None:
                acme_client = self._build_client(key, regr)
                try:
                    regr = acme_client.query_registration(regr)
                    self._client, self._regr = acme_client, regr
                    logger.info("Reusing %s account %s", self.issuer, regr.uri)
                    return
                except messages.Error as e:
                    if e.code not in _STALE_ACCOUNT_CODES:
                        raise
                    logger.warning("Stored %s account rejected (%s); registering anew",
                                   self.issuer, e.code)

            key = jose.JWKRSA(key=rsa.generate_private_key(
                public_exponent=65537, key_size=ACCOUNT_KEY_BITS))
            acme_client = self._build_client(key)
            regr = self._register(key, acme_client)
            acme_client.net.account = regr
            self._save_account(key, regr)
            self._client, self._regr = acme_client, regr
            logger.info("Registered %s account %s (%s)", self.issuer, regr.uri,
                        "staging" if self.staging and self.issuer == LETSENCRYPT else "production")
        except (messages.Error, errors.Error) as e:
            raise issuer_error(e, "Account registration failed") from e

    # ── Orders ───────────────────────────────────────────────────

    def new_order(self, csr_pem: str, identifiers: Optional[list[str]] = None) -> AcmeOrder:
        """Open an order for the CSR and collect one DNS-01 challenge per authorization."""
        self.ensure_account()
        try:
            orderr = self._client.new_order(csr_pem.encode())
        except (messages.Error, errors.Error) as e:
            raise issuer_error(e, "Order creation failed") from e

        order = AcmeOrder(orderr=orderr)
        for authzr in orderr.authorizations:
            if authzr.body.status == messages.STATUS_VALID:
                continue
            domain = authzr.body.identifier.value
            challb = next(
                (c for c in authzr.body.challenges if isinstance(c.chall, challenges.DNS01)),
                None,
            )
            if challb is None:
                raise IssuerError(f"DNS-01 challenge was not offered for {domain}")
            response, validation = challb.response_and_validation(self._client.net.key)
            order.challenges.append(AcmeChallenge(
                domain=domain,
                record_name=challb.chall.validation_domain_name(domain),
                validation=validation,
                challb=challb,
                response=response,
            ))
        if identifiers:
            logger.info("Opened order for %s with %d pending challenge(s)",
                        ", ".join(identifiers), len(order.challenges))
        return order

    def complete_challenges(self, order: AcmeOrder) -> None:
        """Tell the CA every challenge record is in place."""
        try:
            for chall in order.challenges:
                self._client.answer_challenge(chall.challb, chall.response)
                logger.info("Answered DNS-01 challenge for %s", chall.domain)
        except (messages.Error, errors.Error) as e:
            raise issuer_error(e, "Challenge submission failed") from e

    def finalize(self, order: AcmeOrder, timeout: int = 90) -> str:
        """Wait for valid authorizations, finalize, and return the full-chain PEM."""
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)
        try:
            orderr = self._client.poll_authorizations(order.orderr, deadline)
            orderr = self._client.finalize_order(orderr, deadline)
        except (messages.Error, errors.Error) as e:
            raise issuer_error(e, "Certificate issuance failed") from e
        if not orderr.fullchain_pem:
            raise IssuerError("Issuer returned no certificate")
        return orderr.fullchain_pem
