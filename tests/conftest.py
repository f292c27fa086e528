"""Root conftest for the ACMEPIPE test suite."""

from __future__ import annotations

import datetime
import sys
import threading
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from acmepipe.config.settings import build_settings  # noqa: E402
from acmepipe.core import crypto  # noqa: E402
from acmepipe.core.jws import compute_thumbprint, load_account_key  # noqa: E402
from acmepipe.core.types import AuthorizationStatus, OrderStatus  # noqa: E402
from acmepipe.deploy.base import TargetServer  # noqa: E402
from acmepipe.dns.base import DnsProvider  # noqa: E402
from acmepipe.errors import SiteNotFound  # noqa: E402
from acmepipe.models.account import AccountIdentity  # noqa: E402
from acmepipe.models.binding import Binding  # noqa: E402
from acmepipe.models.order import Authorization, Order  # noqa: E402
from acmepipe.models.secrets import DnsCredentials  # noqa: E402

ACME_BASE = "https://acme.test"
DIRECTORY_URL = f"{ACME_BASE}/directory"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


FAST_CONFIG: dict = {
    "acme": {
        "directory_url": DIRECTORY_URL,
        "poll_interval_seconds": 0,
        "poll_max_attempts": 3,
    },
    "dns": {
        "provider": "callback",
        "provider_config": {"create_script": "/bin/true", "delete_script": "/bin/true"},
        "propagation_timeout_seconds": 5,
        "propagation_interval_seconds": 0,
        "propagation_max_attempts": 3,
        "cleanup_max_attempts": 2,
    },
    "http": {"max_retries": 2, "retry_delay_seconds": 0},
    "secrets": {"backend": "env"},
}


@pytest.fixture()
def config_data() -> dict:
    """Raw config with polling delays collapsed to zero."""
    return {section: dict(values) for section, values in FAST_CONFIG.items()}


@pytest.fixture()
def settings(config_data):
    return build_settings(config_data)


@pytest.fixture()
def tmp_config_file(tmp_path: Path, config_data: dict) -> Path:
    """Write *config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Config singleton cleanup: autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the PipelineConfig singleton before and after every test."""
    from acmepipe.config.pipeline_config import PipelineConfig

    PipelineConfig.reset()
    yield
    PipelineConfig.reset()


# ---------------------------------------------------------------------------
# Crypto material
# ---------------------------------------------------------------------------


class TestCA:
    """Minimal CA signing leaf certificates from CSRs."""

    __test__ = False

    def __init__(self) -> None:
        self.key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "ACMEPIPE Test CA")])
        now = datetime.datetime.now(datetime.UTC)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.key, hashes.SHA256())
        )

    @property
    def pem(self) -> str:
        return self.cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def sign(self, csr_der: bytes, public_key=None) -> x509.Certificate:
        csr = x509.load_der_x509_csr(csr_der)
        now = datetime.datetime.now(datetime.UTC)
        return (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self.cert.subject)
            .public_key(public_key or csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=90))
            .sign(self.key, hashes.SHA256())
        )

    def chain_pem(self, csr_der: bytes) -> str:
        leaf = self.sign(csr_der)
        return leaf.public_bytes(serialization.Encoding.PEM).decode("ascii") + self.pem


@pytest.fixture(scope="session")
def test_ca() -> TestCA:
    return TestCA()


@pytest.fixture(scope="session")
def account_key_pem() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture()
def account(account_key_pem) -> AccountIdentity:
    key = load_account_key(account_key_pem)
    return AccountIdentity(
        directory_url=DIRECTORY_URL,
        account_id=f"{ACME_BASE}/acct/1",
        key=key,
        thumbprint=compute_thumbprint(key),
    )


@pytest.fixture()
def dns_credentials() -> DnsCredentials:
    return DnsCredentials(host="ipam.example.com", credential="admin:s3cret")


@pytest.fixture()
def make_artifact(test_ca):
    """Build a real :class:`CertificateArtifact` for a domain."""
    from acmepipe.models.certificate import CertificateArtifact

    def _make(domain: str = "www.example.com") -> CertificateArtifact:
        key = crypto.generate_private_key("EC256")
        leaf = test_ca.sign(crypto.build_csr(domain, key))
        passphrase = crypto.generate_passphrase()
        return CertificateArtifact(
            domain=domain,
            certificate_pem=crypto.certificate_pem(leaf),
            chain_pem=crypto.certificate_pem(leaf) + test_ca.pem,
            private_key_pem=crypto.private_key_pem(key),
            bundle=crypto.build_pkcs12(domain, key, leaf, [test_ca.cert], passphrase),
            passphrase=passphrase,
            fingerprint=crypto.certificate_fingerprint(leaf),
            not_after=crypto.not_after(leaf),
        )

    return _make


# ---------------------------------------------------------------------------
# Fake ACME server
# ---------------------------------------------------------------------------


def challenge_token(authz_url: str) -> str:
    """Deterministic base64url dns-01 token for an authorization URL."""
    return "dG9rZW4t" + authz_url.rsplit("/", 1)[-1].zfill(4)


class FakeAcmeClient:
    """Scriptable stand-in for :class:`AcmeClient`.

    ``authz_statuses`` and ``order_statuses`` are consumed one per poll;
    the last entry repeats once the list is exhausted.
    """

    def __init__(self, ca: TestCA) -> None:
        self.ca = ca
        self.directory_url = DIRECTORY_URL
        self.authz_statuses = [AuthorizationStatus.PENDING, AuthorizationStatus.VALID]
        self.order_statuses = [OrderStatus.READY]
        self.finalize_status = OrderStatus.VALID
        self.challenge_error: dict | None = None
        self.offer_dns01 = True
        self.leaf_public_key = None
        self.new_order_error: Exception | None = None
        self.respond_error: Exception | None = None
        self.existing_account: tuple[str, dict] | None = None
        self.registration: tuple[str, dict, bool] = (
            f"{ACME_BASE}/acct/1",
            {"status": "valid"},
            True,
        )
        self.registration_error: Exception | None = None
        self.calls: list[tuple] = []
        self._lock = threading.Lock()
        self._orders = 0
        self._csrs: dict[str, bytes] = {}

    def _next(self, seq: list):
        with self._lock:
            return seq.pop(0) if len(seq) > 1 else seq[0]

    # accounts
    def lookup_account(self, key, **kwargs):
        self.calls.append(("lookup_account",))
        return self.existing_account

    def new_account(self, key, contact, **kwargs):
        self.calls.append(("new_account", contact, kwargs))
        if self.registration_error is not None:
            raise self.registration_error
        return self.registration

    # orders
    def new_order(self, account, domain, **kwargs):
        self.calls.append(("new_order", domain))
        if self.new_order_error is not None:
            raise self.new_order_error
        with self._lock:
            self._orders += 1
            n = self._orders
        return Order(
            domain=domain,
            url=f"{ACME_BASE}/order/{n}",
            status=OrderStatus.PENDING,
            authorization_urls=(f"{ACME_BASE}/authz/{n}",),
            finalize_url=f"{ACME_BASE}/order/{n}/finalize",
        )

    def get_authorization(self, account, url, **kwargs):
        self.calls.append(("get_authorization", url))
        status = self._next(self.authz_statuses)
        challenges = []
        if self.offer_dns01:
            ch = {"type": "dns-01", "url": f"{url}/dns", "token": challenge_token(url)}
            if self.challenge_error and status == AuthorizationStatus.INVALID:
                ch["error"] = self.challenge_error
            challenges.append(ch)
        challenges.append({"type": "http-01", "url": f"{url}/http", "token": "b3RoZXI"})
        return Authorization(
            url=url,
            domain="",
            status=status,
            challenges=tuple(challenges),
        )

    def respond_challenge(self, account, challenge, **kwargs):
        self.calls.append(("respond_challenge", challenge["url"]))
        if self.respond_error is not None:
            raise self.respond_error
        return {"status": "processing"}

    def get_order(self, account, order, **kwargs):
        self.calls.append(("get_order", order.url))
        status = self._next(self.order_statuses)
        return Order(
            domain=order.domain,
            url=order.url,
            status=status,
            authorization_urls=order.authorization_urls,
            finalize_url=order.finalize_url,
            certificate_url=f"{order.url}/cert" if status == OrderStatus.VALID else None,
            error={"detail": "rejected by policy"} if status == OrderStatus.INVALID else None,
        )

    def finalize(self, account, order, csr_der, **kwargs):
        self.calls.append(("finalize", order.url))
        self._csrs[order.url] = csr_der
        return Order(
            domain=order.domain,
            url=order.url,
            status=self.finalize_status,
            authorization_urls=order.authorization_urls,
            finalize_url=order.finalize_url,
            certificate_url=f"{order.url}/cert",
        )

    def download_certificate(self, account, url, **kwargs):
        self.calls.append(("download_certificate", url))
        leaf = self.ca.sign(self._csrs[url.removesuffix("/cert")], self.leaf_public_key)
        return leaf.public_bytes(serialization.Encoding.PEM).decode("ascii") + self.ca.pem

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


@pytest.fixture()
def fake_acme(test_ca) -> FakeAcmeClient:
    return FakeAcmeClient(test_ca)


# ---------------------------------------------------------------------------
# Fake DNS provider and propagation checker
# ---------------------------------------------------------------------------


class FakeDnsProvider(DnsProvider):
    """In-memory provider; class-level ``zone`` is shared across instances."""

    name = "fake"

    def __init__(self, credentials, config=None, http_settings=None, *, zone=None) -> None:
        super().__init__(credentials, config, http_settings)
        self.zone: dict[str, list[str]] = zone if zone is not None else {}
        self.created: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.create_error: Exception | None = None
        self.delete_errors: list[Exception] = []
        self.delete_attempts = 0

    def create_txt_record(self, record_name, value, ttl):
        if self.create_error is not None:
            raise self.create_error
        self.zone.setdefault(record_name, []).append(value)
        self.created.append((record_name, value))
        return f"record:txt/{len(self.created)}"

    def delete_txt_record(self, record_name, value, ref=None):
        self.delete_attempts += 1
        if self.delete_errors:
            raise self.delete_errors.pop(0)
        values = self.zone.get(record_name, [])
        if value in values:
            values.remove(value)
        self.deleted.append((record_name, value))

    def get_txt_values(self, record_name):
        return list(self.zone.get(record_name, []))


class FakeChecker:
    """Propagation checker reading the fake provider's zone.

    ``delay_polls`` makes a value invisible for that many lookups.
    """

    def __init__(self, zone: dict[str, list[str]]) -> None:
        self.zone = zone
        self.delay_polls = 0
        self.visible = True
        self.polls = 0

    def resolver_for(self, record_name):
        return None

    def is_visible(self, resolver, record_name, expected):
        self.polls += 1
        if not self.visible or self.polls <= self.delay_polls:
            return False
        return expected in self.zone.get(record_name, [])


@pytest.fixture()
def dns_zone() -> dict[str, list[str]]:
    return {}


@pytest.fixture()
def fake_dns(dns_zone, dns_credentials) -> FakeDnsProvider:
    return FakeDnsProvider(dns_credentials, zone=dns_zone)


@pytest.fixture()
def fake_checker(dns_zone) -> FakeChecker:
    return FakeChecker(dns_zone)


# ---------------------------------------------------------------------------
# Fake target server
# ---------------------------------------------------------------------------


class FakeTargetServer(TargetServer):
    """In-memory web server with certificate stores and site bindings."""

    def __init__(self, server: str = "web01", sites=("Default",)) -> None:
        super().__init__(server)
        self.sites = set(sites)
        self.stores: dict[str, set[str]] = {}
        self.bindings: dict[tuple[str, str, int], Binding] = {}
        self.imports = 0
        self.set_calls: list[Binding] = []
        self.report_fingerprint: str | None = None
        self.fail_set: Exception | None = None
        self.fail_get: Exception | None = None
        self._lock = threading.Lock()

    def has_certificate(self, fingerprint, store_location):
        return crypto.normalize_fingerprint(fingerprint) in self.stores.get(store_location, set())

    def import_certificate(self, bundle, passphrase, store_location):
        _key, cert = crypto.load_pkcs12(bundle, passphrase)
        fingerprint = crypto.certificate_fingerprint(cert)
        with self._lock:
            self.imports += 1
            self.stores.setdefault(store_location, set()).add(fingerprint)
        return self.report_fingerprint or fingerprint

    def get_binding(self, site, protocol, port, host_name=None):
        if self.fail_get is not None:
            raise self.fail_get
        if site not in self.sites:
            raise SiteNotFound(f"Site '{site}' does not exist on {self.server}")
        return self.bindings.get((site, protocol, port))

    def set_binding(self, binding):
        if self.fail_set is not None:
            raise self.fail_set
        if binding.site not in self.sites:
            raise SiteNotFound(f"Site '{binding.site}' does not exist on {self.server}")
        with self._lock:
            self.set_calls.append(binding)
            self.bindings[(binding.site, binding.protocol, binding.port)] = binding
        return binding


@pytest.fixture()
def fake_server() -> FakeTargetServer:
    return FakeTargetServer()


@pytest.fixture()
def make_server():
    return FakeTargetServer


@pytest.fixture()
def target():
    from acmepipe.models.binding import DeploymentTarget

    return DeploymentTarget(server="web01", site="Default")


# ---------------------------------------------------------------------------
# Event recorder
# ---------------------------------------------------------------------------


class RecordingHooks:
    """Captures dispatched events in order (stands in for HookRegistry)."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def dispatch(self, event: str, context: dict) -> None:
        with self._lock:
            self.events.append((event, dict(context)))

    def names(self) -> list[str]:
        return [e for e, _ in self.events]

    def last(self, event: str) -> dict:
        for name, ctx in reversed(self.events):
            if name == event:
                return ctx
        raise KeyError(event)


@pytest.fixture()
def hooks() -> RecordingHooks:
    return RecordingHooks()


# ---------------------------------------------------------------------------
# Wired components
# ---------------------------------------------------------------------------


@pytest.fixture()
def challenges(settings, fake_dns, fake_checker, hooks):
    from acmepipe.dns.challenge import DnsChallengeController

    return DnsChallengeController(
        settings.dns,
        lambda credentials: fake_dns,
        checker=fake_checker,
        hooks=hooks,
    )


@pytest.fixture()
def issuer(settings, fake_acme, challenges, hooks):
    from acmepipe.acme.issuer import CertificateIssuer

    return CertificateIssuer(
        settings.acme,
        settings.dns,
        lambda directory_url: fake_acme,
        challenges,
        hooks=hooks,
    )


# ---------------------------------------------------------------------------
# Logging state: configure_logging() rewires the acmepipe loggers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def restore_loggers():
    import logging

    saved = []
    for name in ("acmepipe", "acmepipe.activity"):
        logger = logging.getLogger(name)
        saved.append((logger, logger.level, list(logger.handlers), logger.propagate))
    yield
    for logger, level, handlers, propagate in saved:
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.setLevel(level)
        logger.handlers[:] = handlers
        logger.propagate = propagate
