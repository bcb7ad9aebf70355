"""
Secure channel layer.

Builds the client TLS context for the configured SecurityProtocol, wraps the
control and data sockets, and decides whether the server certificate is
accepted. The handshake itself never verifies anything (CERT_NONE); the
decision is taken afterwards by CertificateValidator so that callers can
plug their own policy in, the same way for every channel.
"""

import datetime
import enum
import fnmatch
import ipaddress
import logging
import ssl
import threading
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from .errors import CertificateValidationError, SecureConnectionError

logger = logging.getLogger(__name__)


class SecurityProtocol(enum.Enum):
    NONE = "none"
    TLS1_OR_SSL3_EXPLICIT = "tls1-or-ssl3-explicit"
    TLS1_EXPLICIT = "tls1-explicit"
    TLS11_EXPLICIT = "tls11-explicit"
    TLS12_EXPLICIT = "tls12-explicit"
    TLS13_EXPLICIT = "tls13-explicit"
    TLS1_OR_SSL3_IMPLICIT = "tls1-or-ssl3-implicit"
    TLS1_IMPLICIT = "tls1-implicit"
    TLS11_IMPLICIT = "tls11-implicit"
    TLS12_IMPLICIT = "tls12-implicit"
    TLS13_IMPLICIT = "tls13-implicit"

    @property
    def is_secure(self) -> bool:
        return self is not SecurityProtocol.NONE

    @property
    def is_explicit(self) -> bool:
        return self.value.endswith("-explicit")

    @property
    def is_implicit(self) -> bool:
        return self.value.endswith("-implicit")

    @property
    def auth_mechanism(self) -> str:
        """Argumento de AUTH: SSL solo para el modo negociado TLS1/SSL3."""
        if self in (SecurityProtocol.TLS1_OR_SSL3_EXPLICIT, SecurityProtocol.TLS1_OR_SSL3_IMPLICIT):
            return "SSL"
        return "TLS"

    @property
    def tls_version(self) -> Optional[ssl.TLSVersion]:
        return _PINNED_VERSIONS.get(self.value.rsplit("-", 1)[0])


_PINNED_VERSIONS = {
    "tls1": ssl.TLSVersion.TLSv1,
    "tls11": ssl.TLSVersion.TLSv1_1,
    "tls12": ssl.TLSVersion.TLSv1_2,
    "tls13": ssl.TLSVersion.TLSv1_3,
}


class SslPolicyErrors(enum.IntFlag):
    NONE = 0
    REMOTE_CERTIFICATE_NOT_AVAILABLE = 1
    REMOTE_CERTIFICATE_NAME_MISMATCH = 2
    REMOTE_CERTIFICATE_CHAIN_ERRORS = 4


class ServerCertificate:
    """Certificado X.509 presentado por el servidor (forma DER)."""

    def __init__(self, der: bytes):
        self.der = der
        self.cert = x509.load_der_x509_certificate(der)

    @property
    def fingerprint(self) -> str:
        return self.cert.fingerprint(hashes.SHA1()).hex().upper()

    @property
    def subject(self) -> str:
        return self.cert.subject.rfc4514_string()

    @property
    def issuer(self) -> str:
        return self.cert.issuer.rfc4514_string()

    @property
    def not_valid_before(self) -> datetime.datetime:
        return self.cert.not_valid_before_utc

    @property
    def not_valid_after(self) -> datetime.datetime:
        return self.cert.not_valid_after_utc

    @property
    def dns_names(self) -> list[str]:
        try:
            san = self.cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return []
        return san.get_values_for_type(x509.DNSName)

    @property
    def ip_addresses(self) -> list:
        try:
            san = self.cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return []
        return san.get_values_for_type(x509.IPAddress)

    @property
    def common_names(self) -> list[str]:
        return [a.value for a in self.cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]

    def matches_host(self, host: str) -> bool:
        try:
            address = ipaddress.ip_address(host.split('%', 1)[0])
        except ValueError:
            address = None
        if address is not None:
            return address in self.ip_addresses

        host = host.rstrip('.').lower()
        patterns = self.dns_names or self.common_names
        return any(_match_dns_name(p.lower(), host) for p in patterns)

    def __repr__(self) -> str:
        return f"ServerCertificate(subject={self.subject!r}, fingerprint={self.fingerprint})"


def _match_dns_name(pattern: str, host: str) -> bool:
    if '*' not in pattern:
        return pattern == host
    # a wildcard covers exactly one left-most label
    p_labels = pattern.split('.')
    h_labels = host.split('.')
    if len(p_labels) != len(h_labels) or '*' in ''.join(p_labels[1:]):
        return False
    return fnmatch.fnmatchcase(h_labels[0], p_labels[0]) and p_labels[1:] == h_labels[1:]


# hook(certificate, chain, policy_errors) -> accept?
CertificateHook = Callable[[Optional[ServerCertificate], list, SslPolicyErrors], bool]


class CertificateValidator:
    """
    Decide si se acepta el certificado del servidor.

    Orden de decision:
        1. always_accept -> aceptar.
        2. huella ya aceptada previamente -> aceptar.
        3. hook registrado -> delegar y recordar la huella si acepta.
        4. politica por defecto: nombre distinto -> rechazar; sin errores o
           solo errores de cadena -> aceptar (y recordar); resto -> rechazar.
    """

    def __init__(self, always_accept: bool = False, hook: Optional[CertificateHook] = None,
                 ca_file: Optional[str] = None):
        self.always_accept = always_accept
        self.hook = hook
        self.ca_file = ca_file
        self._accepted: set[str] = set()
        self._lock = threading.Lock()
        self._roots: Optional[list] = None

    def is_accepted(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._accepted

    def remember(self, fingerprint: str) -> None:
        with self._lock:
            self._accepted.add(fingerprint)

    def policy_errors(self, certificate: Optional[ServerCertificate], chain: list,
                      host: str) -> SslPolicyErrors:
        if certificate is None:
            return SslPolicyErrors.REMOTE_CERTIFICATE_NOT_AVAILABLE
        errors = SslPolicyErrors.NONE
        if not certificate.matches_host(host):
            errors |= SslPolicyErrors.REMOTE_CERTIFICATE_NAME_MISMATCH
        if not self._chain_is_trusted(certificate, chain):
            errors |= SslPolicyErrors.REMOTE_CERTIFICATE_CHAIN_ERRORS
        return errors

    def validate(self, certificate: Optional[ServerCertificate], chain: list,
                 policy_errors: SslPolicyErrors) -> bool:
        if self.always_accept:
            return True

        if certificate is not None and self.is_accepted(certificate.fingerprint):
            return True

        if self.hook is not None:
            accepted = bool(self.hook(certificate, chain, policy_errors))
            if accepted and certificate is not None:
                self.remember(certificate.fingerprint)
            return accepted

        if policy_errors & SslPolicyErrors.REMOTE_CERTIFICATE_NAME_MISMATCH:
            return False
        if policy_errors in (SslPolicyErrors.NONE, SslPolicyErrors.REMOTE_CERTIFICATE_CHAIN_ERRORS):
            if certificate is not None:
                self.remember(certificate.fingerprint)
            return True
        return False

    # ---------------- Métodos Internos ----------------
    def _trust_roots(self) -> list:
        if self._roots is None:
            context = ssl.create_default_context()
            if self.ca_file:
                context.load_verify_locations(cafile=self.ca_file)
            roots = []
            for der in context.get_ca_certs(binary_form=True):
                try:
                    roots.append(x509.load_der_x509_certificate(der))
                except ValueError:
                    logger.debug("Skipping unreadable trust anchor")
            self._roots = roots
        return self._roots

    def _chain_is_trusted(self, certificate: ServerCertificate, chain: list) -> bool:
        roots = self._trust_roots()
        if not roots:
            return False
        subject = _verifiable_subject(certificate)
        if subject is None:
            return False
        intermediates = [c.cert for c in chain[1:]]
        verifier = (PolicyBuilder()
                    .store(Store(roots))
                    .time(datetime.datetime.now(datetime.timezone.utc))
                    .build_server_verifier(subject))
        try:
            verifier.verify(certificate.cert, intermediates)
        except VerificationError as e:
            logger.debug("Certificate chain not trusted: %s", e)
            return False
        return True


def _verifiable_subject(certificate: ServerCertificate):
    # chain trust is checked against a name the certificate itself carries;
    # host name matching is a separate policy error
    for name in certificate.dns_names:
        if '*' not in name:
            return x509.DNSName(name)
    for address in certificate.ip_addresses:
        return x509.IPAddress(address)
    return None


class SecureChannel:
    """Envuelve sockets con TLS y aplica la decision de certificado."""

    def __init__(self, protocol: SecurityProtocol, validator: CertificateValidator,
                 client_cert_file: Optional[str] = None, client_key_file: Optional[str] = None):
        if not protocol.is_secure:
            raise ValueError("a secure channel needs a secure protocol")
        self.protocol = protocol
        self.validator = validator
        self.client_cert_file = client_cert_file
        self.client_key_file = client_key_file
        self._context: Optional[ssl.SSLContext] = None

    @property
    def context(self) -> ssl.SSLContext:
        if self._context is None:
            self._context = self._build_context()
        return self._context

    def wrap(self, sock, host: str, session: Optional[ssl.SSLSession] = None) -> ssl.SSLSocket:
        """Negocia TLS como cliente sobre ``sock`` y valida el certificado."""
        try:
            tls = self.context.wrap_socket(sock, server_hostname=host, session=session)
        except (ssl.SSLError, OSError) as e:
            logger.error("TLS negotiation with %s failed: %s", host, e)
            raise SecureConnectionError(f"TLS negotiation with {host} failed: {e}") from e

        der = tls.getpeercert(binary_form=True)
        certificate = ServerCertificate(der) if der else None
        chain = _peer_chain(tls)
        errors = self.validator.policy_errors(certificate, chain, host)
        if not self.validator.validate(certificate, chain, errors):
            tls.close()
            raise CertificateValidationError(
                f"server certificate for {host} rejected ({errors!r})")

        logger.info("TLS negotiated with %s: %s %s", host, tls.version(), (tls.cipher() or ("?",))[0])
        return tls

    def _build_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        version = self.protocol.tls_version
        if version is not None:
            context.minimum_version = version
            context.maximum_version = version
        if self.client_cert_file:
            context.load_cert_chain(self.client_cert_file, self.client_key_file)
        return context


def _peer_chain(tls: ssl.SSLSocket) -> list[ServerCertificate]:
    get_chain = getattr(tls, "get_unverified_chain", None)
    if get_chain is None:
        der = tls.getpeercert(binary_form=True)
        return [ServerCertificate(der)] if der else []
    return [ServerCertificate(der) for der in get_chain() or []]
