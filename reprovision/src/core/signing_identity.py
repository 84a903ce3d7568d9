from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from reprovision.logger import get_console
from reprovision.src.core.errors import InvalidCertificate
from reprovision.src.core.models import Certificate
from reprovision.src.core.trust_store import TrustStore

IDENTITY_FRIENDLY_NAME = b"reprovision signing identity"


def build_signing_identity(
    certificate: Certificate,
    trust_store: TrustStore,
    password: Optional[bytes] = None,
) -> bytes:
    """Merge a developer's key + certificate with the pinned root chain.

    Returns a PKCS#12 container with no passphrase, which is what the
    signing engine expects. ``password`` only unlocks the input container.
    """
    # Resolving the chain first surfaces a missing anchor before anything else
    chain = trust_store.chain

    if not certificate.has_private_key:
        raise InvalidCertificate(certificate.serial_number)

    try:
        key, leaf, _ = pkcs12.load_key_and_certificates(certificate.p12_data, password)
    except ValueError as e:
        raise InvalidCertificate(certificate.serial_number, f"unreadable container: {e}") from e

    if key is None:
        raise InvalidCertificate(certificate.serial_number)
    if leaf is None:
        leaf = _leaf_from_der(certificate)

    identity = pkcs12.serialize_key_and_certificates(
        name=IDENTITY_FRIENDLY_NAME,
        key=key,
        cert=leaf,
        cas=chain,
        encryption_algorithm=serialization.NoEncryption(),
    )

    get_console().log(
        f"[green]Built signing identity for[/] {certificate.name} "
        f"[dim]({len(chain)} root certificate(s))[/]"
    )
    return identity


def _leaf_from_der(certificate: Certificate) -> x509.Certificate:
    if not certificate.data:
        raise InvalidCertificate(certificate.serial_number, "container has no certificate")
    try:
        return x509.load_der_x509_certificate(certificate.data)
    except ValueError as e:
        raise InvalidCertificate(certificate.serial_number, f"unreadable certificate: {e}") from e


def pair_key_with_certificate(private_key_pem: bytes, certificate_der: bytes) -> bytes:
    """Package a locally generated key and an issued certificate as PKCS#12.

    Used after a fresh certificate is issued for a CSR, since the developer
    services only ever return the public half.
    """
    key = serialization.load_pem_private_key(private_key_pem, password=None)
    cert = x509.load_der_x509_certificate(certificate_der)
    return pkcs12.serialize_key_and_certificates(
        name=IDENTITY_FRIENDLY_NAME,
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.NoEncryption(),
    )


def certificate_from_p12(p12_data: bytes, password: Optional[bytes] = None) -> Certificate:
    """Describe a .p12 exported from a keychain as a Certificate with key material.

    The container is re-serialised without a passphrase so later steps never
    need the password.
    """
    try:
        key, cert, _ = pkcs12.load_key_and_certificates(p12_data, password)
    except ValueError as e:
        raise InvalidCertificate(detail=f"unreadable container: {e}") from e
    if key is None or cert is None:
        raise InvalidCertificate(detail="container needs both a private key and a certificate")

    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return Certificate(
        identifier="",
        serial_number=format(cert.serial_number, "X"),
        name=names[0].value if names else "",
        expiration_date=cert.not_valid_after_utc,
        data=cert.public_bytes(serialization.Encoding.DER),
        p12_data=pkcs12.serialize_key_and_certificates(
            name=IDENTITY_FRIENDLY_NAME,
            key=key,
            cert=cert,
            cas=None,
            encryption_algorithm=serialization.NoEncryption(),
        ),
    )
