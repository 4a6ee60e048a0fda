"""
Credential material generation for AccessRequests.

Produces a private key and a PEM encoded PKCS#10 certificate signing request
bound to it. The identity becomes the Common Name and the optional subject
fields fill the remaining distinguished name attributes. Everything here is
synchronous and performs no I/O.

Supported signature algorithm selectors:

    SHA256WithRSA, SHA384WithRSA, SHA512WithRSA           RSA, PKCS#1 v1.5
    SHA256WithRSAPSS, SHA384WithRSAPSS, SHA512WithRSAPSS  RSA, RSASSA-PSS
    ECDSAWithSHA256, ECDSAWithSHA384, ECDSAWithSHA512     P-256, P-384, P-521
    PureEd25519                                           Ed25519

There is no fallback for unknown selectors; defaulting happens when the
AccessRequest spec is parsed.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import NameOID, SignatureAlgorithmOID

from ..constants import CSR_PEM_TYPE, REASON_EXISTING_SECRET_INVALID
from ..errors import (
    CredentialGenerationError,
    MalformedRequestError,
    UnsupportedAlgorithmError,
)
from ..models.access_request import SubjectFields

logger = logging.getLogger(__name__)

MINIMUM_RSA_KEY_SIZE = 2048
DEFAULT_RSA_KEY_SIZE = 4096


class SignatureAlgorithm(StrEnum):
    SHA256_WITH_RSA = "SHA256WithRSA"
    SHA384_WITH_RSA = "SHA384WithRSA"
    SHA512_WITH_RSA = "SHA512WithRSA"
    SHA256_WITH_RSA_PSS = "SHA256WithRSAPSS"
    SHA384_WITH_RSA_PSS = "SHA384WithRSAPSS"
    SHA512_WITH_RSA_PSS = "SHA512WithRSAPSS"
    ECDSA_WITH_SHA256 = "ECDSAWithSHA256"
    ECDSA_WITH_SHA384 = "ECDSAWithSHA384"
    ECDSA_WITH_SHA512 = "ECDSAWithSHA512"
    PURE_ED25519 = "PureEd25519"


class KeyFamily(StrEnum):
    RSA = "RSA"
    ECDSA = "ECDSA"
    ED25519 = "Ed25519"


@dataclass(frozen=True)
class _AlgorithmProfile:
    family: KeyFamily
    hash_algorithm: type[hashes.HashAlgorithm] | None
    signature_oid: x509.ObjectIdentifier
    pss: bool = False
    curve: type[ec.EllipticCurve] | None = None


_PROFILES: dict[SignatureAlgorithm, _AlgorithmProfile] = {
    SignatureAlgorithm.SHA256_WITH_RSA: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA256, SignatureAlgorithmOID.RSA_WITH_SHA256
    ),
    SignatureAlgorithm.SHA384_WITH_RSA: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA384, SignatureAlgorithmOID.RSA_WITH_SHA384
    ),
    SignatureAlgorithm.SHA512_WITH_RSA: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA512, SignatureAlgorithmOID.RSA_WITH_SHA512
    ),
    SignatureAlgorithm.SHA256_WITH_RSA_PSS: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA256, SignatureAlgorithmOID.RSASSA_PSS, pss=True
    ),
    SignatureAlgorithm.SHA384_WITH_RSA_PSS: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA384, SignatureAlgorithmOID.RSASSA_PSS, pss=True
    ),
    SignatureAlgorithm.SHA512_WITH_RSA_PSS: _AlgorithmProfile(
        KeyFamily.RSA, hashes.SHA512, SignatureAlgorithmOID.RSASSA_PSS, pss=True
    ),
    SignatureAlgorithm.ECDSA_WITH_SHA256: _AlgorithmProfile(
        KeyFamily.ECDSA,
        hashes.SHA256,
        SignatureAlgorithmOID.ECDSA_WITH_SHA256,
        curve=ec.SECP256R1,
    ),
    SignatureAlgorithm.ECDSA_WITH_SHA384: _AlgorithmProfile(
        KeyFamily.ECDSA,
        hashes.SHA384,
        SignatureAlgorithmOID.ECDSA_WITH_SHA384,
        curve=ec.SECP384R1,
    ),
    SignatureAlgorithm.ECDSA_WITH_SHA512: _AlgorithmProfile(
        KeyFamily.ECDSA,
        hashes.SHA512,
        SignatureAlgorithmOID.ECDSA_WITH_SHA512,
        curve=ec.SECP521R1,
    ),
    SignatureAlgorithm.PURE_ED25519: _AlgorithmProfile(
        KeyFamily.ED25519, None, SignatureAlgorithmOID.ED25519
    ),
}

@dataclass(frozen=True)
class CredentialMaterial:
    """A PEM private key and the PEM certificate signing request it signed."""

    private_key_pem: bytes
    request_pem: bytes


def resolve_algorithm(selector: str) -> SignatureAlgorithm:
    """Map a selector string onto a supported algorithm or raise."""
    try:
        return SignatureAlgorithm(selector)
    except ValueError:
        raise UnsupportedAlgorithmError(selector) from None


def _build_subject(common_name: str, subject: SubjectFields | None) -> x509.Name:
    attributes = []
    if subject is not None:
        for oid, values in (
            (NameOID.COUNTRY_NAME, subject.country),
            (NameOID.STATE_OR_PROVINCE_NAME, subject.province),
            (NameOID.LOCALITY_NAME, subject.locality),
            (NameOID.ORGANIZATION_NAME, subject.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, subject.organizational_unit),
        ):
            attributes.extend(x509.NameAttribute(oid, value) for value in values)
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def _generate_key(profile: _AlgorithmProfile, rsa_key_size: int):
    if profile.family == KeyFamily.RSA:
        if rsa_key_size < MINIMUM_RSA_KEY_SIZE:
            raise CredentialGenerationError(
                f"RSA key size {rsa_key_size} is below the minimum of "
                f"{MINIMUM_RSA_KEY_SIZE}"
            )
        return rsa.generate_private_key(public_exponent=65537, key_size=rsa_key_size)
    if profile.family == KeyFamily.ECDSA:
        return ec.generate_private_key(profile.curve())
    return ed25519.Ed25519PrivateKey.generate()


def _encode_private_key(private_key, family: KeyFamily) -> bytes:
    # RSA and EC keep their traditional PEM types, Ed25519 only exists as PKCS#8
    key_format = (
        serialization.PrivateFormat.PKCS8
        if family == KeyFamily.ED25519
        else serialization.PrivateFormat.TraditionalOpenSSL
    )
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=key_format,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _sign_request(
    builder: x509.CertificateSigningRequestBuilder,
    private_key,
    profile: _AlgorithmProfile,
) -> x509.CertificateSigningRequest:
    if profile.hash_algorithm is None:
        return builder.sign(private_key, None)
    hash_algorithm = profile.hash_algorithm()
    if profile.pss:
        return builder.sign(
            private_key,
            hash_algorithm,
            rsa_padding=padding.PSS(
                mgf=padding.MGF1(profile.hash_algorithm()),
                salt_length=padding.PSS.DIGEST_LENGTH,
            ),
        )
    return builder.sign(private_key, hash_algorithm)


def generate_credential_material(
    common_name: str,
    algorithm: str | SignatureAlgorithm,
    subject: SubjectFields | None = None,
    rsa_key_size: int = DEFAULT_RSA_KEY_SIZE,
) -> CredentialMaterial:
    """
    Generate a private key and a certificate signing request for it.

    Args:
        common_name: Identity placed in the subject Common Name
        algorithm: Signature algorithm selector
        subject: Additional subject name fields
        rsa_key_size: Modulus size for RSA selectors

    Returns:
        PEM encoded private key and request

    Raises:
        UnsupportedAlgorithmError: The selector is unknown
        CredentialGenerationError: Key generation or signing failed
    """
    selected = resolve_algorithm(algorithm)
    profile = _PROFILES[selected]

    try:
        name = _build_subject(common_name, subject)
    except ValueError as e:
        raise CredentialGenerationError(f"Invalid subject name: {e}", cause=e) from e

    private_key = _generate_key(profile, rsa_key_size)

    try:
        request = _sign_request(
            x509.CertificateSigningRequestBuilder().subject_name(name),
            private_key,
            profile,
        )
    except (ValueError, TypeError) as e:
        raise CredentialGenerationError(
            f"Failed to sign certificate request with {selected}: {e}", cause=e
        ) from e

    if request.signature_algorithm_oid != profile.signature_oid:
        raise AssertionError(
            f"Request signed with {request.signature_algorithm_oid.dotted_string}, "
            f"expected {profile.signature_oid.dotted_string} for {selected}"
        )

    logger.debug(
        f"Generated {profile.family} key and certificate request for {common_name}"
    )

    return CredentialMaterial(
        private_key_pem=_encode_private_key(private_key, profile.family),
        request_pem=request.public_bytes(serialization.Encoding.PEM),
    )


def parse_certificate_request(pem: bytes) -> x509.CertificateSigningRequest:
    """
    Parse and verify a PEM encoded certificate signing request.

    Raises:
        MalformedRequestError: The bytes are not a ``CERTIFICATE REQUEST`` PEM
            block, do not parse, or carry an invalid self-signature
    """
    if f"-----BEGIN {CSR_PEM_TYPE}-----".encode() not in pem:
        raise MalformedRequestError(f"PEM block type is not '{CSR_PEM_TYPE}'")

    try:
        request = x509.load_pem_x509_csr(pem)
    except ValueError as e:
        raise MalformedRequestError(
            f"Failed to parse certificate request: {e}", cause=e
        ) from e

    if not request.is_signature_valid:
        raise MalformedRequestError("Certificate request signature is invalid")

    return request


def validate_credential_material(material: CredentialMaterial) -> None:
    """
    Check that externally supplied key and request belong together.

    Raises:
        CredentialGenerationError: With reason ExistingSecretInvalid when the
            key or request is unusable or they do not match
    """
    try:
        request = parse_certificate_request(material.request_pem)
        private_key = serialization.load_pem_private_key(
            material.private_key_pem, password=None
        )
    except (MalformedRequestError, ValueError, TypeError) as e:
        raise CredentialGenerationError(
            f"Existing secret holds unusable credential material: {e}",
            reason=REASON_EXISTING_SECRET_INVALID,
            cause=e,
        ) from e

    der = serialization.Encoding.DER
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    key_public = private_key.public_key().public_bytes(der, spki)
    if key_public != request.public_key().public_bytes(der, spki):
        raise CredentialGenerationError(
            "Existing secret private key does not match its certificate request",
            reason=REASON_EXISTING_SECRET_INVALID,
        )
