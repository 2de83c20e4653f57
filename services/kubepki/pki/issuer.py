"""Certificate issuer: signs templates and re-parses the result.

A template with no signer is self-signed by its own key (the root case).
Otherwise the CA certificate becomes the issuer while the subject fields of
the template are kept as built.
"""

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import ParseFailedError, SigningFailedError
from .pem import public_keys_match
from .templates import CertificateTemplate


def _authority_key_identifier(signer_certificate: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    """Derive the AKI for certificates signed by ``signer_certificate``."""
    try:
        ski = signer_certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(signer_certificate.public_key())
    return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)


def _certificate_builder(
    template: CertificateTemplate,
    public_key: rsa.RSAPublicKey,
    issuer_name: x509.Name,
) -> x509.CertificateBuilder:
    builder = (
        x509.CertificateBuilder()
        .subject_name(template.subject)
        .issuer_name(issuer_name)
        .public_key(public_key)
        .serial_number(template.serial_number)
        .not_valid_before(template.not_valid_before)
        .not_valid_after(template.not_valid_after)
        .add_extension(
            x509.BasicConstraints(ca=template.is_ca, path_length=None),
            critical=True,
        )
        .add_extension(template.key_usage, critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
    )

    if template.extended_key_usage:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage(list(template.extended_key_usage)),
            critical=False,
        )

    san_entries = template.subject_alternative_names
    if san_entries:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(san_entries),
            critical=False,
        )

    return builder


def issue(
    template: CertificateTemplate,
    subject_key: rsa.RSAPrivateKey,
    signer_certificate: x509.Certificate | None = None,
    signer_key: rsa.RSAPrivateKey | None = None,
) -> x509.Certificate:
    """Sign ``template`` and return the re-parsed certificate.

    Args:
        template: Output of build_template().
        subject_key: The key generated with the template. Its public half
            goes into the certificate; it also signs when there is no signer.
        signer_certificate: CA certificate, or None to self-sign.
        signer_key: CA private key, required with signer_certificate.

    Raises:
        SigningFailedError: the template or keys were rejected by the signer.
        ParseFailedError: the signed certificate does not parse back.
    """
    if (signer_certificate is None) != (signer_key is None):
        raise ValueError("signer_certificate and signer_key must be given together")

    public_key = subject_key.public_key()

    if signer_certificate is None or signer_key is None:
        issuer_name = template.subject
        signing_key = subject_key
    else:
        if not public_keys_match(signer_certificate, signer_key):
            raise SigningFailedError("Signer key does not match the signer certificate")
        issuer_name = signer_certificate.subject
        signing_key = signer_key

    try:
        builder = _certificate_builder(template, public_key, issuer_name)
        if signer_certificate is not None:
            builder = builder.add_extension(
                _authority_key_identifier(signer_certificate),
                critical=False,
            )
        signed = builder.sign(signing_key, hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningFailedError(f"Failed to sign certificate: {e}") from e

    try:
        return x509.load_der_x509_certificate(signed.public_bytes(serialization.Encoding.DER))
    except ValueError as e:
        raise ParseFailedError(f"Signed certificate could not be parsed: {e}") from e
