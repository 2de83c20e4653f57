"""Exception hierarchy for certificate decoding and issuance.

Every failure carries the stage it happened in (decode, build, sign, parse
or join) and, once it has passed through the bootstrap orchestrator, the
roster slot it belongs to.
"""


class PKIError(Exception):
    """Base class for all kubepki failures."""

    stage: str = "pki"

    def __init__(self, message: str, *, slot: str | None = None):
        super().__init__(message)
        self.message = message
        self.slot = slot

    def __str__(self) -> str:
        if self.slot:
            return f"[{self.stage}:{self.slot}] {self.message}"
        return f"[{self.stage}] {self.message}"


class CodecError(PKIError):
    """PEM input could not be turned into a certificate or key."""

    stage = "decode"


class MalformedPEMError(CodecError):
    """Input is not a well-formed PEM block."""


class InvalidEncodingError(CodecError):
    """PEM block decoded but its DER payload is not a valid certificate or key."""


class CryptoError(PKIError):
    """Key generation, signing or re-parsing failed."""


class GenerationFailedError(CryptoError):
    """Serial number draw or key pair generation failed."""

    stage = "build"


class SigningFailedError(CryptoError):
    """The signing operation rejected the template or the key."""

    stage = "sign"


class ParseFailedError(CryptoError):
    """A freshly signed certificate could not be parsed back."""

    stage = "parse"


class IssuanceTimeoutError(PKIError):
    """The concurrent issuance batch did not finish before its deadline."""

    stage = "join"
