import asyncio

from ake_orchestrator.backends.client import BackendHTTPError
from ake_orchestrator.backends.contracts import (
    ROTATION_PUBLIC_KEY_FIELDS,
    SERVICE_SIGNATURE_FIELDS,
    SignatureContract,
    first_field,
    is_key_material,
    is_verification_failure,
)

from conftest import FALCON_URL, signer_public_key


def _http_error(payload, status=400):
    return BackendHTTPError("http://falcon.test/orchestrator/encapsulate-verified", status, payload)


def test_first_field_follows_alias_order():
    payload = {"sig": "third", "signatureBase64": "second"}

    assert first_field(payload, SERVICE_SIGNATURE_FIELDS) == "second"


def test_first_field_skips_empty_and_mistyped_values():
    payload = {"signature": "", "signatureBase64": 42, "sig": "usable"}

    assert first_field(payload, SERVICE_SIGNATURE_FIELDS) == "usable"
    assert first_field({}, SERVICE_SIGNATURE_FIELDS) is None
    assert first_field(None, SERVICE_SIGNATURE_FIELDS) is None


def test_rotation_public_key_requires_key_material():
    payload = {"publicKey": "kid-1", "pk": "a-real-looking-public-key-value"}

    assert first_field(payload, ROTATION_PUBLIC_KEY_FIELDS, accept=is_key_material) == (
        "a-real-looking-public-key-value"
    )


def test_verification_failure_indicators():
    assert is_verification_failure(_http_error({"verified": False}))
    assert is_verification_failure(_http_error({"code": "signature_invalid"}))
    assert is_verification_failure(_http_error({"error": "Signature mismatch for key"}))
    assert is_verification_failure(_http_error({"detail": "failed to verify signature"}))
    assert is_verification_failure(_http_error({"raw": "Invalid signature"}, status=500))


def test_other_errors_are_not_verification_failures():
    assert not is_verification_failure(_http_error({"error": "internal error"}, status=500))
    assert not is_verification_failure(_http_error({}, status=502))
    assert not is_verification_failure(_http_error({"error": "signature service overloaded"}))


def test_signer_info_resolves_scheme_specific_alias(backend_client):
    contract = SignatureContract(backend_client, FALCON_URL, "falcon")

    info = asyncio.run(contract.signer_info())

    assert info.public_key == signer_public_key("falcon")
    assert info.level == "Falcon-1024"


def test_sign_omits_missing_level(backend_client, fake):
    contract = SignatureContract(backend_client, FALCON_URL, "falcon")

    signature, is_compressed = asyncio.run(contract.sign("kpk-9", None))

    assert signature == f"sig:{signer_public_key('falcon')}:kpk-9"
    assert is_compressed is None
    assert fake.body_for("falcon", "/falcon/sign") == {"messageBase64": "kpk-9"}
