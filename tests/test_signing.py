"""Tests for Ed25519 key handling and challenge signatures."""

import base64
import os
import stat

import pytest

from pantry.signing import MandateSigner, parse_private_key, verify_signature


@pytest.fixture
def signer():
    return MandateSigner.generate()


class TestSignatures:
    def test_signed_challenge_verifies(self, signer):
        challenge = base64.b64encode(b'{"amount":4000}').decode()
        signature = signer.sign_challenge(challenge)

        assert verify_signature(b'{"amount":4000}', signature, signer.public_key_b64)

    def test_signature_over_other_bytes_fails(self, signer):
        signature = base64.b64encode(signer.sign(b"one")).decode()
        assert not verify_signature(b"two", signature, signer.public_key_b64)

    def test_other_key_fails(self, signer):
        signature = base64.b64encode(signer.sign(b"msg")).decode()
        other = MandateSigner.generate()
        assert not verify_signature(b"msg", signature, other.public_key_b64)

    @pytest.mark.parametrize("signature,public_key", [
        ("not base64!", None),
        ("AAAA", None),
        (None, "AAAA"),
    ])
    def test_malformed_inputs_fail_closed(self, signer, signature, public_key):
        good_sig = base64.b64encode(signer.sign(b"msg")).decode()
        assert not verify_signature(
            b"msg",
            signature if signature is not None else good_sig,
            public_key if public_key is not None else signer.public_key_b64,
        )

    def test_public_key_is_raw_32_bytes(self, signer):
        assert len(signer.public_key_bytes) == 32
        assert base64.b64decode(signer.public_key_b64) == signer.public_key_bytes


class TestKeyFiles:
    def test_missing_file_is_created_private(self, tmp_path):
        path = tmp_path / "keys" / "payer.pem"
        signer = MandateSigner.from_file(path)

        assert path.exists()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert MandateSigner.from_file(path).public_key_b64 == signer.public_key_b64

    def test_no_path_gives_ephemeral_key(self):
        assert MandateSigner.from_file(None).public_key_b64 != MandateSigner.from_file(None).public_key_b64

    def test_corrupt_file_falls_back(self, tmp_path):
        path = tmp_path / "payer.pem"
        path.write_text("garbage")
        signer = MandateSigner.from_file(path)
        assert len(signer.public_key_bytes) == 32
        assert path.read_text() == "garbage"

    def test_raw_base64_seed(self, signer):
        seed = bytes(range(32))
        key = parse_private_key(base64.b64encode(seed).decode())
        assert MandateSigner(key).public_key_b64 == MandateSigner(parse_private_key(
            base64.b64encode(seed + b"\x00" * 32).decode()
        )).public_key_b64

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError, match="32 or 64 bytes"):
            parse_private_key(base64.b64encode(b"short").decode())

    def test_escaped_newlines_in_pem(self, tmp_path, signer):
        path = tmp_path / "payer.pem"
        signer.save(path)
        escaped = path.read_text().replace("\n", "\\n")
        assert MandateSigner(parse_private_key(escaped)).public_key_b64 == signer.public_key_b64
