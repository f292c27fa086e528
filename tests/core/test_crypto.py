"""Tests for acmepipe.core.crypto."""

from __future__ import annotations

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acmepipe.core import crypto
from acmepipe.errors import CertificateImportFailed, CertificateIssuanceFailed


class TestKeysAndCsr:
    @pytest.mark.parametrize(
        ("key_type", "cls"),
        [("EC256", ec.EllipticCurvePrivateKey), ("RSA2048", rsa.RSAPrivateKey)],
    )
    def test_generate_private_key(self, key_type, cls):
        assert isinstance(crypto.generate_private_key(key_type), cls)

    def test_unknown_key_type(self):
        with pytest.raises(ValueError):
            crypto.generate_private_key("DSA1024")

    def test_fresh_key_each_call(self):
        a = crypto.generate_private_key("EC256")
        b = crypto.generate_private_key("EC256")
        assert a.private_numbers().private_value != b.private_numbers().private_value

    def test_csr_carries_domain(self):
        key = crypto.generate_private_key("EC256")
        csr = x509.load_der_x509_csr(crypto.build_csr("www.example.com", key))
        assert csr.is_signature_valid
        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "www.example.com"
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["www.example.com"]

    def test_passphrases_are_unique(self):
        values = {crypto.generate_passphrase() for _ in range(20)}
        assert len(values) == 20
        assert all(len(v) >= 32 for v in values)


class TestChainAndFingerprint:
    def test_split_chain(self, test_ca):
        key = crypto.generate_private_key("EC256")
        chain = test_ca.chain_pem(crypto.build_csr("a.example.com", key))
        certs = crypto.split_pem_chain(chain)
        assert len(certs) == 2
        assert crypto.public_keys_match(certs[0], key)
        assert not crypto.public_keys_match(certs[1], key)

    def test_split_empty_chain(self):
        with pytest.raises(CertificateIssuanceFailed, match="no PEM"):
            crypto.split_pem_chain("")

    def test_split_malformed_chain(self):
        bad = "-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----"
        with pytest.raises(CertificateIssuanceFailed, match="malformed"):
            crypto.split_pem_chain(bad)

    def test_fingerprint_forms_agree(self, test_ca):
        pem = test_ca.pem
        fp = crypto.certificate_fingerprint(test_ca.cert)
        assert fp == crypto.certificate_fingerprint(pem)
        assert len(fp) == 64
        assert fp == fp.upper()

    def test_sha1_fingerprint(self, test_ca):
        assert len(crypto.certificate_fingerprint(test_ca.cert, "sha1")) == 40

    def test_unsupported_algorithm(self, test_ca):
        with pytest.raises(ValueError, match="Unsupported"):
            crypto.certificate_fingerprint(test_ca.cert, "md5")

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("AB:CD:EF", "abcdef", True),
            ("ab cd ef", "ABCDEF", True),
            ("ABCDEF", "ABCDE0", False),
            ("", "", False),
            (None, "ABCDEF", False),
        ],
    )
    def test_fingerprints_match(self, a, b, expected):
        assert crypto.fingerprints_match(a, b) is expected


class TestPkcs12:
    def test_bundle_round_trip(self, make_artifact):
        artifact = make_artifact("www.example.com")
        key, cert = crypto.load_pkcs12(artifact.bundle, artifact.passphrase)
        assert crypto.certificate_fingerprint(cert) == artifact.fingerprint
        assert crypto.public_keys_match(cert, key)

    def test_wrong_passphrase(self, make_artifact):
        artifact = make_artifact()
        with pytest.raises(CertificateImportFailed, match="could not be decrypted"):
            crypto.load_pkcs12(artifact.bundle, "wrong")

    def test_malformed_bundle(self):
        with pytest.raises(CertificateImportFailed):
            crypto.load_pkcs12(b"not a pfx", "x")

    def test_artifact_repr_hides_secrets(self, make_artifact):
        artifact = make_artifact()
        text = repr(artifact)
        assert artifact.passphrase not in text
        assert "PRIVATE KEY" not in text
        assert "bundle" not in text
