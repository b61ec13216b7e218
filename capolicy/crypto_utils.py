import logging
from typing import List, Optional, Tuple

from asn1crypto import algos, keys, pem, x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import (
    dsa,
    ec,
    ed448,
    ed25519,
    padding,
    rsa,
)
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

KeyPair = Tuple[keys.PrivateKeyInfo, keys.PublicKeyInfo]


class CryptoBackend:
    """
    Key handling primitives needed to turn configured key material into
    credentials.
    """

    def load_private_key(
        self, key_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[keys.PrivateKeyInfo, keys.PublicKeyInfo]:
        raise NotImplementedError

    def load_pkcs12(
        self, pfx_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[x509.Certificate, Optional[KeyPair], List[x509.Certificate]]:
        """
        Load a PKCS#12 bundle. The key pair (if any) is derived from the
        bundle's private key, not from its certificate.
        """
        raise NotImplementedError

    def generic_sign(
        self,
        private_key: keys.PrivateKeyInfo,
        tbs_bytes: bytes,
        sd_algo: algos.SignedDigestAlgorithm,
    ) -> bytes:
        raise NotImplementedError


def _to_asn1_private_key(private_key) -> keys.PrivateKeyInfo:
    return keys.PrivateKeyInfo.load(
        private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


def _to_asn1_public_key(public_key) -> keys.PublicKeyInfo:
    return keys.PublicKeyInfo.load(
        public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )


def _to_asn1_cert(cert) -> x509.Certificate:
    return x509.Certificate.load(cert.public_bytes(serialization.Encoding.DER))


# signature mechanism -> key type that can produce it
_KEY_TYPES = {
    'rsassa_pkcs1v15': rsa.RSAPrivateKey,
    'dsa': dsa.DSAPrivateKey,
    'ecdsa': ec.EllipticCurvePrivateKey,
    'ed25519': ed25519.Ed25519PrivateKey,
    'ed448': ed448.Ed448PrivateKey,
}


class PycaCryptographyBackend(CryptoBackend):
    def load_private_key(
        self, key_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[keys.PrivateKeyInfo, keys.PublicKeyInfo]:
        load_fun = (
            serialization.load_pem_private_key
            if pem.detect(key_bytes)
            else serialization.load_der_private_key
        )
        private_key = load_fun(key_bytes, password=password)
        return (
            _to_asn1_private_key(private_key),
            _to_asn1_public_key(private_key.public_key())
        )

    def load_pkcs12(
        self, pfx_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[x509.Certificate, Optional[KeyPair], List[x509.Certificate]]:
        private_key, cert, additional = pkcs12.load_key_and_certificates(
            pfx_bytes, password
        )
        if cert is None:
            raise ValueError("PKCS#12 bundle does not contain a certificate")
        key_pair = None
        if private_key is not None:
            key_pair = (
                _to_asn1_private_key(private_key),
                _to_asn1_public_key(private_key.public_key())
            )
        return (
            _to_asn1_cert(cert), key_pair,
            [_to_asn1_cert(c) for c in additional]
        )

    def generic_sign(
        self,
        private_key: keys.PrivateKeyInfo,
        tbs_bytes: bytes,
        sd_algo: algos.SignedDigestAlgorithm,
    ) -> bytes:
        sig_algo = sd_algo.signature_algo
        try:
            key_type = _KEY_TYPES[sig_algo]
        except KeyError as e:  # pragma: nocover
            raise NotImplementedError(
                f"The signature algorithm {sig_algo} is unsupported"
            ) from e
        priv_key = serialization.load_der_private_key(
            private_key.dump(), password=None
        )
        if not isinstance(priv_key, key_type):
            raise ValueError(
                f"A {private_key.algorithm} key cannot produce {sig_algo} "
                f"signatures"
            )

        if sig_algo in ('ed25519', 'ed448'):
            return priv_key.sign(tbs_bytes)
        hash_algo = getattr(hashes, sd_algo.hash_algo.upper())()
        if sig_algo == 'rsassa_pkcs1v15':
            return priv_key.sign(tbs_bytes, padding.PKCS1v15(), hash_algo)
        elif sig_algo == 'ecdsa':
            return priv_key.sign(tbs_bytes, ec.ECDSA(hash_algo))
        else:
            return priv_key.sign(tbs_bytes, hash_algo)


CRYPTO_BACKEND: CryptoBackend = PycaCryptographyBackend()


def generic_sign(
    private_key: keys.PrivateKeyInfo,
    tbs_bytes: bytes,
    signature_algo: algos.SignedDigestAlgorithm,
) -> bytes:
    return CRYPTO_BACKEND.generic_sign(private_key, tbs_bytes, signature_algo)


def load_private_key(
    key_bytes: bytes, password: Optional[bytes]
) -> Tuple[keys.PrivateKeyInfo, keys.PublicKeyInfo]:
    return CRYPTO_BACKEND.load_private_key(key_bytes, password)


def load_pkcs12(pfx_bytes: bytes, password: Optional[bytes]):
    return CRYPTO_BACKEND.load_pkcs12(pfx_bytes, password)


def load_certs_from_pemder_data(cert_bytes: bytes):
    """
    Parse certificate data read from a configured file.

    PEM data may hold several certificates (e.g. an OCSP chain); blocks that
    are not certificates are skipped. Anything else is treated as a single
    DER-encoded certificate.

    :return:
        A generator producing :class:`.asn1crypto.x509.Certificate` objects.
    """
    if not pem.detect(cert_bytes):
        yield x509.Certificate.load(cert_bytes)
        return
    for type_name, _, der in pem.unarmor(cert_bytes, multiple=True):
        if type_name is None or type_name.lower() == 'certificate':
            yield x509.Certificate.load(der)
        else:
            logger.debug(f"Skipping PEM block of type {type_name}")


def load_cert_from_pemder_data(cert_bytes: bytes) -> x509.Certificate:
    certs = list(load_certs_from_pemder_data(cert_bytes))
    if len(certs) != 1:
        raise ValueError(
            f"Expected exactly one certificate, found {len(certs)}"
        )
    return certs[0]
