"""
Signing credentials and the logic to load them from configuration.

A credential declaration in a CA configuration document takes one of three
mutually exclusive forms:

* ``engine`` + ``key_name`` + ``cert``: the private key lives in a key
  engine (see :class:`KeyEngine`), the certificate in a file;
* ``pkcs12`` (+ ``password``): certificate and key in a PKCS#12 bundle;
* ``cert`` (+ ``key`` (+ ``password``)): certificate and optional key in
  separate PEM/DER files.

:func:`resolve_credential_source` turns such a declaration into one of
:class:`EngineSource`, :class:`Pkcs12Source`, :class:`KeyFileSource` or
:class:`CertOnlySource`. Each of those knows how to load itself.
"""

import abc
import logging
import os.path
from dataclasses import dataclass
from typing import Dict, Optional, Type, Union

from asn1crypto import algos, keys, x509

from .common import (
    ConfigurationError,
    ConflictingCredentialSource,
    InvalidArgumentShape,
    MissingCredentialCompanion,
    ObjectNotFoundError,
)
from .config_utils import (
    SearchDir,
    check_config_keys,
    get_and_apply,
    key_dashes_to_underscores,
)
from .crypto_utils import (
    generic_sign,
    load_cert_from_pemder_data,
    load_pkcs12,
    load_private_key,
)

__all__ = [
    'SigningKey', 'SoftwareKey', 'Credential',
    'KeyEngine', 'KeydirEngine', 'EngineRegistry', 'engine_registry',
    'EngineSource', 'Pkcs12Source', 'KeyFileSource', 'CertOnlySource',
    'CredentialSource', 'resolve_credential_source', 'load_credential',
]

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS = ('engine', 'key_name', 'cert', 'key', 'pkcs12', 'password')


class SigningKey(abc.ABC):
    """
    Handle to a private key. The key material itself may or may not be
    accessible (think hardware tokens).
    """

    @property
    def public_key_info(self) -> Optional[keys.PublicKeyInfo]:
        """
        Public half of the key, if the key store is able to tell.
        """
        return None

    @abc.abstractmethod
    def sign(self, tbs_bytes: bytes,
             signature_algo: algos.SignedDigestAlgorithm) -> bytes:
        raise NotImplementedError


class SoftwareKey(SigningKey):
    """Private key held in memory."""

    def __init__(self, private: keys.PrivateKeyInfo,
                 public: keys.PublicKeyInfo):
        self.private = private
        self.public = public

    @classmethod
    def load(cls, key_bytes: bytes, password: Optional[bytes] = None) \
            -> 'SoftwareKey':
        private, public = load_private_key(key_bytes, password)
        return cls(private, public)

    @property
    def public_key_info(self) -> keys.PublicKeyInfo:
        return self.public

    def sign(self, tbs_bytes: bytes,
             signature_algo: algos.SignedDigestAlgorithm) -> bytes:
        return generic_sign(self.private, tbs_bytes, signature_algo)


@dataclass(frozen=True, eq=False)
class Credential:
    """
    A certificate, together with the private key that goes with it
    (if there is one).
    """

    certificate: x509.Certificate
    key: Optional[SigningKey] = None

    def __post_init__(self):
        if not isinstance(self.certificate, x509.Certificate):
            raise ConfigurationError(
                "A credential requires an asn1crypto certificate"
            )
        key = self.key
        if key is None or key.public_key_info is None:
            return
        if key.public_key_info.dump() != self.certificate.public_key.dump():
            raise ConfigurationError(
                f"Private key does not match the certificate for "
                f"'{self.certificate.subject.human_friendly}'"
            )

    @property
    def has_private_key(self) -> bool:
        return self.key is not None

    @property
    def subject(self) -> x509.Name:
        return self.certificate.subject


class KeyEngine(abc.ABC):
    """
    Interface to a key store holding named private keys,
    e.g. an HSM or a software key directory.

    Engines are configured through the ``engine`` entry of a credential
    declaration. That entry is either a string (the engine ID) or
    a dictionary with an ``id`` key and engine-specific parameters.
    """

    engine_id: str

    def __init__(self, params: dict, search_dir: SearchDir):
        self.params = params
        self.search_dir = search_dir

    @abc.abstractmethod
    def load_key(self, key_name: str) -> SigningKey:
        """
        Look up a key by name.

        :raises ObjectNotFoundError:
            if there is no such key.
        """
        raise NotImplementedError


class EngineRegistry:
    """Registry of available key engine classes, by ID."""

    def __init__(self):
        self._engines: Dict[str, Type[KeyEngine]] = {}

    def register(self, engine_cls: Type[KeyEngine]) -> Type[KeyEngine]:
        """
        Register an engine class. Can be used as a class decorator.
        """
        engine_id = engine_cls.engine_id
        if engine_id in self._engines:
            raise ConfigurationError(
                f"Key engine '{engine_id}' is already registered"
            )
        self._engines[engine_id] = engine_cls
        return engine_cls

    def __contains__(self, engine_id):
        return engine_id in self._engines

    def load(self, engine_cfg, search_dir: SearchDir) -> KeyEngine:
        if isinstance(engine_cfg, str):
            engine_cfg = {'id': engine_cfg}
        elif isinstance(engine_cfg, dict):
            engine_cfg = key_dashes_to_underscores(engine_cfg)
        else:
            raise InvalidArgumentShape(
                "An engine must be given by its ID, or by a dictionary "
                "with an 'id' key."
            )
        params = dict(engine_cfg)
        try:
            engine_id = params.pop('id')
        except KeyError as e:
            raise ConfigurationError(
                "Engine configuration does not specify an 'id'"
            ) from e
        try:
            engine_cls = self._engines[engine_id]
        except KeyError as e:
            raise ConfigurationError(
                f"There is no key engine with ID '{engine_id}'."
            ) from e
        logger.debug(f"Loading key engine '{engine_id}'...")
        return engine_cls(params, search_dir)


engine_registry = EngineRegistry()


@engine_registry.register
class KeydirEngine(KeyEngine):
    """
    Software key store: a directory with one ``<key_name>.key.pem``
    (or ``.key.der``) file per key.

    Parameters: ``path`` (defaults to the configuration root) and
    ``password`` (applies to all keys in the directory).
    """

    engine_id = 'keydir'

    def __init__(self, params: dict, search_dir: SearchDir):
        check_config_keys('keydir engine', ('path', 'password'), params)
        super().__init__(params, search_dir)
        self.key_dir = search_dir.search_subdir(params.get('path', '.'))
        self.password = get_and_apply(
            params, 'password', lambda x: str(x).encode('utf8')
        )

    def load_key(self, key_name: str) -> SigningKey:
        if not isinstance(key_name, str) or os.path.sep in key_name:
            raise ConfigurationError(f"Invalid key name {key_name!r}")
        for ext in ('pem', 'der'):
            fname = f'{key_name}.key.{ext}'
            if os.path.isfile(self.key_dir.resolve(fname)):
                break
        else:
            raise ObjectNotFoundError(
                f"There is no key named '{key_name}' in {self.key_dir}."
            )
        return _load_software_key(self.key_dir, fname, self.password)


def _load_software_key(search_dir: SearchDir, path, password) -> SoftwareKey:
    key_bytes = search_dir.read_bytes(path)
    try:
        return SoftwareKey.load(key_bytes, password)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Failed to load private key from {search_dir.resolve(path)}"
        ) from e


def _load_certificate(search_dir: SearchDir, path) -> x509.Certificate:
    cert_bytes = search_dir.read_bytes(path)
    try:
        cert = load_cert_from_pemder_data(cert_bytes)
        # force parsing, asn1crypto is lazy
        cert.subject
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Failed to load certificate from {search_dir.resolve(path)}"
        ) from e
    return cert


@dataclass(frozen=True)
class EngineSource:
    engine: Union[str, dict]
    key_name: str
    cert: str

    def load(self, search_dir: SearchDir) -> Credential:
        engine = engine_registry.load(self.engine, search_dir)
        key = engine.load_key(self.key_name)
        return Credential(_load_certificate(search_dir, self.cert), key)


@dataclass(frozen=True)
class Pkcs12Source:
    pkcs12: str
    password: Optional[bytes] = None

    def load(self, search_dir: SearchDir) -> Credential:
        pfx_bytes = search_dir.read_bytes(self.pkcs12)
        try:
            cert, key_pair, _ = load_pkcs12(pfx_bytes, self.password)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Failed to load PKCS#12 bundle from "
                f"{search_dir.resolve(self.pkcs12)}"
            ) from e
        key = None
        if key_pair is not None:
            key = SoftwareKey(*key_pair)
        return Credential(cert, key)


@dataclass(frozen=True)
class KeyFileSource:
    cert: str
    key: str
    password: Optional[bytes] = None

    def load(self, search_dir: SearchDir) -> Credential:
        cert = _load_certificate(search_dir, self.cert)
        key = _load_software_key(search_dir, self.key, self.password)
        return Credential(cert, key)


@dataclass(frozen=True)
class CertOnlySource:
    """
    Certificate without a private key. Only useful for credentials that
    are never used to sign anything.
    """

    cert: str

    def load(self, search_dir: SearchDir) -> Credential:
        return Credential(_load_certificate(search_dir, self.cert))


CredentialSource = Union[
    EngineSource, Pkcs12Source, KeyFileSource, CertOnlySource
]


def resolve_credential_source(decl) -> Optional[CredentialSource]:
    """
    Figure out how a credential is supposed to be loaded.

    An ``engine`` takes precedence over ``pkcs12``, which takes precedence
    over ``cert``. Combinations that make no sense are rejected.
    This function does not touch the file system.

    :param decl:
        A credential declaration.
    :return:
        A credential source, or ``None`` if the declaration
        contains none of ``engine``, ``pkcs12`` and ``cert``.
    """
    check_config_keys('credential', CREDENTIAL_KEYS, decl)
    decl = key_dashes_to_underscores(decl)
    password = get_and_apply(
        decl, 'password', lambda x: str(x).encode('utf8')
    )

    if 'engine' in decl:
        for other in ('key', 'pkcs12'):
            if other in decl:
                raise ConflictingCredentialSource('engine', other)
        for companion in ('key_name', 'cert'):
            if companion not in decl:
                raise MissingCredentialCompanion('engine', companion)
        return EngineSource(
            engine=decl['engine'], key_name=decl['key_name'],
            cert=decl['cert']
        )
    elif 'pkcs12' in decl:
        for other in ('cert', 'key'):
            if other in decl:
                raise ConflictingCredentialSource('pkcs12', other)
        return Pkcs12Source(pkcs12=decl['pkcs12'], password=password)
    elif 'cert' in decl:
        if 'key' in decl:
            return KeyFileSource(
                cert=decl['cert'], key=decl['key'], password=password
            )
        return CertOnlySource(cert=decl['cert'])
    elif 'key' in decl:
        raise MissingCredentialCompanion('key', 'cert')
    return None


def load_credential(decl, search_dir: SearchDir) -> Optional[Credential]:
    """
    Resolve a credential declaration and load the credential it describes.

    :return:
        A :class:`Credential`, or ``None`` if the declaration does not
        describe one.
    """
    source = resolve_credential_source(decl)
    if source is None:
        return None
    logger.debug(f"Loading credential using {type(source).__name__}")
    return source.load(search_dir)
