import logging
import types
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import tzlocal
import yaml
from asn1crypto import x509

from .common import (
    ConfigurationError,
    InvalidFieldValue,
    InvalidOptionType,
    InvalidProfileType,
    MissingRequiredOption,
    UnknownProfile,
)
from .config_utils import (
    SearchDir,
    check_config_keys,
    key_dashes_to_underscores,
    require_mapping,
)
from .credentials import Credential, load_credential
from .crypto_utils import load_certs_from_pemder_data
from .profiles import CertProfile

__all__ = ['CAConfig', 'CAConfigPool']

logger = logging.getLogger(__name__)


DEFAULT_CRL_VALIDITY_HOURS = 168
DEFAULT_CRL_START_SKEW_SECONDS = 3600
DEFAULT_OCSP_VALIDITY_HOURS = 168
DEFAULT_OCSP_START_SKEW_SECONDS = 3600

CA_CONFIG_KEYS = (
    'ca_cert', 'ocsp_cert', 'ocsp_chain', 'crl_validity_hours',
    'crl_start_skew_seconds', 'ocsp_validity_hours',
    'ocsp_start_skew_seconds', 'crl_list', 'crl_number', 'profiles',
)


def _count(name, value, default):
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOptionType(f"{name} must be an integer, not {value!r}")
    if value < 0:
        raise InvalidFieldValue(name, f"must be non-negative, not {value}")
    return value


def _validity_window(at: Optional[datetime], skew_seconds, validity_hours):
    if at is None:
        at = datetime.now(tz=tzlocal.get_localzone())
    return (
        at - timedelta(seconds=skew_seconds),
        at + timedelta(hours=validity_hours)
    )


def _load_ocsp_chain(search_dir: SearchDir, path) -> List[x509.Certificate]:
    chain_bytes = search_dir.read_bytes(path)
    if not chain_bytes.strip():
        return []
    try:
        chain = list(load_certs_from_pemder_data(chain_bytes))
        for cert in chain:
            # force parsing, asn1crypto is lazy
            cert.subject
        return chain
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Failed to load OCSP chain from {search_dir.resolve(path)}"
        ) from e


class CAConfig:
    """
    Configuration of a single certificate authority: its signing credential,
    OCSP and CRL settings, and its certificate profiles.

    :param ca_cert:
        The CA's signing credential.
    :param ocsp_cert:
        Credential of a delegated OCSP responder. Must have a private key.
        Defaults to the CA credential.
    :param ocsp_chain:
        Certificates to attach to OCSP responses.
    :param crl_validity_hours:
        Number of hours a CRL is valid. Defaults to 168 (7 days).
    :param crl_start_skew_seconds:
        Backdating applied to a CRL's ``thisUpdate``. Defaults to 3600.
    :param ocsp_validity_hours:
        Number of hours an OCSP response is valid. Defaults to 168.
    :param ocsp_start_skew_seconds:
        Backdating applied to an OCSP response's ``thisUpdate``.
        Defaults to 3600.
    :param crl_number_file:
        File to save the CRL number to.
    :param crl_list_file:
        File to save the CRL list data to.
    :param profiles:
        Dictionary of :class:`.CertProfile` objects, by name.
    """

    def __init__(self, ca_cert: Credential = None,
                 ocsp_cert: Optional[Credential] = None,
                 ocsp_chain: Optional[List[x509.Certificate]] = None,
                 crl_validity_hours: Optional[int] = None,
                 crl_start_skew_seconds: Optional[int] = None,
                 ocsp_validity_hours: Optional[int] = None,
                 ocsp_start_skew_seconds: Optional[int] = None,
                 crl_number_file: Optional[str] = None,
                 crl_list_file: Optional[str] = None,
                 profiles: Optional[Dict[str, CertProfile]] = None):
        if ca_cert is None:
            raise MissingRequiredOption(
                "CAConfig requires that you pass ca_cert"
            )
        if not isinstance(ca_cert, Credential):
            raise InvalidOptionType("ca_cert must be a Credential")
        self._ca_cert = ca_cert

        if ocsp_cert is not None:
            if not isinstance(ocsp_cert, Credential):
                raise InvalidOptionType(
                    "ocsp_cert, if provided, must be a Credential"
                )
            if not ocsp_cert.has_private_key:
                raise InvalidOptionType(
                    "ocsp_cert must contain a private key, "
                    "not just a certificate"
                )
        self._ocsp_cert = ocsp_cert

        if ocsp_chain is None:
            ocsp_chain = []
        if not isinstance(ocsp_chain, (list, tuple)) or not all(
            isinstance(c, x509.Certificate) for c in ocsp_chain
        ):
            raise InvalidOptionType(
                "ocsp_chain must be a list of certificates"
            )
        self._ocsp_chain = list(ocsp_chain)

        self._crl_validity_hours = _count(
            'crl_validity_hours', crl_validity_hours,
            DEFAULT_CRL_VALIDITY_HOURS
        )
        self._crl_start_skew_seconds = _count(
            'crl_start_skew_seconds', crl_start_skew_seconds,
            DEFAULT_CRL_START_SKEW_SECONDS
        )
        self._ocsp_validity_hours = _count(
            'ocsp_validity_hours', ocsp_validity_hours,
            DEFAULT_OCSP_VALIDITY_HOURS
        )
        self._ocsp_start_skew_seconds = _count(
            'ocsp_start_skew_seconds', ocsp_start_skew_seconds,
            DEFAULT_OCSP_START_SKEW_SECONDS
        )
        self._crl_number_file = crl_number_file
        self._crl_list_file = crl_list_file

        self._profiles: Dict[str, CertProfile] = {}
        if profiles is not None:
            require_mapping('profiles', profiles)
            for name, profile in profiles.items():
                self.set_profile(name, profile)

    @property
    def ca_cert(self) -> Credential:
        return self._ca_cert

    @property
    def ocsp_cert(self) -> Credential:
        """
        The OCSP responder credential, or the CA credential if no separate
        responder was configured.
        """
        if self._ocsp_cert is None:
            return self._ca_cert
        return self._ocsp_cert

    @property
    def has_explicit_ocsp_cert(self) -> bool:
        return self._ocsp_cert is not None

    @property
    def ocsp_chain(self) -> List[x509.Certificate]:
        return list(self._ocsp_chain)

    @property
    def crl_validity_hours(self) -> int:
        return self._crl_validity_hours

    @property
    def crl_start_skew_seconds(self) -> int:
        return self._crl_start_skew_seconds

    @property
    def ocsp_validity_hours(self) -> int:
        return self._ocsp_validity_hours

    @property
    def ocsp_start_skew_seconds(self) -> int:
        return self._ocsp_start_skew_seconds

    @property
    def crl_number_file(self) -> Optional[str]:
        return self._crl_number_file

    @property
    def crl_list_file(self) -> Optional[str]:
        return self._crl_list_file

    @property
    def profiles(self):
        """Read-only view of the registered profiles."""
        return types.MappingProxyType(self._profiles)

    def crl_window(self, at: Optional[datetime] = None) \
            -> Tuple[datetime, datetime]:
        """
        Compute ``thisUpdate`` and ``nextUpdate`` for a CRL issued at
        the given time (default: now).
        """
        return _validity_window(
            at, self._crl_start_skew_seconds, self._crl_validity_hours
        )

    def ocsp_window(self, at: Optional[datetime] = None) \
            -> Tuple[datetime, datetime]:
        """
        Compute ``thisUpdate`` and ``nextUpdate`` for an OCSP response
        produced at the given time (default: now).
        """
        return _validity_window(
            at, self._ocsp_start_skew_seconds, self._ocsp_validity_hours
        )

    def set_profile(self, name: str, profile: CertProfile):
        """
        Register a profile, replacing any existing profile with the
        same name.
        """
        if not isinstance(profile, CertProfile):
            raise InvalidProfileType(
                f"Profile '{name}' is supposed to be a CertProfile, "
                f"not {type(profile).__name__}"
            )
        logger.debug(f"Registering profile '{name}'")
        self._profiles[name] = profile

    def profile(self, name: str) -> CertProfile:
        try:
            return self._profiles[name]
        except KeyError as e:
            raise UnknownProfile(name) from e

    def num_profiles(self) -> int:
        return len(self._profiles)

    def profile_names(self) -> List[str]:
        return list(self._profiles.keys())

    @classmethod
    def from_config(cls, conf, ca_root_path=None) -> 'CAConfig':
        """
        Load a CA configuration from a dictionary, as found in a YAML
        configuration document.

        :param conf:
            The configuration dictionary.
        :param ca_root_path:
            Directory against which relative paths are resolved. Defaults to
            the current working directory.
        """
        if conf is None:
            raise MissingRequiredOption("CA configuration not found")
        check_config_keys('CAConfig', CA_CONFIG_KEYS, conf)
        conf = key_dashes_to_underscores(conf)
        search_dir = SearchDir.from_optional(ca_root_path)

        try:
            ca_cert_decl = conf['ca_cert']
        except KeyError as e:
            raise MissingRequiredOption(
                "CA configuration requires a ca_cert entry"
            ) from e
        ca_cert = load_credential(ca_cert_decl, search_dir)
        if ca_cert is None:
            raise MissingRequiredOption(
                "ca_cert must specify one of engine, pkcs12 or cert"
            )

        ocsp_cert = None
        ocsp_cert_decl = conf.get('ocsp_cert', None)
        if ocsp_cert_decl is not None:
            ocsp_cert = load_credential(ocsp_cert_decl, search_dir)

        ocsp_chain = []
        if conf.get('ocsp_chain', None) is not None:
            ocsp_chain = _load_ocsp_chain(search_dir, conf['ocsp_chain'])

        def _path(key):
            value = conf.get(key, None)
            return None if value is None else search_dir.resolve(value)

        profiles_cfg = conf.get('profiles', None) or {}
        require_mapping('profiles', profiles_cfg)
        profiles = {
            name: CertProfile.from_config(profile_cfg)
            for name, profile_cfg in profiles_cfg.items()
        }

        result = cls(
            ca_cert=ca_cert,
            ocsp_cert=ocsp_cert,
            ocsp_chain=ocsp_chain,
            crl_validity_hours=conf.get('crl_validity_hours', None),
            crl_start_skew_seconds=conf.get('crl_start_skew_seconds', None),
            ocsp_validity_hours=conf.get('ocsp_validity_hours', None),
            ocsp_start_skew_seconds=conf.get('ocsp_start_skew_seconds', None),
            crl_number_file=_path('crl_number'),
            crl_list_file=_path('crl_list'),
            profiles=profiles,
        )
        logger.info(
            f"Loaded CA configuration for "
            f"'{ca_cert.subject.human_friendly}' "
            f"with {result.num_profiles()} profile(s)"
        )
        return result

    @classmethod
    def from_yaml(cls, conf_name, yaml_str, ca_root_path=None) -> 'CAConfig':
        """
        Load the named CA configuration from a YAML string.
        A single YAML document can hold several configurations.
        """
        document = require_mapping('document', yaml.safe_load(yaml_str))
        return cls.from_config(document.get(conf_name, None), ca_root_path)

    @classmethod
    def from_file(cls, conf_name, cfg_path, ca_root_path=None) \
            -> 'CAConfig':
        """
        Load the named CA configuration from a YAML file.
        """
        with open(cfg_path, 'r') as inf:
            document = yaml.safe_load(inf)
        require_mapping('document', document)
        return cls.from_config(document.get(conf_name, None), ca_root_path)

    def __repr__(self):
        return (
            f"<CAConfig for '{self._ca_cert.subject.human_friendly}', "
            f"profiles: {', '.join(self._profiles) or 'none'}>"
        )


class CAConfigPool:
    """
    Named collection of CA configurations, so that a single configuration
    document can describe several CAs.
    """

    def __init__(self, configs: Dict[str, CAConfig]):
        require_mapping('CAConfigPool', configs)
        for name, config in configs.items():
            if not isinstance(config, CAConfig):
                raise InvalidOptionType(
                    f"Pool entry '{name}' must be a CAConfig"
                )
        self._configs = dict(configs)

    def names(self) -> List[str]:
        return list(self._configs.keys())

    def __getitem__(self, name) -> Optional[CAConfig]:
        return self._configs.get(name, None)

    def __contains__(self, name):
        return name in self._configs

    def __len__(self):
        return len(self._configs)

    def all(self) -> List[CAConfig]:
        return list(self._configs.values())

    @classmethod
    def from_document(cls, name, document, ca_root_path=None) \
            -> 'CAConfigPool':
        """
        Build a pool from the entry ``name`` in a parsed configuration
        document. That entry maps CA names to CA configurations.

        :raises ConfigurationError:
            if any of the CA configurations fails to load.
        """
        require_mapping('document', document)
        try:
            ca_cfgs = document[name]
        except KeyError as e:
            raise MissingRequiredOption(
                f"There is no configuration named '{name}'"
            ) from e
        require_mapping(name, ca_cfgs)
        search_dir = SearchDir.from_optional(ca_root_path)
        configs = {}
        for ca_name, ca_cfg in ca_cfgs.items():
            logger.debug(f"Loading CA configuration '{ca_name}'...")
            configs[ca_name] = CAConfig.from_config(ca_cfg, search_dir)
        return cls(configs)

    @classmethod
    def from_yaml(cls, name, yaml_str, ca_root_path=None) -> 'CAConfigPool':
        return cls.from_document(name, yaml.safe_load(yaml_str), ca_root_path)

    @classmethod
    def from_file(cls, name, cfg_path, ca_root_path=None) -> 'CAConfigPool':
        with open(cfg_path, 'r') as inf:
            document = yaml.safe_load(inf)
        return cls.from_document(name, document, ca_root_path)
