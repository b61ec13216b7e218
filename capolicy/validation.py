"""
Field validators for certificate profile settings.

:class:`FieldValidators` bundles one validation method per profile setting.
Each method takes the raw configuration value (as it comes out of a YAML
document) and returns a normalised, immutable value, or raises a
:class:`.ConfigurationError`.
Subclass it and pass an instance to :class:`.CertProfile` to tighten or
relax the rules.
"""

import ipaddress
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from asn1crypto import x509

from .common import InvalidArgumentShape, InvalidFieldValue
from .config_utils import check_config_keys, key_dashes_to_underscores
from .subject import Subject

__all__ = [
    'FieldValidators', 'BasicConstraints', 'CertificatePolicy', 'UserNotice',
    'PolicyConstraints', 'NameConstraints', 'GeneralNameSpec',
    'DEFAULT_MD', 'KNOWN_MDS', 'KEY_USAGE_NAMES',
]


DEFAULT_MD = 'SHA256'
KNOWN_MDS = ('MD5', 'SHA1', 'SHA224', 'SHA256', 'SHA384', 'SHA512')

OID_REGEX = re.compile(r'[0-2](\.(0|[1-9][0-9]*))+')

KEY_USAGE_NAMES = (
    'digital_signature', 'non_repudiation', 'key_encipherment',
    'data_encipherment', 'key_agreement', 'key_cert_sign', 'crl_sign',
    'encipher_only', 'decipher_only',
)

# OpenSSL spellings
KEY_USAGE_ALIASES = {
    'digitalSignature': 'digital_signature',
    'nonRepudiation': 'non_repudiation',
    'contentCommitment': 'non_repudiation',
    'content_commitment': 'non_repudiation',
    'keyEncipherment': 'key_encipherment',
    'dataEncipherment': 'data_encipherment',
    'keyAgreement': 'key_agreement',
    'keyCertSign': 'key_cert_sign',
    'cRLSign': 'crl_sign',
    'encipherOnly': 'encipher_only',
    'decipherOnly': 'decipher_only',
}

EXTENDED_KEY_USAGE_ALIASES = {
    'serverAuth': 'server_auth',
    'clientAuth': 'client_auth',
    'codeSigning': 'code_signing',
    'emailProtection': 'email_protection',
    'timeStamping': 'time_stamping',
    'OCSPSigning': 'ocsp_signing',
    'anyExtendedKeyUsage': 'any_extended_key_usage',
}

GENERAL_NAME_ALIASES = {
    'dns': 'dns_name',
    'email': 'rfc822_name',
    'uri': 'uniform_resource_identifier',
    'ip': 'ip_address',
    'dirname': 'directory_name',
}

GENERAL_NAME_TYPES = (
    'dns_name', 'rfc822_name', 'uniform_resource_identifier', 'ip_address',
    'directory_name',
)


@dataclass(frozen=True)
class BasicConstraints:
    ca: bool
    path_length: Optional[int] = None

    @property
    def asn1(self) -> x509.BasicConstraints:
        value = {'ca': self.ca}
        if self.path_length is not None:
            value['path_len_constraint'] = self.path_length
        return x509.BasicConstraints(value)


@dataclass(frozen=True)
class UserNotice:
    explicit_text: Optional[str] = None
    organization: Optional[str] = None
    notice_numbers: Tuple[int, ...] = ()

    @property
    def asn1(self) -> x509.UserNotice:
        value = {}
        if self.organization is not None:
            value['notice_ref'] = x509.NoticeReference({
                'organization': x509.DisplayText(
                    name='utf8_string', value=self.organization
                ),
                'notice_numbers': list(self.notice_numbers)
            })
        if self.explicit_text is not None:
            value['explicit_text'] = x509.DisplayText(
                name='utf8_string', value=self.explicit_text
            )
        return x509.UserNotice(value)


@dataclass(frozen=True)
class CertificatePolicy:
    policy_identifier: str
    cps_uris: Tuple[str, ...] = ()
    user_notices: Tuple[UserNotice, ...] = ()

    @property
    def asn1(self) -> x509.PolicyInformation:
        qualifiers = [
            {
                'policy_qualifier_id': 'certification_practice_statement',
                'qualifier': uri
            } for uri in self.cps_uris
        ] + [
            {'policy_qualifier_id': 'user_notice', 'qualifier': notice.asn1}
            for notice in self.user_notices
        ]
        value = {'policy_identifier': self.policy_identifier}
        if qualifiers:
            value['policy_qualifiers'] = qualifiers
        return x509.PolicyInformation(value)


@dataclass(frozen=True)
class PolicyConstraints:
    require_explicit_policy: Optional[int] = None
    inhibit_policy_mapping: Optional[int] = None

    @property
    def asn1(self) -> x509.PolicyConstraints:
        value = {}
        if self.require_explicit_policy is not None:
            value['require_explicit_policy'] = self.require_explicit_policy
        if self.inhibit_policy_mapping is not None:
            value['inhibit_policy_mapping'] = self.inhibit_policy_mapping
        return x509.PolicyConstraints(value)


@dataclass(frozen=True)
class GeneralNameSpec:
    type: str
    value: object
    """
    A string, or a :class:`.Subject` for directory names.
    """

    @property
    def asn1(self) -> x509.GeneralName:
        value = self.value
        if isinstance(value, Subject):
            value = value.to_name()
        return x509.GeneralName(name=self.type, value=value)


@dataclass(frozen=True)
class NameConstraints:
    permitted: Tuple[GeneralNameSpec, ...] = ()
    excluded: Tuple[GeneralNameSpec, ...] = ()

    @property
    def asn1(self) -> x509.NameConstraints:
        value = {}
        if self.permitted:
            value['permitted_subtrees'] = [
                {'base': name.asn1} for name in self.permitted
            ]
        if self.excluded:
            value['excluded_subtrees'] = [
                {'base': name.asn1} for name in self.excluded
            ]
        return x509.NameConstraints(value)


def _require_list(field, value):
    if not isinstance(value, (list, tuple)):
        raise InvalidArgumentShape(
            f"{field} must be specified as a list, "
            f"not {type(value).__name__}."
        )
    return value


def _require_str(field, value):
    if not isinstance(value, str):
        raise InvalidFieldValue(field, f"expected a string, not {value!r}")
    return value


def _non_negative_int(field, value):
    # bool is a subclass of int, but 'true' is not a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFieldValue(field, f"expected an integer, not {value!r}")
    if value < 0:
        raise InvalidFieldValue(field, f"must be non-negative, not {value}")
    return value


def _prepare_mapping(field, value, expected_keys):
    check_config_keys(field, expected_keys, value)
    return key_dashes_to_underscores(value)


class FieldValidators:
    """
    Default validation rules for certificate profile settings.
    """

    def validate_basic_constraints(self, value) -> Optional[BasicConstraints]:
        if value is None:
            return None
        if isinstance(value, BasicConstraints):
            return value
        value = _prepare_mapping(
            'basic_constraints', value, ('ca', 'path_length')
        )
        try:
            ca = value['ca']
        except KeyError as e:
            raise InvalidFieldValue(
                'basic_constraints', "'ca' must be specified"
            ) from e
        if not isinstance(ca, bool):
            raise InvalidFieldValue(
                'basic_constraints', f"'ca' must be a boolean, not {ca!r}"
            )
        path_length = value.get('path_length', None)
        if path_length is not None:
            if not ca:
                raise InvalidFieldValue(
                    'basic_constraints',
                    "'path_length' is only allowed when 'ca' is true"
                )
            _non_negative_int('basic_constraints', path_length)
        return BasicConstraints(ca=ca, path_length=path_length)

    def validate_key_usage(self, value) -> Tuple[str, ...]:
        if value is None:
            return ()
        names = tuple(
            KEY_USAGE_ALIASES.get(name, name)
            for name in map(
                lambda n: _require_str('key_usage', n),
                _require_list('key_usage', value)
            )
        )
        for name in names:
            if name not in KEY_USAGE_NAMES:
                raise InvalidFieldValue(
                    'key_usage', f"unknown key usage {name!r}"
                )
        return names

    def validate_extended_key_usage(self, value) -> Tuple[str, ...]:
        if value is None:
            return ()

        def _normalise(name):
            _require_str('extended_key_usage', name)
            name = EXTENDED_KEY_USAGE_ALIASES.get(name, name)
            if name[:1].isdigit() and not OID_REGEX.fullmatch(name):
                raise InvalidFieldValue(
                    'extended_key_usage', f"malformed OID {name!r}"
                )
            try:
                return x509.KeyPurposeId(name).native
            except ValueError as e:
                raise InvalidFieldValue(
                    'extended_key_usage', f"unknown key purpose {name!r}"
                ) from e

        return tuple(
            _normalise(name)
            for name in _require_list('extended_key_usage', value)
        )

    def _validate_policy_identifier(self, value) -> str:
        _require_str('certificate_policies', value)
        if value != 'any_policy' and not OID_REGEX.fullmatch(value):
            raise InvalidFieldValue(
                'certificate_policies', f"malformed policy OID {value!r}"
            )
        return value

    def _validate_user_notice(self, value) -> UserNotice:
        value = _prepare_mapping(
            'user_notices', value,
            ('explicit_text', 'organization', 'notice_numbers')
        )
        explicit_text = value.get('explicit_text', None)
        organization = value.get('organization', None)
        notice_numbers = tuple(
            _non_negative_int('certificate_policies', n)
            for n in _require_list(
                'notice_numbers', value.get('notice_numbers', ())
            )
        )
        if explicit_text is None and organization is None:
            raise InvalidFieldValue(
                'certificate_policies',
                "user notices require explicit_text or organization"
            )
        if notice_numbers and organization is None:
            raise InvalidFieldValue(
                'certificate_policies',
                "notice_numbers require an organization"
            )
        if explicit_text is not None:
            _require_str('certificate_policies', explicit_text)
        if organization is not None:
            _require_str('certificate_policies', organization)
        return UserNotice(
            explicit_text=explicit_text, organization=organization,
            notice_numbers=notice_numbers
        )

    def validate_certificate_policies(self, value) \
            -> Tuple[CertificatePolicy, ...]:
        if value is None:
            return ()

        def _policy(policy_cfg):
            if isinstance(policy_cfg, CertificatePolicy):
                return policy_cfg
            policy_cfg = _prepare_mapping(
                'certificate_policies', policy_cfg,
                ('policy_identifier', 'cps_uris', 'user_notices')
            )
            try:
                oid = policy_cfg['policy_identifier']
            except KeyError as e:
                raise InvalidFieldValue(
                    'certificate_policies',
                    "'policy_identifier' must be specified"
                ) from e
            cps_uris = self._validate_urls(
                'certificate_policies', policy_cfg.get('cps_uris', None)
            )
            notices = tuple(
                self._validate_user_notice(notice)
                for notice in _require_list(
                    'user_notices', policy_cfg.get('user_notices', ())
                )
            )
            return CertificatePolicy(
                policy_identifier=self._validate_policy_identifier(oid),
                cps_uris=cps_uris, user_notices=notices
            )

        return tuple(
            _policy(cfg)
            for cfg in _require_list('certificate_policies', value)
        )

    def validate_inhibit_any_policy(self, value) -> Optional[int]:
        if value is None:
            return None
        return _non_negative_int('inhibit_any_policy', value)

    def validate_policy_constraints(self, value) \
            -> Optional[PolicyConstraints]:
        if value is None:
            return None
        if isinstance(value, PolicyConstraints):
            return value
        value = _prepare_mapping(
            'policy_constraints', value,
            ('require_explicit_policy', 'inhibit_policy_mapping')
        )
        if not value:
            raise InvalidFieldValue(
                'policy_constraints',
                "at least one of require_explicit_policy and "
                "inhibit_policy_mapping must be specified"
            )
        return PolicyConstraints(**{
            k: _non_negative_int('policy_constraints', v)
            for k, v in value.items()
        })

    def _validate_general_name(self, value) -> GeneralNameSpec:
        value = _prepare_mapping('name_constraints', value, ('type', 'value'))
        try:
            name_type = value['type']
            name_value = value['value']
        except KeyError as e:
            raise InvalidFieldValue(
                'name_constraints',
                "a general name must have a 'type' and a 'value'"
            ) from e
        _require_str('name_constraints', name_type)
        name_type = name_type.replace('-', '_').lower()
        name_type = GENERAL_NAME_ALIASES.get(name_type, name_type)
        if name_type not in GENERAL_NAME_TYPES:
            raise InvalidFieldValue(
                'name_constraints', f"unsupported name type {name_type!r}"
            )

        if name_type == 'directory_name':
            if isinstance(name_value, Mapping):
                name_value = name_value.items()
            try:
                subject = Subject(name_value)
                # make sure it can actually be encoded
                subject.to_name()
            except InvalidArgumentShape as e:
                raise InvalidFieldValue('name_constraints', str(e)) from e
            return GeneralNameSpec(type=name_type, value=subject)

        _require_str('name_constraints', name_value)
        if name_type == 'ip_address':
            try:
                ipaddress.ip_network(name_value, strict=False)
            except ValueError as e:
                raise InvalidFieldValue(
                    'name_constraints', f"invalid IP range {name_value!r}"
                ) from e
            if '/' not in name_value:
                raise InvalidFieldValue(
                    'name_constraints',
                    f"IP constraints need a prefix length: {name_value!r}"
                )
        return GeneralNameSpec(type=name_type, value=name_value)

    def validate_name_constraints(self, value) -> Optional[NameConstraints]:
        if value is None:
            return None
        if isinstance(value, NameConstraints):
            return value
        value = _prepare_mapping(
            'name_constraints', value, ('permitted', 'excluded')
        )

        def _names(key):
            return tuple(
                self._validate_general_name(n)
                for n in _require_list(key, value.get(key, None) or ())
            )

        result = NameConstraints(
            permitted=_names('permitted'), excluded=_names('excluded')
        )
        if not (result.permitted or result.excluded):
            raise InvalidFieldValue(
                'name_constraints',
                "at least one permitted or excluded name is required"
            )
        return result

    def _validate_urls(self, field, value) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]

        def _check(url):
            _require_str(field, url)
            if not urlparse(url).scheme:
                raise InvalidFieldValue(field, f"{url!r} is not a URL")
            return url

        return tuple(_check(url) for url in _require_list(field, value))

    def validate_ocsp_location(self, value) -> Tuple[str, ...]:
        return self._validate_urls('ocsp_location', value)

    def validate_cdp_location(self, value) -> Tuple[str, ...]:
        return self._validate_urls('cdp_location', value)

    def validate_ca_issuers_location(self, value) -> Tuple[str, ...]:
        return self._validate_urls('ca_issuers_location', value)

    def validate_md(self, value) -> str:
        if not isinstance(value, str) or value.upper() not in KNOWN_MDS:
            raise InvalidFieldValue(
                'md', f"unknown message digest {value!r}; "
                      f"allowed values are {', '.join(KNOWN_MDS)}"
            )
        return value.upper()

    def validate_allowed_mds(self, value, default_md) -> Tuple[str, ...]:
        if value is None:
            value = ()
        mds = [
            self.validate_md(md)
            for md in _require_list('allowed_mds', value)
        ]
        if default_md not in mds:
            mds.append(default_md)
        return tuple(mds)
