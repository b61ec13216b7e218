from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional, Tuple

from asn1crypto import x509

from .common import (
    InvalidArgumentShape,
    InvalidOptionType,
    InvalidPolicyDeclaration,
    PolicyViolation,
)
from .config_utils import ConfigurableMixin
from .subject import Subject
from .validation import (
    DEFAULT_MD,
    BasicConstraints,
    CertificatePolicy,
    FieldValidators,
    NameConstraints,
    PolicyConstraints,
)

__all__ = ['SubjectItemPolicy', 'CertProfile', 'DEFAULT_FIELD_VALIDATORS']

DEFAULT_FIELD_VALIDATORS = FieldValidators()


class SubjectItemPolicy:
    """
    Describes which subject attributes a profile requires, and which ones
    it merely permits.

    :param declaration:
        Dictionary mapping attribute short names (in OpenSSL format) to
        either ``"required"`` or ``"optional"``, e.g.

        .. code-block:: python

            {"CN": "required", "O": "required", "OU": "optional"}
    """

    def __init__(self, declaration=None):
        if declaration is None:
            declaration = {}
        if not isinstance(declaration, Mapping):
            raise InvalidArgumentShape(
                "Must supply a dictionary in the form "
                "'shortname' => 'required/optional'"
            )
        required = []
        optional = []
        for name, marker in declaration.items():
            if marker == 'required':
                required.append(name)
            elif marker == 'optional':
                optional.append(name)
            else:
                raise InvalidPolicyDeclaration(
                    f"Unknown subject item policy value {marker!r} for "
                    f"{name}. Allowed values are required and optional."
                )
        self._required = tuple(required)
        self._optional = tuple(optional)

    @property
    def required(self) -> Tuple[str, ...]:
        return self._required

    @property
    def optional(self) -> Tuple[str, ...]:
        return self._optional

    def validate_subject(self, subject) -> Subject:
        """
        Check that a subject supplies every required attribute, and strip
        out the attributes that are neither required nor optional.

        :param subject:
            A :class:`.Subject`, an ``asn1crypto`` name, or a list of
            ``(name, value)`` pairs.
        :return:
            The filtered subject, in the original order.
        :raises PolicyViolation:
            if a required attribute is missing.
        """
        if isinstance(subject, x509.Name):
            subject = Subject.from_name(subject)
        elif not isinstance(subject, Subject):
            subject = Subject(subject)

        supplied = set(subject.names())
        missing = [name for name in self._required if name not in supplied]
        if missing:
            raise PolicyViolation(self._required, missing)

        allowed = set(self._required) | set(self._optional)
        return Subject(
            (name, value) for name, value in subject if name in allowed
        )

    def __eq__(self, other):
        if isinstance(other, SubjectItemPolicy):
            return (self._required, self._optional) \
                   == (other._required, other._optional)
        return NotImplemented

    def __hash__(self):
        return hash((self._required, self._optional))

    def __repr__(self):
        return (
            f"SubjectItemPolicy(required={list(self._required)!r}, "
            f"optional={list(self._optional)!r})"
        )


def _parse_ocsp_no_check(value) -> bool:
    return value is True or value == 'true'


@dataclass(frozen=True)
class CertProfile(ConfigurableMixin):
    """
    Issuance policy for one kind of certificate.

    All settings are optional. They are run through the field validators
    on construction, and the resulting profile cannot be modified.
    """

    basic_constraints: Optional[BasicConstraints] = None

    key_usage: Tuple[str, ...] = ()
    """Key usage bits, using ``asn1crypto`` names."""

    extended_key_usage: Tuple[str, ...] = ()
    """Extended key usages, as ``asn1crypto`` names or dotted OIDs."""

    certificate_policies: Tuple[CertificatePolicy, ...] = ()

    inhibit_any_policy: Optional[int] = None

    policy_constraints: Optional[PolicyConstraints] = None

    name_constraints: Optional[NameConstraints] = None

    ocsp_no_check: bool = False
    """Whether to include the OCSP No Check extension."""

    subject_item_policy: Optional[SubjectItemPolicy] = None

    ocsp_location: Tuple[str, ...] = ()

    cdp_location: Tuple[str, ...] = ()

    ca_issuers_location: Tuple[str, ...] = ()

    default_md: str = DEFAULT_MD
    """
    Default digest algorithm. Always included in :attr:`allowed_mds`.
    """

    allowed_mds: Tuple[str, ...] = ()

    validators: FieldValidators = field(
        default=DEFAULT_FIELD_VALIDATORS, compare=False, repr=False,
        metadata={'configurable': False}
    )

    def __post_init__(self):
        v = self.validators

        def _set(name, value):
            object.__setattr__(self, name, value)

        _set(
            'basic_constraints',
            v.validate_basic_constraints(self.basic_constraints)
        )
        _set('key_usage', v.validate_key_usage(self.key_usage))
        _set(
            'extended_key_usage',
            v.validate_extended_key_usage(self.extended_key_usage)
        )
        _set(
            'certificate_policies',
            v.validate_certificate_policies(self.certificate_policies)
        )
        _set(
            'inhibit_any_policy',
            v.validate_inhibit_any_policy(self.inhibit_any_policy)
        )
        _set(
            'policy_constraints',
            v.validate_policy_constraints(self.policy_constraints)
        )
        _set(
            'name_constraints',
            v.validate_name_constraints(self.name_constraints)
        )
        _set('ocsp_no_check', _parse_ocsp_no_check(self.ocsp_no_check))
        if not isinstance(
            self.subject_item_policy, (SubjectItemPolicy, type(None))
        ):
            raise InvalidOptionType(
                "subject_item_policy must be a SubjectItemPolicy"
            )
        _set('ocsp_location', v.validate_ocsp_location(self.ocsp_location))
        _set('cdp_location', v.validate_cdp_location(self.cdp_location))
        _set(
            'ca_issuers_location',
            v.validate_ca_issuers_location(self.ca_issuers_location)
        )
        default_md = v.validate_md(self.default_md or DEFAULT_MD)
        _set('default_md', default_md)
        _set(
            'allowed_mds',
            v.validate_allowed_mds(self.allowed_mds or None, default_md)
        )

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        try:
            sip_cfg = config_dict['subject_item_policy']
        except KeyError:
            return
        if sip_cfg is not None and \
                not isinstance(sip_cfg, SubjectItemPolicy):
            config_dict['subject_item_policy'] = SubjectItemPolicy(sip_cfg)

    @classmethod
    def from_config(cls, config_dict, validators=None) -> 'CertProfile':
        """
        Build a profile from a configuration dictionary, as found under
        ``profiles`` in a CA configuration document.

        :param config_dict:
            Profile settings. A ``subject_item_policy`` dictionary is turned
            into a :class:`.SubjectItemPolicy`.
        :param validators:
            Field validators to use instead of the default ones.
        """
        if config_dict is None:
            config_dict = {}
        kwargs = {} if validators is None else {'validators': validators}
        return super().from_config(config_dict, **kwargs)
