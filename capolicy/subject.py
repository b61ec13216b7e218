from collections.abc import Iterable
from typing import Tuple

from asn1crypto import x509

from .common import InvalidArgumentShape, InvalidFieldValue

__all__ = ['Subject', 'SHORT_NAMES']


# OpenSSL short names for the attribute types we know how to render
SHORT_NAMES = {
    'CN': 'common_name',
    'C': 'country_name',
    'L': 'locality_name',
    'ST': 'state_or_province_name',
    'O': 'organization_name',
    'OU': 'organizational_unit_name',
    'street': 'street_address',
    'postalCode': 'postal_code',
    'serialNumber': 'serial_number',
    'title': 'title',
    'SN': 'surname',
    'GN': 'given_name',
    'initials': 'initials',
    'pseudonym': 'pseudonym',
    'name': 'name',
    'generationQualifier': 'generation_qualifier',
    'dnQualifier': 'dn_qualifier',
    'businessCategory': 'business_category',
    'emailAddress': 'email_address',
    'DC': 'domain_component',
}

_LONG_NAMES = {v: k for k, v in SHORT_NAMES.items()}


class Subject:
    """
    Ordered list of ``(short_name, value)`` pairs describing
    a distinguished name, e.g. ``[('C', 'BE'), ('CN', 'Alice')]``.

    Duplicate attribute names are allowed.
    """

    def __init__(self, items: Iterable[Tuple[str, str]] = ()):
        if isinstance(items, (str, bytes)) or \
                not isinstance(items, Iterable):
            raise InvalidArgumentShape(
                "A subject must be a sequence of (name, value) pairs"
            )

        def _pairs():
            for item in items:
                if isinstance(item, str):
                    raise InvalidArgumentShape(
                        f"Subject items must be (name, value) pairs, "
                        f"not {item!r}"
                    )
                try:
                    name, value = item
                except (TypeError, ValueError) as e:
                    raise InvalidArgumentShape(
                        f"Subject items must be (name, value) pairs, "
                        f"not {item!r}"
                    ) from e
                yield str(name), value

        self._items = tuple(_pairs())

    @classmethod
    def from_name(cls, name: x509.Name) -> 'Subject':
        """
        Convert an ``asn1crypto`` name into a subject. Attribute types without
        a short name keep their ``asn1crypto`` name (or their dotted OID).
        """

        def _pairs():
            for rdn in name.chosen:
                for type_and_value in rdn:
                    attr_type = type_and_value['type'].native
                    yield (
                        _LONG_NAMES.get(attr_type, attr_type),
                        type_and_value['value'].native
                    )

        return cls(_pairs())

    def to_name(self) -> x509.Name:
        """
        Render the subject as an ``asn1crypto`` name, with one attribute
        per RDN, in order.
        """

        def _rdns():
            for short_name, value in self._items:
                try:
                    attr_type = SHORT_NAMES[short_name]
                except KeyError as e:
                    raise InvalidFieldValue(
                        'subject', f"unknown attribute name {short_name!r}"
                    ) from e
                # let asn1crypto pick the right string type for the attribute
                yield x509.Name.build({attr_type: value}).chosen[0]

        return x509.Name(name='', value=x509.RDNSequence(list(_rdns())))

    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._items)

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def __eq__(self, other):
        if isinstance(other, Subject):
            return self._items == other._items
        return NotImplemented

    def __hash__(self):
        return hash(self._items)

    def __repr__(self):
        return f"Subject({list(self._items)!r})"

    def __str__(self):
        return ''.join(f'/{name}={value}' for name, value in self._items)
