import dataclasses

import pytest
import yaml

from capolicy import (
    CertProfile,
    ConfigurationError,
    FieldValidators,
    InvalidArgumentShape,
    InvalidPolicyDeclaration,
    SubjectItemPolicy,
)
from capolicy.common import InvalidFieldValue, InvalidOptionType
from capolicy.subject import Subject
from capolicy.validation import (
    DEFAULT_MD,
    BasicConstraints,
    CertificatePolicy,
    PolicyConstraints,
)


def test_defaults():
    profile = CertProfile()
    assert profile.basic_constraints is None
    assert profile.key_usage == ()
    assert profile.extended_key_usage == ()
    assert profile.certificate_policies == ()
    assert profile.inhibit_any_policy is None
    assert profile.policy_constraints is None
    assert profile.name_constraints is None
    assert profile.ocsp_no_check is False
    assert profile.subject_item_policy is None
    assert profile.ocsp_location == ()
    assert profile.cdp_location == ()
    assert profile.ca_issuers_location == ()
    assert profile.default_md == DEFAULT_MD == 'SHA256'
    assert profile.allowed_mds == ('SHA256',)


def test_default_md_added_to_allowed():
    profile = CertProfile(default_md='sha1', allowed_mds=['SHA384', 'sha512'])
    assert profile.default_md == 'SHA1'
    assert profile.allowed_mds == ('SHA384', 'SHA512', 'SHA1')


def test_default_md_already_allowed():
    profile = CertProfile(allowed_mds=['SHA256', 'SHA384'])
    assert profile.allowed_mds == ('SHA256', 'SHA384')


@pytest.mark.parametrize('md', ['SHA3', 'whirlpool', 256])
def test_bad_md(md):
    with pytest.raises(InvalidFieldValue, match='.*unknown message digest.*'):
        CertProfile(default_md=md)
    with pytest.raises(InvalidFieldValue):
        CertProfile(allowed_mds=['SHA256', md])


def test_allowed_mds_must_be_list():
    with pytest.raises(InvalidArgumentShape):
        CertProfile(allowed_mds='SHA256')


@pytest.mark.parametrize('value, expected', [
    (True, True), ('true', True), (False, False), ('false', False),
    (None, False), ('yes', False), ('True', False), (1, False),
])
def test_ocsp_no_check(value, expected):
    assert CertProfile(ocsp_no_check=value).ocsp_no_check is expected


def test_key_usage_normalised():
    profile = CertProfile(
        key_usage=['digitalSignature', 'key_encipherment', 'cRLSign',
                   'contentCommitment']
    )
    assert profile.key_usage == (
        'digital_signature', 'key_encipherment', 'crl_sign', 'non_repudiation'
    )


@pytest.mark.parametrize('value', [
    ['sign_everything'], [5], ['digitalSignature', 'bogusUsage'],
    ['digitalSignature', 'serverAuth'], ['digitalsignature'],
])
def test_key_usage_bad_value(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(key_usage=value)


def test_key_usage_not_a_list():
    with pytest.raises(InvalidArgumentShape):
        CertProfile(key_usage='digitalSignature')


def test_extended_key_usage():
    profile = CertProfile(
        extended_key_usage=['serverAuth', 'client_auth', 'OCSPSigning',
                            '1.2.3.4.5']
    )
    assert profile.extended_key_usage == (
        'server_auth', 'client_auth', 'ocsp_signing',
        '1.2.3.4.5'
    )


@pytest.mark.parametrize('value', ['doEverything', '1.2.', '1..2'])
def test_extended_key_usage_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(extended_key_usage=[value])


def test_basic_constraints():
    profile = CertProfile(basic_constraints={'ca': True, 'path-length': 1})
    assert profile.basic_constraints == BasicConstraints(
        ca=True, path_length=1
    )
    assert profile.basic_constraints.asn1.native == {
        'ca': True, 'path_len_constraint': 1
    }


@pytest.mark.parametrize('value, exc_type', [
    ({'path_length': 1}, InvalidFieldValue),
    ({'ca': 'yes'}, InvalidFieldValue),
    ({'ca': False, 'path_length': 0}, InvalidFieldValue),
    ({'ca': True, 'path_length': -1}, InvalidFieldValue),
    ({'ca': True, 'pathlen': 1}, ConfigurationError),
    (True, InvalidArgumentShape),
])
def test_basic_constraints_bad(value, exc_type):
    with pytest.raises(exc_type):
        CertProfile(basic_constraints=value)


def test_certificate_policies():
    profile = CertProfile(certificate_policies=[
        {
            'policy-identifier': '2.16.840.1.12345.1.2.3.4.1',
            'cps-uris': ['http://example.com/cps'],
            'user-notices': [{
                'explicit-text': 'thanks for reading',
                'organization': 'Acme',
                'notice-numbers': [1, 2],
            }],
        },
        {'policy_identifier': '1.2.3.4'},
    ])
    first, second = profile.certificate_policies
    assert first.policy_identifier == '2.16.840.1.12345.1.2.3.4.1'
    assert first.cps_uris == ('http://example.com/cps',)
    assert first.user_notices[0].notice_numbers == (1, 2)
    assert second == CertificatePolicy(policy_identifier='1.2.3.4')
    assert second.asn1.native['policy_identifier'] == '1.2.3.4'
    qualifiers = first.asn1.native['policy_qualifiers']
    assert qualifiers[0]['qualifier'] == 'http://example.com/cps'


@pytest.mark.parametrize('value', [
    [{'policy_identifier': 'not-an-oid'}],
    [{'policy_identifier': '1'}],
    [{'cps_uris': ['http://example.com/cps']}],
    [{'policy_identifier': '1.2.3', 'cps_uris': ['no scheme']}],
    [{'policy_identifier': '1.2.3', 'user_notices': [{}]}],
])
def test_certificate_policies_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(certificate_policies=value)


@pytest.mark.parametrize('value', [0, 3])
def test_inhibit_any_policy(value):
    assert CertProfile(inhibit_any_policy=value).inhibit_any_policy == value


@pytest.mark.parametrize('value', [-1, '1', True])
def test_inhibit_any_policy_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(inhibit_any_policy=value)


def test_policy_constraints():
    profile = CertProfile(policy_constraints={'inhibit-policy-mapping': 2})
    assert profile.policy_constraints == PolicyConstraints(
        inhibit_policy_mapping=2
    )
    asn1 = profile.policy_constraints.asn1
    assert asn1['inhibit_policy_mapping'].native == 2


@pytest.mark.parametrize('value', [{}, {'require_explicit_policy': -2}])
def test_policy_constraints_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(policy_constraints=value)


def test_name_constraints():
    profile = CertProfile(name_constraints={
        'permitted': [
            {'type': 'dns', 'value': 'example.com'},
            {'type': 'dirName', 'value': {'C': 'BE', 'O': 'Acme'}},
        ],
        'excluded': [
            {'type': 'ip', 'value': '10.0.0.0/8'},
            {'type': 'email', 'value': 'example.org'},
        ],
    })
    nc = profile.name_constraints
    assert [n.type for n in nc.permitted] == ['dns_name', 'directory_name']
    assert nc.permitted[1].value == Subject([('C', 'BE'), ('O', 'Acme')])
    assert [n.type for n in nc.excluded] == ['ip_address', 'rfc822_name']
    native = nc.asn1.native
    assert native['permitted_subtrees'][0]['base'] == 'example.com'
    assert len(native['excluded_subtrees']) == 2


@pytest.mark.parametrize('name_type', [
    'DNS', 'dns_name', 'DNS_NAME', 'Dns_Name', 'dns-name',
])
def test_name_constraints_type_case_insensitive(name_type):
    profile = CertProfile(name_constraints={
        'permitted': [{'type': name_type, 'value': 'example.com'}],
    })
    permitted, = profile.name_constraints.permitted
    assert permitted.type == 'dns_name'


@pytest.mark.parametrize('value', [
    {},
    {'permitted': []},
    {'permitted': [{'type': 'x400', 'value': 'abc'}]},
    {'permitted': [{'type': 'dns'}]},
    {'excluded': [{'type': 'ip', 'value': '10.0.0.1'}]},
    {'excluded': [{'type': 'ip', 'value': 'not-an-ip/8'}]},
    {'excluded': [{'type': 'dirName', 'value': {'XX': 'abc'}}]},
])
def test_name_constraints_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(name_constraints=value)


def test_locations():
    profile = CertProfile(
        ocsp_location=['http://ocsp.example.com'],
        cdp_location='http://crl.example.com/ca.crl',
        ca_issuers_location=['http://ca.example.com/ca.cer',
                             'ldap:///cn=CA,dc=example,dc=com'],
    )
    assert profile.ocsp_location == ('http://ocsp.example.com',)
    assert profile.cdp_location == ('http://crl.example.com/ca.crl',)
    assert len(profile.ca_issuers_location) == 2


@pytest.mark.parametrize('value', [['example.com'], [None]])
def test_locations_bad(value):
    with pytest.raises(InvalidFieldValue):
        CertProfile(ocsp_location=value)


def test_subject_item_policy_type_check():
    with pytest.raises(InvalidOptionType):
        CertProfile(subject_item_policy={'CN': 'required'})


def test_profile_is_frozen():
    profile = CertProfile(key_usage=['digitalSignature'])
    with pytest.raises(dataclasses.FrozenInstanceError):
        profile.key_usage = ('key_cert_sign',)


def test_profile_replace_revalidates():
    profile = CertProfile(
        basic_constraints={'ca': True}, key_usage=['keyCertSign']
    )
    replaced = dataclasses.replace(profile, default_md='SHA384')
    assert replaced.basic_constraints == profile.basic_constraints
    assert replaced.allowed_mds == ('SHA256', 'SHA384')


def test_from_config():
    cfg = yaml.safe_load('''
    key-usage: [digitalSignature]
    extended-key-usage: [clientAuth]
    ocsp-no-check: true
    default-md: SHA384
    subject-item-policy:
        CN: required
        OU: optional
    ''')
    profile = CertProfile.from_config(cfg)
    assert profile.key_usage == ('digital_signature',)
    assert profile.ocsp_no_check is True
    assert profile.subject_item_policy == SubjectItemPolicy(
        {'CN': 'required', 'OU': 'optional'}
    )
    assert profile.allowed_mds == ('SHA384',)


def test_from_config_empty():
    assert CertProfile.from_config(None) == CertProfile()


def test_from_config_unexpected_key():
    with pytest.raises(ConfigurationError, match='.*Unexpected key.*'):
        CertProfile.from_config({'key_usages': ['digitalSignature']})


def test_from_config_bad_subject_policy():
    with pytest.raises(InvalidPolicyDeclaration):
        CertProfile.from_config({'subject_item_policy': {'CN': 'maybe'}})


def test_from_config_cannot_set_validators():
    with pytest.raises(ConfigurationError):
        CertProfile.from_config({'validators': None})


class StrictValidators(FieldValidators):

    def validate_md(self, value):
        value = super().validate_md(value)
        if value in ('MD5', 'SHA1'):
            raise InvalidFieldValue('md', f"{value} is too weak")
        return value


def test_custom_validators():
    strict = StrictValidators()
    with pytest.raises(InvalidFieldValue, match='.*too weak.*'):
        CertProfile.from_config({'allowed_mds': ['SHA1']}, validators=strict)
    profile = CertProfile(default_md='SHA512', validators=strict)
    assert profile.allowed_mds == ('SHA512',)
    assert profile == CertProfile(default_md='SHA512')
