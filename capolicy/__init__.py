from .ca_config import CAConfig, CAConfigPool
from .common import (
    CAPolicyError,
    ConfigurationError,
    ConflictingCredentialSource,
    InvalidArgumentShape,
    InvalidFieldValue,
    InvalidOptionType,
    InvalidPolicyDeclaration,
    InvalidProfileType,
    InvalidRootPath,
    MissingCredentialCompanion,
    MissingRequiredOption,
    PolicyViolation,
    UnknownProfile,
)
from .credentials import Credential, KeyEngine, engine_registry
from .profiles import CertProfile, SubjectItemPolicy
from .subject import Subject
from .validation import FieldValidators

__all__ = [
    'CAConfig',
    'CAConfigPool',
    'CertProfile',
    'SubjectItemPolicy',
    'Subject',
    'Credential',
    'KeyEngine',
    'FieldValidators',
    'engine_registry',
    'CAPolicyError',
    'ConfigurationError',
    'InvalidArgumentShape',
    'MissingRequiredOption',
    'InvalidOptionType',
    'ConflictingCredentialSource',
    'MissingCredentialCompanion',
    'InvalidPolicyDeclaration',
    'InvalidProfileType',
    'InvalidRootPath',
    'InvalidFieldValue',
    'PolicyViolation',
    'UnknownProfile',
]
