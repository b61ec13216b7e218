__all__ = [
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
    'ObjectNotFoundError',
    'UnknownProfile',
]


class CAPolicyError(Exception):
    """Base class for all errors raised by this package."""
    pass


class ConfigurationError(CAPolicyError, ValueError):
    """Signal configuration errors."""
    pass


class InvalidArgumentShape(ConfigurationError):
    """A mapping or list was expected, but something else was supplied."""
    pass


class MissingRequiredOption(ConfigurationError):
    pass


class InvalidOptionType(ConfigurationError, TypeError):
    pass


class ConflictingCredentialSource(ConfigurationError):
    """Two mutually exclusive credential sources were declared together."""

    def __init__(self, first, second):
        self.sources = (first, second)
        super().__init__(f"You can't specify both {first} and {second}")


class MissingCredentialCompanion(ConfigurationError):

    def __init__(self, marker, companion):
        self.marker = marker
        self.companion = companion
        super().__init__(
            f"You must supply a {companion} with {marker}"
        )


class InvalidPolicyDeclaration(ConfigurationError):
    pass


class InvalidProfileType(ConfigurationError, TypeError):
    pass


class InvalidRootPath(ConfigurationError):
    pass


class InvalidFieldValue(ConfigurationError):
    """
    Raised by field validators when a profile setting has the right shape,
    but an unacceptable value.
    """

    def __init__(self, field, msg):
        self.field = field
        super().__init__(f"Invalid value for {field}: {msg}")


class PolicyViolation(CAPolicyError):
    """
    Raised when a subject does not satisfy a profile's subject item policy.

    Intended to be reported back to the requester, not to halt the process.
    """

    def __init__(self, required, missing):
        self.required = tuple(required)
        self.missing = tuple(missing)
        super().__init__(
            "This profile requires you supply " + ", ".join(self.required)
        )


class ObjectNotFoundError(CAPolicyError, LookupError):
    pass


class UnknownProfile(ObjectNotFoundError):

    def __init__(self, name):
        self.name = name
        super().__init__(f"unknown profile '{name}'")
