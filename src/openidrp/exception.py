class OpenIdError(Exception):
    pass


class ArgumentInvalid(OpenIdError, ValueError):
    pass


class ContextUnavailable(OpenIdError):
    pass


class InvalidIdentifier(OpenIdError):
    pass


class DiscoveryFailed(OpenIdError):
    pass


class ProtocolError(OpenIdError):
    pass


class ReturnToNotUnderRealm(ProtocolError):
    pass


class ReturnToMismatch(ProtocolError):
    pass


class ReplayedNonce(ProtocolError):
    pass


class VerificationFailed(ProtocolError):
    pass
