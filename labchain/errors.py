class LabError(Exception):
    """Base class for labchain errors."""


class LabConfigError(LabError):
    """Raised for invalid runtime configuration."""


# Delta engine
class DeltaApplyError(LabError):
    """Short read or short write while patching a file in place."""


# Chains
class MalformedChainError(LabError):
    """A record payload on a chain could not be decoded."""


class ChannelError(LabError):
    pass


class ChainValidationError(LabError):
    pass


class NoEntriesToMineError(LabError):
    pass


class BlockNotFoundError(LabError):
    pass


# Identity
class KeystoreError(LabError):
    pass
