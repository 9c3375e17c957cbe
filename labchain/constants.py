import enum


# Delta chunking
MAX_DELTA_LENGTH = 8 * 1024 * 1024  # 8 MiB, bounds one record payload

# Experiments
EXPERIMENT_ID_LENGTH = 16

# Channel naming
LAB_PREFIX = "Lab-"
LAB_PREFIX_FILE = "Lab-File-"  # Delta chain
LAB_PREFIX_PATH = "Lab-Path-"  # PathEntry chain
ALIAS_CHANNEL = "Alias"

# Mining thresholds, counted in leading zero bits of the SHA-512 block hash
THRESHOLD_NONE = 0
THRESHOLD_LOW = 8
THRESHOLD_STANDARD = 16
DEFAULT_THRESHOLD = THRESHOLD_LOW

# Records
SIGNATURE_RSA_PSS_SHA512 = 1
HASH_SIZE = 64

# Keys
RSA_KEY_BITS = 4096
# PSS with SHA-512 and a 64-byte salt needs more than 1040 bits
MIN_RSA_KEY_BITS = 2048
KEY_FILE_SUFFIX = ".key"


class ChainKind(enum.Enum):
    """Kinds of lab chains; the value is the channel name prefix."""

    PATH = LAB_PREFIX_PATH
    FILE = LAB_PREFIX_FILE

    @property
    def prefix(self) -> str:
        return self.value

    def channel_name(self, ident: str) -> str:
        return self.value + ident

    @classmethod
    def of(cls, name: str) -> "ChainKind":
        for kind in cls:
            if name.startswith(kind.value):
                return kind
        raise ValueError(f"Not a lab channel: {name}")
