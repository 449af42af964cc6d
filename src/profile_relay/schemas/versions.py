from enum import IntEnum


class RelayCallVersion(IntEnum):
    """Version word packed as the first slot of every relay-call message."""
    LSP25 = 25

    @classmethod
    def from_int(cls, value):
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported relay call version: {value}")
