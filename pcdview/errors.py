"""
Typed decode failures

Every failure of the PCD decoder is reported as a subclass of DecodeError
carrying a human readable reason. Per-point anomalies are never raised;
they are dropped by the readers and counted.
"""


class DecodeError(Exception):
    """Base class for fatal decode failures of a single file"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def __reduce__(self):
        return (self.__class__, (self.reason,))


class MalformedHeader(DecodeError):
    """Required header keys missing, x/y/z missing or inconsistent field arrays"""


class TruncatedBinaryData(DecodeError):
    """Not a single complete record in the binary body"""


class InvalidCompressionHeader(DecodeError):
    """Bad length pair in front of a binary_compressed body"""


class SizeMismatch(DecodeError):
    """LZF stream produced too few bytes"""


class InvalidBackReference(DecodeError):
    """LZF back-reference points before the buffer or at unwritten data"""


class EmptyPointCloud(DecodeError):
    """Decoding succeeded but every point was rejected"""
