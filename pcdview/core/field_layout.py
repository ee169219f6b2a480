"""
PCD header parsing and record layout

Fields in a PCD record are packed in declaration order with no padding:
the byte offset of a field is the running sum of size * count of the
fields before it, and the record stride is the sum over all fields.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from ..errors import MalformedHeader

logger = logging.getLogger(__name__)

DATA_ENCODINGS = ('ascii', 'binary', 'binary_compressed')
REQUIRED_KEYS = ('version', 'fields', 'points', 'data')
COLOR_FIELDS = ('rgb', 'rgba', 'r', 'g', 'b')

# (type, size) -> little-endian numpy dtype
PCD_TYPE_TO_DTYPE = {
    ('I', 1): np.dtype('<i1'),
    ('I', 2): np.dtype('<i2'),
    ('I', 4): np.dtype('<i4'),
    ('I', 8): np.dtype('<i8'),
    ('U', 1): np.dtype('<u1'),
    ('U', 2): np.dtype('<u2'),
    ('U', 4): np.dtype('<u4'),
    ('U', 8): np.dtype('<u8'),
    ('F', 4): np.dtype('<f4'),
    ('F', 8): np.dtype('<f8'),
}


@dataclass
class PCDHeader:
    """Parsed PCD header"""
    version: str
    fields: List[str]
    size: List[int]
    type: List[str]
    count: List[int]
    width: int
    height: int
    points: int
    data: str
    viewpoint: Optional[str] = None

    def has_field(self, name: str) -> bool:
        return name in self.fields

    @property
    def has_color(self) -> bool:
        return any(name in self.fields for name in COLOR_FIELDS)

    def to_text(self) -> str:
        """Header lines that parse_header reads back to an equal PCDHeader"""
        lines = [
            f"VERSION {self.version}",
            "FIELDS " + " ".join(self.fields),
            "SIZE " + " ".join(str(s) for s in self.size),
            "TYPE " + " ".join(self.type),
            "COUNT " + " ".join(str(c) for c in self.count),
            f"WIDTH {self.width}",
            f"HEIGHT {self.height}",
        ]
        if self.viewpoint:
            lines.append(f"VIEWPOINT {self.viewpoint}")
        lines.append(f"POINTS {self.points}")
        lines.append(f"DATA {self.data}")
        return "\n".join(lines)


def _parse_ints(key: str, values: List[str]) -> List[int]:
    try:
        return [int(v) for v in values]
    except ValueError:
        raise MalformedHeader(f"Non-integer value in {key.upper()}: {' '.join(values)}")


def parse_header(text: str) -> PCDHeader:
    """
    Parse the textual PCD header

    Args:
        text: header text up to and including the DATA line

    Returns:
        PCDHeader

    Raises:
        MalformedHeader: required keys missing, x/y/z missing, arrays of
            different lengths or an unknown DATA encoding
    """
    raw: Dict[str, List[str]] = {}

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        key, *values = stripped.split()
        key = key.lower()
        raw[key] = values
        if key == 'data':
            break

    missing = [k.upper() for k in REQUIRED_KEYS if not raw.get(k)]
    if missing:
        raise MalformedHeader(f"Invalid PCD header: missing {', '.join(missing)}")

    fields = raw['fields']
    n_fields = len(fields)

    size = _parse_ints('size', raw['size']) if raw.get('size') else [4] * n_fields
    types = [t.upper() for t in raw['type']] if raw.get('type') else ['F'] * n_fields
    count = _parse_ints('count', raw['count']) if raw.get('count') else [1] * n_fields

    if not (len(size) == len(types) == len(count) == n_fields):
        raise MalformedHeader(
            f"Field arrays disagree: FIELDS={n_fields} SIZE={len(size)} "
            f"TYPE={len(types)} COUNT={len(count)}"
        )

    missing_xyz = [axis for axis in ('x', 'y', 'z') if axis not in fields]
    if missing_xyz:
        raise MalformedHeader(
            f"PCD file must contain x, y, z fields. Found fields: {', '.join(fields)}"
        )

    points = _parse_ints('points', raw['points'][:1])[0]
    width = _parse_ints('width', raw['width'][:1])[0] if raw.get('width') else points
    height = _parse_ints('height', raw['height'][:1])[0] if raw.get('height') else 1

    data = raw['data'][0].lower()
    if data not in DATA_ENCODINGS:
        raise MalformedHeader(f"Unknown DATA encoding: {raw['data'][0]}")

    header = PCDHeader(
        version=' '.join(raw['version']),
        fields=fields,
        size=size,
        type=types,
        count=count,
        width=width,
        height=height,
        points=points,
        data=data,
        viewpoint=' '.join(raw['viewpoint']) if raw.get('viewpoint') else None,
    )

    logger.debug(f"PCD header: fields={fields} size={size} type={types} "
                 f"count={count} points={points:,} data={data}")
    return header


@dataclass
class FieldLayout:
    """
    Byte layout of one point record

    Attributes:
        names: field names in declaration order
        offsets: byte offset of each field inside a record
        token_offsets: index of each field's first token on an ASCII line
        stride: bytes per record
    """
    names: List[str]
    sizes: List[int]
    types: List[str]
    counts: List[int]
    offsets: List[int] = field(default_factory=list)
    token_offsets: List[int] = field(default_factory=list)
    stride: int = 0

    def __post_init__(self):
        if not self.offsets:
            byte_offset = 0
            token_offset = 0
            for size, count in zip(self.sizes, self.counts):
                self.offsets.append(byte_offset)
                self.token_offsets.append(token_offset)
                byte_offset += size * count
                token_offset += count
            self.stride = byte_offset

    @classmethod
    def from_header(cls, header: PCDHeader) -> 'FieldLayout':
        return cls(
            names=list(header.fields),
            sizes=list(header.size),
            types=list(header.type),
            counts=list(header.count),
        )

    def index(self, name: str) -> int:
        return self.names.index(name)

    def has(self, name: str) -> bool:
        return name in self.names

    def offset(self, name: str) -> int:
        return self.offsets[self.index(name)]

    def token_offset(self, name: str) -> int:
        return self.token_offsets[self.index(name)]

    def field_dtype(self, name: str) -> np.dtype:
        """
        Numpy dtype of a single element of a field

        Raises:
            MalformedHeader: the (type, size) pair is not a PCD type
        """
        i = self.index(name)
        key = (self.types[i], self.sizes[i])
        if key not in PCD_TYPE_TO_DTYPE:
            raise MalformedHeader(f"Unsupported field type: {key[0]} with size {key[1]} ({name})")
        return PCD_TYPE_TO_DTYPE[key]

    def is_wide_integer(self, name: str) -> bool:
        i = self.index(name)
        return self.types[i] in ('I', 'U') and self.sizes[i] == 8

    def __repr__(self):
        parts = ", ".join(f"{n}@{o}" for n, o in zip(self.names, self.offsets))
        return f"FieldLayout(stride={self.stride}, [{parts}])"
