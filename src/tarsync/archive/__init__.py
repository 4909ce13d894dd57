"""Archive pipeline: pack to a temporary file, then publish atomically.

Components:
- **TarPacker** / **unpack**: tar serialization of a directory
- **ArchiveWriter**: Packs a directory into "<archive>~"
- **Publisher**: Renames "<archive>~" over "<archive>"
"""

from tarsync.archive.packer import COMPRESSIONS, Packer, TarPacker, unpack, validate_options
from tarsync.archive.publisher import Publisher
from tarsync.archive.writer import ArchiveWriter, temp_path_for

__all__ = [
    "COMPRESSIONS",
    "ArchiveWriter",
    "Packer",
    "Publisher",
    "TarPacker",
    "temp_path_for",
    "unpack",
    "validate_options",
]
