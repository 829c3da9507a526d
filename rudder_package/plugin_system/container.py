"""Reader and writer for the Unix ``ar`` container wrapping rpkg files.

An archive starts with the global magic followed by one 60 byte ASCII header
per entry, each entry's data padded to an even offset. GNU style names
(``name/`` and long names through the ``//`` table) and BSD style names
(``#1/<length>`` with the name stored before the data) are both read; written
archives use the GNU layout.
"""

from __future__ import annotations

import os
import pathlib
import struct
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

from rudder_package.utils.exceptions import PackageFormatError

AR_MAGIC = b"!<arch>\n"
HEADER_SIZE = 60
HEADER_TERMINATOR = b"`\n"
# name, mtime, uid, gid, mode, size, terminator
HEADER_FORMAT = struct.Struct("16s12s6s6s8s10s2s")

_GNU_SYMBOL_TABLES = ("/", "/SYM64/")
_BSD_SYMBOL_TABLES = ("__.SYMDEF", "__.SYMDEF SORTED")
_GNU_NAME_TABLE = "//"
_BSD_NAME_PREFIX = "#1/"


@dataclass(frozen=True)
class ArEntry:
    """One member of an ar archive.

    Attributes:
        name: Member name without any format-specific decoration
        offset: Absolute offset of the member data in the file
        size: Size of the member data in bytes
    """

    name: str
    offset: int
    size: int


def _format_error(message: str, path: Union[str, pathlib.Path], entry: Optional[str] = None) -> PackageFormatError:
    return PackageFormatError(message, path=str(path), entry=entry)


def read_index(path: Union[str, pathlib.Path]) -> List[ArEntry]:
    """List the members of an ar archive in file order.

    Args:
        path: Path of the archive

    Returns:
        The members, symbol tables and the long name table excluded

    Raises:
        PackageFormatError: If the file is missing or is not a well-formed ar archive
    """
    path = pathlib.Path(path)
    try:
        with open(path, "rb") as f:
            file_size = os.fstat(f.fileno()).st_size
            return _read_index(f, path, file_size)
    except OSError as e:
        raise _format_error(f"Cannot read archive {path}: {e}", path) from e


def _read_index(f: BinaryIO, path: pathlib.Path, file_size: int) -> List[ArEntry]:
    if f.read(len(AR_MAGIC)) != AR_MAGIC:
        raise _format_error(f"{path} is not an ar archive", path)

    entries: List[ArEntry] = []
    long_names: bytes = b""
    position = len(AR_MAGIC)

    while True:
        header = f.read(HEADER_SIZE)
        if not header:
            break
        if len(header) < HEADER_SIZE:
            raise _format_error(f"Truncated entry header at offset {position}", path)
        name_field, _, _, _, _, size_field, terminator = HEADER_FORMAT.unpack(header)
        if terminator != HEADER_TERMINATOR:
            raise _format_error(f"Bad entry header terminator at offset {position}", path)

        raw_name = name_field.decode("ascii", errors="replace").rstrip(" ")
        raw_size = size_field.decode("ascii", errors="replace").strip()
        if not raw_size.isdigit():
            raise _format_error(f"Invalid entry size '{raw_size}' at offset {position}", path, raw_name)

        size = int(raw_size)
        data_offset = position + HEADER_SIZE
        if data_offset + size > file_size:
            raise _format_error(
                f"Entry '{raw_name}' announces {size} bytes but the archive is truncated", path, raw_name
            )

        name: Optional[str]
        if raw_name == _GNU_NAME_TABLE:
            long_names = f.read(size)
            name = None
        elif raw_name in _GNU_SYMBOL_TABLES or raw_name in _BSD_SYMBOL_TABLES:
            name = None
        elif raw_name.startswith(_BSD_NAME_PREFIX):
            name_length = raw_name[len(_BSD_NAME_PREFIX):]
            if not name_length.isdigit() or int(name_length) > size:
                raise _format_error(f"Invalid BSD name length in '{raw_name}'", path, raw_name)
            name = _decode_name(f.read(int(name_length)).rstrip(b"\0"), path, raw_name)
            if name in _BSD_SYMBOL_TABLES:
                name = None
            else:
                data_offset += int(name_length)
                size -= int(name_length)
        elif raw_name.startswith("/") and raw_name[1:].isdigit():
            name = _lookup_long_name(long_names, int(raw_name[1:]), path)
        else:
            name = raw_name[:-1] if raw_name.endswith("/") else raw_name

        if name is not None:
            entries.append(ArEntry(name=name, offset=data_offset, size=size))

        position += HEADER_SIZE + int(raw_size) + (int(raw_size) % 2)
        f.seek(position)

    return entries


def _lookup_long_name(table: bytes, offset: int, path: pathlib.Path) -> str:
    if offset >= len(table):
        raise _format_error(f"Long name offset {offset} is outside the name table", path)
    end = table.find(b"/\n", offset)
    if end == -1:
        end = table.find(b"\n", offset)
    if end == -1:
        end = len(table)
    return _decode_name(table[offset:end], path, f"/{offset}")


def _decode_name(raw: bytes, path: pathlib.Path, header_name: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise _format_error(f"Entry name in '{header_name}' is not valid UTF-8", path, header_name) from e


def read_data(path: Union[str, pathlib.Path], entry: ArEntry) -> bytes:
    """Read the data of one member.

    Raises:
        PackageFormatError: If the data cannot be read in full
    """
    try:
        with open(path, "rb") as f:
            f.seek(entry.offset)
            data = f.read(entry.size)
    except OSError as e:
        raise _format_error(f"Cannot read entry '{entry.name}' of {path}: {e}", path, entry.name) from e

    if len(data) != entry.size:
        raise _format_error(f"Entry '{entry.name}' of {path} is truncated", path, entry.name)
    return data


def _header(name: str, size: int, mtime: int, mode: int = 0o100644) -> bytes:
    header = (
        f"{name:<16}"
        f"{mtime:<12}"
        f"{0:<6}"
        f"{0:<6}"
        f"{mode:<8o}"
        f"{size:<10}"
    ).encode("ascii") + HEADER_TERMINATOR
    if len(header) != HEADER_SIZE:
        raise ValueError(f"Entry name or size does not fit an ar header: {name!r}")
    return header


def write_archive(
        path: Union[str, pathlib.Path],
        members: Iterable[Tuple[str, bytes]],
        mtime: int = 0
) -> None:
    """Write a GNU style ar archive.

    Args:
        path: Destination path
        members: Ordered ``(name, data)`` pairs
        mtime: Modification time stamped on every member
    """
    members = list(members)
    long_names = bytearray()
    long_name_offsets: Dict[str, int] = {}

    for name, _ in members:
        if (len(name) > 15 or "/" in name) and name not in long_name_offsets:
            long_name_offsets[name] = len(long_names)
            long_names += name.encode("utf-8") + b"/\n"
    if len(long_names) % 2:
        long_names += b"\n"

    with open(path, "wb") as f:
        f.write(AR_MAGIC)
        if long_names:
            f.write(_header(_GNU_NAME_TABLE, len(long_names), 0, mode=0))
            f.write(bytes(long_names))

        for name, data in members:
            if name in long_name_offsets:
                ar_name = f"/{long_name_offsets[name]}"
            else:
                ar_name = f"{name}/"
            f.write(_header(ar_name, len(data), mtime))
            f.write(data)
            if len(data) % 2:
                f.write(b"\n")
