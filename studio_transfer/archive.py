"""
Function Source Archives
========================

Packs in-memory source files into the gzip'd tarball format that function
deployments expect, and unpacks downloaded deployment archives.
"""

import io
import logging
import tarfile
import time
from dataclasses import dataclass
from typing import Iterable, List, Union

logger = logging.getLogger(__name__)


@dataclass
class SourceFile:
    """One file of a function's source tree."""
    name: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def text(cls, name: str, content: str) -> 'SourceFile':
        return cls(name=name, content=content.encode('utf-8'))


def sanitize_name(name: str) -> str:
    """Strip leading './' and '/' so archive members are relative."""
    while name.startswith('./'):
        name = name[2:]
    return name.lstrip('/')


def pack_files(files: Iterable[Union[SourceFile, tuple]]) -> bytes:
    """
    Create a tar.gz archive from in-memory files.

    Args:
        files: SourceFile objects or (name, content) tuples

    Returns:
        Archive bytes

    Raises:
        ValueError: If no files are given
    """
    entries: List[SourceFile] = []
    for item in files:
        if isinstance(item, SourceFile):
            entries.append(item)
        else:
            name, content = item
            if isinstance(content, str):
                content = content.encode('utf-8')
            entries.append(SourceFile(name=name, content=content))

    if not entries:
        raise ValueError("No source files were provided to package.")

    buffer = io.BytesIO()
    now = time.time()
    with tarfile.open(fileobj=buffer, mode='w:gz') as tar:
        for entry in entries:
            info = tarfile.TarInfo(name=sanitize_name(entry.name))
            info.size = entry.size
            info.mtime = now
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(entry.content))
            logger.debug(f"  Added: {info.name} ({info.size} bytes)")

    return buffer.getvalue()


def unpack_archive(data: bytes) -> List[SourceFile]:
    """
    Extract regular files from a tar.gz (or plain tar) archive in memory.

    Directory entries, links and other special members are skipped.
    """
    if not data:
        return []

    files: List[SourceFile] = []
    with tarfile.open(fileobj=io.BytesIO(data), mode='r:*') as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            extracted = tar.extractfile(member)
            if extracted is None:
                continue
            name = sanitize_name(member.name)
            if not name:
                continue
            files.append(SourceFile(name=name, content=extracted.read()))
    return files
