"""
Archive expansion and member classification.

Archives are ZIP files holding dataset folders: spreadsheets, product
images and PDFs. Nested archives are not expanded.
"""

import shutil
import zipfile
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from pydantic import BaseModel

from catalog_ingest.core.exceptions import ArchiveError
from catalog_ingest.observability.logger import get_logger

from .readers import SPREADSHEET_EXTENSIONS, file_extension

logger = get_logger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})
DOCUMENT_EXTENSIONS = frozenset({"pdf"})
ARTIFACT_NAMES = frozenset({"__macosx", "thumbs.db", "desktop.ini", ".ds_store"})


class MemberKind(str, Enum):
    DATASET = "dataset"
    IMAGE = "image"
    DOCUMENT = "document"
    UNKNOWN = "unknown"


class ArchiveMember(BaseModel):
    """
    One extracted archive file.

    Attributes:
        name: File name without folders
        archive_path: Path inside the archive (POSIX separators)
        path: Location of the extracted file on disk
        kind: Classification by extension
        size: Uncompressed size in bytes
    """

    name: str
    archive_path: str
    path: Path
    kind: MemberKind
    size: int

    @property
    def stem(self) -> str:
        return Path(self.name).stem


def is_artifact(archive_path: str) -> bool:
    """OS metadata files: resource forks, hidden files, thumbnail caches."""
    for part in PurePosixPath(archive_path).parts:
        if part.startswith(".") or part.casefold() in ARTIFACT_NAMES:
            return True
    return False


def classify_member(filename: str) -> MemberKind:
    extension = file_extension(filename)
    if extension in SPREADSHEET_EXTENSIONS:
        return MemberKind.DATASET
    if extension in IMAGE_EXTENSIONS:
        return MemberKind.IMAGE
    if extension in DOCUMENT_EXTENSIONS:
        return MemberKind.DOCUMENT
    return MemberKind.UNKNOWN


class ArchiveExpander:
    """
    Extracts archives into a scratch directory.
    """

    def __init__(self, max_member_bytes: int | None = None):
        """
        Args:
            max_member_bytes: Reject archives declaring a larger member (optional)
        """
        self.max_member_bytes = max_member_bytes

    def extract(self, stream: BinaryIO, dest: str | Path) -> list[ArchiveMember]:
        """
        Extract every non-artifact member and classify it.

        Args:
            stream: Seekable archive stream
            dest: Scratch directory (created if missing)

        Returns:
            Extracted members in archive order

        Raises:
            ArchiveError: If the archive is corrupt or a member path escapes ``dest``
        """
        root = Path(dest).resolve()
        root.mkdir(parents=True, exist_ok=True)

        try:
            archive = zipfile.ZipFile(stream)
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"Not a valid ZIP archive: {e}") from e

        members = []
        skipped = 0
        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                if is_artifact(info.filename):
                    skipped += 1
                    continue
                if self.max_member_bytes and info.file_size > self.max_member_bytes:
                    raise ArchiveError(
                        f"Archive member {info.filename} exceeds {self.max_member_bytes} bytes"
                    )

                target = (root / info.filename).resolve()
                if root not in target.parents:
                    raise ArchiveError(f"Unsafe path in archive: {info.filename}")

                target.parent.mkdir(parents=True, exist_ok=True)
                try:
                    with archive.open(info) as source, open(target, "wb") as out:
                        shutil.copyfileobj(source, out)
                except (zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError) as e:
                    # RuntimeError: encrypted member
                    raise ArchiveError(f"Cannot extract {info.filename}: {e}") from e

                name = PurePosixPath(info.filename).name
                members.append(
                    ArchiveMember(
                        name=name,
                        archive_path=info.filename,
                        path=target,
                        kind=classify_member(name),
                        size=info.file_size,
                    )
                )

        logger.info(
            f"Extracted {len(members)} archive members, skipped {skipped} metadata files",
            extra={"dest": str(root)},
        )
        return members
