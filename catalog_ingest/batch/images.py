"""
Associates archive images with catalog records.

Runs once per archive, after every child upload is terminal, because an
image may belong to a record created from any sibling spreadsheet.
"""

import re
import shutil
import tempfile
from pathlib import Path, PurePosixPath, PureWindowsPath

from catalog_ingest.core.models import Upload
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import images_linked_total, increment_counter

from .archive import ArchiveExpander, MemberKind

logger = get_logger(__name__)

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    return _NON_SLUG.sub("-", value.lower()).strip("-") or "item"


def image_key(dataset_context: str, filename: str) -> str:
    """Blob key for a record image: parts/<context>/<image>.<ext>"""
    path = Path(filename)
    extension = path.suffix.lower().lstrip(".")
    return f"parts/{slugify(dataset_context)}/{slugify(path.stem)}.{extension}"


def referenced_name(value: str) -> str:
    """Bare lower-cased file name from a path written with either separator."""
    return PureWindowsPath(PurePosixPath(value.strip()).name).name.lower()


class ImageAssociator:
    """
    Matches archive images to records by file name.

    Records name their image in the image filename column; the match is
    a case-insensitive join on the bare file name.
    """

    def __init__(self, catalog, blob_store, expander: ArchiveExpander | None = None):
        self.catalog = catalog
        self.blob_store = blob_store
        self.expander = expander or ArchiveExpander()

    def associate(self, archive: Upload, children: list[Upload]) -> int:
        """
        Re-extract the staged archive and link images to child records.

        Args:
            archive: Archive upload with a staged_archive_key
            children: Successfully processed child uploads

        Returns:
            Number of records that received an image reference
        """
        candidates = self.catalog.image_candidates([child.id for child in children])
        if not candidates:
            return 0

        scratch = Path(tempfile.mkdtemp(prefix="catalog-images-"))
        try:
            with self.blob_store.read(archive.staged_archive_key) as stream:
                members = self.expander.extract(stream, scratch)
            images = {
                member.name.lower(): member for member in members if member.kind == MemberKind.IMAGE
            }

            refs: dict[int, str] = {}
            stored: set[str] = set()
            replaced: set[str] = set()
            for candidate in candidates:
                member = images.get(referenced_name(candidate.image_filename))
                if member is None:
                    continue

                key = image_key(candidate.dataset_context, member.name)
                if key not in stored:
                    self.blob_store.put(member.path.read_bytes(), key)
                    stored.add(key)
                if candidate.image_ref and candidate.image_ref != key:
                    replaced.add(candidate.image_ref)
                refs[candidate.part_id] = key

            self.catalog.set_image_refs(refs)
            self._delete_unreferenced(replaced - stored)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        increment_counter(images_linked_total, len(refs))
        logger.info(
            f"Linked {len(refs)} records to {len(stored)} archive images",
            extra={"upload_id": archive.id},
        )
        return len(refs)

    def _delete_unreferenced(self, keys: set[str]) -> None:
        """Delete replaced image blobs that no record points at any more."""
        for key in sorted(keys):
            if self.catalog.image_ref_in_use(key):
                logger.debug(f"Keeping {key}: still referenced by other records")
                continue
            self.blob_store.delete(key)
