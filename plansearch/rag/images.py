"""Page image extraction and description for the images collection.

Images are not embedded directly: each one is indexed through a short
synthetic description built from its parent document's catalog metadata
("Technical drawing from Drawing S-46-150 (Structural) showing Plans of 46
area page 2"). Real image understanding can be plugged in by implementing
``ImagePipeline.embed_text``.

Two pipelines ship:

- ``PlaceholderImagePipeline``: extracts nothing (the default; keeps the
  indexer free of system dependencies)
- ``PopplerImagePipeline``: renders whole pages through ``pdf2image``
"""

import logging
import re
from pathlib import Path
from typing import Any, Protocol

from plansearch.core.config import settings
from plansearch.rag.schema import CatalogRecord, ImageRecord
from plansearch.rag.store import StoredRecord

logger = logging.getLogger(__name__)

# "page-003.jpg" (rendered pages) or "image-p3-000.jpg" style names
_PAGE_RE = re.compile(r"(?:p(\d+))|(?:-(\d+)$)")


class ImagePipeline(Protocol):
    """Pluggable image extraction + description."""

    def extract_images(self, pdf_path: Path, output_dir: Path) -> list[Path]: ...

    def embed_text(self, image_path: Path, metadata: dict[str, Any], page: int) -> str: ...


def generate_image_description(metadata: dict[str, Any], page: int) -> str:
    """Synthetic description combining document metadata with the page number."""
    description = f"Technical drawing from {metadata.get('documentType') or 'document'} "
    if metadata.get("drawingNumber"):
        description += f"{metadata['drawingNumber']} "
    if metadata.get("discipline"):
        description += f"({metadata['discipline']}) "
    if metadata.get("drawingType"):
        description += f"showing {metadata['drawingType']} "
    if metadata.get("buildingArea"):
        description += f"of {metadata['buildingArea']} area "
    return description + f"page {page}"


def page_from_filename(image_path: Path) -> int:
    """Page number encoded in an extracted image's filename (default 1)."""
    match = _PAGE_RE.search(image_path.stem)
    if not match:
        return 1
    page = int(match.group(1) or match.group(2))
    return page if page >= 1 else 1


class PlaceholderImagePipeline:
    """Extracts no images."""

    def extract_images(self, pdf_path: Path, output_dir: Path) -> list[Path]:
        logger.debug(f"Image extraction disabled for {pdf_path.name}")
        return []

    def embed_text(self, image_path: Path, metadata: dict[str, Any], page: int) -> str:
        return generate_image_description(metadata, page)


class PopplerImagePipeline(PlaceholderImagePipeline):
    """Renders every page to JPEG with ``pdf2image``.

    Needs the ``images`` extra and poppler's binaries (on PATH, or at
    ``poppler_path``). Any failure yields no images for that document;
    indexing continues.
    """

    def __init__(self, resolution: int | None = None, poppler_path: str | None = None) -> None:
        self.resolution = resolution or settings.pdf.image_resolution
        self.poppler_path = poppler_path

    def extract_images(self, pdf_path: Path, output_dir: Path) -> list[Path]:
        try:
            from pdf2image import convert_from_path
            from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
        except ImportError:
            logger.error("pdf2image not installed; install the 'images' extra to extract page images")
            return []

        images_dir = output_dir / pdf_path.stem
        images_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Extracting images from {pdf_path} to {images_dir}...")

        try:
            pages = convert_from_path(pdf_path, dpi=self.resolution, poppler_path=self.poppler_path)
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError) as e:
            logger.error(
                f"Image extraction failed for {pdf_path.name}: {e}. "
                "Poppler is required (set poppler_path if it is not on PATH)."
            )
            return []

        paths: list[Path] = []
        for number, image in enumerate(pages, start=1):
            path = images_dir / f"page-{number:03d}.jpg"
            image.save(path, "JPEG")
            paths.append(path)
        return paths


def build_image_records(
    image_paths: list[Path],
    record: CatalogRecord,
    pipeline: ImagePipeline,
) -> list[ImageRecord]:
    """Image records inheriting the parent document's catalog metadata."""
    metadata = record.metadata.to_metadata()
    images: list[ImageRecord] = []
    for image_path in image_paths:
        page = page_from_filename(image_path)
        images.append(
            ImageRecord(
                image_path=str(image_path),
                source=record.source,
                hash=record.hash,
                page=page,
                description=pipeline.embed_text(image_path, metadata, page),
                project=metadata.get("project"),
                discipline=metadata.get("discipline"),
                drawingType=metadata.get("drawingType"),
                drawingNumber=metadata.get("drawingNumber"),
                buildingArea=metadata.get("buildingArea"),
                documentType=metadata.get("documentType"),
            )
        )
    return images


def to_image_records(images: list[ImageRecord]) -> list[StoredRecord]:
    return [
        StoredRecord(
            id=f"{image.hash}:{image.image_path}",
            text=image.description,
            metadata=image.payload(),
            document_id=image.hash,
        )
        for image in images
    ]
