"""Document indexing pipeline for construction document search.

This module implements the load -> catalog -> chunk -> persist pipeline:
1. LOAD: Discover PDFs under the files dir, hash their bytes, extract page text
2. CATALOG: Skip already-indexed content, extract metadata, write overviews
3. CHUNK: Split new documents and copy catalog metadata onto every chunk
4. IMAGES (optional): Render pages and index them through descriptions
5. PERSIST: Save the catalog, chunks and images collections

Run with: python -m plansearch.rag.ingest --files-dir <dir> [--index-dir <dir>]
                                          [--overwrite] [--extract-images]

The run is sequential and single-threaded. Per-document failures are logged
and reported; only an unusable files dir or index dir aborts the run.
"""

import logging
import shutil
from pathlib import Path

from llama_index.core.base.embeddings.base import BaseEmbedding

from plansearch.core.config import settings
from plansearch.core.ssl_setup import configure_ssl
from plansearch.llm.client import TextGenerator, generate as default_generate, get_embed_model
from plansearch.llm.tracing import flush_tracing, observe
from plansearch.rag.ai_metadata import detect_logical_sections
from plansearch.rag.catalog import (
    enrich_chunks,
    process_documents,
    remove_stale_sources,
    to_catalog_records,
    to_chunk_records,
)
from plansearch.rag.extractors import (
    DocumentLoader,
    discover_documents,
    get_loader,
    split_pdf_into_chunks,
)
from plansearch.rag.images import (
    ImagePipeline,
    PopplerImagePipeline,
    build_image_records,
    to_image_records,
)
from plansearch.rag.models import IngestionReport, SourceDocument
from plansearch.rag.schema import CatalogRecord
from plansearch.rag.segmenter import split_documents
from plansearch.rag.store import CollectionNotFoundError, VectorCollection, drop_collection

logger = logging.getLogger(__name__)

# Rendered page images outlive the run, so they live beside the collections
PAGE_IMAGES_DIR_NAME = "page_images"


# =============================================================================
# STEP 1: LOAD DOCUMENTS
# =============================================================================


def load_documents(
    files_dir: Path,
    loader: DocumentLoader | None = None,
) -> tuple[list[SourceDocument], list[str]]:
    """
    Load every supported document under ``files_dir``.

    Args:
        files_dir: Root of the document tree (searched recursively).
        loader: Loader used for every file instead of the per-extension
            registry.

    Returns:
        (loaded documents, sources that could not be read at all)
    """
    logger.info(f"Loading documents from {files_dir}")
    paths = discover_documents(files_dir)
    if not paths:
        logger.warning(f"No PDF files found in {files_dir}")

    documents: list[SourceDocument] = []
    failed: list[str] = []
    for path in paths:
        try:
            load = loader or get_loader(path)
            document = load(path)
        except Exception as e:
            logger.error(f"Failed to load {path}: {e}")
            failed.append(str(path.resolve()))
            continue
        logger.info(f"Loaded {path.name}: {len(document.pages)} pages with text")
        documents.append(document)

    logger.info(f"Loaded {len(documents)} of {len(paths)} documents")
    return documents, failed


def plan_oversized_splits(documents: list[SourceDocument], temp_dir: Path) -> None:
    """Log split plans for documents flagged as oversized."""
    for document in documents:
        if not document.needs_splitting:
            continue
        if settings.pdf.use_ai_section_detection:
            starts = detect_logical_sections(document.full_text, document.page_count)
            logger.info(f"Detected section starts for {document.source}: {starts}")
        split_pdf_into_chunks(Path(document.source), temp_dir, page_count=document.page_count)


# =============================================================================
# STEP 2: OPEN COLLECTIONS
# =============================================================================


def open_collections(
    index_dir: Path,
    embed_model: BaseEmbedding,
    overwrite: bool,
) -> tuple[VectorCollection, VectorCollection, VectorCollection | None]:
    """Open (or create) catalog and chunks; open images only if it exists."""
    rag = settings.rag
    if overwrite:
        for name in (rag.catalog_collection, rag.chunks_collection, rag.images_collection):
            drop_collection(name, index_dir)

    strict = rag.strict_embedding_model
    catalog = VectorCollection.open_or_create(rag.catalog_collection, index_dir, embed_model, strict)
    chunks = VectorCollection.open_or_create(rag.chunks_collection, index_dir, embed_model, strict)

    try:
        images = VectorCollection.load(rag.images_collection, index_dir, embed_model, strict)
    except CollectionNotFoundError:
        images = None

    return catalog, chunks, images


# =============================================================================
# MAIN PIPELINE
# =============================================================================


@observe(name="run_ingestion")
def run_ingestion(
    files_dir: Path | None = None,
    index_dir: Path | None = None,
    overwrite: bool = False,
    extract_images: bool | None = None,
    generate: TextGenerator | None = None,
    embed_model: BaseEmbedding | None = None,
    image_pipeline: ImagePipeline | None = None,
    loader: DocumentLoader | None = None,
) -> IngestionReport:
    """
    Run the full indexing pipeline.

    Args:
        files_dir: Document tree to index (default ``settings.paths.files_dir``).
        index_dir: Where collections are persisted (default ``settings.paths.index_dir``).
        overwrite: Drop all collections first and rebuild from scratch.
        extract_images: Render and index page images (default ``settings.pdf.extract_images``).
        generate: Text generation function for overviews and AI metadata.
        embed_model: Embedding model (default ``get_embed_model()``).
        image_pipeline: Image pipeline used when ``extract_images`` is set
            (default ``PopplerImagePipeline``).
        loader: Loader override applied to every discovered file.

    Returns:
        IngestionReport with the run's counts.

    Raises:
        FileNotFoundError: If ``files_dir`` doesn't exist.
    """
    files_dir = Path(files_dir or settings.paths.files_dir)
    index_dir = Path(index_dir or settings.paths.index_dir)
    if extract_images is None:
        extract_images = settings.pdf.extract_images

    logger.info("=" * 60)
    logger.info(f"Starting indexing of {files_dir} into {index_dir}")
    logger.info(f"Overwrite: {overwrite}, extract images: {extract_images}")
    logger.info("=" * 60)

    if not files_dir.exists():
        raise FileNotFoundError(f"Files directory not found: {files_dir}")

    index_dir.mkdir(parents=True, exist_ok=True)
    temp_dir = index_dir / settings.paths.temp_dir_name
    temp_dir.mkdir(parents=True, exist_ok=True)

    try:
        report = _run_pipeline(
            files_dir,
            index_dir,
            temp_dir,
            overwrite=overwrite,
            extract_images=extract_images,
            generate=generate or default_generate,
            embed_model=embed_model or get_embed_model(),
            image_pipeline=image_pipeline,
            loader=loader,
        )
    finally:
        cleanup_temp_dir(temp_dir)
        flush_tracing()

    logger.info("=" * 60)
    logger.info(f"Indexing complete: {report.model_dump()}")
    logger.info("=" * 60)
    return report


def _run_pipeline(
    files_dir: Path,
    index_dir: Path,
    temp_dir: Path,
    overwrite: bool,
    extract_images: bool,
    generate: TextGenerator,
    embed_model: BaseEmbedding,
    image_pipeline: ImagePipeline | None,
    loader: DocumentLoader | None,
) -> IngestionReport:
    report = IngestionReport()

    # Step 1: Load
    documents, unreadable = load_documents(files_dir, loader)
    plan_oversized_splits(documents, temp_dir)

    # Step 2: Catalog gate
    catalog, chunks, images = open_collections(index_dir, embed_model, overwrite)
    if settings.rag.replace_stale_sources and not overwrite:
        derived = [chunks] + ([images] if images is not None else [])
        report.stale_records_removed = remove_stale_sources(documents, [catalog, *derived], catalog)

    gate = process_documents(documents, catalog, generate, skip_exists_check=overwrite)
    report.skipped_sources = len(gate.skip_sources)
    report.failed_sources = len(unreadable) + len(gate.failed_sources)

    report.new_catalog_records = catalog.insert(to_catalog_records(gate.catalog_records))

    # Step 3: Chunk + enrich (skipped sources contribute no chunks)
    remaining = [doc for doc in documents if doc.source not in gate.skip_sources]
    doc_chunks = enrich_chunks(split_documents(remaining), gate.catalog_records)
    report.new_chunks = chunks.insert(to_chunk_records(doc_chunks))

    # Step 4: Images
    if extract_images:
        pipeline = image_pipeline or PopplerImagePipeline()
        images = images or VectorCollection.create(
            settings.rag.images_collection, index_dir, embed_model
        )
        report.new_images = index_images(gate.catalog_records, images, pipeline, index_dir)

    # Step 5: Persist
    catalog.persist()
    chunks.persist()
    if images is not None:
        images.persist()

    return report


def index_images(
    records: list[CatalogRecord],
    images: VectorCollection,
    pipeline: ImagePipeline,
    index_dir: Path,
) -> int:
    """Extract, describe and insert page images of newly catalogued documents."""
    output_dir = index_dir / PAGE_IMAGES_DIR_NAME
    inserted = 0
    for record in records:
        try:
            paths = pipeline.extract_images(Path(record.source), output_dir)
            image_records = build_image_records(paths, record, pipeline)
            inserted += images.insert(to_image_records(image_records))
        except Exception:
            logger.exception(f"Error indexing images of {record.source}")
    logger.info(f"Indexed {inserted} images")
    return inserted


def cleanup_temp_dir(temp_dir: Path) -> None:
    """Remove the run's scratch directory; failures are logged, not raised."""
    try:
        shutil.rmtree(temp_dir)
        logger.info(f"Cleaned up temporary directory {temp_dir}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Error cleaning up temporary directory {temp_dir}: {e}")


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main(argv: list[str] | None = None) -> IngestionReport:
    import argparse

    parser = argparse.ArgumentParser(description="Index construction documents for search")
    parser.add_argument(
        "--files-dir",
        type=Path,
        required=True,
        help="Directory tree containing the PDF documents",
    )
    parser.add_argument(
        "--index-dir",
        type=Path,
        default=settings.paths.index_dir,
        help=f"Where collections are stored (default: {settings.paths.index_dir})",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Drop existing collections and rebuild from scratch",
    )
    parser.add_argument(
        "--extract-images",
        action="store_true",
        help="Render page images and index them (requires the images extra and poppler)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level)
    configure_ssl()
    return run_ingestion(
        files_dir=args.files_dir,
        index_dir=args.index_dir,
        overwrite=args.overwrite,
        extract_images=args.extract_images or None,
    )


if __name__ == "__main__":
    main()
