#!/usr/bin/env python3
"""
Build the Pinecone index from the regulatory_documents table.

Reads stored CFR sections page by page, embeds them with the configured
embedding model and upserts them with the metadata the search layer reads
back (document_id, title, content, cfr_title, cfr_part, cfr_section, source_url).

Usage:
    python scripts/index_regulations.py              # Index everything
    python scripts/index_regulations.py --dry-run    # Count documents only
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment before settings are read
load_dotenv(Path(__file__).parent.parent / ".env")

from services.database import close_database, init_database, list_regulatory_documents  # noqa: E402
from services.embeddings import get_embeddings  # noqa: E402
from services.models import RetrievedDocument  # noqa: E402
from services.pinecone_client import init_pinecone, upsert_vectors  # noqa: E402

logger = logging.getLogger("index_regulations")

PAGE_SIZE = 200
BATCH_SIZE = 20
METADATA_CONTENT_CHARS = 1000  # Pinecone metadata size limit


def to_vector(document: RetrievedDocument, embedding: list[float]) -> dict:
    return {
        "id": f"doc-{document.id}",
        "values": embedding,
        "metadata": {
            "document_id": document.id,
            "title": document.title,
            "content": document.content[:METADATA_CONTENT_CHARS],
            "cfr_title": document.cfr_title,
            "cfr_part": document.cfr_part,
            "cfr_section": document.cfr_section,
            "source_url": document.source_url,
        },
    }


async def index_documents(dry_run: bool = False) -> int:
    """Embed and upsert every stored document. Returns the number indexed."""
    await init_database()
    if not dry_run:
        await init_pinecone(create_missing=True)

    indexed = 0
    offset = 0
    try:
        while True:
            documents = await list_regulatory_documents(limit=PAGE_SIZE, offset=offset)
            if not documents:
                break
            offset += len(documents)

            if dry_run:
                indexed += len(documents)
                continue

            for i in range(0, len(documents), BATCH_SIZE):
                batch = documents[i:i + BATCH_SIZE]
                try:
                    embeddings = await get_embeddings([doc.content for doc in batch])
                except Exception as e:
                    logger.error(f"Skipping batch at offset {offset - len(documents) + i}: {e}")
                    continue

                await upsert_vectors([to_vector(doc, emb) for doc, emb in zip(batch, embeddings)])
                indexed += len(batch)
                logger.info(f"Upserted {indexed} vectors")
    finally:
        await close_database()

    return indexed


def main():
    parser = argparse.ArgumentParser(description="Index regulatory documents into Pinecone")
    parser.add_argument("--dry-run", action="store_true", help="Count documents without indexing")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    count = asyncio.run(index_documents(dry_run=args.dry_run))
    if args.dry_run:
        print(f"{count} documents would be indexed")
    else:
        print(f"\nDone! Indexed {count} documents.")
    return 0 if count or args.dry_run else 1


if __name__ == "__main__":
    sys.exit(main())
