"""DealScope PDF Parsing Service — PyMuPDF text + table extraction to Markdown."""

from __future__ import annotations

import fitz  # PyMuPDF
import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

# Below this many characters a PDF is treated as scanned / rasterised and
# must be read from its page images instead.
MIN_TEXT_CHARS = 200


class ParsedDocument(BaseModel):
    """Complete parsed PDF output."""

    full_markdown: str
    page_count: int
    text_chars: int

    @property
    def has_text_layer(self) -> bool:
        return self.text_chars >= MIN_TEXT_CHARS


def parse_pdf(pdf_bytes: bytes) -> ParsedDocument:
    """Extract text and tables from a PDF, returning structured Markdown.

    Pitch decks put most numbers in tables, so tables are rendered to
    Markdown next to the page text.
    """
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        page_count = len(doc)
        text_chars = 0
        markdown_parts: list[str] = []

        for page_idx in range(page_count):
            page = doc[page_idx]
            page_num = page_idx + 1
            text = (page.get_text("text") or "").strip()
            text_chars += len(text)

            tables_md: list[str] = []
            try:
                for table in page.find_tables():
                    md = table.to_markdown()
                    if md and md.strip():
                        tables_md.append(md.strip())
            except Exception:
                logger.warning("Table extraction failed", page=page_num, exc_info=True)

            page_md = f"## Slide {page_num}\n\n{text}"
            if tables_md:
                page_md += "\n\n### Tables\n\n" + "\n\n".join(tables_md)
            markdown_parts.append(page_md)
    finally:
        doc.close()

    full_markdown = "\n\n---\n\n".join(markdown_parts)

    logger.info(
        "PDF parsed",
        pages=page_count,
        text_chars=text_chars,
        chars=len(full_markdown),
    )

    return ParsedDocument(
        full_markdown=full_markdown,
        page_count=page_count,
        text_chars=text_chars,
    )
