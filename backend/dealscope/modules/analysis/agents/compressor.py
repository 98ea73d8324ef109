"""DealScope Compression Guard — keeps document payloads under the size limit.

Strategies (selected by mime type, each a fixed ladder):
  image/*          -> JPEG re-encode, shrinking max dimension + quality per step
  application/pdf  -> lossless rewrite, then page rasterisation at falling DPI
  anything else    -> no strategy, payload is returned untouched

Every ladder is walked step by step and stops at the first result under the
limit. If the ladder is exhausted, the smallest result is returned with
``exceeded=True``. No randomness, so identical input yields identical bytes.
"""

from __future__ import annotations

import io
from collections.abc import Iterator

import fitz  # PyMuPDF
import structlog
from PIL import Image

from dealscope.modules.analysis.agent_schemas import CompressionResult

logger = structlog.get_logger()

# (max_dimension_px, jpeg_quality)
IMAGE_LADDER: tuple[tuple[int, int], ...] = (
    (2048, 85),
    (1600, 75),
    (1280, 65),
    (1024, 55),
    (800, 45),
    (640, 35),
)

# (dpi, jpeg_quality) for page rasterisation
PDF_RASTER_LADDER: tuple[tuple[int, int], ...] = (
    (150, 75),
    (110, 60),
    (80, 45),
    (60, 35),
)

_PDF_SAVE_OPTIONS = {"garbage": 4, "deflate": True, "no_new_id": True}


def output_mime_type(method: str, mime_type: str) -> str:
    """Mime type of the bytes a compression step produced."""
    # Image steps re-encode to JPEG; PDF steps still produce a PDF
    if method.startswith("image-jpeg"):
        return "image/jpeg"
    return mime_type


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white so the image can be saved as JPEG."""
    if img.mode in ("RGBA", "P", "LA"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


class CompressionGuard:
    """Adaptive, bounded, deterministic payload compression."""

    agent_name = "CompressionGuard"

    def __init__(
        self,
        image_ladder: tuple[tuple[int, int], ...] = IMAGE_LADDER,
        pdf_raster_ladder: tuple[tuple[int, int], ...] = PDF_RASTER_LADDER,
    ) -> None:
        self.image_ladder = image_ladder
        self.pdf_raster_ladder = pdf_raster_ladder

    def compress(self, data: bytes, mime_type: str, limit: int) -> CompressionResult:
        original_size = len(data)
        if original_size <= limit:
            return self._result(data, "none", original_size, limit, mime_type)

        strategy = self._strategy_for(mime_type)
        if strategy is None:
            logger.info(
                "CompressionGuard: no strategy for mime type",
                mime_type=mime_type,
                size=original_size,
                limit=limit,
            )
            return self._result(data, "none", original_size, limit, mime_type)

        best_data, best_method = data, "none"
        try:
            for method, candidate in strategy(data):
                logger.debug(
                    "CompressionGuard: step",
                    method=method,
                    size=len(candidate),
                    limit=limit,
                )
                if len(candidate) < len(best_data):
                    best_data, best_method = candidate, method
                if len(best_data) <= limit:
                    break
        except Exception as e:
            # Corrupt payloads count as "no further reduction"
            logger.warning(
                "CompressionGuard: strategy failed",
                mime_type=mime_type,
                error=str(e),
            )

        result = self._result(best_data, best_method, original_size, limit, mime_type)
        logger.info(
            "CompressionGuard: compressed",
            mime_type=mime_type,
            method=result.method,
            output_mime_type=result.mime_type,
            original_size=original_size,
            compressed_size=result.compressed_size,
            ratio=round(result.ratio, 2),
            exceeded=result.exceeded,
        )
        return result

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def _strategy_for(self, mime_type: str):
        mime = (mime_type or "").lower()
        if mime.startswith("image/"):
            return self._image_steps
        if mime == "application/pdf":
            return self._pdf_steps
        return None

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _image_steps(self, data: bytes) -> Iterator[tuple[str, bytes]]:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            source = _to_rgb(img)

        for max_dim, quality in self.image_ladder:
            step = source.copy()
            step.thumbnail((max_dim, max_dim), Image.LANCZOS)
            buffer = io.BytesIO()
            step.save(buffer, format="JPEG", quality=quality, optimize=True)
            yield f"image-jpeg-q{quality}-{max_dim}", buffer.getvalue()

    # ------------------------------------------------------------------
    # PDFs
    # ------------------------------------------------------------------

    def _pdf_steps(self, data: bytes) -> Iterator[tuple[str, bytes]]:
        src = fitz.open(stream=data, filetype="pdf")
        try:
            if src.page_count == 0:
                raise ValueError("PDF has no pages")
            src.set_metadata({})
            yield "pdf-rewrite", src.tobytes(**_PDF_SAVE_OPTIONS)

            for dpi, quality in self.pdf_raster_ladder:
                yield f"pdf-raster-{dpi}dpi-q{quality}", self._rasterize(src, dpi, quality)
        finally:
            src.close()

    @staticmethod
    def _rasterize(src: fitz.Document, dpi: int, quality: int) -> bytes:
        out = fitz.open()
        try:
            for page in src:
                pix = page.get_pixmap(dpi=dpi, alpha=False)
                jpeg = pix.tobytes("jpeg", jpg_quality=quality)
                new_page = out.new_page(width=page.rect.width, height=page.rect.height)
                new_page.insert_image(new_page.rect, stream=jpeg)
            return out.tobytes(**_PDF_SAVE_OPTIONS)
        finally:
            out.close()

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    @staticmethod
    def _result(data: bytes, method: str, original_size: int, limit: int, mime_type: str) -> CompressionResult:
        compressed_size = len(data)
        return CompressionResult(
            data=data,
            method=method,
            mime_type=output_mime_type(method, mime_type),
            original_size=original_size,
            compressed_size=compressed_size,
            ratio=original_size / compressed_size if compressed_size else 1.0,
            exceeded=compressed_size > limit,
        )
