"""Receipt OCR: recognize text and guess the total amount."""

from __future__ import annotations

import asyncio
import io
import re
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterator, Optional, Protocol

from pydantic import BaseModel

from claimflow.errors import ExtractionFailed, InvalidImage
from claimflow.logging_config import get_logger

logger = get_logger(__name__)

AMOUNT_PATTERN = re.compile(r"\$?\d+\.\d{2}")

_IMAGE_SIGNATURES: tuple[bytes, ...] = (
    b"\xff\xd8\xff",          # JPEG
    b"\x89PNG\r\n\x1a\n",     # PNG
    b"GIF87a",
    b"GIF89a",
    b"BM",                    # BMP
    b"II*\x00",               # TIFF little-endian
    b"MM\x00*",               # TIFF big-endian
)


def looks_like_image(data: bytes) -> bool:
    if data.startswith(_IMAGE_SIGNATURES):
        return True
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def suggest_amount(text: str) -> Optional[str]:
    """Return the last currency-looking amount in ``text``.

    Receipts print the grand total after the line items, so the last match
    is the best guess.
    """
    matches = AMOUNT_PATTERN.findall(text)
    return matches[-1] if matches else None


class OcrResult(BaseModel):
    raw_text: str
    suggested_amount: Optional[str] = None

    @property
    def suggested_value(self) -> Optional[Decimal]:
        if self.suggested_amount is None:
            return None
        try:
            return Decimal(self.suggested_amount.lstrip("$"))
        except InvalidOperation:
            return None


class RecognitionEngine(Protocol):
    def recognize(self, image_bytes: bytes) -> str: ...

    def close(self) -> None: ...


class TesseractEngine:
    """One Tesseract run over a single image."""

    def __init__(self, language: str = "eng", timeout: float = 30.0, tesseract_cmd: str = "") -> None:
        import pytesseract

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self._tesseract = pytesseract
        self._language = language
        self._timeout = timeout
        self._image = None

    def recognize(self, image_bytes: bytes) -> str:
        from PIL import Image

        self._image = Image.open(io.BytesIO(image_bytes))
        # pytesseract kills the tesseract process once the timeout passes
        return self._tesseract.image_to_string(self._image, lang=self._language, timeout=self._timeout)

    def close(self) -> None:
        if self._image is not None:
            self._image.close()
            self._image = None


EngineFactory = Callable[[], RecognitionEngine]


class OcrExtractor:
    """Runs receipt recognition off the event loop, one engine per call.

    Recognition gets its own thread pool so a burst of extractions never
    occupies the loop's default executor used by file and mail I/O.
    """

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        timeout: float = 30.0,
        language: str = "eng",
        tesseract_cmd: str = "",
        max_workers: int = 2,
    ) -> None:
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ocr")
        self._engine_factory = engine_factory or (
            lambda: TesseractEngine(language=language, timeout=timeout, tesseract_cmd=tesseract_cmd)
        )

    async def extract(self, image_bytes: bytes, content_type: Optional[str] = None) -> OcrResult:
        """Recognize ``image_bytes`` and suggest a total.

        Raises ``InvalidImage`` before any engine is created when the input is
        empty or not an image, and ``ExtractionFailed`` when recognition errors
        out or does not finish within the timeout.
        """
        self._validate(image_bytes, content_type)

        try:
            loop = asyncio.get_running_loop()
            text = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._recognize, image_bytes),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("receipt_extraction_timeout", timeout=self._timeout)
            raise ExtractionFailed() from exc
        except Exception as exc:
            logger.error("receipt_extraction_failed", error=str(exc))
            raise ExtractionFailed() from exc

        result = OcrResult(raw_text=text, suggested_amount=suggest_amount(text))
        logger.info(
            "receipt_extracted",
            chars=len(text),
            suggested_amount=result.suggested_amount,
        )
        return result

    def shutdown(self) -> None:
        """Stop the recognition pool; queued work is dropped."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("ocr_pool_stopped")

    @staticmethod
    def _validate(image_bytes: bytes, content_type: Optional[str]) -> None:
        if not image_bytes:
            raise InvalidImage("No image provided")
        if content_type is not None and not content_type.startswith("image/"):
            raise InvalidImage("Only image files are allowed")
        if not looks_like_image(image_bytes):
            raise InvalidImage("Only image files are allowed")

    @contextmanager
    def _engine(self) -> Iterator[RecognitionEngine]:
        engine = self._engine_factory()
        try:
            yield engine
        finally:
            try:
                engine.close()
            except Exception as exc:
                logger.warning("ocr_engine_close_failed", error=str(exc))

    def _recognize(self, image_bytes: bytes) -> str:
        # Runs in a worker thread; the engine is released here even when the
        # awaiting caller has already given up on it.
        with self._engine() as engine:
            return engine.recognize(image_bytes)
