"""Receipts: image storage and OCR total extraction."""

from claimflow.modules.receipts.ocr import OcrExtractor, OcrResult, suggest_amount
from claimflow.modules.receipts.store import LocalReceiptStore

__all__ = ["LocalReceiptStore", "OcrExtractor", "OcrResult", "suggest_amount"]
