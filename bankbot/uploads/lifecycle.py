"""Lifecycle coordinator for uploaded files.

Two flows, both built on ``staged_upload()`` so the staged copy is released on
every exit path (normal completion, rejected outcome, raised exception):

  scan_and_admit()       stage → poll-to-completion gate → release
  extract_and_release()  stage → OCR text extraction    → release

Neither flow lets a gate or OCR failure escape: those components return typed
results. The only exception that can propagate is an ``OSError`` from staging
itself, which the HTTP layer reports as an internal fault.
"""

from __future__ import annotations

from bankbot.config import Config
from bankbot.extract.ocr import ExtractionResult, OcrClient
from bankbot.gate.client import VerdictClient
from bankbot.gate.poller import scan
from bankbot.models.scan import ScanOutcome
from bankbot.uploads.staging import staged_upload
from bankbot.utils.logger import get_logger

logger = get_logger(__name__)


async def scan_and_admit(
    file_bytes: bytes,
    original_name: str,
    declared_type: str,
    verdict_client: VerdictClient,
    config: Config,
) -> ScanOutcome:
    """Stage, scan and release one upload. Only a CLEAN outcome admits it."""
    async with staged_upload(
        file_bytes, original_name, declared_type, directory=config.staging.directory
    ) as staged:
        outcome = await scan(
            staged,
            verdict_client,
            max_attempts=config.scan_gate.max_attempts,
            poll_interval_s=config.scan_gate.poll_interval_s,
            deadline_s=config.scan_gate.deadline_s,
        )

    logger.info(
        "scan_and_admit_outcome",
        original_name=original_name,
        verdict=outcome.verdict.value,
        reason=outcome.reason,
        attempts=outcome.attempts,
    )
    return outcome


async def extract_and_release(
    file_bytes: bytes,
    original_name: str,
    declared_type: str,
    ocr_client: OcrClient,
    config: Config,
) -> ExtractionResult:
    """Stage, extract text from and release one upload."""
    async with staged_upload(
        file_bytes, original_name, declared_type, directory=config.staging.directory
    ) as staged:
        return await ocr_client.extract(staged)
