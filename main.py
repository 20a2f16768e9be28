import os
import asyncio
import json
import pandas as pd
import csv
from typing import List, Optional
import sys
from loguru import logger

from parcel_locator.config import INPUT_CSV, OUTPUT_CSV, REQUEST_BATCH_SIZE, LOG_LEVEL
from parcel_locator.errors import PipelineFailure
from parcel_locator.models import LocalizationInput, LocalizationRequest, LocalizationResult, SearchMode, UserHints
from parcel_locator.pipeline import LocalizationPipeline, batch_iter, build_default_pipeline

OUTPUT_COLUMNS = [
    "id", "status", "confidence", "best_lat", "best_lng", "best_address",
    "expand_radius", "dvf_density", "reason", "explanation",
]


def load_requests_from_csv(file_path: str, nrows: int = None) -> List[LocalizationRequest]:
    """Load localization requests from CSV (columns id, text, url, images, mode, hints)."""
    df = pd.read_csv(file_path, nrows=nrows, dtype=str)
    requests = []
    for _, row in df.iterrows():
        # Helper to safely extract values from pandas Series, converting NaN to None
        def safe_get(col):
            if col not in row.index:
                return None
            val = row[col]
            if pd.isna(val):
                return None
            return str(val).strip() or None

        images = [ref.strip() for ref in (safe_get("images") or "").split("|") if ref.strip()]

        hints_data = {}
        raw_hints = safe_get("hints")
        if raw_hints:
            try:
                hints_data = json.loads(raw_hints)
            except json.JSONDecodeError as e:
                logger.warning(f"⚠️ Ignoring malformed hints for row {safe_get('id')}: {e}")

        try:
            mode = SearchMode(safe_get("mode") or SearchMode.ADDRESS.value)
        except ValueError:
            mode = SearchMode.ADDRESS

        inp = LocalizationInput(
            text=safe_get("text"),
            url=safe_get("url"),
            image_refs=images,
            hints=UserHints.from_dict(hints_data),
            mode=mode,
        )
        request_id = safe_get("id")
        requests.append(LocalizationRequest(input=inp, id=request_id) if request_id else LocalizationRequest(input=inp))
    return requests


async def process_request(pipeline: LocalizationPipeline, request: LocalizationRequest) -> Optional[LocalizationResult]:
    """
    Run one request through the pipeline.

    Returns:
        LocalizationResult, or None when the pipeline failed internally.
    """
    try:
        return await pipeline.run(request)
    except PipelineFailure as e:
        logger.error(f"❌ Request {request.id} failed: {e}")
        return None


def result_row(request: LocalizationRequest, result: Optional[LocalizationResult]) -> list:
    if result is None:
        return [request.id, "error", "", "", "", "", "", "", "PipelineFailure", ""]
    best = result.best_candidate
    suggestions = result.fallback_suggestions
    return [
        request.id,
        result.status.value,
        round(result.confidence, 2),
        best.candidate.lat if best else "",
        best.candidate.lng if best else "",
        (best.candidate.address or "") if best else "",
        suggestions.expand_radius if suggestions and suggestions.expand_radius is not None else "",
        suggestions.dvf_density if suggestions and suggestions.dvf_density is not None else "",
        result.reason or "",
        result.explanation,
    ]


async def main():
    """
    Orchestrate the batch localization run.

    - Loads requests from the input CSV.
    - Runs each batch of requests concurrently through the pipeline.
    - Writes results incrementally to the output CSV.
    """
    # Initialize logs
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=LOG_LEVEL, format="<green>{time:HH:mm:ss}</green> | <level>{message}</level>")

    all_requests = load_requests_from_csv(INPUT_CSV)

    # Initialize output file
    output_path = OUTPUT_CSV
    if os.path.exists(output_path):
        os.remove(output_path)
    with open(output_path, "w", newline="") as f:
        csv.writer(f).writerow(OUTPUT_COLUMNS)

    pipeline = build_default_pipeline()
    try:
        for start_idx, batch_requests in batch_iter(all_requests, REQUEST_BATCH_SIZE):
            logger.info(f"Processing rows {start_idx}..{start_idx + len(batch_requests) - 1}")

            results = await asyncio.gather(*[process_request(pipeline, r) for r in batch_requests])

            with open(output_path, "a", newline="") as f:
                writer = csv.writer(f)
                for request, result in zip(batch_requests, results):
                    writer.writerow(result_row(request, result))
    finally:
        # Close HTTP and OpenAI sessions to prevent unclosed connector warnings
        await pipeline.close()


if __name__ == "__main__":
    asyncio.run(main())
