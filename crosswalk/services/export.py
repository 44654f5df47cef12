"""Batch summaries and export renderings (JSON dump, flat CSV rows)."""
import json
from collections import Counter
from typing import Any, Dict, List, Sequence

import pandas as pd

from crosswalk.models.batch import BatchItemResult, BatchJob
from crosswalk.models.results import MatchingStage

CSV_COLUMNS = [
    "itemId",
    "success",
    "processingTimeMs",
    "confidence",
    "error",
    "stage",
    "matchedSku",
]


def summarize_results(results: Sequence[BatchItemResult]) -> Dict[str, Any]:
    """Aggregate statistics over batch item results.

    Returns:
        Dict with totals, match counts, averages, stage/method breakdowns
        and AI tokens used
    """
    resolved = [r.result for r in results if r.success and r.result is not None]
    matched = [r for r in resolved if r.processing.stage != MatchingStage.FAILED]

    stage_counts = Counter(r.processing.stage.value for r in resolved)
    method_counts = Counter(r.processing.method.value for r in matched)

    return {
        "totalItems": len(results),
        "processedItems": sum(1 for r in results if r.success),
        "erroredItems": sum(1 for r in results if not r.success),
        "successfulMatches": len(matched),
        "failedMatches": len(resolved) - len(matched),
        "averageConfidence": (
            round(sum(r.processing.confidence for r in matched) / len(matched), 4)
            if matched
            else 0.0
        ),
        "averageProcessingTimeMs": (
            round(sum(r.processing_time_ms for r in results) / len(results), 1)
            if results
            else 0.0
        ),
        "stageBreakdown": dict(stage_counts),
        "methodBreakdown": dict(method_counts),
        "aiTokensUsed": sum(r.processing.ai_tokens_used or 0 for r in resolved),
        "cacheHits": sum(1 for r in resolved if r.processing.from_cache),
    }


def _row(item: BatchItemResult) -> Dict[str, Any]:
    result = item.result
    return {
        "itemId": item.item_id,
        "success": item.success,
        "processingTimeMs": item.processing_time_ms,
        "confidence": result.confidence if result else 0.0,
        "error": item.error or "",
        "stage": result.stage.value if result else "",
        "matchedSku": (result.matched_sku or "") if result else "",
    }


def export_rows(job: BatchJob) -> List[Dict[str, Any]]:
    """Flat rows in submission order, one per processed item."""
    order = {item.item_id: index for index, item in enumerate(job.items)}
    ordered = sorted(job.results, key=lambda r: order.get(r.item_id, len(order)))
    return [_row(item) for item in ordered]


def export_json(job: BatchJob, indent: int = 2) -> str:
    """Full structured dump of a job, its summary and every result."""
    payload = {
        "job": {
            "id": job.id,
            "status": job.status.value,
            "options": job.options.model_dump(by_alias=False),
            "progress": job.progress.model_dump(),
            "createdAt": job.created_at.isoformat(),
            "startedAt": job.started_at.isoformat() if job.started_at else None,
            "completedAt": job.completed_at.isoformat() if job.completed_at else None,
        },
        "summary": summarize_results(job.results),
        "results": [
            {
                "itemId": item.item_id,
                "success": item.success,
                "attempts": item.attempts,
                "processingTimeMs": item.processing_time_ms,
                "error": item.error,
                "errorCode": item.error_code,
                "result": item.result.to_dict() if item.result else None,
            }
            for item in job.results
        ],
        "errors": [error.model_dump(mode="json") for error in job.errors],
    }
    return json.dumps(payload, indent=indent, ensure_ascii=False)


def export_csv(job: BatchJob) -> str:
    """Delimited rows: itemId, success, processingTimeMs, confidence, error, stage, matchedSku."""
    frame = pd.DataFrame(export_rows(job), columns=CSV_COLUMNS)
    return frame.to_csv(index=False)
