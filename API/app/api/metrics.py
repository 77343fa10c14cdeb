from __future__ import annotations

from fastapi import APIRouter

from app.core.tree_metrics import get_tree_metrics

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/tree")
async def tree_metrics():
    """Tree write counts per outcome, failure rate and latency (p50/p95)."""
    return get_tree_metrics()
