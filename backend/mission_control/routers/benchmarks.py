"""
Benchmark and model comparison routes. Read-only over the static tables.
"""

from fastapi import APIRouter, HTTPException, Query, status
from typing import List, Optional

from ..schemas.benchmark import (
    AIModel,
    Benchmark,
    CompareRequest,
    CostEstimate,
    LeaderboardEntry,
    ModelComparison,
    ModelScore,
    Recommendation,
)
from ..services.benchmark_service import BenchmarkEngine


router = APIRouter(prefix="/api/benchmarks", tags=["Benchmarks"])

engine = BenchmarkEngine()


@router.get("/models", response_model=List[AIModel])
async def list_models(provider: Optional[str] = None):
    return engine.list_models(provider)


@router.get("/models/{model_id}", response_model=AIModel)
async def get_model(model_id: str):
    model = engine.get_model(model_id)
    if model is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return model


@router.get("/models/{model_id}/scores", response_model=List[ModelScore])
async def get_model_scores(model_id: str):
    if engine.get_model(model_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return engine.get_model_scores(model_id)


@router.get("", response_model=List[Benchmark])
async def list_benchmarks(category: Optional[str] = None):
    return engine.list_benchmarks(category)


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(category: Optional[str] = None):
    """Average score per model, overall or within one benchmark category."""
    if category:
        return engine.get_category_leaderboard(category)
    return engine.overall_leaderboard()


@router.get("/cost", response_model=CostEstimate)
async def estimate_cost(
    model_id: str,
    input_tokens: int = Query(..., ge=0),
    output_tokens: int = Query(..., ge=0),
):
    if engine.get_model(model_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return CostEstimate(
        model_id=model_id,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost=engine.calculate_cost(model_id, input_tokens, output_tokens),
    )


@router.post("/compare", response_model=ModelComparison)
async def compare_models(request: CompareRequest):
    comparison = engine.compare(request.models, request.benchmarks or None)
    if comparison is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least two known models are required for a comparison"
        )
    return comparison


@router.get("/recommend/{use_case_id}", response_model=Recommendation)
async def recommend_model(use_case_id: str):
    recommendation = engine.recommend_model(use_case_id)
    if recommendation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Use case not found")
    return recommendation


@router.get("/{benchmark_id}", response_model=Benchmark)
async def get_benchmark(benchmark_id: str):
    benchmark = engine.get_benchmark(benchmark_id)
    if benchmark is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Benchmark not found")
    return benchmark


@router.get("/{benchmark_id}/leaderboard", response_model=List[ModelScore])
async def benchmark_leaderboard(benchmark_id: str):
    if engine.get_benchmark(benchmark_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Benchmark not found")
    return engine.get_benchmark_leaderboard(benchmark_id)
