"""
Benchmark and model comparison schemas.
"""

from pydantic import BaseModel
from typing import Dict, List, Literal, Optional


ModelProvider = Literal["openai", "anthropic", "google", "xai", "deepseek", "meta"]
BenchmarkCategory = Literal["coding", "math", "reasoning", "knowledge", "multimodal"]


class Pricing(BaseModel):
    """USD per one million tokens."""
    input: float
    output: float


class AIModel(BaseModel):
    id: str
    name: str
    provider: ModelProvider
    context_window: int
    max_output: int
    pricing: Pricing
    capabilities: List[str]
    release_date: str
    strengths: List[str]
    weaknesses: List[str]


class Benchmark(BaseModel):
    id: str
    name: str
    full_name: str
    category: BenchmarkCategory
    description: str
    difficulty: Literal["easy", "medium", "hard", "expert", "frontier"]
    human_baseline: Optional[float] = None
    max_score: float = 100


class ModelScore(BaseModel):
    model_id: str
    model_name: str
    provider: ModelProvider
    benchmark_id: str
    score: float
    rank: int
    measured_at: str


class UseCase(BaseModel):
    id: str
    name: str
    description: str
    recommended_model: str
    reason: str
    key_benchmarks: List[str]
    alternatives: List[str]


class LeaderboardEntry(BaseModel):
    model_id: str
    model_name: str
    provider: ModelProvider
    avg_score: float
    benchmark_count: int
    rank: int


class ModelComparison(BaseModel):
    models: List[str]
    benchmarks: List[str]
    # benchmark id -> model id -> score
    scores: Dict[str, Dict[str, float]]
    winner: str
    price_performance_winner: str


class CompareRequest(BaseModel):
    models: List[str]
    benchmarks: List[str] = []


class CostEstimate(BaseModel):
    model_id: str
    input_tokens: int
    output_tokens: int
    cost: float


class Recommendation(BaseModel):
    use_case: UseCase
    model: Optional[AIModel] = None
    alternatives: List[AIModel] = []
