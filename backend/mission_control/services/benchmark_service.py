"""
Benchmark comparison engine over the static score tables.
"""

from typing import Dict, List, Optional, Sequence

from ..schemas.benchmark import (
    AIModel,
    Benchmark,
    LeaderboardEntry,
    ModelComparison,
    ModelScore,
    Recommendation,
    UseCase,
)
from .benchmark_data import BENCHMARKS, MODELS, SCORES, USE_CASES

TOKENS_PER_PRICE_UNIT = 1_000_000


class BenchmarkEngine:
    """Lookups, leaderboards, comparisons and cost estimates."""

    def __init__(
        self,
        models: Sequence[AIModel] = MODELS,
        benchmarks: Sequence[Benchmark] = BENCHMARKS,
        scores: Sequence[ModelScore] = SCORES,
        use_cases: Sequence[UseCase] = USE_CASES,
    ):
        self.models = list(models)
        self.benchmarks = list(benchmarks)
        self.scores = list(scores)
        self.use_cases = list(use_cases)

    def list_models(self, provider: Optional[str] = None) -> List[AIModel]:
        if not provider:
            return list(self.models)
        return [m for m in self.models if m.provider == provider]

    def list_benchmarks(self, category: Optional[str] = None) -> List[Benchmark]:
        if not category:
            return list(self.benchmarks)
        return [b for b in self.benchmarks if b.category == category]

    def get_model(self, model_id: str) -> Optional[AIModel]:
        return next((m for m in self.models if m.id == model_id), None)

    def get_benchmark(self, benchmark_id: str) -> Optional[Benchmark]:
        return next((b for b in self.benchmarks if b.id == benchmark_id), None)

    def get_model_scores(self, model_id: str) -> List[ModelScore]:
        return [s for s in self.scores if s.model_id == model_id]

    def get_benchmark_leaderboard(self, benchmark_id: str) -> List[ModelScore]:
        """Scores on one benchmark, best first."""
        return sorted(
            (s for s in self.scores if s.benchmark_id == benchmark_id),
            key=lambda s: s.score,
            reverse=True,
        )

    def overall_leaderboard(self) -> List[LeaderboardEntry]:
        """Models ranked by their average score across every benchmark they were measured on."""
        return self._rank(self.scores)

    def get_category_leaderboard(self, category: str) -> List[LeaderboardEntry]:
        benchmark_ids = {b.id for b in self.benchmarks if b.category == category}
        return self._rank([s for s in self.scores if s.benchmark_id in benchmark_ids])

    def _rank(self, scores: Sequence[ModelScore]) -> List[LeaderboardEntry]:
        totals: Dict[str, dict] = {}
        for score in scores:
            entry = totals.setdefault(score.model_id, {
                "total": 0.0,
                "count": 0,
                "name": score.model_name,
                "provider": score.provider,
            })
            entry["total"] += score.score
            entry["count"] += 1

        ordered = sorted(
            totals.items(),
            key=lambda item: item[1]["total"] / item[1]["count"],
            reverse=True,
        )
        return [
            LeaderboardEntry(
                model_id=model_id,
                model_name=data["name"],
                provider=data["provider"],
                avg_score=data["total"] / data["count"],
                benchmark_count=data["count"],
                rank=index + 1,
            )
            for index, (model_id, data) in enumerate(ordered)
        ]

    def compare(self, model_ids: Sequence[str], benchmark_ids: Optional[Sequence[str]] = None) -> Optional[ModelComparison]:
        """
        Head-to-head comparison of two or more models.

        The overall winner has the most benchmark wins. The price-performance
        winner has the best average score per dollar of average token price;
        missing scores count as zero.
        """
        model_ids = list(model_ids)
        if len(model_ids) < 2:
            return None

        benchmark_ids = list(benchmark_ids) if benchmark_ids else [b.id for b in self.benchmarks]
        lookup = {(s.model_id, s.benchmark_id): s.score for s in self.scores}

        scores: Dict[str, Dict[str, float]] = {}
        win_count: Dict[str, int] = {}
        for benchmark_id in benchmark_ids:
            scores[benchmark_id] = {}
            best = -1.0
            winner = None
            for model_id in model_ids:
                score = lookup.get((model_id, benchmark_id))
                if score is None:
                    continue
                scores[benchmark_id][model_id] = score
                if score > best:
                    best = score
                    winner = model_id
            if winner:
                win_count[winner] = win_count.get(winner, 0) + 1

        overall_winner = max(win_count, key=win_count.get) if win_count else model_ids[0]

        best_ratio = 0.0
        price_performance_winner = model_ids[0]
        for model_id in model_ids:
            model = self.get_model(model_id)
            if model is None:
                continue
            avg_score = sum(bm.get(model_id, 0) for bm in scores.values()) / len(benchmark_ids)
            avg_price = (model.pricing.input + model.pricing.output) / 2
            ratio = avg_score / avg_price if avg_price else 0.0
            if ratio > best_ratio:
                best_ratio = ratio
                price_performance_winner = model_id

        return ModelComparison(
            models=model_ids,
            benchmarks=benchmark_ids,
            scores=scores,
            winner=overall_winner,
            price_performance_winner=price_performance_winner,
        )

    def get_use_case(self, use_case_id: str) -> Optional[UseCase]:
        return next((u for u in self.use_cases if u.id == use_case_id), None)

    def recommend_model(self, use_case_id: str) -> Optional[Recommendation]:
        use_case = self.get_use_case(use_case_id)
        if use_case is None:
            return None
        return Recommendation(
            use_case=use_case,
            model=self.get_model(use_case.recommended_model),
            alternatives=[m for m in (self.get_model(a) for a in use_case.alternatives) if m],
        )

    def calculate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        """USD cost of a call; 0 for unknown models."""
        model = self.get_model(model_id)
        if model is None:
            return 0.0
        return (model.pricing.input * input_tokens + model.pricing.output * output_tokens) / TOKENS_PER_PRICE_UNIT
