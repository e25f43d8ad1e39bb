"""
Static model, benchmark and score tables (January 2025 snapshot).
"""

from ..schemas.benchmark import AIModel, Benchmark, ModelScore, Pricing, UseCase


MODELS = [
    AIModel(
        id="gpt-5",
        name="GPT-5",
        provider="openai",
        context_window=256000,
        max_output=32768,
        pricing=Pricing(input=5.0, output=15.0),
        capabilities=["text", "vision", "audio", "video", "code", "tools"],
        release_date="2025-01",
        strengths=["Multimodal", "Reasoning", "Math", "Code"],
        weaknesses=["Cost", "Latency"],
    ),
    AIModel(
        id="o3",
        name="o3",
        provider="openai",
        context_window=200000,
        max_output=100000,
        pricing=Pricing(input=10.0, output=40.0),
        capabilities=["text", "vision", "code", "tools", "extended_thinking"],
        release_date="2024-12",
        strengths=["Deep reasoning", "Math", "Science", "ARC-AGI"],
        weaknesses=["Very expensive", "Slow", "No audio/video"],
    ),
    AIModel(
        id="claude-opus-4-5",
        name="Claude Opus 4.5",
        provider="anthropic",
        context_window=200000,
        max_output=32768,
        pricing=Pricing(input=15.0, output=75.0),
        capabilities=["text", "vision", "code", "tools", "extended_thinking"],
        release_date="2025-02",
        strengths=["Coding", "Writing", "Analysis", "Long context"],
        weaknesses=["No web search", "No audio", "Expensive"],
    ),
    AIModel(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        provider="google",
        context_window=2000000,
        max_output=65536,
        pricing=Pricing(input=1.25, output=5.0),
        capabilities=["text", "vision", "audio", "video", "code", "tools", "web_search"],
        release_date="2025-01",
        strengths=["Massive context", "Multimodal", "Cost effective", "Real-time"],
        weaknesses=["Less consistent", "Weaker reasoning"],
    ),
    AIModel(
        id="deepseek-r1",
        name="DeepSeek R1",
        provider="deepseek",
        context_window=64000,
        max_output=8192,
        pricing=Pricing(input=0.55, output=2.19),
        capabilities=["text", "code", "tools", "extended_thinking"],
        release_date="2025-01",
        strengths=["Very cheap", "Good math", "Open weights"],
        weaknesses=["No multimodal", "Smaller context"],
    ),
    AIModel(
        id="grok-4",
        name="Grok 4",
        provider="xai",
        context_window=128000,
        max_output=32768,
        pricing=Pricing(input=3.0, output=15.0),
        capabilities=["text", "vision", "code", "tools", "web_search"],
        release_date="2025-01",
        strengths=["Real-time info", "Math", "Humor"],
        weaknesses=["Limited availability"],
    ),
]

BENCHMARKS = [
    Benchmark(id="swe-bench", name="SWE-bench", full_name="Software Engineering Benchmark", category="coding",
              description="Fix real GitHub issues", difficulty="expert", human_baseline=100, max_score=100),
    Benchmark(id="aime-2025", name="AIME 2025", full_name="American Invitational Mathematics Examination", category="math",
              description="High school math competition", difficulty="expert", human_baseline=50, max_score=100),
    Benchmark(id="math-500", name="Math 500", full_name="MATH 500 Benchmark", category="math",
              description="500 challenging math problems", difficulty="hard", max_score=100),
    Benchmark(id="gpqa-diamond", name="GPQA Diamond", full_name="Graduate-Level Q&A Diamond", category="reasoning",
              description="PhD-level science questions", difficulty="frontier", human_baseline=34, max_score=100),
    Benchmark(id="arc-agi", name="ARC-AGI", full_name="Abstraction and Reasoning Corpus", category="reasoning",
              description="Abstract reasoning puzzles", difficulty="frontier", human_baseline=85, max_score=100),
    Benchmark(id="mmlu-pro", name="MMLU Pro", full_name="Massive Multitask Language Understanding Pro", category="knowledge",
              description="Enhanced knowledge test", difficulty="hard", human_baseline=89, max_score=100),
    Benchmark(id="mmmu", name="MMMU", full_name="Massive Multi-discipline Multimodal Understanding", category="multimodal",
              description="Expert multimodal understanding", difficulty="hard", human_baseline=88, max_score=100),
]


def _score(model_id, model_name, provider, benchmark_id, score, rank, measured_at="2025-01"):
    return ModelScore(
        model_id=model_id,
        model_name=model_name,
        provider=provider,
        benchmark_id=benchmark_id,
        score=score,
        rank=rank,
        measured_at=measured_at,
    )


SCORES = [
    _score("gpt-5", "GPT-5", "openai", "aime-2025", 100, 1),
    _score("gpt-5", "GPT-5", "openai", "swe-bench", 72.8, 2),
    _score("gpt-5", "GPT-5", "openai", "gpqa-diamond", 78.3, 2),
    _score("gpt-5", "GPT-5", "openai", "math-500", 93.1, 3),
    _score("o3", "o3", "openai", "gpqa-diamond", 87.7, 1),
    _score("o3", "o3", "openai", "arc-agi", 87.5, 1, "2024-12"),
    _score("o3", "o3", "openai", "mmlu-pro", 92.3, 1),
    _score("o3", "o3", "openai", "swe-bench", 71.7, 3),
    _score("claude-opus-4-5", "Claude Opus 4.5", "anthropic", "swe-bench", 75.2, 1),
    _score("claude-opus-4-5", "Claude Opus 4.5", "anthropic", "aime-2025", 93.3, 3),
    _score("claude-opus-4-5", "Claude Opus 4.5", "anthropic", "gpqa-diamond", 74.8, 4),
    _score("gemini-2.5-pro", "Gemini 2.5 Pro", "google", "math-500", 95.2, 1),
    _score("gemini-2.5-pro", "Gemini 2.5 Pro", "google", "mmmu", 82.1, 1),
    _score("gemini-2.5-pro", "Gemini 2.5 Pro", "google", "mmlu-pro", 88.5, 3),
    _score("deepseek-r1", "DeepSeek R1", "deepseek", "math-500", 93.8, 2),
    _score("deepseek-r1", "DeepSeek R1", "deepseek", "aime-2025", 91.2, 4),
    _score("grok-4", "Grok 4", "xai", "aime-2025", 96.7, 2),
    _score("grok-4", "Grok 4", "xai", "math-500", 94.2, 2),
]

USE_CASES = [
    UseCase(
        id="coding",
        name="Complex Software Development",
        description="Building production apps, fixing bugs, code review",
        recommended_model="claude-opus-4-5",
        reason="Highest SWE-bench score (75.2%)",
        key_benchmarks=["swe-bench"],
        alternatives=["gpt-5", "o3"],
    ),
    UseCase(
        id="math",
        name="Advanced Mathematics",
        description="Competition math, proofs, calculations",
        recommended_model="gpt-5",
        reason="Perfect AIME 2025 score (100%)",
        key_benchmarks=["aime-2025", "math-500"],
        alternatives=["o3", "gemini-2.5-pro"],
    ),
    UseCase(
        id="reasoning",
        name="PhD-Level Science",
        description="Graduate-level science questions",
        recommended_model="o3",
        reason="Highest GPQA Diamond (87.7%)",
        key_benchmarks=["gpqa-diamond", "arc-agi"],
        alternatives=["gpt-5", "claude-opus-4-5"],
    ),
    UseCase(
        id="long-context",
        name="Long Document Analysis",
        description="Books, legal docs, research papers",
        recommended_model="gemini-2.5-pro",
        reason="2M context window, cost effective",
        key_benchmarks=["mmmu"],
        alternatives=["claude-opus-4-5"],
    ),
    UseCase(
        id="budget",
        name="Budget Applications",
        description="High volume, cost-sensitive",
        recommended_model="deepseek-r1",
        reason="~1/20th the cost of GPT-5",
        key_benchmarks=["math-500"],
        alternatives=["gemini-2.5-pro"],
    ),
]
