"""Frozen-policy evaluation."""

from .inference import (
    EvaluationResult,
    create_inference_agent,
    compute_evaluation_statistics,
    run_evaluation,
    export_evaluation_results,
)

__all__ = [
    "EvaluationResult",
    "create_inference_agent",
    "compute_evaluation_statistics",
    "run_evaluation",
    "export_evaluation_results",
]
