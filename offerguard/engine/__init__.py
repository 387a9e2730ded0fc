"""offerguard.engine: the pure guardrail evaluator and its sandbox entry point."""

from offerguard.engine.evaluate import ACCEPTED, DVP_LEG_COUNT, Verdict, enforce, evaluate

__all__ = [
    "ACCEPTED",
    "DVP_LEG_COUNT",
    "Verdict",
    "enforce",
    "evaluate",
]
