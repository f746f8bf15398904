from typing import Callable, Dict

from ..steps import Pipeline
from .code_review import build_code_review_pipeline
from .commit import build_commit_pipeline

PIPELINES: Dict[str, Callable[[], Pipeline]] = {
    "code-review": build_code_review_pipeline,
    "commit": build_commit_pipeline,
}


def get_pipeline(name: str) -> Pipeline:
    """Factory returning the named pipeline's ordered steps."""
    try:
        factory = PIPELINES[name]
    except KeyError:
        raise KeyError(f"unknown pipeline {name!r}; expected one of {sorted(PIPELINES)}") from None
    return factory()


__all__ = ["PIPELINES", "get_pipeline", "build_code_review_pipeline", "build_commit_pipeline"]
