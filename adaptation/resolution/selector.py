from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .context import Context
from .errors import NotFoundError, PredicateError
from .models import SelectionResult, Variant
from .predicates import Predicate, matches, score

_logger = logging.getLogger("resolution.selector")


def _default_result(
    subject_id: str,
    variants: Mapping[str, Variant],
    default_variant_name: str,
) -> SelectionResult:
    if not variants and not default_variant_name:
        raise NotFoundError(f"subject={subject_id} has no variants and no default")
    default = variants.get(default_variant_name)
    return SelectionResult(
        subject_id=subject_id,
        variant_name=default_variant_name,
        payload=default.payload if default is not None else None,
        matched_predicate=None,
        score=0,
        from_cache=False,
        is_default=True,
    )


def select(
    variants: Mapping[str, Variant],
    context: Context,
    *,
    default_variant_name: str,
    subject_id: str = "",
    strict: bool = False,
) -> SelectionResult:
    """
    Pick the highest-scoring variant whose predicate matches `context`.

    Variants are visited in registration order and only a strictly higher score
    replaces the current best, so ties go to the earliest registered variant.
    When nothing matches the default variant is returned with
    `matched_predicate=None`.
    """
    best: Variant | None = None
    best_score = -1
    try:
        for variant in variants.values():
            if not matches(variant.predicate, context):
                continue
            s = score(variant.predicate)
            if s > best_score:
                best, best_score = variant, s
    except Exception as e:
        if strict:
            raise PredicateError(f"subject={subject_id} evaluation failed: {e}") from e
        _logger.exception("predicate evaluation failed for subject=%s; using default", subject_id)
        return _default_result(subject_id, variants, default_variant_name)

    if best is None:
        return _default_result(subject_id, variants, default_variant_name)

    return SelectionResult(
        subject_id=subject_id,
        variant_name=best.name,
        payload=best.payload,
        matched_predicate=best.predicate if best.predicate is not None else Predicate(),
        score=best_score,
        from_cache=False,
        is_default=False,
    )


def explain(
    variants: Mapping[str, Variant],
    context: Context,
    *,
    default_variant_name: str,
    subject_id: str = "",
) -> dict[str, Any]:
    result = select(
        variants,
        context,
        default_variant_name=default_variant_name,
        subject_id=subject_id,
        strict=True,
    )
    rows: list[dict[str, Any]] = []
    for variant in variants.values():
        matched = matches(variant.predicate, context)
        rows.append(
            {
                "name": variant.name,
                "trigger": variant.predicate.to_trigger() if variant.predicate is not None else None,
                "matched": matched,
                "score": score(variant.predicate) if matched else None,
                "selected": variant.name == result.variant_name and not result.is_default,
            }
        )
    if result.is_default:
        reason = "no variant matched; fell through to default"
    else:
        reason = "highest specificity among matching variants"
    return {
        "subject_id": subject_id,
        "selected": result.variant_name,
        "is_default": result.is_default,
        "score": result.score,
        "reason": reason,
        "candidates": rows,
    }
