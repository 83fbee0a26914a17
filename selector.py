# selector.py
"""Multi-factor template scoring and prompt-system (A/B cohort) assignment."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from config import (
    AB_TEST_ENABLED, AB_TEST_PERCENTAGE, AB_TEST_USERS, CATEGORY_NAME_KEYWORDS, PROMPT_SYSTEM_DEFAULT
)
from schemas import (
    DocumentType, ExtractionContext, ExtractionOptions, SelectionResult, Template, UserContext
)
from utils import hash_string, log, version_score

PRIORITY_PREFIX = "A -"
PROMPT_SYSTEMS = ("legacy", "managed")


@dataclass(frozen=True)
class ScoringWeights:
    """
    Additive scoring magnitudes. Only their ordering matters:
    category > name corroboration > supplier > user > performance > version.
    """
    category_match: float = 1000
    rejection: float = -1000
    name_phrase: float = 800
    name_abbreviation: float = 700
    supplier_exact: float = 300
    supplier_partial: float = 250
    supplier_wildcard: float = 150
    target_user: float = 200
    target_role: float = 100
    accuracy_multiplier: float = 2
    version_weight: float = 0.1
    priority_name: float = 500


DEFAULT_WEIGHTS = ScoringWeights()


def _name_keyword_bonus(name: str, document_type: DocumentType, weights: ScoringWeights):
    keywords = CATEGORY_NAME_KEYWORDS.get(document_type.value, [])
    lowered = name.lower()
    for position, keyword in enumerate(keywords):
        if re.search(rf"\b{re.escape(keyword)}\b", lowered):
            return weights.name_phrase if position == 0 else weights.name_abbreviation
    return 0.0


def _supplier_bonus(suppliers, supplier_name: Optional[str], weights: ScoringWeights):
    wanted = (supplier_name or "").strip().upper()
    normalized = {s.strip().upper() for s in suppliers}
    if wanted and wanted != "ALL":
        if wanted in normalized:
            return "supplier_exact", weights.supplier_exact
        if any(s != "ALL" and (s in wanted or wanted in s) for s in normalized):
            return "supplier_partial", weights.supplier_partial
    if "ALL" in normalized:
        return "supplier_wildcard", weights.supplier_wildcard
    return None, 0.0


def score_template(
    template: Template, ctx: ExtractionContext, weights: ScoringWeights = DEFAULT_WEIGHTS
) -> SelectionResult:
    """Scores one candidate against the request context; rejections short-circuit to a fixed negative score."""
    if not template.is_active:
        return SelectionResult(template=template, score=weights.rejection, rejection_reasons=["inactive"])

    requested = ctx.document_type
    if requested.is_known and template.category.is_known and template.category != requested:
        return SelectionResult(
            template=template,
            score=weights.rejection,
            rejection_reasons=[f"category {template.category.value} does not match {requested.value}"],
        )

    breakdown = {}
    if requested.is_known and template.category == requested:
        breakdown["category"] = weights.category_match

    if requested.is_known:
        name_bonus = _name_keyword_bonus(template.name, requested, weights)
        if name_bonus:
            breakdown["name"] = name_bonus

    supplier_key, supplier_bonus = _supplier_bonus(template.suppliers, ctx.supplier_name, weights)
    if supplier_key:
        breakdown[supplier_key] = supplier_bonus

    if ctx.user.email and ctx.user.email in template.target_users:
        breakdown["target_user"] = weights.target_user
    if ctx.user.role and ctx.user.role in template.target_roles:
        breakdown["target_role"] = weights.target_role

    if template.performance.accuracy_percent:
        breakdown["performance"] = template.performance.accuracy_percent * weights.accuracy_multiplier

    breakdown["version"] = version_score(template.version) * weights.version_weight

    if template.name.startswith(PRIORITY_PREFIX):
        breakdown["priority_name"] = weights.priority_name

    return SelectionResult(template=template, score=round(sum(breakdown.values()), 4), breakdown=breakdown)


def select(
    candidates: Iterable[Template], ctx: ExtractionContext, weights: ScoringWeights = DEFAULT_WEIGHTS
) -> Optional[SelectionResult]:
    """Returns the best-scoring candidate, or None when nothing scores above zero."""
    results = [score_template(template, ctx, weights) for template in candidates]
    if not results:
        return None
    results.sort(key=lambda result: result.score, reverse=True)
    best = results[0]
    for result in results[1:4]:
        log.debug(f"Runner-up '{result.template.id}' scored {result.score} {result.rejection_reasons or ''}")
    if best.score <= 0:
        log.info(f"No template scored above zero for '{ctx.document_type.value}' ({len(results)} candidate(s)).")
        return None
    log.info(f"Selected template '{best.template.id}' (v{best.template.version}) with score {best.score}.")
    return best


def select_prompt_system(user: UserContext, options: Optional[ExtractionOptions] = None) -> str:
    """
    Decides which candidate pool a request draws from: "managed" (remote catalog)
    or "legacy" (built-in templates). An explicit override bypasses cohort assignment.
    """
    options = options or ExtractionOptions()
    if options.explicit_prompt_override in PROMPT_SYSTEMS:
        return options.explicit_prompt_override

    if user.email in AB_TEST_USERS or options.test_mode:
        return "managed"
    if AB_TEST_ENABLED and user.email and hash_string(user.email) % 100 < AB_TEST_PERCENTAGE:
        return "managed"
    return PROMPT_SYSTEM_DEFAULT
