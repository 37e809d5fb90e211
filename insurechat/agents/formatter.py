# =============================================================================
# Presentation Formatter — Markdown Rendering of Stage Results
# =============================================================================
#
# Pure projections of a DecodedResult. Nothing here holds state.
#
#   render_stage()            → markdown text for a transcript turn
#   comparison_rows()         → rows for the plan comparison table view
#   ranked_recommendations()  → cards for the recommendation view
#   format_currency()         → vi-VN grouping ("120.000 ₫")
#
# Well-known result fields are rendered in a fixed order; anything else
# the agent returns is listed afterwards as key/value bullets so that no
# returned data is hidden from the user.
# =============================================================================

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from insurechat.agents.decoder import EVALUATOR_FIELD, DecodedResult
from insurechat.agents.stages import StageDescriptor

DISCLAIMER = (
    "This is reference information only. Please read the policy terms "
    "carefully before deciding."
)

DECISION_PROMPT = (
    "_Approve to continue, or send feedback to revise this step._"
)

COMPARISON_COLUMNS: tuple[tuple[str, str], ...] = (
    ("plan_name", "Plan"),
    ("premium", "Premium"),
    ("coverage", "Coverage"),
    ("exclusions", "Exclusions"),
    ("deductible", "Deductible"),
)

# Fields holding amounts in VND
CURRENCY_FIELDS = frozenset({
    "premium", "current_price", "price", "suggested_price",
    "average_price", "min_price", "max_price", "deductible",
})

# Rendered explicitly, in this order; skipped by the generic field listing
_KNOWN_FIELDS = (
    "summary", "comparison_table", "recommendations", "citations",
    EVALUATOR_FIELD, "disclaimer",
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_stage(
    stage: StageDescriptor,
    result: DecodedResult,
    awaiting_decision: bool = False,
) -> str:
    """Render one stage result as the markdown content of a transcript turn."""
    sections = [f"### {stage.title}"]

    if result.error:
        sections.append(f"**The analysis agent reported an error:** {result.error}")

    if result.opaque:
        sections.append(result.text or "")
    else:
        sections.extend(_render_fields(result))

    if len(sections) == 1:
        sections.append("_No details were returned for this step._")

    if awaiting_decision:
        sections.append(DECISION_PROMPT)
    return "\n\n".join(s for s in sections if s)


def comparison_rows(result: DecodedResult | None) -> list[dict[str, str]]:
    """Rows of the plan comparison table, one dict per plan."""
    if result is None:
        return []
    table = result.get("comparison_table")
    if not isinstance(table, list):
        return []
    rows = []
    for entry in table:
        if not isinstance(entry, dict):
            continue
        rows.append({
            key: _display(entry.get(key), currency=key in CURRENCY_FIELDS)
            for key, _ in COMPARISON_COLUMNS
        })
    return rows


def ranked_recommendations(result: DecodedResult | None) -> list[dict[str, Any]]:
    """Recommendation cards sorted by score (highest first), with a tier label."""
    if result is None:
        return []
    recommendations = result.get("recommendations")
    if not isinstance(recommendations, list):
        return []

    cards = []
    for rec in recommendations:
        if not isinstance(rec, dict):
            continue
        score = _to_number(rec.get("score"))
        cards.append({
            "plan_name": _display(rec.get("plan_name")),
            "score": score,
            "tier": score_tier(score),
            "reason": _display(rec.get("reason")),
            "best_for": _display(rec.get("best_for")),
        })
    cards.sort(key=lambda c: c["score"] if c["score"] is not None else -1, reverse=True)
    return cards


def score_tier(score: float | None) -> str:
    if score is None:
        return "unrated"
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "fair"
    return "weak"


def format_currency(value: Any) -> str:
    """
    Format an amount the vi-VN way: `.` for thousands, no minor unit.

    >>> format_currency("120000")
    '120.000 ₫'

    Values that are not numbers come back unchanged (as text).
    """
    if value is None:
        return "—"
    if isinstance(value, bool):
        return str(value)
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return str(value)
    if not amount.is_finite():
        return str(value)
    grouped = f"{amount:,.0f}".replace(",", ".")
    return f"{grouped} ₫"


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _render_fields(result: DecodedResult) -> list[str]:
    sections: list[str] = []

    summary = result.get("summary")
    if summary:
        sections.append(str(summary))

    rows = comparison_rows(result)
    if rows:
        sections.append(_render_table(rows))

    cards = ranked_recommendations(result)
    if cards:
        sections.append(_render_recommendations(cards))

    citations = result.get("citations")
    if isinstance(citations, list) and citations:
        sections.append(_render_citations(citations))

    evaluator = result.get(EVALUATOR_FIELD)
    if evaluator is not None:
        sections.append(_render_evaluator(evaluator))

    extras = {
        k: v for k, v in result.fields.items()
        if k not in _KNOWN_FIELDS and v not in (None, "", [], {})
    }
    if extras:
        sections.append(_render_mapping(extras))

    disclaimer = result.get("disclaimer")
    if disclaimer:
        sections.append(f"_{disclaimer}_")
    return sections


def _render_table(rows: list[dict[str, str]]) -> str:
    header = "| " + " | ".join(label for _, label in COMPARISON_COLUMNS) + " |"
    divider = "|" + "---|" * len(COMPARISON_COLUMNS)
    lines = [header, divider]
    for row in rows:
        cells = [row[key].replace("|", "\\|") for key, _ in COMPARISON_COLUMNS]
        lines.append("| " + " | ".join(cells) + " |")
    return "**Plan comparison**\n\n" + "\n".join(lines)


def _render_recommendations(cards: list[dict[str, Any]]) -> str:
    lines = ["**Recommendations**", ""]
    for index, card in enumerate(cards, 1):
        score = "n/a" if card["score"] is None else f"{card['score']:g}/100"
        lines.append(f"{index}. **{card['plan_name']}** ({score}, {card['tier']})")
        if card["reason"] != "—":
            lines.append(f"   - Reason: {card['reason']}")
        if card["best_for"] != "—":
            lines.append(f"   - Best for: {card['best_for']}")
    return "\n".join(lines)


def _render_citations(citations: list[Any]) -> str:
    lines = ["**Sources**", ""]
    for citation in citations:
        if isinstance(citation, dict):
            where = citation.get("source") or "document"
            page = citation.get("page")
            label = f"{where}, p. {page}" if page else str(where)
            lines.append(f"- \"{citation.get('text', '')}\" ({label})")
        else:
            lines.append(f"- {citation}")
    return "\n".join(lines)


def _render_evaluator(evaluator: Any) -> str:
    if not isinstance(evaluator, dict):
        return f"**Evaluation**\n\n{evaluator}"

    lines = ["**Evaluation**"]
    company = evaluator.get("company")
    if isinstance(company, dict):
        lines += ["", "Best matching product:", _render_mapping(company)]
    else:
        lines += ["", "_No matching product was found._"]

    market = evaluator.get("market")
    if isinstance(market, dict):
        lines += ["", "Market summary:", _render_mapping(market)]

    benefits = evaluator.get("benefits_to_add")
    if isinstance(benefits, list) and benefits:
        lines += ["", "Benefits to add:"]
        lines += [f"- {b}" for b in benefits if b is not None]

    rest = {
        k: v for k, v in evaluator.items()
        if k not in ("company", "market", "benefits_to_add") and v is not None
    }
    if rest:
        lines += ["", _render_mapping(rest)]
    return "\n".join(lines)


def _render_mapping(mapping: dict[str, Any], indent: int = 0) -> str:
    pad = "  " * indent
    lines = []
    for key, value in mapping.items():
        label = key.replace("_", " ").capitalize()
        if isinstance(value, dict):
            lines.append(f"{pad}- **{label}**:")
            lines.append(_render_mapping(value, indent + 1))
        elif isinstance(value, list):
            if not value:
                lines.append(f"{pad}- **{label}**: none")
                continue
            lines.append(f"{pad}- **{label}**:")
            for item in value:
                if isinstance(item, dict):
                    lines.append(_render_mapping(item, indent + 1))
                else:
                    lines.append(f"{pad}  - {_display(item)}")
        else:
            shown = _display(value, currency=key in CURRENCY_FIELDS)
            lines.append(f"{pad}- **{label}**: {shown}")
    return "\n".join(lines)


def _display(value: Any, currency: bool = False) -> str:
    if value is None or value == "":
        return "—"
    if currency:
        return format_currency(value)
    return str(value)


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
