"""Prompt templates shared by the planner and the summary writer."""

from __future__ import annotations

from typing import Sequence

from .domain.persona import Persona

JSON_ARRAY_INSTRUCTION = (
    "Return ONLY a raw JSON array of step objects. Do not wrap it in an object, "
    "do not use markdown fences and do not add text before or after the array."
)

STEP_SCHEMA = """Each step is an object with:
- action: one of "click", "type", "wait", "scroll", "screenshot", "measure_performance"
- target: natural-language description of the element or purpose
- value: text to enter (required for "type")
- params: optional object, use {"ms": N} for wait durations

Do NOT generate "navigate" actions; navigation is handled automatically and the
plan starts after the page has loaded. Start with observation (wait + screenshot)
and never emit more than 15 steps."""

MAX_SNAPSHOT_CHARS = 20_000
MAX_REPAIR_SNAPSHOT_CHARS = 15_000


def truncate(text: str | None, limit: int) -> str:
    """Clip ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def system_prompt(persona: Persona) -> str:
    return (
        "You are an autonomous QA agent planning browser test steps. "
        f"Persona: {persona.value}. {persona.description}"
    )


def render_history(history: Sequence[str]) -> str:
    lines = [f"- {line.strip()}" for line in history if line and line.strip()]
    if not lines:
        return ""
    return "## Recent Steps\n" + "\n".join(lines)


def goal_planning_prompt(goal: str, target_url: str, history: Sequence[str] = ()) -> str:
    sections = [
        "Create a test automation plan for the following:",
        f"Target URL: {target_url}\nGoal: {goal}",
        (
            "You do not know whether the user is logged in or which elements exist. "
            "Do not assume login is needed unless the goal mentions it."
        ),
        render_history(history),
        STEP_SCHEMA,
        JSON_ARRAY_INSTRUCTION,
    ]
    return "\n\n".join(section for section in sections if section)


def repair_planning_prompt(
    action: str,
    target: str,
    error: str,
    snapshot: str,
    *,
    network_errors: Sequence[str] = (),
    console_errors: Sequence[str] = (),
) -> str:
    sections = [
        "An action failed and needs repair:",
        f"Failed Action: {action}\nTarget: {target}\nError: {error}",
        f"Current Accessibility Tree:\n{truncate(snapshot, MAX_REPAIR_SNAPSHOT_CHARS)}",
    ]
    if network_errors:
        sections.append("Network errors:\n" + "\n".join(f"- {item}" for item in network_errors))
    if console_errors:
        sections.append("Console errors:\n" + "\n".join(f"- {item}" for item in console_errors))
    sections.append(
        "Suggest 1-3 alternative steps that achieve the same intent, for example a "
        "differently described element or a wait before retrying."
    )
    sections.append(JSON_ARRAY_INSTRUCTION)
    return "\n\n".join(sections)


def selector_finder_prompt(description: str, snapshot: str) -> str:
    return (
        f'Find the element matching this description: "{description}"\n\n'
        "Use semantic matching: \"close/dismiss\" may appear as X, Close or Got it; "
        "\"accept/consent\" may appear as Accept, Agree or OK.\n\n"
        f"Accessibility Tree:\n{truncate(snapshot, MAX_SNAPSHOT_CHARS)}\n\n"
        'Return ONLY the ref (e.g. "@e1") or CSS selector of the best match, '
        'or "NOT_FOUND" if nothing reasonable matches.'
    )


def report_summary_prompt(
    succeeded: bool,
    goals: Sequence[str],
    step_lines: Sequence[str],
    failure_reason: str | None,
    *,
    network_errors: int = 0,
    console_errors: int = 0,
    accessibility_warnings: int = 0,
) -> str:
    sections = [
        f"Test outcome: {'PASSED' if succeeded else 'FAILED'}",
        "Goals:\n" + "\n".join(f"- {goal}" for goal in goals),
        "Executed steps:\n" + ("\n".join(step_lines) if step_lines else "(none)"),
    ]
    if failure_reason:
        sections.append(f"Failure reason: {failure_reason}")
    sections.append(
        f"Signals: {network_errors} network error(s), {console_errors} console error(s), "
        f"{accessibility_warnings} accessibility warning(s)."
    )
    sections.append(
        "healthCheck must contain networkIssues {count, summary}, consoleIssues {count, summary}, "
        "accessibilityScore and accessibilitySummary."
    )
    return "\n\n".join(sections)


SUMMARY_SYSTEM_PROMPT = (
    "You are a QA lead writing a concise report of an automated browser test run. "
    "Return only a JSON object with the keys goalOverview, outcomeShort, failureAnalysis, "
    "actionableFix, keyAchievements and healthCheck."
)


OBSTACLE_SYSTEM_PROMPT = (
    "You inspect web pages for blocking overlays such as cookie banners, consent dialogs, "
    "newsletter popups and legal agreements. Return only a JSON object with the keys "
    "obstacleDetected, obstacleType, description, dismissSelector, dismissText and confidence "
    "(high, medium or low)."
)

MAX_OBSTACLE_SNAPSHOT_CHARS = 15_000
MAX_CONSENT_EXTRACT_CHARS = 5_000


def obstacle_detection_prompt(url: str, title: str, snapshot: str, consent_extract: str = "") -> str:
    sections = [f"## Current Page\n\nURL: {url}\nTitle: {title}"]
    if consent_extract and len(snapshot) > MAX_OBSTACLE_SNAPSHOT_CHARS:
        sections.append(
            "## Consent / overlay content (extracted from page)\n"
            + truncate(consent_extract, MAX_CONSENT_EXTRACT_CHARS)
        )
    sections.append(f"## Accessibility Tree\n{truncate(snapshot, MAX_OBSTACLE_SNAPSHOT_CHARS)}")
    sections.append(
        "Detect any obstacle blocking interaction with the main content. If one exists, "
        "give the ref (e.g. \"@e3\") or CSS selector of the control that dismisses it."
    )
    return "\n\n".join(sections)


SUGGESTION_SYSTEM_PROMPT = (
    "You are a senior front-end engineer reviewing one automated browser test step. "
    "Return only a JSON object with the keys hasSuggestion, suggestion, rootCause "
    "(FRONTEND, BACKEND, NETWORK, SELECTOR or ACCESSIBILITY) and severity (LOW, MEDIUM or HIGH)."
)

MAX_SUGGESTION_ERRORS = 5
MAX_SUGGESTION_SNAPSHOT_CHARS = 3_000


def optimization_suggestion_prompt(
    action: str,
    target: str,
    selector_used: str | None,
    succeeded: bool,
    snapshot: str,
    *,
    console_errors: Sequence[str] = (),
    network_errors: Sequence[str] = (),
) -> str:
    sections = [
        "## Step Execution Analysis\n"
        f"Action: {action}\nTarget: {target}\nSelector Used: {selector_used or 'N/A'}\n"
        f"Result: {'SUCCESS' if succeeded else 'FAILED'}"
    ]
    for title, errors in (("JavaScript Console Errors", console_errors), ("Network Errors", network_errors)):
        if not errors:
            continue
        lines = [f"- {item}" for item in list(errors)[:MAX_SUGGESTION_ERRORS]]
        if len(errors) > MAX_SUGGESTION_ERRORS:
            lines.append(f"- ... and {len(errors) - MAX_SUGGESTION_ERRORS} more errors")
        sections.append(f"## {title}\n" + "\n".join(lines))
    if snapshot and snapshot.strip():
        sections.append(f"## DOM Context\n{truncate(snapshot, MAX_SUGGESTION_SNAPSHOT_CHARS)}")
    sections.append(
        "Explain the likely cause of any JavaScript or network error, say whether it is a backend "
        "issue, and suggest a sturdier selector (data-testid, aria-label) when the current one looks brittle."
    )
    return "\n\n".join(sections)


__all__ = [
    "JSON_ARRAY_INSTRUCTION",
    "OBSTACLE_SYSTEM_PROMPT",
    "STEP_SCHEMA",
    "SUGGESTION_SYSTEM_PROMPT",
    "SUMMARY_SYSTEM_PROMPT",
    "goal_planning_prompt",
    "obstacle_detection_prompt",
    "optimization_suggestion_prompt",
    "render_history",
    "report_summary_prompt",
    "repair_planning_prompt",
    "selector_finder_prompt",
    "system_prompt",
    "truncate",
]
