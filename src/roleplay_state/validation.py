"""Rule-based quality checks for generated replies.

The checks are lint rules, not judgements: each looks for a surface pattern
that usually signals a weak roleplay reply. Scores start at 100 and lose a
fixed penalty per issue by severity.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from roleplay_state.config import VALIDATION_CHECKS, CustomRule, ValidationConfig
from roleplay_state.heuristics import (
    content_keywords,
    is_within_dialogue,
    word_phrases,
)
from roleplay_state.models import ValidationContext, ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES = {"warning": 10, "error": 25, "critical": 50}

QUESTION_PATTERNS = [
    re.compile(r"\?\s*$", re.MULTILINE),
    re.compile(r"\bwhat do you\b", re.IGNORECASE),
    re.compile(r"\bhow do you\b", re.IGNORECASE),
    re.compile(r"\bwould you like\b", re.IGNORECASE),
    re.compile(r"\bwhat would you\b", re.IGNORECASE),
    re.compile(r"\bdo you want\b", re.IGNORECASE),
    re.compile(r"\bshall (?:we|I)\b", re.IGNORECASE),
    re.compile(r"\bwhat (?:will|should) you\b", re.IGNORECASE),
]

CHARACTER_BREAK_PATTERNS = [
    re.compile(r"\bI(?:'m| am) an AI\b", re.IGNORECASE),
    re.compile(r"\bas an AI\b", re.IGNORECASE),
    re.compile(r"\bI(?:'m| am) (?:just )?a (?:language )?model\b", re.IGNORECASE),
    re.compile(r"\bI don't have (?:real )?(?:feelings|emotions)\b", re.IGNORECASE),
    re.compile(r"\bI can't actually\b", re.IGNORECASE),
    re.compile(r"\bI(?:'m| am) not (?:really|actually) a\b", re.IGNORECASE),
    re.compile(r"\bmy programming\b", re.IGNORECASE),
    re.compile(r"\bI was (?:created|designed|programmed)\b", re.IGNORECASE),
]

SUMMARIZATION_PATTERNS = [
    re.compile(r"\bIn summary\b", re.IGNORECASE),
    re.compile(r"\bTo summarize\b", re.IGNORECASE),
    re.compile(r"(?:^|[.!?]\s+)Overall\b", re.MULTILINE),
    re.compile(r"\bIn conclusion\b", re.IGNORECASE),
    re.compile(r"\bTo sum up\b", re.IGNORECASE),
    re.compile(r"\bThe main (?:points?|takeaways?)\b", re.IGNORECASE),
    re.compile(r"\bThis (?:shows|demonstrates|illustrates) that\b", re.IGNORECASE),
]

FIRST_PERSON_PATTERNS = [
    re.compile(r"^I\s"),
    re.compile(r"\bI think\b", re.IGNORECASE),
    re.compile(r"\bI believe\b", re.IGNORECASE),
    re.compile(r"\bI feel\b", re.IGNORECASE),
    re.compile(r"\bIn my opinion\b", re.IGNORECASE),
]

_REACTION_CUE = re.compile(r"\b(?:react|respond|feel|notice|sense|saw|heard|felt)\b", re.IGNORECASE)
_CONSEQUENCE_PATTERNS = [
    re.compile(r"\b(?:result|consequence|effect|impact|reaction)\b", re.IGNORECASE),
    re.compile(r"\b(?:felt|sensed|experienced|noticed)\b", re.IGNORECASE),
    re.compile(r"\b(?:body|skin|touch|sensation|warmth)\b", re.IGNORECASE),
    re.compile(r"\b(?:shiver|tremble|gasp|moan|sigh)\b", re.IGNORECASE),
]

LONG_REPLY = 500
CONSEQUENCE_REPLY = 400
REPETITION_RATIO = 0.2


def _outside_dialogue(text: str, pattern: re.Pattern) -> bool:
    return any(not is_within_dialogue(text, m.start()) for m in pattern.finditer(text))


def check_asks_question(reply: str, context: ValidationContext) -> ValidationIssue | None:
    for pattern in QUESTION_PATTERNS:
        if _outside_dialogue(reply, pattern):
            return ValidationIssue(
                type="asks_question",
                severity="error",
                description="Response ends with a question to the user",
                suggestion="Remove interrogative ending or rephrase as narrative motion",
            )
    return None


def check_ignores_action(reply: str, context: ValidationContext) -> list[ValidationIssue]:
    if len(reply) >= LONG_REPLY or _REACTION_CUE.search(reply):
        return []
    reply_lower = reply.lower()
    issues = []
    for action in context.pending_actions:
        if any(word in reply_lower for word in content_keywords(action.raw_text)):
            continue
        issues.append(ValidationIssue(
            type="ignores_action",
            severity="error",
            description=f'Action may be ignored: "{action.raw_text[:50]}"',
            location=f"Action ID: {action.id}",
            suggestion="Ensure the response addresses or transforms this user action",
        ))
    return issues


def check_mirrors_phrasing(reply: str, context: ValidationContext) -> ValidationIssue | None:
    reply_lower = reply.lower()
    for phrase in word_phrases(context.user_message.lower(), 4):
        start = reply_lower.find(phrase)
        while start != -1:
            if not is_within_dialogue(reply, start):
                return ValidationIssue(
                    type="mirrors_phrasing",
                    severity="warning",
                    description=f'Response mirrors user phrasing: "{phrase}"',
                    suggestion="Transform the action into reactions and consequences, not restatement",
                )
            start = reply_lower.find(phrase, start + 1)
    return None


def check_breaks_character(reply: str, context: ValidationContext) -> ValidationIssue | None:
    for pattern in CHARACTER_BREAK_PATTERNS:
        match = pattern.search(reply)
        if match:
            return ValidationIssue(
                type="breaks_character",
                severity="critical",
                description="Response breaks character immersion",
                location=match.group(0),
                suggestion="Remove AI self-references and stay in character",
            )
    return None


def check_summarizes_instead(reply: str, context: ValidationContext) -> ValidationIssue | None:
    for pattern in SUMMARIZATION_PATTERNS:
        if pattern.search(reply):
            return ValidationIssue(
                type="summarizes_instead",
                severity="warning",
                description="Response contains summarization language",
                suggestion="Dramatize with action and dialogue instead of summarizing",
            )
    return None


def check_wrong_perspective(reply: str, context: ValidationContext) -> ValidationIssue | None:
    for line in reply.split("\n"):
        stripped = line.strip()
        if not stripped or stripped[0] in "\"'“":
            continue
        for pattern in FIRST_PERSON_PATTERNS:
            if _outside_dialogue(stripped, pattern):
                return ValidationIssue(
                    type="wrong_perspective",
                    severity="warning",
                    description="Response may use first-person perspective outside dialogue",
                    location=stripped[:50],
                    suggestion="Use third-person limited perspective in narration",
                )
    return None


def check_repetitive_content(reply: str, context: ValidationContext) -> ValidationIssue | None:
    if not context.previous_responses:
        return None
    phrases = word_phrases(reply.lower(), 5)
    if not phrases:
        return None
    previous = context.previous_responses[-1].lower()
    repeated = sum(1 for p in phrases if p in previous)
    if repeated / len(phrases) > REPETITION_RATIO:
        return ValidationIssue(
            type="repetitive_content",
            severity="warning",
            description="Response contains significant repetition from previous response",
            suggestion="Vary vocabulary and phrasing for narrative freshness",
        )
    return None


def check_missing_consequences(reply: str, context: ValidationContext) -> ValidationIssue | None:
    bodily = [a for a in context.pending_actions if a.action_type in ("physical", "intimate")]
    if not bodily or len(reply) >= CONSEQUENCE_REPLY:
        return None
    if any(p.search(reply) for p in _CONSEQUENCE_PATTERNS):
        return None
    return ValidationIssue(
        type="missing_consequences",
        severity="warning",
        description="Physical action may lack sensory consequences",
        suggestion="Add physical/emotional reactions and lingering effects",
    )


BUILTIN_CHECKS = {
    "asks_question": check_asks_question,
    "ignores_action": check_ignores_action,
    "mirrors_phrasing": check_mirrors_phrasing,
    "breaks_character": check_breaks_character,
    "summarizes_instead": check_summarizes_instead,
    "wrong_perspective": check_wrong_perspective,
    "repetitive_content": check_repetitive_content,
    "missing_consequences": check_missing_consequences,
}


def calculate_score(issues: list[ValidationIssue]) -> int:
    score = 100 - sum(SEVERITY_PENALTIES[i.severity] for i in issues)
    return max(0, score)


class ResponseValidator:
    """Runs the enabled checks and custom rules over a reply."""

    def __init__(self, config: ValidationConfig | None = None):
        self.config = config or ValidationConfig()

    def validate(self, reply: str, context: ValidationContext) -> ValidationResult:
        issues: list[ValidationIssue] = []
        for name in VALIDATION_CHECKS:
            if name not in self.config.enabled_checks:
                continue
            found = BUILTIN_CHECKS[name](reply, context)
            if isinstance(found, list):
                issues.extend(found)
            elif found is not None:
                issues.append(found)

        for rule in self.config.custom_rules:
            issue = rule.check(reply, context)
            if issue is not None:
                issues.append(issue)

        score = calculate_score(issues)
        requires_regeneration = score < self.config.minimum_score or any(
            i.severity == "critical" for i in issues
        )
        if requires_regeneration:
            logger.info(
                "Reply failed validation (score %d): %s",
                score,
                ", ".join(i.type for i in issues),
            )
        return ValidationResult(
            valid=not requires_regeneration,
            issues=issues,
            score=score,
            requires_regeneration=requires_regeneration,
        )

    def enable_check(self, check: str) -> None:
        if check not in BUILTIN_CHECKS:
            raise ValueError(f"Invalid validation check: {check}")
        self.config.enabled_checks.add(check)

    def disable_check(self, check: str) -> None:
        if check not in BUILTIN_CHECKS:
            raise ValueError(f"Invalid validation check: {check}")
        self.config.enabled_checks.discard(check)

    def add_custom_rule(self, rule: CustomRule) -> None:
        self.remove_custom_rule(rule.name)
        self.config.custom_rules.append(rule)

    def remove_custom_rule(self, name: str) -> None:
        self.config.custom_rules = [r for r in self.config.custom_rules if r.name != name]


# -------------------------------------------------------------------------
# Regeneration guidance
# -------------------------------------------------------------------------

_GUIDANCE = {
    "asks_question": ("End with forward narrative motion, not questions", "interrogative endings"),
    "ignores_action": ("Address all user actions with consequences", "skipping or glossing over user input"),
    "mirrors_phrasing": ("Transform actions into reactions, not restatements", "copying user phrasing verbatim"),
    "breaks_character": ("Stay fully in character", "AI self-references"),
    "summarizes_instead": ("Dramatize with action and dialogue", "summary language"),
    "wrong_perspective": ("Use third-person limited perspective", "first-person narration outside dialogue"),
    "repetitive_content": ("Vary vocabulary and phrasing", "repeated phrases from previous response"),
    "missing_consequences": ("Add physical and emotional consequences", "action without reaction"),
}


@dataclass
class RegenerationGuidance:
    instructions: str
    focus_areas: list[str] = field(default_factory=list)
    avoid_patterns: list[str] = field(default_factory=list)


def generate_regeneration_guidance(issues: list[ValidationIssue]) -> RegenerationGuidance:
    lines = ["REGENERATION REQUIRED. Address these issues:"]
    focus: list[str] = []
    avoid: list[str] = []
    for issue in issues:
        lines.append(f"- {issue.description}")
        if issue.type in _GUIDANCE:
            do, dont = _GUIDANCE[issue.type]
            if do not in focus:
                focus.append(do)
            if dont not in avoid:
                avoid.append(dont)
    return RegenerationGuidance(
        instructions="\n".join(lines), focus_areas=focus, avoid_patterns=avoid
    )


def build_regeneration_prompt(guidance: RegenerationGuidance) -> str:
    lines = ["=== REGENERATION GUIDANCE ===", guidance.instructions]
    if guidance.focus_areas:
        lines += ["", "FOCUS ON:"] + [f"- {f}" for f in guidance.focus_areas]
    if guidance.avoid_patterns:
        lines += ["", "AVOID:"] + [f"- {a}" for a in guidance.avoid_patterns]
    return "\n".join(lines)


# -------------------------------------------------------------------------
# Common custom rules
# -------------------------------------------------------------------------


def minimum_length_rule(min_length: int) -> CustomRule:
    def check(reply: str, context) -> ValidationIssue | None:
        if len(reply) >= min_length:
            return None
        return ValidationIssue(
            type="too_short",
            severity="warning",
            description=f"Response too short ({len(reply)}/{min_length} chars)",
            suggestion="Expand with more detail and narrative depth",
        )

    return CustomRule(
        name="minimum_length",
        description=f"Response must be at least {min_length} characters",
        check=check,
    )


def require_dialogue_rule() -> CustomRule:
    pattern = re.compile(r"\"[^\"]+\"|“[^”]+”")

    def check(reply: str, context) -> ValidationIssue | None:
        if pattern.search(reply):
            return None
        return ValidationIssue(
            type="missing_dialogue",
            severity="warning",
            description="Response lacks dialogue",
            suggestion="Include character speech for immersion",
        )

    return CustomRule(
        name="require_dialogue",
        description="Response should contain character dialogue",
        check=check,
    )


def banned_phrases_rule(phrases: list[str]) -> CustomRule:
    def check(reply: str, context) -> ValidationIssue | None:
        reply_lower = reply.lower()
        for phrase in phrases:
            if phrase.lower() in reply_lower:
                return ValidationIssue(
                    type="banned_phrase",
                    severity="error",
                    description=f'Response contains banned phrase: "{phrase}"',
                    suggestion="Remove or rephrase the flagged content",
                )
        return None

    return CustomRule(
        name="banned_phrases",
        description="Response should not contain banned phrases",
        check=check,
    )
