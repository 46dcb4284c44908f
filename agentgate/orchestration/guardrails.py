from __future__ import annotations

import re

from ..core.config import Settings
from ..schemas.guardrails import ActionRequest, GuardrailResult, GuardrailStage
from .rulesets import GuardrailRuleset, PatternRule, default_guardrail_ruleset, path_matches

__all__ = ["GuardrailPipeline", "load_guardrail_ruleset"]

_RESPONSIVE_GRID = re.compile(r"(?<![\w-])(?:sm|md|lg|xl|2xl):grid-cols-\d+")
_BASE_GRID = re.compile(r"(?<![\w:-])grid-cols-\d+")
_DESKTOP_GRID = re.compile(r"(?<![\w:-])grid-cols-(?:[3-9]|1[0-2])(?!\d)")
_MOBILE_GRID = re.compile(r"(?<![\w:-])grid-cols-[12](?!\d)")
_HEX_COLOR = re.compile(r"#(?:[0-9a-fA-F]{8}|[0-9a-fA-F]{6}|[0-9a-fA-F]{3,4})\b")
_BLACK = r"(?:black|#000(?:000)?\b|rgb\(\s*0\s*,\s*0\s*,\s*0\s*\))"
_BLACK_BACKGROUND = re.compile(rf"background(?:-color)?\s*:\s*{_BLACK}|(?<![\w-])bg-black\b", re.IGNORECASE)
_BLACK_FOREGROUND = re.compile(rf"(?<![\w-])color\s*:\s*{_BLACK}|(?<![\w-])text-black\b", re.IGNORECASE)


def load_guardrail_ruleset(settings: Settings | None) -> GuardrailRuleset:
    if settings is not None and settings.guardrails.ruleset_path is not None:
        return GuardrailRuleset.from_file(settings.guardrails.ruleset_path)
    return default_guardrail_ruleset()


def _passed(stage: GuardrailStage) -> GuardrailResult:
    return GuardrailResult(passed=True, level=stage)


def _failed(stage: GuardrailStage, reason: str, rule: str) -> GuardrailResult:
    return GuardrailResult(passed=False, level=stage, reason=reason, rule=rule)


def _first_match(rules: tuple[PatternRule, ...], *texts: str) -> PatternRule | None:
    for rule in rules:
        if any(text and rule.search(text) for text in texts):
            return rule
    return None


class GuardrailPipeline:
    """Three-stage validation of instructions, actions and outputs.

    Every method is pure: no I/O, no logging, no metrics. The first failing
    rule wins and its reason is returned on the result.
    """

    def __init__(self, ruleset: GuardrailRuleset | None = None, *, settings: Settings | None = None) -> None:
        self._ruleset = ruleset or load_guardrail_ruleset(settings)

    @property
    def ruleset(self) -> GuardrailRuleset:
        return self._ruleset

    def validate_reasoning(self, text: str) -> GuardrailResult:
        stage = GuardrailStage.REASONING
        checks = (
            ("Blocked: jailbreak attempt", self._ruleset.jailbreak),
            ("Blocked: destructive intent", self._ruleset.destructive_instructions),
            ("Blocked: credential exfiltration", self._ruleset.credential_exfiltration),
        )
        for label, rules in checks:
            rule = _first_match(rules, text or "")
            if rule is not None:
                return _failed(stage, f"{label} ({rule.reason or rule.name})", rule.name)
        return _passed(stage)

    def validate_action(self, action: ActionRequest) -> GuardrailResult:
        stage = GuardrailStage.ACTION
        payload = action.payload_text()

        rule = _first_match(self._ruleset.dangerous_commands, action.target, payload)
        if rule is not None:
            return _failed(stage, f"Blocked: dangerous command ({rule.reason or rule.name})", rule.name)

        candidates = [action.target] if action.type.startswith("file_") else []
        candidates.extend(action.target.split())
        for candidate in candidates:
            pattern = path_matches(candidate, self._ruleset.denied_paths)
            if pattern is not None:
                return _failed(stage, f"Blocked: access to protected path '{candidate.strip()}'", "denied-path")

        if action.type == "file_write" and self._is_ui_target(action.target):
            return self._validate_ui_payload(payload)
        return _passed(stage)

    def validate_output(self, text: str | None) -> GuardrailResult:
        stage = GuardrailStage.OUTPUT
        rule = _first_match(self._ruleset.secret_patterns, text or "")
        if rule is not None:
            return _failed(stage, f"Blocked: output contains a secret ({rule.reason or rule.name})", rule.name)
        return _passed(stage)

    def validate_all(self, instruction: str, action: ActionRequest, output: str | None) -> list[GuardrailResult]:
        return [
            self.validate_reasoning(instruction),
            self.validate_action(action),
            self.validate_output(output),
        ]

    def _is_ui_target(self, target: str) -> bool:
        lowered = target.strip().lower()
        return any(lowered.endswith(extension) for extension in self._ruleset.ui_extensions)

    def _validate_ui_payload(self, content: str) -> GuardrailResult:
        stage = GuardrailStage.ACTION
        has_responsive = _RESPONSIVE_GRID.search(content) is not None
        if has_responsive and _BASE_GRID.search(content) is None:
            return _failed(
                stage,
                "Blocked: responsive grid without a mobile-first base class (add an unprefixed grid-cols-N)",
                "ui-mobile-first",
            )
        if _DESKTOP_GRID.search(content) and not has_responsive and _MOBILE_GRID.search(content) is None:
            return _failed(
                stage,
                "Blocked: non-mobile-first layout (start with grid-cols-1 and add responsive variants)",
                "ui-desktop-only-grid",
            )
        hex_count = len(_HEX_COLOR.findall(content))
        if hex_count > self._ruleset.max_raw_hex_colors:
            return _failed(
                stage,
                f"Blocked: {hex_count} raw hex colours used; use design tokens instead",
                "ui-raw-hex",
            )
        if _BLACK_BACKGROUND.search(content) and _BLACK_FOREGROUND.search(content):
            return _failed(stage, "Blocked: black-on-black styling", "ui-contrast")
        return _passed(stage)
