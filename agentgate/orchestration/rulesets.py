"""Versioned rule definitions for the risk assessor and the guardrail pipeline.

Rulesets are plain data: callers may pass their own instance, load one from a
JSON document, or fall back to the defaults below. Keyword rules are a
denylist, not a security boundary, so they are expected to evolve
independently of the pipeline code that consumes them.
"""

from __future__ import annotations

import re
from fnmatch import fnmatchcase
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

from ..core.exceptions import RulesetError

__all__ = [
    "GuardrailRuleset",
    "PatternRule",
    "RiskRuleset",
    "RiskThresholds",
    "VocabularyRule",
    "default_guardrail_ruleset",
    "default_risk_ruleset",
    "normalize_path",
    "path_matches",
]

_RulesetT = TypeVar("_RulesetT", bound="_Ruleset")


def _compile(pattern: str, ignore_case: bool) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE if ignore_case else 0)


class PatternRule(BaseModel):
    """A single named regular expression."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    reason: str = ""
    ignore_case: bool = True

    _compiled: re.Pattern[str] | None = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _check_pattern(self) -> "PatternRule":
        try:
            self._compiled = _compile(self.pattern, self.ignore_case)
        except re.error as exc:
            raise ValueError(f"rule '{self.name}' has an invalid pattern: {exc}") from exc
        return self

    def search(self, text: str) -> bool:
        compiled = self._compiled or _compile(self.pattern, self.ignore_case)
        return compiled.search(text) is not None


class VocabularyRule(BaseModel):
    """A weighted group of patterns that contributes once to a risk score."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    weight: int = Field(..., ge=0)
    patterns: tuple[str, ...] = ()

    _compiled: tuple[re.Pattern[str], ...] = PrivateAttr(default=())

    @model_validator(mode="after")
    def _check_patterns(self) -> "VocabularyRule":
        compiled: list[re.Pattern[str]] = []
        for pattern in self.patterns:
            try:
                compiled.append(_compile(pattern, True))
            except re.error as exc:
                raise ValueError(f"rule '{self.name}' has an invalid pattern {pattern!r}: {exc}") from exc
        self._compiled = tuple(compiled)
        return self

    def search(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._compiled)


class RiskThresholds(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    medium: int = Field(25, ge=0)
    high: int = Field(50, ge=0)
    critical: int = Field(80, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "RiskThresholds":
        if not self.medium < self.high < self.critical:
            raise ValueError("thresholds must satisfy medium < high < critical")
        return self


class _Ruleset(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(..., min_length=1)

    @classmethod
    def from_file(cls: Type[_RulesetT], path: str | Path) -> _RulesetT:
        location = Path(path)
        try:
            return cls.model_validate_json(location.read_text(encoding="utf-8"))
        except OSError as exc:
            raise RulesetError(f"Unable to read ruleset at {location}: {exc.strerror or exc}") from exc
        except ValidationError as exc:
            raise RulesetError(f"Invalid ruleset at {location}: {exc.error_count()} validation error(s)") from exc


class RiskRuleset(_Ruleset):
    version: str = "risk.rules.v1"
    denylist: tuple[PatternRule, ...] = ()
    destructive: VocabularyRule
    secret_exfiltration: VocabularyRule
    core_surface: VocabularyRule
    broad_scope: VocabularyRule
    mutation: VocabularyRule
    sensitive_paths: tuple[str, ...] = ()
    sensitive_path_weight: int = Field(20, ge=0)
    repeated_failure_threshold: int = Field(2, ge=0)
    repeated_failure_weight: int = Field(15, ge=0)
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)


class GuardrailRuleset(_Ruleset):
    version: str = "guardrails.rules.v1"
    jailbreak: tuple[PatternRule, ...] = ()
    destructive_instructions: tuple[PatternRule, ...] = ()
    credential_exfiltration: tuple[PatternRule, ...] = ()
    dangerous_commands: tuple[PatternRule, ...] = ()
    denied_paths: tuple[str, ...] = ()
    ui_extensions: tuple[str, ...] = ()
    max_raw_hex_colors: int = Field(5, ge=0)
    secret_patterns: tuple[PatternRule, ...] = ()

    @field_validator("ui_extensions")
    @classmethod
    def _normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value)


def normalize_path(path: str) -> str:
    normalized = path.strip().strip("'\"").replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lower()


def path_matches(path: str, patterns: Iterable[str]) -> str | None:
    """Return the first glob in ``patterns`` matching ``path`` or one of its suffixes."""
    normalized = normalize_path(path)
    if not normalized:
        return None
    basename = normalized.rsplit("/", 1)[-1]
    for pattern in patterns:
        candidate = pattern.lower()
        if (
            fnmatchcase(normalized, candidate)
            or fnmatchcase(basename, candidate)
            or fnmatchcase(normalized, f"*/{candidate}")
        ):
            return pattern
    return None


_ROOT_DELETE = r"\brm\s+-[a-z]*(?:rf|fr)[a-z]*\s+(?:--no-preserve-root\s+)?(?:/|~/?|\.\./?)\*?(?=$|[\s;&|])"


@lru_cache(maxsize=1)
def default_risk_ruleset() -> RiskRuleset:
    return RiskRuleset(
        denylist=(
            PatternRule(name="recursive-root-delete", pattern=_ROOT_DELETE, reason="Recursive deletion of root directory"),
            PatternRule(name="no-preserve-root", pattern=r"--no-preserve-root", reason="Recursive deletion of root directory"),
            PatternRule(
                name="mass-delete-root",
                pattern=(
                    r"\b(?:delete|remove|wipe|erase|destroy)\b.*\b(?:all|every|entire)\b.*"
                    r"\b(?:root|filesystem|hard\s*drive|disk|system\s+(?:files|drive|directory|folder))\b"
                ),
                reason="Mass deletion of the filesystem root",
            ),
            PatternRule(name="format-system-drive", pattern=r"\bformat\s+[a-z]:", reason="Formatting system drive"),
            PatternRule(name="disk-overwrite", pattern=r"\bmkfs(?:\.\w+)?\b|\bdd\s+.*\bof=/dev/", reason="Overwriting a block device"),
            PatternRule(name="fork-bomb", pattern=r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", reason="Fork bomb"),
            PatternRule(
                name="force-push-protected",
                pattern=r"\bgit\s+push\b.*(?:--force\b|\s-f\b).*\b(?:main|master)\b",
                reason="Force push to protected branch",
            ),
            PatternRule(name="drop-database", pattern=r"\bdrop\s+database\b", reason="Database deletion"),
        ),
        destructive=VocabularyRule(
            name="destructive-vocabulary",
            weight=50,
            patterns=(
                r"\bdelete\b",
                r"\bremove\s+all\b",
                r"\brm\s+-",
                r"\bunlink\b",
                r"\bdrop\s+(?:the\s+)?(?:table|schema|collection|index)\b",
                r"\btruncate\b",
                r"\bwipe\b",
                r"\bdestroy\b",
                r"\berase\b",
                r"\bpurge\b",
                r"\bshred\b",
                r"\breset\s+--hard\b",
                r"\bclean\s+-[a-z]*f",
                r"\bpush\b.*(?:--force\b|\s-f\b)",
                r"(?:^|\s)(?:/\*|~/\*|\*\.\*)(?=\s|$)",
            ),
        ),
        secret_exfiltration=VocabularyRule(
            name="secret-exfiltration",
            weight=50,
            patterns=(
                r"\bdump\b.*\b(?:secrets?|credentials?|keys?|tokens?|env\w*)\b",
                r"\b(?:show|print|display|list|reveal|echo|output)\b.*\benv(?:ironment)?\s+var(?:iable)?s?\b",
                r"\b(?:show|print|display|list|reveal|expose|leak)\b.*\b(?:secrets?|api\s*keys?|private\s+keys?|credentials?|passwords?|tokens?)\b",
                r"\b(?:print|show|dump|list)\s+all\s+(?:the\s+)?keys\b",
                r"\bprintenv\b",
                r"\bcat\s+\S*\.env\b",
                r"process\.env|os\.environ",
            ),
        ),
        core_surface=VocabularyRule(
            name="core-surface",
            weight=20,
            patterns=(
                r"\bconfig(?:uration)?s?\b",
                r"\bauth\w*\b",
                r"\b(?:login|session|password)s?\b",
                r"\bdatabases?\b",
                r"\b(?:migration|schema)s?\b",
                r"\brecords?\b",
                r"\bdeploy\w*\b",
                r"\b(?:release|publish)\w*\b",
                r"\bprod(?:uction)?\b",
            ),
        ),
        broad_scope=VocabularyRule(
            name="broad-scope",
            weight=15,
            patterns=(r"\ball\b", r"\bevery(?:thing|where)?\b", r"\brecursive(?:ly)?\b", r"\bentire\b"),
        ),
        mutation=VocabularyRule(
            name="mutation-verb",
            weight=10,
            patterns=(
                r"\b(?:update|modify|change|edit|write|create|add|refactor|rename|move|replace|install|upgrade"
                r"|migrate|overwrite|patch|restructure|reorganize)\b",
            ),
        ),
        sensitive_paths=(
            "package.json",
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
            "*.lock",
            "pipfile",
            "requirements*.txt",
            "pyproject.toml",
            "setup.py",
            "setup.cfg",
            "go.mod",
            "go.sum",
            "cargo.toml",
            "gemfile",
            "composer.json",
            "tsconfig.json",
            ".env",
            ".env.*",
            "*.env",
            ".github/workflows/*",
            ".gitlab-ci.yml",
            ".circleci/*",
            "jenkinsfile",
            "azure-pipelines.yml",
        ),
    )


@lru_cache(maxsize=1)
def default_guardrail_ruleset() -> GuardrailRuleset:
    return GuardrailRuleset(
        jailbreak=(
            PatternRule(
                name="ignore-rules",
                pattern=r"\bignore\b.*\b(?:rules?|guardrails?|safety|restrictions?|instructions?|guidelines?|polic(?:y|ies))\b",
                reason="Attempt to bypass safety rules or override core protocols",
            ),
            PatternRule(
                name="disregard-instructions",
                pattern=r"\b(?:disregard|forget)\b.*\b(?:previous|prior|above|all)\b.*\b(?:instructions?|rules?|prompts?)\b",
                reason="Attempt to bypass safety rules or override core protocols",
            ),
            PatternRule(
                name="bypass-security",
                pattern=r"\bbypass\b.*\b(?:security|safety|guardrails?|restrictions?|filters?)\b",
                reason="Attempt to bypass safety rules or override core protocols",
            ),
            PatternRule(
                name="unrestricted-mode",
                pattern=r"\b(?:switch|enter|enable|activate)\b.*\b(?:unfiltered|unrestricted|god|jailbreak)\s+mode\b",
                reason="Attempt to switch into an unrestricted persona",
            ),
            PatternRule(
                name="override-protocol",
                pattern=r"\boverride\b.*\b(?:core|safety|system)\b.*\b(?:protocols?|rules?|prompts?)\b",
                reason="Attempt to bypass safety rules or override core protocols",
            ),
            PatternRule(
                name="do-not-restrict",
                pattern=r"\bdo\s+not\s+(?:restrict|filter|censor)\b",
                reason="Attempt to disable restrictions",
            ),
            PatternRule(
                name="persona-bypass",
                pattern=r"\bact\s+as\s+if\b|\bpretend\b.*\b(?:no|without)\s+(?:rules|restrictions|limits)\b",
                reason="Persona-based attempt to bypass restrictions",
            ),
        ),
        destructive_instructions=(
            PatternRule(
                name="mass-delete",
                pattern=r"\b(?:delete|remove|erase|destroy)\b.*\b(?:root|system|everything|all\s+files)\b",
                reason="Mass deletion or system damage risk",
            ),
            PatternRule(
                name="wipe-storage",
                pattern=r"\bwipe\b.*\b(?:disk|drive|partition|server|everything)\b",
                reason="Mass deletion or system damage risk",
            ),
            PatternRule(
                name="recursive-delete",
                pattern=r"\brm\s+-[a-z]*(?:rf|fr)[a-z]*\s+[/\\~]",
                reason="Recursive deletion of an absolute path",
            ),
            PatternRule(name="format-drive", pattern=r"\bformat\s+[a-z]:", reason="Formatting a system drive"),
            PatternRule(name="shred", pattern=r"\bshred\s+", reason="Irrecoverable file destruction"),
            PatternRule(
                name="truncate-data",
                pattern=r"\b(?:truncate|drop)\b.*\b(?:table|database)\b",
                reason="Destruction of stored data",
            ),
            PatternRule(
                name="remove-core-files",
                pattern=r"\bremove\b.*\b(?:important|core|essential)\b.*\b(?:files?|folders?|directories)\b",
                reason="Removal of essential project files",
            ),
        ),
        credential_exfiltration=(
            PatternRule(
                name="print-env-secrets",
                pattern=r"\bprint\b.*\b(?:env|environment|variables?)\b.*\b(?:secrets?|keys?|tokens?|pat|passwords?)\b",
                reason="Request to dump secrets or environment variables",
            ),
            PatternRule(
                name="dump-credentials",
                pattern=r"\bdump\b.*\b(?:database|cred\w*|secrets?|env\w*|keys?)\b",
                reason="Request to dump secrets or environment variables",
            ),
            PatternRule(
                name="show-secrets",
                pattern=r"\b(?:show|reveal|display|list|print)\b.*\b(?:keys|secrets?|credentials|passwords|environment\s+variables)\b",
                reason="Request to dump secrets or environment variables",
            ),
            PatternRule(
                name="debug-env",
                pattern=r"\bdebug\b.*(?:\benv\b|process\.env|os\.environ)",
                reason="Request to dump secrets or environment variables",
            ),
        ),
        dangerous_commands=(
            PatternRule(
                name="root-delete",
                pattern=r"\brm\s+-[a-z]*(?:rf|fr)[a-z]*\s+(?:--no-preserve-root\s+)?[/~*]",
                reason="Unrestricted recursive delete",
            ),
            PatternRule(name="format-drive", pattern=r"\bformat\s+[a-z]:", reason="Drive formatting"),
            PatternRule(name="mkfs", pattern=r"\bmkfs(?:\.\w+)?\b", reason="Filesystem creation over an existing device"),
            PatternRule(name="dd-device", pattern=r"\bdd\s+.*\bof=/dev/", reason="Raw write to a block device"),
            PatternRule(name="drop-database", pattern=r"\bdrop\s+database\b", reason="Database drop"),
            PatternRule(
                name="mass-delete-sql",
                pattern=r"\bdelete\s+from\b.*\bwhere\s+1\s*=\s*1\b",
                reason="Unbounded delete statement",
            ),
            PatternRule(name="fork-bomb", pattern=r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", reason="Fork bomb"),
            PatternRule(name="eval-injection", pattern=r"\beval\(", reason="Dynamic code evaluation"),
            PatternRule(name="env-access", pattern=r"process\.env\.", reason="Environment variable access"),
            PatternRule(name="world-writable-root", pattern=r"\bchmod\s+-R\s+777\s+/", reason="World-writable root"),
            PatternRule(
                name="pipe-to-shell",
                pattern=r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z)?sh\b",
                reason="Remote script piped into a shell",
            ),
        ),
        denied_paths=(
            ".env",
            ".env.*",
            "*.pem",
            "*.key",
            "id_rsa",
            "id_rsa.*",
            "id_ed25519",
            "id_ed25519.*",
            "*credentials*",
            "*secrets*",
            ".git/config",
            ".npmrc",
            ".pypirc",
            ".netrc",
            ".aws/*",
            ".ssh/*",
        ),
        ui_extensions=(".astro", ".css", ".scss", ".tsx", ".jsx", ".html", ".vue", ".svelte"),
        max_raw_hex_colors=5,
        secret_patterns=(
            PatternRule(
                name="github-fine-grained-pat",
                pattern=r"github_pat_[A-Za-z0-9_]+",
                reason="GitHub personal access token",
                ignore_case=False,
            ),
            PatternRule(
                name="aws-access-key",
                pattern=r"AKIA[0-9A-Z]{16}",
                reason="AWS access key id",
                ignore_case=False,
            ),
            PatternRule(
                name="github-token",
                pattern=r"gh[pousr]_[A-Za-z0-9]{36,}",
                reason="GitHub token",
                ignore_case=False,
            ),
            PatternRule(
                name="provider-secret-key",
                pattern=r"\bsk-[A-Za-z0-9_-]{20,}",
                reason="Provider API secret key",
                ignore_case=False,
            ),
            PatternRule(
                name="private-key-block",
                pattern=r"-----BEGIN (?:[A-Z]+ )*PRIVATE KEY-----",
                reason="PEM private key",
                ignore_case=False,
            ),
            PatternRule(
                name="slack-token",
                pattern=r"\bxox[baprs]-[A-Za-z0-9-]{10,}",
                reason="Slack token",
                ignore_case=False,
            ),
        ),
    )
