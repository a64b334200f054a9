from __future__ import annotations

import re
from dataclasses import dataclass, field

from envvault_core.errors import ValidationError

_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_CONVENTIONAL_KEY_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PREVIEW_CHARS = 50


@dataclass
class EnvFormatReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    variable_count: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_CHARS:
        return text[:_PREVIEW_CHARS] + "..."
    return text


def validate_env_format(content: str) -> EnvFormatReport:
    report = EnvFormatReport()
    if not content or not content.strip():
        report.errors.append("Environment variables cannot be empty")
        return report

    for line_number, line in enumerate(content.splitlines(), start=1):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if trimmed.startswith("export "):
            trimmed = trimmed[len("export "):].lstrip()
        if "=" not in trimmed:
            report.errors.append(
                f'Line {line_number}: Invalid format. Expected "KEY=VALUE" but got "{_preview(trimmed)}"'
            )
            continue
        key = trimmed.split("=", 1)[0].strip()
        if not key:
            report.errors.append(f"Line {line_number}: Key cannot be empty")
            continue
        if not _KEY_PATTERN.match(key):
            report.errors.append(
                f'Line {line_number}: Key "{_preview(key)}" may only contain letters, digits, '
                "underscores and dots, and must not start with a digit"
            )
            continue
        if not _CONVENTIONAL_KEY_PATTERN.match(key):
            report.warnings.append(f'Line {line_number}: Key "{key}" is not UPPER_SNAKE_CASE')
        report.variable_count += 1
    return report


def require_valid_env_format(content: str, *, source: str = "env file") -> EnvFormatReport:
    report = validate_env_format(content)
    if not report.is_valid:
        details = "; ".join(report.errors[:5])
        if len(report.errors) > 5:
            details += f"; and {len(report.errors) - 5} more"
        raise ValidationError(f"Malformed {source}: {details}")
    return report
