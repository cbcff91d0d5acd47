"""
Content Validation Tool

Evaluates generated content against the compliance rules stored in canon.
Rules are data; this module only knows how to apply each rule type.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..errors import ToolExecutionError
from ..models import ToolResult
from ..providers.record_store import RecordStore
from .canon import CanonContentType, CanonLibrary
from .content import ARTIFACTS_TABLE
from .registry import ToolContext, ToolKind, ToolRegistry

logger = logging.getLogger(__name__)

PASSED = "passed"
WARNING = "warning"
FAILED = "failed"


class ValidateContentArgs(BaseModel):
    artifact_id: Optional[str] = Field(None, description="Id of a generated artifact to validate")
    content: Optional[str] = Field(None, description="Raw content to validate")
    content_type: CanonContentType = Field(
        "general", description="Content type whose compliance rules apply"
    )

    @model_validator(mode="after")
    def check_target(self) -> "ValidateContentArgs":
        if not self.artifact_id and not self.content:
            raise ValueError("either artifact_id or content is required")
        return self


@dataclass
class Finding:
    rule: str
    severity: str
    message: str


def _check(rule: dict, content: str) -> Optional[str]:
    """Return a finding message when the rule is violated, else None."""
    rule_type = rule.get("type")
    value = rule.get("value")
    lowered = content.lower()

    if rule_type == "required_phrase":
        if str(value).lower() not in lowered:
            return f"missing required phrase '{value}'"
    elif rule_type == "forbidden_phrase":
        if str(value).lower() in lowered:
            return f"contains forbidden phrase '{value}'"
    elif rule_type == "max_length":
        if len(content) > int(value):
            return f"length {len(content)} exceeds {value} characters"
    elif rule_type == "min_length":
        if len(content) < int(value):
            return f"length {len(content)} is below {value} characters"
    elif rule_type == "pattern":
        if not re.search(str(value), content, re.IGNORECASE | re.MULTILINE):
            return f"does not match pattern '{value}'"
    else:
        logger.warning(f"Skipping unknown rule type: {rule_type}")
    return None


def evaluate(content: str, rules: list[dict]) -> tuple[str, list[Finding]]:
    """
    Apply rules to content.

    Returns:
        (status, findings) where status is passed, warning or failed
    """
    findings = []
    for rule in rules:
        problem = _check(rule, content)
        if problem:
            severity = rule.get("severity", "error")
            findings.append(
                Finding(
                    rule=rule.get("source") or str(rule.get("type")),
                    severity=severity,
                    message=rule.get("message") or problem,
                )
            )
    if any(f.severity == "error" for f in findings):
        return FAILED, findings
    if findings:
        return WARNING, findings
    return PASSED, findings


def format_report(status: str, findings: list[Finding], rules_checked: int) -> str:
    lines = [f"Validation {status} ({rules_checked} rules checked)"]
    for finding in findings:
        lines.append(f"- [{finding.severity}] {finding.rule}: {finding.message}")
    return "\n".join(lines)


class ContentValidator:
    def __init__(self, store: RecordStore, canon: CanonLibrary):
        self._store = store
        self._canon = canon

    def validate(self, args: ValidateContentArgs, context: ToolContext) -> ToolResult:
        content = args.content
        content_type = args.content_type
        artifact = None
        if args.artifact_id:
            artifact = self._store.get_record(ARTIFACTS_TABLE, args.artifact_id)
            if artifact is None:
                raise ToolExecutionError(f"artifact {args.artifact_id} not found")
            content = artifact.get("content", "")
            if content_type == "general":
                content_type = artifact.get("artifact_type", "general")

        context.progress("Validating content...")
        rules = self._canon.compliance_rules(context.business_profile_id, content_type)
        status, findings = evaluate(content or "", rules)

        if artifact is not None:
            metadata = dict(artifact.get("metadata") or {})
            metadata["validation_status"] = status
            metadata["validation_findings"] = [asdict(f) for f in findings]
            self._store.update_record(ARTIFACTS_TABLE, artifact["id"], {"metadata": metadata})

        context.progress(f"Validation {status}: {len(findings)} findings")
        logger.info(
            f"[{context.run_id}] Validation {status} "
            f"({len(findings)} findings, {len(rules)} rules)"
        )
        return ToolResult.ok(
            format_report(status, findings, len(rules)),
            validation_status=status,
            findings=[asdict(f) for f in findings],
            artifact_id=args.artifact_id,
        )


def register(registry: ToolRegistry, validator: ContentValidator) -> None:
    """Register validate_content with the registry."""
    registry.register(
        name="validate_content",
        description=(
            "Check generated content against the compliance rules for its content "
            "type. Returns passed, warning or failed with itemised findings."
        ),
        arguments=ValidateContentArgs,
        handler=validator.validate,
        kind=ToolKind.VALIDATION,
    )
