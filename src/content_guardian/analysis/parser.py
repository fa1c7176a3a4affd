"""Parse raw collaborator output into a compliance verdict."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from content_guardian.pipeline.models import (
    AnalysisOutput,
    ComplianceStatus,
    Evidence,
    Severity,
    Violation,
)

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_analysis_response(raw: str, *, revision_id: str, content_id: str) -> AnalysisOutput:
    """Parse the JSON verdict; anything unreadable degrades to UNCERTAIN."""

    payload_text = raw.strip()
    fenced = _CODE_FENCE_RE.search(payload_text)
    if fenced:
        payload_text = fenced.group(1).strip()

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        logger.warning("Unparsable analysis response for revision %s: %s", revision_id, exc)
        return _uncertain(revision_id, content_id, f"Unparsable analysis response: {exc.msg}")
    if not isinstance(payload, dict):
        return _uncertain(revision_id, content_id, "Analysis response is not a JSON object")

    raw_status = payload.get("complianceStatus")
    try:
        status = ComplianceStatus(raw_status)
    except ValueError:
        status = ComplianceStatus.UNCERTAIN

    raw_violations = payload.get("violations")
    violations = [
        violation
        for violation in (
            _parse_violation(item)
            for item in (raw_violations if isinstance(raw_violations, list) else [])
        )
        if violation is not None
    ]

    confidence = payload.get("languageConfidence")
    language = payload.get("languageDetected")
    return AnalysisOutput(
        revision_id=revision_id,
        content_id=content_id,
        compliance_status=status,
        violations=violations,
        language_detected=language if isinstance(language, str) else None,
        language_confidence=(
            float(confidence)
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool)
            else None
        ),
        uncertain_reason=(
            f"Unrecognized compliance status: {raw_status!r}"
            if status is ComplianceStatus.UNCERTAIN and raw_status != status.value
            else None
        ),
    )


def _parse_violation(item: Any) -> Violation | None:
    if not isinstance(item, dict):
        return None
    try:
        severity = Severity(str(item.get("severitySnapshot", "")).upper())
    except ValueError:
        return None
    raw_evidence = item.get("evidence")
    evidence = [
        Evidence(
            field=str(entry.get("field", "")),
            snippet=str(entry.get("snippet", "")),
            start_offset=_optional_int(entry.get("startOffset")),
            end_offset=_optional_int(entry.get("endOffset")),
        )
        for entry in (raw_evidence if isinstance(raw_evidence, list) else [])
        if isinstance(entry, dict)
    ]
    fix_suggestion = item.get("fixSuggestion")
    return Violation(
        rule_version_id=str(item.get("ruleVersionId", "")),
        rule_id=str(item.get("ruleId", "")),
        severity=severity,
        explanation=str(item.get("explanation", "")),
        evidence=evidence,
        fix_suggestion=fix_suggestion if isinstance(fix_suggestion, str) else None,
    )


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _uncertain(revision_id: str, content_id: str, reason: str) -> AnalysisOutput:
    return AnalysisOutput(
        revision_id=revision_id,
        content_id=content_id,
        compliance_status=ComplianceStatus.UNCERTAIN,
        uncertain_reason=reason,
    )
