"""Compliance prompt construction with optional PII redaction."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

from content_guardian.pipeline.models import ComplianceRule, RevisionText

PII_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"), "[PERSON_NAME]"),
    (re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.]+\b"), "[EMAIL]"),
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]"),
    (re.compile(r"\b\d{2,3}[-.]?\d{6,8}[-.]?\d{0,4}\b"), "[ID_NUMBER]"),
)

SYSTEM_PROMPT = """You are a compliance analysis engine for Content Guardian.
Analyze the provided content against the given rules.

Respond ONLY with a JSON object in this exact format:
{
  "complianceStatus": "COMPLIANT" | "NON_COMPLIANT" | "UNCERTAIN",
  "languageDetected": "en" | "it" | "es" | etc,
  "languageConfidence": 0.0 to 1.0,
  "violations": [
    {
      "ruleVersionId": "<id>",
      "ruleId": "<id>",
      "severitySnapshot": "LOW" | "MEDIUM" | "HIGH",
      "evidence": [
        {
          "field": "<field_name>",
          "snippet": "<exact text that violates>",
          "startOffset": <number or null>,
          "endOffset": <number or null>
        }
      ],
      "explanation": "<why this violates the rule>",
      "fixSuggestion": "<suggested fix>"
    }
  ]
}

Rules:
- If NO violations found, return complianceStatus = "COMPLIANT" and empty violations array
- If content cannot be evaluated with confidence, return "UNCERTAIN"
- Each violation must reference a specific rule and provide evidence with exact text snippets"""


@dataclass(slots=True)
class CompliancePrompt:
    system: str
    user: str


def redact_pii(text: str) -> str:
    """Replace names, emails, phone and id numbers with placeholders."""

    result = text
    for pattern, replacement in PII_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def build_compliance_prompt(
    revision: RevisionText,
    rules: list[ComplianceRule],
    *,
    redact: bool,
) -> CompliancePrompt:
    fields = {
        "title": revision.title,
        "main_text": revision.main_text,
        "caption": revision.caption,
        "description": revision.description,
        "comment_text": revision.comment_text,
        "ocr_text": revision.ocr_text,
        "transcript": revision.transcript,
    }
    text_fields = {
        key: redact_pii(value) if redact else value for key, value in fields.items() if value
    }
    rules_description = "\n".join(
        f'- Rule "{rule.name}" (id: {rule.rule_id}, version: {rule.version_id}, '
        f"{rule.rule_type}, severity: {rule.severity.value}): "
        f"{json.dumps(rule.payload, ensure_ascii=False, sort_keys=True)}"
        for rule in rules
    )
    user = (
        "Analyze this content for compliance:\n\n"
        "Content fields:\n"
        f"{json.dumps(text_fields, ensure_ascii=False, indent=2)}\n\n"
        "Rules to check against:\n"
        f"{rules_description}"
    )
    return CompliancePrompt(system=SYSTEM_PROMPT, user=user)
