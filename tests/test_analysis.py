from __future__ import annotations

import json

import allure
import httpx
import pytest

from content_guardian.analysis.client import OpenAICompatibleAnalyzer, build_analyzer
from content_guardian.analysis.parser import parse_analysis_response
from content_guardian.analysis.prompts import (
    SYSTEM_PROMPT,
    CompliancePrompt,
    build_compliance_prompt,
    redact_pii,
)
from content_guardian.config import AnalysisSettings
from content_guardian.errors import AnalysisRequestError, AnalysisUnavailableError
from content_guardian.pipeline.models import (
    ComplianceRule,
    ComplianceStatus,
    RevisionText,
    Severity,
)

pytestmark = [
    allure.epic("Compliance Analysis"),
    allure.feature("Analysis Collaborator"),
]

VERDICT = {
    "complianceStatus": "NON_COMPLIANT",
    "languageDetected": "it",
    "languageConfidence": 0.91,
    "violations": [
        {
            "ruleVersionId": "v-1",
            "ruleId": "r-1",
            "severitySnapshot": "HIGH",
            "evidence": [
                {"field": "title", "snippet": "rendimento garantito", "startOffset": 0},
            ],
            "explanation": "Guaranteed returns",
            "fixSuggestion": "Drop the guarantee",
        },
    ],
}


def _parse(raw: str):
    return parse_analysis_response(raw, revision_id="rev-1", content_id="content-1")


def _rule() -> ComplianceRule:
    return ComplianceRule(
        rule_id="r-1",
        version_id="v-1",
        name="No guaranteed returns",
        rule_type="KEYWORD",
        severity=Severity.HIGH,
        payload={"description": "Never promise guaranteed returns"},
        channels=["WEB"],
        countries=["IT"],
    )


@allure.story("Response parsing")
def test_parses_full_verdict() -> None:
    output = _parse(json.dumps(VERDICT))

    assert output.revision_id == "rev-1"
    assert output.content_id == "content-1"
    assert output.compliance_status is ComplianceStatus.NON_COMPLIANT
    assert output.language_detected == "it"
    assert output.language_confidence == pytest.approx(0.91)
    (violation,) = output.violations
    assert violation.severity is Severity.HIGH
    assert violation.rule_version_id == "v-1"
    assert violation.fix_suggestion == "Drop the guarantee"
    (evidence,) = violation.evidence
    assert evidence.field == "title"
    assert evidence.start_offset == 0
    assert evidence.end_offset is None
    assert output.uncertain_reason is None


@allure.story("Response parsing")
def test_parses_verdict_inside_code_fence() -> None:
    raw = f"Here is the result:\n```json\n{json.dumps(VERDICT)}\n```\n"

    assert _parse(raw).compliance_status is ComplianceStatus.NON_COMPLIANT


@allure.story("Response parsing")
@pytest.mark.parametrize(
    ("raw", "reason_prefix"),
    [
        ("the content looks fine", "Unparsable analysis response"),
        ("[]", "Analysis response is not a JSON object"),
        ('{"complianceStatus": "MAYBE"}', "Unrecognized compliance status: 'MAYBE'"),
        ("{}", "Unrecognized compliance status: None"),
    ],
)
def test_unreadable_verdict_degrades_to_uncertain(raw: str, reason_prefix: str) -> None:
    output = _parse(raw)

    assert output.compliance_status is ComplianceStatus.UNCERTAIN
    assert output.violations == []
    assert output.uncertain_reason is not None
    assert output.uncertain_reason.startswith(reason_prefix)


@allure.story("Response parsing")
def test_explicit_uncertain_status_has_no_reason() -> None:
    output = _parse('{"complianceStatus": "UNCERTAIN", "violations": []}')

    assert output.compliance_status is ComplianceStatus.UNCERTAIN
    assert output.uncertain_reason is None


@allure.story("Response parsing")
def test_malformed_violations_are_dropped() -> None:
    payload = {
        "complianceStatus": "NON_COMPLIANT",
        "languageConfidence": True,
        "violations": [
            "not an object",
            {"ruleVersionId": "v-2", "severitySnapshot": "CRITICAL"},
            {
                "ruleVersionId": "v-3",
                "severitySnapshot": "medium",
                "evidence": ["bad", {"field": "caption", "snippet": "x", "endOffset": "4"}],
                "explanation": "Misleading claim",
            },
        ],
    }

    output = _parse(json.dumps(payload))

    assert output.language_confidence is None
    (violation,) = output.violations
    assert violation.rule_version_id == "v-3"
    assert violation.severity is Severity.MEDIUM
    assert [item.field for item in violation.evidence] == ["caption"]
    assert violation.evidence[0].end_offset is None


@allure.story("Response parsing")
@pytest.mark.parametrize("evidence", [5, "snippet", {"field": "caption"}, None])
def test_non_list_evidence_is_treated_as_empty(evidence: object) -> None:
    payload = {
        "complianceStatus": "NON_COMPLIANT",
        "violations": [
            {
                "ruleVersionId": "v-1",
                "severitySnapshot": "LOW",
                "evidence": evidence,
                "explanation": "Promises returns",
            },
        ],
    }

    output = _parse(json.dumps(payload))

    assert output.compliance_status is ComplianceStatus.NON_COMPLIANT
    (violation,) = output.violations
    assert violation.evidence == []


@allure.story("Prompt construction")
def test_redaction_replaces_personal_data() -> None:
    text = "Contact Mario Rossi at mario.rossi@example.com or 555-123-4567."

    redacted = redact_pii(text)

    assert "Mario Rossi" not in redacted
    assert "[PERSON_NAME]" in redacted
    assert "[EMAIL]" in redacted
    assert "[PHONE]" in redacted


@allure.story("Prompt construction")
def test_prompt_lists_non_empty_fields_and_rules() -> None:
    revision = RevisionText(
        revision_id="rev-1",
        content_id="content-1",
        title="Rendimento garantito",
        main_text="Write to anna@example.com today",
    )

    prompt = build_compliance_prompt(revision, [_rule()], redact=True)

    assert prompt.system == SYSTEM_PROMPT
    assert '"title": "Rendimento garantito"' in prompt.user
    assert "[EMAIL]" in prompt.user
    assert "caption" not in prompt.user
    assert 'Rule "No guaranteed returns" (id: r-1, version: v-1, KEYWORD, severity: HIGH)' in (
        prompt.user
    )
    assert "Never promise guaranteed returns" in prompt.user


@allure.story("Prompt construction")
def test_prompt_keeps_text_when_redaction_is_disabled() -> None:
    revision = RevisionText(
        revision_id="rev-1",
        content_id="content-1",
        main_text="Write to anna@example.com today",
    )

    prompt = build_compliance_prompt(revision, [], redact=False)

    assert "anna@example.com" in prompt.user


@allure.story("HTTP client")
def test_client_posts_chat_completion_and_returns_content() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"role": "assistant", "content": "{}"}}]},
        )

    settings = AnalysisSettings(api_key="secret", base_url="https://llm.test/v1", model="m-1")
    with OpenAICompatibleAnalyzer(settings, transport=httpx.MockTransport(_handler)) as client:
        raw = client.analyze(CompliancePrompt(system="sys", user="usr"))

    assert raw == "{}"
    (request,) = seen
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["model"] == "m-1"
    assert body["max_tokens"] == 4096
    assert body["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "usr"},
    ]


@allure.story("HTTP client")
def test_client_wraps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    client = OpenAICompatibleAnalyzer(AnalysisSettings(api_key="secret"), transport=transport)

    with pytest.raises(AnalysisRequestError):
        client.analyze(CompliancePrompt(system="sys", user="usr"))
    client.close()


@allure.story("HTTP client")
def test_client_returns_empty_object_when_content_is_missing() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    client = OpenAICompatibleAnalyzer(AnalysisSettings(api_key="secret"), transport=transport)

    assert client.analyze(CompliancePrompt(system="sys", user="usr")) == "{}"
    client.close()


@allure.story("HTTP client")
def test_missing_api_key_means_analysis_is_unavailable() -> None:
    with pytest.raises(AnalysisUnavailableError):
        build_analyzer(AnalysisSettings(api_key=None))
