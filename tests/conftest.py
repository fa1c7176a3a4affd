"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from content_guardian.analysis.prompts import CompliancePrompt
from content_guardian.config import PipelineSettings
from content_guardian.errors import AnalysisRequestError
from content_guardian.pipeline.models import Channel, FetchedItem, Source, SourceCreate
from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.pipeline.state_machine import PipelineStateMachine
from content_guardian.pipeline.steps import PIPELINE_STEPS, PipelineStep


class FakeConnector:
    """Returns the configured items; raises for the first `failures` calls."""

    def __init__(self, items: Sequence[FetchedItem] = (), *, failures: int = 0) -> None:
        self.items = list(items)
        self.failures = failures
        self.calls = 0

    def fetch(self, source: Source) -> list[FetchedItem]:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"connector failure #{self.calls}")
        return list(self.items)


@dataclass
class FakeAnalyzer:
    """Answers every prompt with `response`, or with `respond(prompt)` when given."""

    response: str = '{"complianceStatus": "COMPLIANT", "violations": []}'
    respond: Callable[[CompliancePrompt], str] | None = None
    fail_when: Callable[[CompliancePrompt], bool] | None = None
    provider: str = "fake"
    model: str = "fake-model"
    prompts: list[CompliancePrompt] = field(default_factory=list)
    closed: bool = False

    def analyze(self, prompt: CompliancePrompt) -> str:
        self.prompts.append(prompt)
        if self.fail_when is not None and self.fail_when(prompt):
            raise AnalysisRequestError("upstream returned 503")
        if self.respond is not None:
            return self.respond(prompt)
        return self.response

    def close(self) -> None:
        self.closed = True


def non_compliant_response(*, rule_version_id: str, severity: str = "HIGH") -> str:
    return json.dumps(
        {
            "complianceStatus": "NON_COMPLIANT",
            "languageDetected": "en",
            "languageConfidence": 0.97,
            "violations": [
                {
                    "ruleVersionId": rule_version_id,
                    "ruleId": "rule-1",
                    "severitySnapshot": severity,
                    "evidence": [{"field": "main_text", "snippet": "guaranteed returns"}],
                    "explanation": "Promises guaranteed returns",
                    "fixSuggestion": "Remove the guarantee",
                },
            ],
        },
    )


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[PipelineRepository]:
    repo = PipelineRepository(tmp_path / "guardian.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def web_source(repository: PipelineRepository) -> Source:
    return repository.add_source(
        SourceCreate(
            display_name="Brand site",
            channel=Channel.WEB,
            country_code="de",
            start_urls=["https://example.com/offer"],
            crawl_frequency_minutes=60,
        ),
    )


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def build_state_machine(
    repository: PipelineRepository,
    sleeps: list[float],
) -> Callable[..., PipelineStateMachine]:
    """Factory wiring fakes into the state machine; backoff sleeps are recorded, not slept."""

    def _build(
        *,
        connector: FakeConnector | None = None,
        analyzer: FakeAnalyzer | None = None,
        analyzer_factory: Callable[[], FakeAnalyzer] | None = None,
        steps: Sequence[PipelineStep] = PIPELINE_STEPS,
        settings: PipelineSettings | None = None,
    ) -> PipelineStateMachine:
        connector = connector or FakeConnector()
        analyzer = analyzer or FakeAnalyzer()
        return PipelineStateMachine(
            repository,
            settings=settings or PipelineSettings(),
            connector_factory=lambda _source: connector,
            analyzer_factory=analyzer_factory or (lambda: analyzer),
            steps=steps,
            sleep=sleeps.append,
        )

    return _build
