"""Ordered pipeline steps."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from content_guardian.pipeline.context import PipelineContext
from content_guardian.pipeline.models import StepName
from content_guardian.pipeline.steps.analyze import analyze_llm
from content_guardian.pipeline.steps.fetch import fetch_items
from content_guardian.pipeline.steps.lifecycle import run_finish, run_start
from content_guardian.pipeline.steps.normalize import normalize_hash
from content_guardian.pipeline.steps.revisions import diff, store_revision
from content_guardian.pipeline.steps.tickets import upsert_ticket

StepFunction = Callable[[PipelineContext], None]


@dataclass(frozen=True, slots=True)
class PipelineStep:
    name: StepName
    execute: StepFunction


PIPELINE_STEPS: tuple[PipelineStep, ...] = (
    PipelineStep(StepName.RUN_START, run_start),
    PipelineStep(StepName.FETCH_ITEMS, fetch_items),
    PipelineStep(StepName.NORMALIZE_HASH, normalize_hash),
    PipelineStep(StepName.STORE_REVISION, store_revision),
    PipelineStep(StepName.DIFF, diff),
    PipelineStep(StepName.ANALYZE_LLM, analyze_llm),
    PipelineStep(StepName.UPSERT_TICKET, upsert_ticket),
    PipelineStep(StepName.RUN_FINISH, run_finish),
)
