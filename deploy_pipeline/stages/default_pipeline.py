"""
Default Pipeline
================
The delivery pipeline as an ordered list of stage descriptors:

    Source Fetcher → Test Runner → Static Analyzer → Image Builder
        → Image Publisher → Deployment Trigger

Each stage declares the only credential it may read.
"""
import os
from typing import List

from deploy_pipeline.core.constants import (
    ANALYSIS_CREDENTIAL,
    DEPLOY_CREDENTIAL,
    DEPLOYMENT_TRIGGER,
    IMAGE_BUILDER,
    IMAGE_PUBLISHER,
    REGISTRY_CREDENTIAL,
    SCM_CREDENTIAL,
    SOURCE_FETCHER,
    STATIC_ANALYZER,
    TEST_RUNNER,
)
from deploy_pipeline.models.artifact import ImageArtifact
from deploy_pipeline.models.stage import StageDefinition, StageKind, StageOutcome
from deploy_pipeline.stages.deployment_trigger import trigger_deployment
from deploy_pipeline.stages.image_builder import build_image
from deploy_pipeline.stages.image_publisher import publish_image
from deploy_pipeline.stages.source_fetcher import fetch_source
from deploy_pipeline.stages.static_analyzer import run_static_analysis
from deploy_pipeline.stages.test_runner import run_tests


def _workspace_exists(ctx, outcome: StageOutcome) -> bool:
    return os.path.isdir(outcome.data.get("workspace_path", ""))


def _both_tags_pushed(ctx, outcome: StageOutcome) -> bool:
    artifact = outcome.data.get("artifact")
    return bool(artifact) and ImageArtifact(**artifact).fully_published


def default_stages() -> List[StageDefinition]:
    return [
        StageDefinition(
            name=SOURCE_FETCHER,
            kind=StageKind.FETCH,
            action=fetch_source,
            credentials=(SCM_CREDENTIAL,),
            post_condition=_workspace_exists,
        ),
        StageDefinition(
            name=TEST_RUNNER,
            kind=StageKind.TEST,
            action=run_tests,
        ),
        StageDefinition(
            name=STATIC_ANALYZER,
            kind=StageKind.STATIC_ANALYSIS,
            action=run_static_analysis,
            credentials=(ANALYSIS_CREDENTIAL,),
        ),
        StageDefinition(
            name=IMAGE_BUILDER,
            kind=StageKind.BUILD_IMAGE,
            action=build_image,
        ),
        StageDefinition(
            name=IMAGE_PUBLISHER,
            kind=StageKind.PUBLISH_IMAGE,
            action=publish_image,
            credentials=(REGISTRY_CREDENTIAL,),
            post_condition=_both_tags_pushed,
        ),
        StageDefinition(
            name=DEPLOYMENT_TRIGGER,
            kind=StageKind.DEPLOY,
            action=trigger_deployment,
            credentials=(DEPLOY_CREDENTIAL,),
        ),
    ]
