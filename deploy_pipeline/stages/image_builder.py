"""
Image Builder
=============
Builds the deployable container image from the workspace's build
definition and tags it with the run's build number.
"""
import logging
import os

import docker
from docker.errors import APIError, BuildError as DockerBuildError

from deploy_pipeline.core.errors import BuildError
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.models.artifact import ImageArtifact
from deploy_pipeline.models.stage import StageOutcome

logger = logging.getLogger(__name__)


def _build_log_text(chunks) -> str:
    lines = []
    for chunk in chunks or []:
        if isinstance(chunk, dict):
            text = chunk.get("stream") or chunk.get("error") or chunk.get("status") or ""
        else:
            text = str(chunk)
        if text:
            lines.append(text.rstrip("\n"))
    return "\n".join(lines)


def build_image(ctx: StageContext) -> StageOutcome:
    """
    Output data:
        artifact (ImageArtifact dump)
    """
    cfg = ctx.config
    context_path = os.path.abspath(os.path.join(ctx.workspace, cfg.build_context))
    dockerfile_path = os.path.join(context_path, cfg.dockerfile)
    if not os.path.isfile(dockerfile_path):
        raise BuildError(f"Build definition not found: {os.path.join(cfg.build_context, cfg.dockerfile)}")

    artifact = ImageArtifact(repository=cfg.image_repository, tag=ctx.build_tag)
    logger.info("Building image %s from %s", artifact.reference, context_path)

    try:
        client = docker.from_env()
        image, logs = client.images.build(
            path=context_path,
            dockerfile=cfg.dockerfile,
            tag=artifact.reference,
            rm=True,
            labels={"project": "deploy-pipeline", "build": ctx.build_tag},
        )
    except DockerBuildError as e:
        raise BuildError(f"Image build failed: {e.msg}", _build_log_text(e.build_log))
    except APIError as e:
        raise BuildError(f"Docker API error during build: {e}")

    artifact.image_id = image.id
    logger.info("Built %s (%s)", artifact.reference, image.short_id)
    return StageOutcome(
        output=_build_log_text(logs),
        data={"artifact": artifact.model_dump()},
    )
