"""
Image Publisher
===============
Pushes the built image to the registry under two tags: the unique build
number first, then the moving ``latest`` tag.

A push is not transactional. If the unique tag lands and ``latest``
fails, the unique tag stays in the registry; the stage fails and the
error reports which tags were pushed.
"""
import logging
from typing import List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound

from deploy_pipeline.core.constants import IMAGE_BUILDER, REGISTRY_CREDENTIAL
from deploy_pipeline.core.errors import PublishError
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.models.artifact import ImageArtifact
from deploy_pipeline.models.stage import StageOutcome

logger = logging.getLogger(__name__)


def push_tag(client, repository: str, tag: str) -> List[str]:
    """
    Push one tag and return the streamed progress lines.

    The daemon reports push failures inside the stream rather than as an
    HTTP error, so every line is inspected.
    """
    lines = []
    for line in client.images.push(repository, tag=tag, stream=True, decode=True):
        if "error" in line:
            detail = line.get("errorDetail", {}).get("message") or line["error"]
            raise APIError(f"push {repository}:{tag} failed: {detail}")
        status = line.get("status")
        if status and status not in lines[-1:]:
            lines.append(status)
    return lines


def _login(client, registry_url: str, username: Optional[str], password: Optional[str]) -> None:
    if not (username and password):
        logger.info("No registry credential bound; relying on daemon credentials")
        return
    try:
        client.login(username=username, password=password, registry=registry_url or None)
    except APIError as e:
        raise PublishError(f"Registry login failed: {e}")


def publish_image(ctx: StageContext) -> StageOutcome:
    """
    Output data:
        artifact (with pushed_tags), image (unique reference)
    """
    cfg = ctx.config
    built = ctx.output_of(IMAGE_BUILDER, "artifact")
    if not built:
        raise PublishError("No image artifact from the build stage")
    artifact = ImageArtifact(**built)

    try:
        client = docker.from_env()
    except DockerException as e:
        raise PublishError(f"Docker daemon unavailable: {e}")

    _login(
        client,
        cfg.registry_url,
        ctx.credentials.get_optional(REGISTRY_CREDENTIAL, "username"),
        ctx.credentials.get_optional(REGISTRY_CREDENTIAL, "password"),
    )

    pushed: List[str] = []
    output: List[str] = []
    for tag in (artifact.tag, artifact.latest_tag):
        try:
            if tag != artifact.tag:
                client.images.get(artifact.reference).tag(artifact.repository, tag=tag)
            logger.info("Pushing %s:%s", artifact.repository, tag)
            output.extend(push_tag(client, artifact.repository, tag))
        except (APIError, ImageNotFound) as e:
            if pushed:
                logger.error("Partial publish of %s: pushed %s", artifact.repository, pushed)
            raise PublishError(
                f"Publishing {artifact.repository}:{tag} failed",
                str(e),
                pushed_tags=pushed,
            )
        pushed.append(tag)

    artifact.pushed_tags = pushed
    logger.info("Published %s as %s", artifact.repository, ", ".join(pushed))
    return StageOutcome(
        output="\n".join(output),
        data={"artifact": artifact.model_dump(), "image": artifact.reference},
    )
