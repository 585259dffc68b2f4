"""
Deployment Trigger
==================
Asks the container orchestration service to redeploy the target service.

Fire-and-forget: success means the request was accepted, not that the
new tasks came up healthy. The service re-resolves the ``latest`` tag
published by the previous stage.
"""
import json
import logging

from deploy_pipeline.core.constants import DEPLOY_CREDENTIAL
from deploy_pipeline.core.errors import DeploymentRequestError
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.executor.tool_runner import minimal_environment, run_command
from deploy_pipeline.models.stage import StageOutcome

logger = logging.getLogger(__name__)

_DEPLOY_TIMEOUT = 120


def _deploy_environment(ctx: StageContext) -> dict:
    creds = ctx.credentials
    return minimal_environment({
        "AWS_ACCESS_KEY_ID": creds.get_optional(DEPLOY_CREDENTIAL, "access_key_id"),
        "AWS_SECRET_ACCESS_KEY": creds.get_optional(DEPLOY_CREDENTIAL, "secret_access_key"),
        "AWS_SESSION_TOKEN": creds.get_optional(DEPLOY_CREDENTIAL, "session_token"),
        "AWS_DEFAULT_REGION": ctx.config.region,
        "AWS_PAGER": "",
    })


def trigger_deployment(ctx: StageContext) -> StageOutcome:
    """
    Output data:
        cluster, service, deployment_id
    """
    cfg = ctx.config
    args = [
        "aws", "ecs", "update-service",
        "--cluster", cfg.cluster,
        "--service", cfg.service,
        "--force-new-deployment",
        "--region", cfg.region,
        "--output", "json",
    ]
    logger.info("Requesting redeploy of %s/%s in %s", cfg.cluster, cfg.service, cfg.region)
    result = run_command(
        args,
        env=_deploy_environment(ctx),
        timeout_seconds=min(ctx.timeout_seconds, _DEPLOY_TIMEOUT),
        abort=ctx.abort,
    )
    if result.error:
        raise DeploymentRequestError(f"Deployment CLI unavailable: {result.error}")
    if not result.succeeded:
        raise DeploymentRequestError(
            f"Redeploy request for {cfg.cluster}/{cfg.service} was rejected", result.diagnostic()
        )

    deployment_id = ""
    try:
        service = json.loads(result.full_log).get("service", {})
        primary = [d for d in service.get("deployments", []) if d.get("status") == "PRIMARY"]
        if primary:
            deployment_id = primary[0].get("id", "")
    except (ValueError, AttributeError):
        logger.warning("Could not parse deployment response; request was accepted")

    logger.info("Redeploy accepted | deployment=%s", deployment_id or "unknown")
    return StageOutcome(
        output=result.log_excerpt,
        data={"cluster": cfg.cluster, "service": cfg.service, "deployment_id": deployment_id},
    )
