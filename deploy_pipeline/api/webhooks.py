"""
POST /webhooks/scm
==================
Source-control push events. A push to the tracked branch starts a run.

Signature:
    When WEBHOOK_SECRET is set, the X-Hub-Signature-256 header must carry
    ``sha256=<hex HMAC of the raw body>``; otherwise the request is refused.
"""
import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from deploy_pipeline.api.runs import get_run_manager, to_summary
from deploy_pipeline.core.config import WEBHOOK_SECRET
from deploy_pipeline.core.errors import ConfigError
from deploy_pipeline.models.pipeline_run import TriggerSource
from deploy_pipeline.services.run_manager import RunManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

_BRANCH_REF_PREFIX = "refs/heads/"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


@router.post("/scm")
async def scm_event(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(default=None),
    x_github_event: Optional[str] = Header(default="push"),
    manager: RunManager = Depends(get_run_manager),
):
    body = await request.body()
    if not verify_signature(WEBHOOK_SECRET, body, x_hub_signature_256):
        logger.warning("[WEBHOOK] Rejected event with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event != "push":
        return {"status": "ignored", "reason": f"event '{x_github_event}' not handled"}

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    ref = payload.get("ref", "") if isinstance(payload, dict) else ""
    if not isinstance(ref, str) or not ref.startswith(_BRANCH_REF_PREFIX):
        return {"status": "ignored", "reason": "not a branch push"}
    branch = ref[len(_BRANCH_REF_PREFIX):]

    try:
        tracked = manager.tracked_branch()
        if branch != tracked:
            logger.info("[WEBHOOK] Push to %s ignored (tracking %s)", branch, tracked)
            return {"status": "ignored", "reason": f"branch '{branch}' not tracked"}
        run = manager.trigger(TriggerSource.SCM_EVENT, branch=branch)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("[WEBHOOK] Push to %s started run #%d", branch, run.run_id)
    return {"status": "triggered", "run": to_summary(run).model_dump()}
