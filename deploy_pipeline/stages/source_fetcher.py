"""
Source Fetcher
==============
Retrieves one branch of a remote repository into a fresh per-run
workspace on the host.

Philosophy:
    - One workspace per run: <workspace_root>/<repo-name>-<build-number>.
    - Shallow, single-branch clone; the pipeline never writes back.
    - Branch existence is checked with ls-remote first so that a missing
      branch and an unreachable remote produce distinct diagnostics.
"""
import os
import base64
import shutil
import logging
from typing import Optional

from deploy_pipeline.core.constants import SCM_CREDENTIAL
from deploy_pipeline.core.errors import FetchError
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.executor.tool_runner import minimal_environment, run_command
from deploy_pipeline.models.stage import StageOutcome

logger = logging.getLogger(__name__)

# ls-remote and rev-parse are quick; cloning gets the stage timeout
_LS_REMOTE_TIMEOUT = 60


def get_repo_name(repo_url: str) -> str:
    """Extract repository name from URL."""
    # Handle git@github.com:org/repo.git or https://github.com/org/repo
    name = repo_url.rstrip("/").split("/")[-1].split(":")[-1]
    if name.endswith(".git"):
        name = name[:-4]
    return name


def auth_environment(repo_url: str, token: Optional[str]) -> dict:
    """
    Git configuration, passed through the child environment, that sends
    ``token`` as an HTTP Authorization header for HTTPS remotes.

    The token is never part of the remote URL, so it is not written to the
    clone's .git/config and does not reach later stages through the workspace.
    """
    if not token or not repo_url.startswith("https://"):
        return {}
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    }


def _scrub(text: str, token: Optional[str]) -> str:
    return text.replace(token, "****") if token and text else text


def _git_env(extra: Optional[dict] = None) -> dict:
    # Never prompt for credentials on a build agent
    return minimal_environment({"GIT_TERMINAL_PROMPT": "0", **(extra or {})})


def workspace_path_for(workspace_root: str, repo_url: str, run_id: int) -> str:
    return os.path.abspath(os.path.join(workspace_root, f"{get_repo_name(repo_url)}-{run_id}"))


def fetch_source(ctx: StageContext) -> StageOutcome:
    """
    Clone ``config.branch`` of ``config.repo_url`` for this run.

    Output data:
        workspace_path, commit_sha, branch
    """
    cfg = ctx.config
    token = ctx.credentials.get_optional(SCM_CREDENTIAL, "token")
    url = cfg.repo_url
    env = _git_env(auth_environment(url, token))

    # 1. Does the branch exist on the remote?
    heads = run_command(
        ["git", "ls-remote", "--exit-code", "--heads", url, cfg.branch],
        env=env,
        timeout_seconds=_LS_REMOTE_TIMEOUT,
        abort=ctx.abort,
    )
    heads_log = _scrub(heads.full_log, token)
    if heads.error:
        raise FetchError(f"git unavailable: {_scrub(heads.error, token)}", heads_log)
    if heads.exit_code == 2:
        # --exit-code: 2 means the remote answered but no matching ref
        raise FetchError(
            f"Branch '{cfg.branch}' does not exist in {cfg.repo_url}", heads_log
        )
    if not heads.succeeded:
        raise FetchError(f"Remote {cfg.repo_url} is unreachable", heads_log)

    # 2. Fresh workspace owned by this run
    dest_path = workspace_path_for(cfg.workspace_root, cfg.repo_url, ctx.run_id)
    if os.path.exists(dest_path):
        logger.info("Removing stale workspace %s", dest_path)
        shutil.rmtree(dest_path)
    os.makedirs(cfg.workspace_root, exist_ok=True)

    logger.info("Cloning %s (branch %s) into %s", cfg.repo_url, cfg.branch, dest_path)
    clone = run_command(
        ["git", "clone", "--branch", cfg.branch, "--single-branch", "--depth", "1", url, dest_path],
        env=env,
        timeout_seconds=ctx.timeout_seconds,
        abort=ctx.abort,
    )
    clone_log = _scrub(clone.full_log, token)
    if not clone.succeeded:
        raise FetchError(f"Cloning {cfg.repo_url}@{cfg.branch} failed", clone_log or clone.diagnostic())

    # 3. Record the exact commit
    rev = run_command(
        ["git", "rev-parse", "HEAD"],
        cwd=dest_path,
        env=env,
        timeout_seconds=_LS_REMOTE_TIMEOUT,
    )
    commit_sha = rev.full_log.strip() if rev.succeeded else ""

    logger.info("Fetched %s@%s (%s)", get_repo_name(cfg.repo_url), cfg.branch, commit_sha[:12] or "unknown")
    return StageOutcome(
        output=clone_log,
        data={
            "workspace_path": dest_path,
            "commit_sha": commit_sha,
            "branch": cfg.branch,
        },
    )

