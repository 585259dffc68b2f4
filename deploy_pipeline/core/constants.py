"""
Constants
Centralised storage for stage names, tag conventions and credential names.
"""
SOURCE_FETCHER = "Source Fetcher"
TEST_RUNNER = "Test Runner"
STATIC_ANALYZER = "Static Analyzer"
IMAGE_BUILDER = "Image Builder"
IMAGE_PUBLISHER = "Image Publisher"
DEPLOYMENT_TRIGGER = "Deployment Trigger"

STAGE_ORDER = [
    SOURCE_FETCHER,
    TEST_RUNNER,
    STATIC_ANALYZER,
    IMAGE_BUILDER,
    IMAGE_PUBLISHER,
    DEPLOYMENT_TRIGGER,
]

LATEST_TAG = "latest"

# Credential binding names
SCM_CREDENTIAL = "scm"
REGISTRY_CREDENTIAL = "registry"
ANALYSIS_CREDENTIAL = "analysis"
DEPLOY_CREDENTIAL = "deploy"

ARROW = "\u2192"
REDACTED = "****"
