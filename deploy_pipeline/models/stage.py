"""
Stage Definition
================
Immutable descriptor for one pipeline stage.

A pipeline is a list of these records consumed by the generic executor
loop. Each record names its kind (tagged variant), the callable that does
the work, the credentials it is allowed to see, and whether a failure
halts the run.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class StageKind(str, Enum):
    FETCH = "fetch"
    TEST = "test"
    STATIC_ANALYSIS = "static_analysis"
    BUILD_IMAGE = "build_image"
    PUBLISH_IMAGE = "publish_image"
    DEPLOY = "deploy"
    CUSTOM = "custom"


@dataclass
class StageOutcome:
    """
    What a stage action returns on success.

    Fields
    ------
    output : str
        Tool output worth surfacing in the run record.
    data : dict
        Structured results later stages may read (workspace path, image...).
    warnings : list[str]
        Non-fatal findings recorded on the stage result.
    """
    output: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


# action(ctx) -> StageOutcome ; post_condition(ctx, outcome) -> bool
StageAction = Callable[[Any], StageOutcome]
PostCondition = Callable[[Any, StageOutcome], bool]


@dataclass(frozen=True)
class StageDefinition:
    name: str
    kind: StageKind
    action: StageAction
    credentials: Tuple[str, ...] = ()
    fatal: bool = True
    post_condition: Optional[PostCondition] = None
    timeout_seconds: Optional[int] = None
