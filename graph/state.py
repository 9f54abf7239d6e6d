import operator
from dataclasses import dataclass, field
from typing import Annotated, TypedDict, Optional, List, Dict, Any, Union


class EnrichState(TypedDict, total=False):
    """State shape for the lead enrichment workflow."""
    lead_id: str
    username: str                                          # identity, read once by load
    external_url: Optional[str]                            # set by the profile stage
    stages: Annotated[List[Dict[str, Any]], operator.add]  # one status entry per stage


@dataclass
class Ok:
    fields: Dict[str, Any]
    cached: bool = False

    @property
    def status(self) -> str:
        return "cached" if self.cached else "ok"


@dataclass
class Degraded:
    reason: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "degraded"


StageResult = Union[Ok, Degraded]


def stage_status(stage: str, result: StageResult) -> Dict[str, Any]:
    """Status entry reported to callers for one stage."""
    return {
        "stage": stage,
        "status": result.status,
        "reason": result.reason if isinstance(result, Degraded) else None,
    }
