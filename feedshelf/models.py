from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

VIEW_TYPES: Tuple[str, ...] = ("article", "photo", "video")
DEFAULT_VIEW_TYPE = "article"


@dataclass(frozen=True)
class PlainGuid:
    value: str


@dataclass(frozen=True)
class StructuredGuid:
    fields: Dict[str, Any]

    # xml2js puts element text under "_", xmltodict under "#text"
    TEXT_KEYS = ("_", "#text")

    def text(self) -> Optional[str]:
        for key in self.TEXT_KEYS:
            v = self.fields.get(key)
            if v not in (None, ""):
                return str(v)
        return None


GuidValue = Union[PlainGuid, StructuredGuid]


@dataclass
class PruneResult:
    success: bool
    removed_count: int = 0
    failed_files: List[str] = field(default_factory=list)
    error: str = ""


@dataclass
class RefreshResult:
    feed_id: str
    ok: bool
    new_items: int = 0
    total_items: int = 0
    not_modified: bool = False
    skipped: bool = False
    error: str = ""
