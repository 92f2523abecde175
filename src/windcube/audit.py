import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Union

from windcube import config
from windcube.utils import has_fields, percentile_of

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """A single processing step recorded for a source or metric."""
    timestamp: float
    step: str
    details: Any = None
    dependencies: List[str] = field(default_factory=list)
    type: Optional[str] = None
    type_operation: Optional[str] = None
    data_sample: Optional[Dict[str, Any]] = None
    duration: Optional[float] = None


def extract_data_sample(data: Any, preferred_percentile: int) -> Any:
    """
    Reduces `data` to something small enough to keep in an audit entry.

    Percentile series are cut down to the preferred percentile (or the first
    series when that percentile is absent). Plain year/value series are kept
    whole. Any other non-empty list is represented by its first item.
    """
    if data is None:
        return None
    if not isinstance(data, (list, tuple)):
        return data
    if not data:
        return None

    first = data[0]
    if has_fields(first, "percentile", "data"):
        preferred = [
            sim for sim in data
            if percentile_of(sim) == preferred_percentile
        ]
        return preferred if preferred else [first]
    if has_fields(first, "year", "value"):
        return list(data)
    return first


class AuditTrail:
    """
    Collects the audit entries of one source or metric while it is processed.
    `add_audit_entry` is handed to transformers so they can log their own steps.
    """

    def __init__(
        self,
        source_id: str,
        preferred_percentile: int = config.AUDIT_PREFERRED_PERCENTILE,
        data_sampling_enabled: bool = config.AUDIT_DATA_SAMPLING,
    ):
        self.source_id = source_id
        self.preferred_percentile = preferred_percentile
        self.data_sampling_enabled = data_sampling_enabled
        self.entries: List[AuditEntry] = []

    def add_audit_entry(
        self,
        step: str,
        details: Any = None,
        dependencies: Union[str, Iterable[str], None] = None,
        source_data: Any = None,
        type: Optional[str] = None,
        type_operation: Optional[str] = None,
    ) -> AuditEntry:
        if dependencies is None:
            dependencies = []
        elif isinstance(dependencies, str):
            dependencies = [dependencies]
        else:
            dependencies = list(dependencies)

        entry = AuditEntry(
            timestamp=time.time() * 1000,
            step=step,
            details=details,
            dependencies=dependencies,
            type=type,
            type_operation=type_operation,
        )
        if self.data_sampling_enabled and source_data is not None:
            entry.data_sample = {
                "percentile": self.preferred_percentile,
                "data": extract_data_sample(source_data, self.preferred_percentile),
            }

        self.entries.append(entry)
        logger.debug(f"[Audit] {self.source_id} | {step} | {details}")
        return entry

    def get_trail(self) -> List[AuditEntry]:
        """
        Returns copies of the entries with `duration` filled in. Entries sharing
        a step are grouped and get the span between the first and last of them.
        """
        first_seen: Dict[str, float] = {}
        last_seen: Dict[str, float] = {}
        for entry in self.entries:
            first_seen.setdefault(entry.step, entry.timestamp)
            last_seen[entry.step] = entry.timestamp

        return [
            replace(entry, duration=last_seen[entry.step] - first_seen[entry.step])
            for entry in self.entries
        ]

    def get_references(self, all_references: Dict[str, Any]) -> Dict[str, Any]:
        """The references that some entry declared as a dependency."""
        used = {dependency for entry in self.entries for dependency in entry.dependencies}
        return {ref_id: value for ref_id, value in all_references.items() if ref_id in used}
