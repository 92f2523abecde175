import logging
from typing import Any, Callable, Dict, Iterable, Tuple

from windcube.errors import ReferenceLoadError

logger = logging.getLogger(__name__)

GetValueByPath = Callable[..., Any]


def load_reference(reference: Any, get_value_by_path: GetValueByPath) -> Any:
    try:
        return get_value_by_path(reference.path)
    except Exception as e:
        raise ReferenceLoadError(f"Failed to load reference '{reference.id}' at {reference.path}: {e}") from e


def load_references(
    references: Iterable,
    get_value_by_path: GetValueByPath,
    scope: str = "global",
) -> Tuple[Dict[str, Any], int]:
    """
    Reads each reference's path from the scenario. A reference that cannot be
    read is logged, counted and kept as None; callers must tolerate that.
    Returns the values by id and the number of failures.
    """
    values: Dict[str, Any] = {}
    errors = 0
    for reference in references:
        try:
            values[reference.id] = load_reference(reference, get_value_by_path)
        except ReferenceLoadError as e:
            errors += 1
            values[reference.id] = None
            logger.error(f"[References] ({scope}) {e}")
    if values:
        logger.debug(f"[References] Loaded {len(values) - errors}/{len(values)} {scope} reference(s).")
    return values, errors


def merge_references(global_references: Dict[str, Any], local_references: Dict[str, Any]) -> Dict[str, Any]:
    """Local references override global ones with the same id."""
    return {**global_references, **local_references}
