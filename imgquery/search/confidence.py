"""Post-fetch confidence threshold for per-detection sub-elements.

Face, object and scene confidences live inside detection lists that the
query cannot filter, so the threshold is applied to each mapped record.
"""
from __future__ import annotations

from imgquery.models import ImageRecord, SceneInfo
from imgquery.search.criteria import DETECTION_FACETS, SearchCriteria
from imgquery.search.mapper import label_tally
from imgquery.search.patterns import wildcard_match


def has_detections(record: ImageRecord) -> bool:
    return (
        bool(record.people.predictions)
        or bool(record.objects.predictions)
        or record.scenes.success
    )


def apply_min_confidence(record: ImageRecord, threshold: float | None) -> bool:
    """Drop detections below *threshold* in place; recompute derived counts.

    ``threshold=None`` means no threshold was requested and leaves the
    record untouched (``0.0`` is a real threshold).  Returns whether the
    record still has any qualifying detection.
    """
    if threshold is None:
        return has_detections(record)

    if record.scenes.confidence < threshold:
        record.scenes = SceneInfo.unknown()

    people = record.people
    people.predictions = [p for p in people.predictions if p.confidence >= threshold]
    people.count = len(people.predictions)
    people.faces = [p.user_id for p in people.predictions if p.user_id]

    objects = record.objects
    objects.predictions = [o for o in objects.predictions if o.confidence >= threshold]
    objects.count = len(objects.predictions)
    objects.label_counts = label_tally([o.label for o in objects.predictions])

    return has_detections(record)


def _detected_values(record: ImageRecord, facet: str) -> list[str]:
    if facet == "people":
        return [p.user_id for p in record.people.predictions if p.user_id]
    if facet == "objects":
        return [o.label for o in record.objects.predictions if o.label]
    if facet == "scenes":
        return [record.scenes.label] if record.scenes.success else []
    raise ValueError(f"Not a detection facet: {facet}")


def still_matches(record: ImageRecord, criteria: SearchCriteria) -> bool:
    """Whether surviving detections still satisfy every requested detection facet.

    Facets combine with AND as in the query, so one facet losing all of
    its matching detections is enough to fail.
    """
    requested = [f for f in DETECTION_FACETS if getattr(criteria, f)]
    if not requested:
        return False
    for facet in requested:
        tokens = getattr(criteria, facet)
        values = _detected_values(record, facet)
        if not any(wildcard_match(token, value) for token in tokens for value in values):
            return False
    return True


def should_keep(record: ImageRecord, criteria: SearchCriteria) -> bool:
    """Drop a record only when detection facets were its sole filters and
    the threshold removed every detection matching one of them."""
    if criteria.min_confidence_ratio is None:
        return True
    active = criteria.active_facets()
    if not any(f in DETECTION_FACETS for f in active):
        return True
    if any(f not in DETECTION_FACETS for f in active):
        return True
    return still_matches(record, criteria)
