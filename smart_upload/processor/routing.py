from smart_upload.processor.models import RoutingDecision


def compute_final_confidence(
    extraction_confidence: int, segmentation_confidence: int | None
) -> int:
    """Minimum of the confidences computed in this run.

    segmentation_confidence is None when segmentation was not attempted.
    """
    if segmentation_confidence is None:
        return extraction_confidence
    return min(extraction_confidence, segmentation_confidence)


def decide_route(
    final_confidence: int, *, skip_threshold: int, auto_threshold: int
) -> RoutingDecision:
    """Map a final confidence onto one of the three routes."""
    if final_confidence < skip_threshold:
        return RoutingDecision.NO_PARSE_SECOND_PASS
    if final_confidence < auto_threshold:
        return RoutingDecision.AUTO_PARSE_SECOND_PASS
    return RoutingDecision.AUTO_PARSE_AUTO_APPROVE
