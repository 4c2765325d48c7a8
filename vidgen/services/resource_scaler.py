"""
Resource Scaler
Computes a GPU-memory-safe generation resolution.

The same function is used by the generate worker and by the resolution
preview endpoint.
"""

import math
import logging
from typing import NamedTuple

from vidgen.core.exceptions import ValidationError
from vidgen.services.model_catalog import check_mode

logger = logging.getLogger(__name__)

# The inference service's tensor layout needs both sides divisible by 8
DIMENSION_MULTIPLE = 8


class ScaledResolution(NamedTuple):
    width: int
    height: int
    was_scaled: bool


def scale(base_width: int, base_height: int, frame_count: int, mode: str, model_id: str) -> ScaledResolution:
    """
    Fit ``base_width x base_height x frame_count`` into the model's pixel budget.

    Models with a fixed native resolution always return it with
    ``was_scaled=True`` so callers know the request was not honored.
    """
    if base_width <= 0 or base_height <= 0 or frame_count <= 0:
        raise ValidationError(
            f"Invalid resolution request: {base_width}x{base_height} x {frame_count} frames"
        )

    spec = check_mode(model_id, mode)

    if spec.native_resolution is not None:
        width, height = spec.native_resolution
        return ScaledResolution(width, height, True)

    budget = spec.pixel_budgets.get(mode)
    total_pixels = base_width * base_height * frame_count
    if budget is None or total_pixels <= budget:
        return ScaledResolution(base_width, base_height, False)

    factor = math.sqrt(budget / total_pixels)
    width = math.floor(base_width * factor / DIMENSION_MULTIPLE) * DIMENSION_MULTIPLE
    height = math.floor(base_height * factor / DIMENSION_MULTIPLE) * DIMENSION_MULTIPLE
    if width <= 0 or height <= 0:
        raise ValidationError(
            f"{frame_count} frames cannot fit the {spec.name} memory budget at any resolution"
        )

    logger.info(
        f"[ResourceScaler] {spec.name} {mode}: scaled {base_width}x{base_height} -> "
        f"{width}x{height} for {frame_count} frames"
    )
    return ScaledResolution(width, height, True)
