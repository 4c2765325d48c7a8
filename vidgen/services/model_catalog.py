"""
Model Catalog
Static description of every video model the inference service can run:
supported modes, GPU-memory pixel budgets and fixed native resolutions.

Shared by the graph builder, the resource scaler and the ``/models`` API so
the three never disagree.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from vidgen.core.exceptions import ValidationError


class GenerationMode:
    """Generation mode constants."""
    TEXT_TO_VIDEO = "textToVideo"
    IMAGE_TO_VIDEO = "imageToVideo"

    ALL = [TEXT_TO_VIDEO, IMAGE_TO_VIDEO]


@dataclass(frozen=True)
class ModelSpec:
    """Capabilities and limits of one video model."""
    model_id: str
    name: str
    min_vram_gb: int
    supports_txt2vid: bool
    supports_img2vid: bool
    default_frames: int
    default_fps: int
    # Max width*height*frames per mode; absent mode means "no budget"
    pixel_budgets: Dict[str, int] = field(default_factory=dict)
    # Models that only run at one resolution ignore the requested size
    native_resolution: Optional[Tuple[int, int]] = None
    max_frames: Optional[int] = None
    installed: bool = True

    def supports(self, mode: str) -> bool:
        if mode == GenerationMode.TEXT_TO_VIDEO:
            return self.supports_txt2vid
        if mode == GenerationMode.IMAGE_TO_VIDEO:
            return self.supports_img2vid
        return False


MODEL_CATALOG: Dict[str, ModelSpec] = {
    "animateDiff": ModelSpec(
        model_id="animateDiff",
        name="AnimateDiff (SD 1.5)",
        min_vram_gb=8,
        supports_txt2vid=True,
        supports_img2vid=True,
        default_frames=16,
        default_fps=8,
        pixel_budgets={
            GenerationMode.TEXT_TO_VIDEO: 512 * 512 * 24,
            # adapter + VAE encode + repeated latents cost extra memory
            GenerationMode.IMAGE_TO_VIDEO: 512 * 512 * 16,
        },
    ),
    "svd": ModelSpec(
        model_id="svd",
        name="Stable Video Diffusion",
        min_vram_gb=12,
        supports_txt2vid=False,
        supports_img2vid=True,
        default_frames=14,
        default_fps=8,
        native_resolution=(768, 512),
        max_frames=14,
    ),
    "wan21": ModelSpec(
        model_id="wan21",
        name="Wan2.1 (1.3B T2V / 14B I2V)",
        min_vram_gb=12,
        supports_txt2vid=True,
        supports_img2vid=True,
        default_frames=81,
        default_fps=16,
        native_resolution=(640, 360),
    ),
}


def get_model_spec(model_id: str) -> ModelSpec:
    """Look up a model, failing fast on unknown ids."""
    spec = MODEL_CATALOG.get(model_id)
    if spec is None:
        raise ValidationError(
            f"Unknown video model: {model_id}",
            details={"known_models": sorted(MODEL_CATALOG)},
        )
    return spec


def check_mode(model_id: str, mode: str) -> ModelSpec:
    """Validate that ``model_id`` can run in ``mode``."""
    if mode not in GenerationMode.ALL:
        raise ValidationError(f"Unknown generation mode: {mode}")
    spec = get_model_spec(model_id)
    if not spec.supports(mode):
        raise ValidationError(f"{spec.name} does not support {mode}")
    if not spec.installed:
        raise ValidationError(f"{spec.name} is not installed on the inference service")
    return spec
