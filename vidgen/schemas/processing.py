"""
Processing Schemas
Request models for the enqueue endpoints. Each maps onto the snake_case
``settings`` payload the matching worker reads.
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field, model_validator


# --- Generation ---

class GenerateClipRequest(BaseModel):
    """Render one clip for a project."""
    project_id: str
    prompt: Optional[str] = Field(None, description="Required except for svd")
    negative_prompt: Optional[str] = None
    clip_name: Optional[str] = None
    order_index: Optional[int] = Field(None, ge=0)
    generation_type: Literal["textToVideo", "imageToVideo"] = "textToVideo"
    video_model: str = "animateDiff"
    reference_image: Optional[str] = Field(None, description="Image name in the inference input store")
    seed: Optional[int] = Field(None, ge=0)
    steps: int = Field(20, ge=1, le=150)
    cfg_scale: float = Field(7.5, gt=0, le=30)
    frame_count: Optional[int] = Field(None, ge=1)
    denoise: Optional[float] = Field(None, ge=0, le=1)
    ip_adapter_weight: Optional[float] = Field(None, ge=0, le=2)
    ip_adapter_preset: Optional[str] = None

    def clip_fields(self) -> dict:
        fields = {
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "seed_value": self.seed,
            "steps_count": self.steps,
            "cfg_scale": self.cfg_scale,
            "reference_image": self.reference_image,
            "ip_adapter_weight": self.ip_adapter_weight,
            "order_index": self.order_index,
        }
        if self.clip_name:
            fields["clip_name"] = self.clip_name
        return fields

    def job_settings(self) -> dict:
        options = {"generation_type": self.generation_type, "video_model": self.video_model}
        for name in ("frame_count", "denoise", "ip_adapter_preset"):
            if getattr(self, name) is not None:
                options[name] = getattr(self, name)
        return options


class LongVideoRequest(BaseModel):
    """Chain image-to-video segments into one long video."""
    project_id: str
    prompt: str = Field(..., min_length=1)
    negative_prompt: Optional[str] = None
    reference_image: Optional[str] = Field(None, description="Skip bootstrap and start from this image")
    target_duration: Optional[float] = Field(None, gt=0, description="Seconds; default 90")
    total_segments: Optional[int] = Field(None, ge=1, le=100)
    frames_per_segment: int = Field(81, ge=1)
    denoise: float = Field(0.7, ge=0, le=1)
    hq_enhance: bool = True
    width: int = Field(640, ge=8)
    height: int = Field(360, ge=8)


# --- Post-processing ---

class MergeRequest(BaseModel):
    project_id: str
    clip_ids: List[str] = Field(..., min_length=1)
    transition: str = "none"
    transition_duration: float = Field(0.5, gt=0, le=5)


class _SingleInputRequest(BaseModel):
    project_id: str
    clip_id: Optional[str] = None
    input_path: Optional[str] = None

    @model_validator(mode="after")
    def check_input(self):
        if not (self.clip_id or self.input_path):
            raise ValueError("clip_id or input_path is required")
        return self


class UpscaleRequest(_SingleInputRequest):
    scale: Literal[2, 4] = 2
    model: Literal["ffmpeg", "realesrgan"] = "ffmpeg"


class InterpolateRequest(_SingleInputRequest):
    target_fps: int = Field(24, ge=1, le=120)
    method: Literal["ffmpeg", "rife"] = "ffmpeg"


class EnhanceRequest(BaseModel):
    """Scale and interpolate a completed clip in place."""
    project_id: str
    clip_id: str
    scale: Literal[2, 4] = 2
    target_fps: int = Field(30, ge=1, le=120)


class MergeStage(BaseModel):
    enabled: bool = False
    transition: str = "none"
    transition_duration: float = Field(0.5, gt=0, le=5)


class UpscaleStage(BaseModel):
    enabled: bool = False
    scale: Literal[2, 4] = 2


class InterpolateStage(BaseModel):
    enabled: bool = False
    target_fps: int = Field(30, ge=1, le=120)


class EncodeStage(BaseModel):
    format: Literal["mp4", "webm", "mov"] = "mp4"
    quality: Literal["draft", "standard", "high"] = "standard"
    codec: Literal["h264", "h265", "vp9"] = "h264"


class ExportRequest(BaseModel):
    """Optional merge, upscale and interpolate stages followed by encode."""
    project_id: str
    clip_ids: List[str] = Field(..., min_length=1)
    merge: MergeStage = MergeStage()
    upscale: UpscaleStage = UpscaleStage()
    interpolate: InterpolateStage = InterpolateStage()
    encode: EncodeStage = EncodeStage()

    def job_settings(self) -> dict:
        return self.model_dump(exclude={"project_id", "clip_ids"})


# --- System ---

class PreviewResolutionRequest(BaseModel):
    """Ask what resolution a generation would actually run at."""
    video_model: str = "animateDiff"
    generation_type: Literal["textToVideo", "imageToVideo"] = "textToVideo"
    width: int = Field(512, ge=8)
    height: int = Field(512, ge=8)
    frame_count: Optional[int] = Field(None, ge=1)
