"""
Graph Builder
Translates generation parameters into node graphs for the inference service.

A graph is an ordered mapping ``node_id -> {"class_type", "inputs"}``. Inputs
that reference another node's output are ``[node_id, output_slot]`` pairs.
Every model variant is a fixed template; building only substitutes
parameters. Node ids start at "1" for every call because each call gets its
own ``GraphBuilder``.
"""

import random
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from vidgen.core.exceptions import ValidationError
from vidgen.services.model_catalog import GenerationMode, check_mode

Graph = Dict[str, Dict[str, Any]]
Link = List[Any]

MAX_SEED = 2147483647
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distorted, deformed"

SD15_CHECKPOINT = "v1-5-pruned-emaonly.safetensors"
ANIMATEDIFF_MOTION_MODULE = "v3_sd15_mm.ckpt"
SVD_CHECKPOINT = "svd_xt.safetensors"
WAN_TEXT_ENCODER = "umt5_xxl_fp8_e4m3fn_scaled.safetensors"
WAN_T2V_UNET = "wan2.1/wan2.1_t2v_1.3B_bf16.safetensors"
WAN_I2V_UNET = "wan2.1/wan2.1-i2v-14b-480p-Q3_K_M.gguf"
WAN_VAE = "wan_2.1_vae.safetensors"
WAN_CLIP_VISION = "CLIP-ViT-H-14-laion2B-s32B-b79K.safetensors"
RIFE_CHECKPOINT = "rife47.pth"

IP_ADAPTER_PRESETS = {
    "STANDARD": "STANDARD (medium strength)",
    "PLUS": "PLUS (high strength)",
    "PLUS_FACE": "PLUS FACE (portraits)",
    "FULL_FACE": "FULL FACE - SD1.5 only (portraits stronger)",
}


@dataclass(frozen=True)
class GenerationParams:
    """Inputs shared by all video templates. ``None`` means template default."""
    prompt: str = ""
    negative_prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    steps: Optional[int] = None
    cfg: Optional[float] = None
    seed: Optional[int] = None
    frame_count: Optional[int] = None
    fps: Optional[int] = None
    reference_image: Optional[str] = None
    ip_adapter_weight: Optional[float] = None
    ip_adapter_preset: str = "PLUS_FACE"
    denoise: Optional[float] = None
    checkpoint: str = SD15_CHECKPOINT
    motion_module: str = ANIMATEDIFF_MOTION_MODULE


class GraphBuilder:
    """Per-call node id allocator. Never share one between builds."""

    def __init__(self):
        self._next_id = 1
        self.graph: Graph = {}

    def add(self, class_type: str, **inputs) -> str:
        node_id = str(self._next_id)
        self._next_id += 1
        self.graph[node_id] = {"class_type": class_type, "inputs": inputs}
        return node_id

    @staticmethod
    def out(node_id: str, slot: int = 0) -> Link:
        return [node_id, slot]


def random_seed() -> int:
    return random.randint(0, MAX_SEED - 1)


def graph_edges(graph: Graph) -> List[Tuple[str, str, str, int]]:
    """List ``(target_node, input_name, source_node, source_slot)`` for every link."""
    edges = []
    for node_id, node in graph.items():
        for name, value in node["inputs"].items():
            if isinstance(value, list) and len(value) == 2 and isinstance(value[0], str) and value[0] in graph:
                edges.append((node_id, name, value[0], value[1]))
    return edges


def parse_resolution(resolution: str) -> Tuple[int, int]:
    """Parse a ``WxH`` string, falling back to 512x512."""
    match = re.search(r"(\d+)x(\d+)", resolution or "")
    if match:
        return int(match.group(1)), int(match.group(2))
    return 512, 512


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _require_positive(name: str, value: Optional[float]):
    if value is not None and value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def _require_multiple_of_8(name: str, value: Optional[int]):
    if value is not None and value % 8:
        raise ValidationError(f"{name} must be a multiple of 8, got {value}")


def validate(mode: str, model_id: str, params: GenerationParams):
    if model_id != "svd" and not (params.prompt or "").strip():
        raise ValidationError("prompt is required")
    if mode == GenerationMode.IMAGE_TO_VIDEO and not params.reference_image:
        raise ValidationError(f"reference_image is required for {model_id} image-to-video")
    for name in ("width", "height", "steps", "cfg", "frame_count", "fps"):
        _require_positive(name, getattr(params, name))
    for name in ("width", "height"):
        _require_multiple_of_8(name, getattr(params, name))
    if params.denoise is not None and not 0.0 <= params.denoise <= 1.0:
        raise ValidationError(f"denoise must be within 0..1, got {params.denoise}")
    if params.seed is not None and not 0 <= params.seed < MAX_SEED:
        raise ValidationError(f"seed must be within 0..{MAX_SEED - 1}, got {params.seed}")
    if params.ip_adapter_preset not in IP_ADAPTER_PRESETS:
        raise ValidationError(f"Unknown adapter preset: {params.ip_adapter_preset}")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def _video_combine(b: GraphBuilder, images: Link, fps: int, prefix: str) -> str:
    return b.add(
        "VHS_VideoCombine",
        images=images,
        frame_rate=fps,
        loop_count=0,
        filename_prefix=prefix,
        format="video/h264-mp4",
        pingpong=False,
        save_output=True,
    )


def _animatediff_t2v(p: GenerationParams) -> Graph:
    b = GraphBuilder()
    checkpoint = b.add("CheckpointLoaderSimple", ckpt_name=p.checkpoint)
    motion = b.add(
        "ADE_AnimateDiffLoaderGen1",
        model=b.out(checkpoint, 0),
        model_name=p.motion_module,
        beta_schedule="autoselect",
    )
    positive = b.add("CLIPTextEncode", text=p.prompt, clip=b.out(checkpoint, 1))
    negative = b.add("CLIPTextEncode", text=p.negative_prompt, clip=b.out(checkpoint, 1))
    latent = b.add("EmptyLatentImage", width=p.width or 512, height=p.height or 512, batch_size=p.frame_count or 16)
    sampler = b.add(
        "KSampler",
        model=b.out(motion),
        positive=b.out(positive),
        negative=b.out(negative),
        latent_image=b.out(latent),
        seed=p.seed,
        steps=p.steps or 20,
        cfg=p.cfg or 7.5,
        sampler_name="euler_ancestral",
        scheduler="normal",
        denoise=1,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(checkpoint, 2))
    _video_combine(b, b.out(decode), p.fps or 8, "AnimateDiff")
    return b.graph


def _animatediff_i2v(p: GenerationParams) -> Graph:
    """Image latent repeated per frame, sampled with partial denoise plus adapter conditioning."""
    b = GraphBuilder()
    checkpoint = b.add("CheckpointLoaderSimple", ckpt_name=p.checkpoint)
    image = b.add("LoadImage", image=p.reference_image)
    encoded = b.add("VAEEncode", pixels=b.out(image), vae=b.out(checkpoint, 2))
    repeated = b.add("RepeatLatentBatch", samples=b.out(encoded), amount=p.frame_count or 16)
    adapter_loader = b.add(
        "IPAdapterUnifiedLoader",
        model=b.out(checkpoint, 0),
        preset=IP_ADAPTER_PRESETS[p.ip_adapter_preset],
    )
    adapter = b.add(
        "IPAdapter",
        model=b.out(adapter_loader, 0),
        ipadapter=b.out(adapter_loader, 1),
        image=b.out(image),
        weight=p.ip_adapter_weight if p.ip_adapter_weight is not None else 1.0,
        start_at=0,
        end_at=1,
        weight_type="standard",
    )
    motion = b.add(
        "ADE_AnimateDiffLoaderGen1",
        model=b.out(adapter),
        model_name=p.motion_module,
        beta_schedule="autoselect",
    )
    positive = b.add("CLIPTextEncode", text=p.prompt, clip=b.out(checkpoint, 1))
    negative = b.add("CLIPTextEncode", text=p.negative_prompt, clip=b.out(checkpoint, 1))
    sampler = b.add(
        "KSampler",
        model=b.out(motion),
        positive=b.out(positive),
        negative=b.out(negative),
        latent_image=b.out(repeated),
        seed=p.seed,
        steps=p.steps or 20,
        cfg=p.cfg or 7.5,
        sampler_name="euler_ancestral",
        scheduler="normal",
        denoise=p.denoise if p.denoise is not None else 0.6,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(checkpoint, 2))
    _video_combine(b, b.out(decode), p.fps or 8, "AnimateDiff_Img2Vid")
    return b.graph


def _svd(p: GenerationParams) -> Graph:
    b = GraphBuilder()
    checkpoint = b.add("ImageOnlyCheckpointLoader", ckpt_name=SVD_CHECKPOINT)
    image = b.add("LoadImage", image=p.reference_image)
    conditioning = b.add(
        "SVD_img2vid_Conditioning",
        clip_vision=b.out(checkpoint, 1),
        init_image=b.out(image),
        vae=b.out(checkpoint, 2),
        width=p.width or 1024,
        height=p.height or 576,
        video_frames=p.frame_count or 25,
        motion_bucket_id=127,
        fps=6,
        augmentation_level=0,
    )
    sampler = b.add(
        "KSampler",
        model=b.out(checkpoint, 0),
        positive=b.out(conditioning, 0),
        negative=b.out(conditioning, 1),
        latent_image=b.out(conditioning, 2),
        seed=p.seed,
        steps=p.steps or 25,
        cfg=p.cfg or 2.5,
        sampler_name="euler",
        scheduler="karras",
        denoise=1,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(checkpoint, 2))
    _video_combine(b, b.out(decode), p.fps or 8, "SVD_output")
    return b.graph


def _wan21_t2v(p: GenerationParams) -> Graph:
    b = GraphBuilder()
    clip = b.add("CLIPLoader", clip_name=WAN_TEXT_ENCODER, type="wan")
    unet = b.add("UNETLoader", unet_name=WAN_T2V_UNET, weight_dtype="default")
    vae = b.add("VAELoader", vae_name=WAN_VAE)
    positive = b.add("CLIPTextEncode", text=p.prompt, clip=b.out(clip))
    negative = b.add("CLIPTextEncode", text=p.negative_prompt, clip=b.out(clip))
    latent = b.add("EmptySD3LatentImage", width=p.width or 640, height=p.height or 360, batch_size=p.frame_count or 81)
    sampler = b.add(
        "KSampler",
        model=b.out(unet),
        positive=b.out(positive),
        negative=b.out(negative),
        latent_image=b.out(latent),
        seed=p.seed,
        steps=p.steps or 20,
        cfg=p.cfg or 6.0,
        sampler_name="euler",
        scheduler="normal",
        denoise=1,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(vae))
    _video_combine(b, b.out(decode), p.fps or 16, "Wan21")
    return b.graph


def _wan21_i2v(p: GenerationParams) -> Graph:
    """Start image scaled to the generation size, vision-encoded and masked into the latent."""
    width = p.width or 640
    height = p.height or 360
    b = GraphBuilder()
    clip = b.add("CLIPLoader", clip_name=WAN_TEXT_ENCODER, type="wan")
    unet = b.add("UnetLoaderGGUF", unet_name=WAN_I2V_UNET)
    vae = b.add("VAELoader", vae_name=WAN_VAE)
    image = b.add("LoadImage", image=p.reference_image)
    scaled = b.add(
        "ImageScale",
        image=b.out(image),
        upscale_method="lanczos",
        width=width,
        height=height,
        crop="center",
    )
    vision_loader = b.add("CLIPVisionLoader", clip_name=WAN_CLIP_VISION)
    vision = b.add("CLIPVisionEncode", clip_vision=b.out(vision_loader), image=b.out(scaled), crop="center")
    positive = b.add("CLIPTextEncode", text=p.prompt, clip=b.out(clip))
    negative = b.add("CLIPTextEncode", text=p.negative_prompt, clip=b.out(clip))
    conditioning = b.add(
        "WanImageToVideo",
        positive=b.out(positive),
        negative=b.out(negative),
        vae=b.out(vae),
        width=width,
        height=height,
        length=p.frame_count or 81,
        batch_size=1,
        clip_vision_output=b.out(vision),
        start_image=b.out(scaled),
    )
    sampler = b.add(
        "KSampler",
        model=b.out(unet),
        positive=b.out(conditioning, 0),
        negative=b.out(conditioning, 1),
        latent_image=b.out(conditioning, 2),
        seed=p.seed,
        steps=p.steps or 20,
        cfg=p.cfg or 6.0,
        sampler_name="euler",
        scheduler="normal",
        denoise=1,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(vae))
    _video_combine(b, b.out(decode), p.fps or 16, "Wan21_I2V")
    return b.graph


TEMPLATES = {
    ("animateDiff", GenerationMode.TEXT_TO_VIDEO): _animatediff_t2v,
    ("animateDiff", GenerationMode.IMAGE_TO_VIDEO): _animatediff_i2v,
    ("svd", GenerationMode.IMAGE_TO_VIDEO): _svd,
    ("wan21", GenerationMode.TEXT_TO_VIDEO): _wan21_t2v,
    ("wan21", GenerationMode.IMAGE_TO_VIDEO): _wan21_i2v,
}


def build(mode: str, model_id: str, params: GenerationParams) -> Graph:
    """
    Build the video graph for ``model_id`` in ``mode``.

    Raises:
        ValidationError: unknown model/mode or invalid parameters
    """
    spec = check_mode(model_id, mode)
    template = TEMPLATES.get((model_id, mode))
    if template is None:
        raise ValidationError(f"No graph template for {spec.name} {mode}")
    validate(mode, model_id, params)

    resolved = replace(
        params,
        negative_prompt=params.negative_prompt or DEFAULT_NEGATIVE_PROMPT,
        seed=params.seed if params.seed is not None else random_seed(),
    )
    if spec.max_frames and resolved.frame_count:
        resolved = replace(resolved, frame_count=min(resolved.frame_count, spec.max_frames))
    return template(resolved)


def validate_still_image(prompt: str, width: int = 640, height: int = 360, steps: int = 25, cfg: float = 7.5):
    if not (prompt or "").strip():
        raise ValidationError("prompt is required")
    for name, value in (("width", width), ("height", height), ("steps", steps), ("cfg", cfg)):
        _require_positive(name, value)
    _require_multiple_of_8("width", width)
    _require_multiple_of_8("height", height)


def build_still_image(
    prompt: str,
    negative_prompt: Optional[str] = None,
    width: int = 640,
    height: int = 360,
    steps: int = 25,
    cfg: float = 7.5,
    seed: Optional[int] = None,
) -> Graph:
    """SD 1.5 text-to-image graph used to bootstrap an image-conditioned chain."""
    validate_still_image(prompt, width, height, steps, cfg)

    b = GraphBuilder()
    checkpoint = b.add("CheckpointLoaderSimple", ckpt_name=SD15_CHECKPOINT)
    positive = b.add("CLIPTextEncode", text=prompt, clip=b.out(checkpoint, 1))
    negative = b.add("CLIPTextEncode", text=negative_prompt or DEFAULT_NEGATIVE_PROMPT, clip=b.out(checkpoint, 1))
    latent = b.add("EmptyLatentImage", width=width, height=height, batch_size=1)
    sampler = b.add(
        "KSampler",
        model=b.out(checkpoint, 0),
        positive=b.out(positive),
        negative=b.out(negative),
        latent_image=b.out(latent),
        seed=seed if seed is not None else random_seed(),
        steps=steps,
        cfg=cfg,
        sampler_name="euler_ancestral",
        scheduler="normal",
        denoise=1,
    )
    decode = b.add("VAEDecode", samples=b.out(sampler), vae=b.out(checkpoint, 2))
    b.add("SaveImage", images=b.out(decode), filename_prefix="T2I_InitFrame")
    return b.graph


def build_frame_upscale(image: str, scale_factor: int = 2) -> Graph:
    """Real-ESRGAN single-image upscale graph."""
    if not image:
        raise ValidationError("image is required")
    b = GraphBuilder()
    loaded = b.add("LoadImage", image=image, upload="image")
    model = b.add(
        "UpscaleModelLoader",
        model_name="RealESRGAN_x4plus.pth" if scale_factor >= 4 else "RealESRGAN_x2plus.pth",
    )
    upscaled = b.add("ImageUpscaleWithModel", upscale_model=b.out(model), image=b.out(loaded))
    b.add("SaveImage", images=b.out(upscaled), filename_prefix="upscaled")
    return b.graph


def build_frame_interpolation(frame_a: str, frame_b: str, multiplier: int = 2) -> Graph:
    """RIFE graph producing ``multiplier`` frames between two input frames."""
    if not frame_a or not frame_b:
        raise ValidationError("both frames are required")
    if multiplier < 2:
        raise ValidationError(f"multiplier must be at least 2, got {multiplier}")
    b = GraphBuilder()
    first = b.add("LoadImage", image=frame_a, upload="image")
    second = b.add("LoadImage", image=frame_b, upload="image")
    batch = b.add("ImageBatch", image1=b.out(first), image2=b.out(second))
    rife = b.add(
        "RIFE VFI",
        ckpt_name=RIFE_CHECKPOINT,
        clear_cache_after_n_frames=10,
        multiplier=multiplier,
        fast_mode=True,
        ensemble=False,
        scale_factor=1.0,
        frames=b.out(batch),
    )
    b.add("SaveImage", images=b.out(rife), filename_prefix="interpolated")
    return b.graph


# ---------------------------------------------------------------------------
# Output lookup
# ---------------------------------------------------------------------------

def find_video_output(outputs: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """First video artifact in an execution's outputs, or ``None``."""
    for node_output in outputs.values():
        videos = node_output.get("gifs") or node_output.get("videos") or []
        if isinstance(videos, dict):
            videos = [videos]
        if videos:
            return {
                "filename": videos[0]["filename"],
                "subfolder": videos[0].get("subfolder", ""),
                "type": videos[0].get("type", "output"),
            }
    return None


def find_image_outputs(outputs: Dict[str, Any]) -> List[Dict[str, str]]:
    """Every image artifact in an execution's outputs, in node order."""
    images = []
    for node_output in outputs.values():
        for image in node_output.get("images") or []:
            images.append({
                "filename": image["filename"],
                "subfolder": image.get("subfolder", ""),
                "type": image.get("type", "output"),
            })
    return images
