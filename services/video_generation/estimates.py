"""Generation time estimates."""

from typing import Optional

from core.config import EstimateConfig, get_config

from .models import GenerationParams


def estimate_generation_time(
    params: GenerationParams,
    config: Optional[EstimateConfig] = None,
) -> int:
    """
    Estimated wall-clock seconds for a generation.

    Pure function of the parameters: a base constant plus terms for the
    resolution tier, steps above the flow's step baseline, and frames above
    the flow's frame baseline.
    """
    config = config or get_config().estimates
    baseline = config.image_baseline if params.is_image_flow else config.text_baseline

    estimate = float(config.base_seconds)
    estimate += config.resolution_seconds.get(params.resolution, 0)
    estimate += (params.num_inference_steps - baseline.steps) * config.seconds_per_step
    estimate += (params.num_frames - baseline.frames) * config.seconds_per_frame

    return round(estimate)
