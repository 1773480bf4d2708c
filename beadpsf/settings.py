from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    field_validator,
)


# All settings classes inherit from MyBaseModel, which forbids extra parameters to guard against typos
class MyBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class MeasurePSFSettings(MyBaseModel):
    use_max_projection_in_z: bool = True
    z_fit_components: PositiveInt = 1
    median_filter_size: PositiveInt = 1
    crop_window_size: Optional[PositiveInt] = None
    downsample_factor: PositiveFloat = 0.25
    smoothing_kernel_size: PositiveInt = 2
    lateral_median_filter_size: PositiveInt = 3
    peak_snr_threshold: NonNegativeFloat = 5.0
    peak_dominance_ratio: PositiveFloat = 0.5
    dominance_window_size: PositiveInt = 9
    baseline_num_samples: PositiveInt = 5
    max_iterations: PositiveInt = 4000

    @field_validator("crop_window_size", mode="before")
    @classmethod
    def check_crop_window_size(cls, v):
        # false disables cropping, like an unset value
        if v is None or v is False:
            return None
        if isinstance(v, bool):
            raise ValueError("crop_window_size must be a positive integer or false")
        return v

    @field_validator("downsample_factor")
    @classmethod
    def check_downsample_factor(cls, v):
        if v > 1:
            raise ValueError("downsample_factor must be in the range (0, 1]")
        return v
