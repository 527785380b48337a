from typing import Optional

from pydantic import BaseModel, Field

POOLING_STRATEGIES = ("mean", "max", "cls", "last", "mean_sqrt_len")


class ModelProfile(BaseModel):
    """Per-model (or per-family) inference conventions.

    Every field is optional so profiles from different sources can be layered:
    built-in defaults < family entry < files shipped with the model < entry
    keyed by the model identifier.
    """

    pooling_strategy: Optional[str] = None
    normalize: Optional[bool] = None
    include_special_tokens: Optional[bool] = None
    max_length: Optional[int] = Field(default=None, gt=0)
    hidden_act: Optional[str] = None
    weights_file: Optional[str] = None
    onnx_model: Optional[str] = None
    use_onnx: Optional[bool] = None

    def merged_with(self, other: Optional["ModelProfile"]) -> "ModelProfile":
        """Return a copy where fields set on ``other`` win."""
        if other is None:
            return self.model_copy()
        overrides = other.model_dump(exclude_none=True)
        return self.model_copy(update=overrides)


class ResolvedProfile(BaseModel):
    """Fully-populated profile attached to a loaded model."""

    pooling_strategy: str = Field(default="mean")
    normalize: bool = Field(default=True)
    include_special_tokens: bool = Field(default=True)
    max_length: int = Field(default=512, gt=0)
    hidden_act: Optional[str] = None
