from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    name: str = Field(default="sentembed")
    debug: bool = Field(default=False)


class ModelsConfig(BaseModel):
    # Directories searched for "<org>/<name>" model folders, in order
    roots: List[str] = Field(default_factory=list)
    use_hub_cache: bool = Field(default=True)
    hub_cache_dir: Optional[str] = None
    revision: str = Field(default="main")
    # 0 keeps every loaded model until explicit eviction
    cache_max_models: int = Field(default=0, ge=0)
    profiles_file: str = Field(default="model_profiles.json")
    prefer_onnx: bool = Field(default=False)


class InferenceConfig(BaseModel):
    dtype: Literal["float32", "float64", "float16"] = Field(default="float32")
    check_finite: bool = Field(default=True)
    execution_provider: str = Field(default="CPUExecutionProvider")
    intra_op_threads: int = Field(default=0, ge=0)


class PoolingDefaults(BaseModel):
    strategy: str = Field(default="mean")
    normalize: bool = Field(default=True)
    include_special_tokens: bool = Field(default=True)


class LoggingConfig(BaseModel):
    folder: str = Field(default="logs")
    app_log_file: str = Field(default="sentembed.log")
    level: str = Field(default="INFO")


class AppSettings(BaseModel):
    app: AppConfig = Field(default_factory=AppConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    pooling: PoolingDefaults = Field(default_factory=PoolingDefaults)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
