"""Configuration management for the plane sweep and depth refiners."""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .camera import PoseConvention

logger = logging.getLogger(__name__)

# Flat option names accepted for backward compatibility, mapped to the sections
# that use them. Denoiser options are shared by every refiner section.
LEGACY_SWEEP_KEYS = {
    "winsize",
    "numberplanes",
    "znear",
    "zfar",
    "numberimages",
    "nccthresh",
    "stdthresh",
}
LEGACY_REFINER_KEYS = {
    "niter": ["tvl1", "tgv", "sparse_fusion"],
    "lambda": ["tvl1", "tgv"],
    "tau": ["tvl1", "tgv", "sparse_fusion"],
    "sigma": ["tvl1", "tgv", "sparse_fusion"],
    "theta": ["tvl1", "sparse_fusion"],
    "beta": ["tvl1", "tgv", "sparse_fusion"],
    "gamma": ["tvl1", "tgv", "sparse_fusion"],
    "alpha0": ["tgv", "sparse_fusion"],
    "alpha1": ["tgv", "sparse_fusion"],
    "warps": ["tgv"],
}


class PlaneSweepConfig(BaseModel):
    """Configuration for plane-sweep depth estimation.

    Attributes:
        winsize: NCC window side length (pixels, must be odd).
        numberplanes: Number of depth hypotheses (>= 2).
        znear: Nearest depth hypothesis.
        zfar: Farthest depth hypothesis.
        numberimages: Maximum number of source views used.
        nccthresh: A view votes at a pixel only when its best NCC exceeds this.
        stdthresh: Windows with a smaller standard deviation are ignored.
        pose_convention: How image poses are to be read. Must be set before
            running; there is no default.
    """

    model_config = ConfigDict(extra="allow")

    winsize: int = 7
    numberplanes: int = 64
    znear: float = 1.0
    zfar: float = 10.0
    numberimages: int = 8
    nccthresh: float = 0.5
    stdthresh: float = 0.01
    pose_convention: PoseConvention | None = None

    @field_validator("winsize")
    @classmethod
    def validate_winsize(cls, v: int) -> int:
        """Validate that winsize is positive and odd."""
        if v <= 0 or v % 2 == 0:
            raise ValueError(f"winsize must be positive and odd, got {v}")
        return v

    @field_validator("numberplanes")
    @classmethod
    def validate_numberplanes(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"numberplanes must be at least 2, got {v}")
        return v

    @field_validator("numberimages")
    @classmethod
    def validate_numberimages(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"numberimages must be at least 1, got {v}")
        return v

    @field_validator("nccthresh")
    @classmethod
    def validate_nccthresh(cls, v: float) -> float:
        if not -1.0 <= v <= 1.0:
            raise ValueError(f"nccthresh must lie in [-1, 1], got {v}")
        return v

    @field_validator("stdthresh")
    @classmethod
    def validate_stdthresh(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"stdthresh must be non-negative, got {v}")
        return v

    @model_validator(mode="after")
    def check_depth_range(self) -> "PlaneSweepConfig":
        """Validate the depth range and warn about unknown keys."""
        if not 0 < self.znear < self.zfar:
            raise ValueError(
                f"depth range must satisfy 0 < znear < zfar, got "
                f"znear={self.znear}, zfar={self.zfar}"
            )
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PlaneSweepConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class _RefinerConfig(BaseModel):
    """Fields shared by the primal-dual refiners."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    niter: int = 100
    tau: float = 0.25
    sigma: float = 0.25
    beta: float = 10.0
    gamma: float = 0.1

    @field_validator("niter")
    @classmethod
    def validate_niter(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"niter must be non-negative, got {v}")
        return v

    @field_validator("tau", "sigma")
    @classmethod
    def validate_step(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"step sizes must be positive, got {v}")
        return v

    @field_validator("beta")
    @classmethod
    def validate_beta(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"beta must be non-negative, got {v}")
        return v

    @field_validator("gamma")
    @classmethod
    def validate_gamma(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"gamma must lie in (0, 1], got {v}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "_RefinerConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in %s (ignored): %s",
                type(self).__name__,
                list(self.__pydantic_extra__.keys()),
            )
        return self


class TVL1Config(_RefinerConfig):
    """Configuration for the single-view tensor-weighted TV-L1 denoiser.

    Attributes:
        niter: Number of primal-dual iterations.
        lambda_: Data term weight (YAML key "lambda").
        tau: Primal step size.
        sigma: Dual step size. The first iteration uses 1 + sigma.
        theta: Over-relaxation parameter.
        beta: Edge steepness of the anisotropic tensor.
        gamma: Minimum diffusion across edges.
    """

    lambda_: float = Field(default=1.0, alias="lambda")
    theta: float = 1.0


class TGVConfig(_RefinerConfig):
    """Configuration for the multi-view TGV2 refiner.

    Attributes:
        niter: Primal-dual iterations per warp pass.
        warps: Number of re-linearization passes.
        lambda_: Photometric data term weight (YAML key "lambda").
        alpha0: Weight of the second-order term.
        alpha1: Weight of the first-order term.
        tau: Primal step size.
        sigma: Dual step size.
        beta: Edge steepness of the anisotropic tensor.
        gamma: Minimum diffusion across edges.
    """

    warps: int = 5
    lambda_: float = Field(default=1.0, alias="lambda")
    alpha0: float = 2.0
    alpha1: float = 1.0

    @field_validator("warps")
    @classmethod
    def validate_warps(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"warps must be non-negative, got {v}")
        return v


class SparseFusionConfig(_RefinerConfig):
    """Configuration for TGV2 fusion of a sparse depth prior.

    Attributes:
        niter: Number of primal-dual iterations.
        alpha0: Weight of the second-order term.
        alpha1: Weight of the first-order term.
        tau: Primal step size.
        sigma: Dual step size.
        theta: Over-relaxation parameter.
        beta: Edge steepness of the anisotropic tensor.
        gamma: Minimum diffusion across edges.
    """

    alpha0: float = 2.0
    alpha1: float = 1.0
    theta: float = 1.0


class RuntimeConfig(BaseModel):
    """Configuration for runtime settings.

    Attributes:
        device: PyTorch device string.
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    device: Literal["cpu", "cuda"] = "cpu"
    quiet: bool = False

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class PipelineConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        output_dir: Directory for depth maps, previews and point clouds.
        refinement: Refiner applied after the plane sweep.
        plane_sweep: Plane sweep configuration.
        tvl1: TV-L1 denoiser configuration.
        tgv: Multi-view TGV2 configuration.
        sparse_fusion: Sparse fusion configuration.
        runtime: Runtime configuration.
    """

    model_config = ConfigDict(extra="allow")

    output_dir: str = ""
    refinement: Literal["none", "tvl1", "tgv"] = "tvl1"

    plane_sweep: PlaneSweepConfig = Field(default_factory=PlaneSweepConfig)
    tvl1: TVL1Config = Field(default_factory=TVL1Config)
    tgv: TGVConfig = Field(default_factory=TGVConfig)
    sparse_fusion: SparseFusionConfig = Field(default_factory=SparseFusionConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "PipelineConfig":
        """Warn about unknown top-level keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PipelineConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values. Flat option names
        (winsize, niter, lambda, alternativemethod, ...) are accepted and
        moved into their sections.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        data = cls._migrate_legacy_config(data)
        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _migrate_legacy_config(data: dict[str, Any]) -> dict[str, Any]:
        """Move flat option names into their sections.

        Args:
            data: Configuration dictionary loaded from YAML.

        Returns:
            Migrated configuration dictionary.
        """
        migrated = data.copy()

        for key in LEGACY_SWEEP_KEYS & set(migrated):
            logger.info("Migrating flat config key '%s' to plane_sweep", key)
            section = migrated.setdefault("plane_sweep", {})
            section.setdefault(key, migrated.pop(key))

        if "alternativemethod" in migrated:
            flag = migrated.pop("alternativemethod")
            convention = (
                PoseConvention.CAMERA_TO_WORLD if flag else PoseConvention.WORLD_TO_CAMERA
            )
            logger.info(
                "Migrating 'alternativemethod: %s' to plane_sweep.pose_convention=%s",
                flag,
                convention.value,
            )
            section = migrated.setdefault("plane_sweep", {})
            section.setdefault("pose_convention", convention.value)

        for key, sections in LEGACY_REFINER_KEYS.items():
            if key not in migrated:
                continue
            value = migrated.pop(key)
            logger.info("Migrating flat config key '%s' to %s", key, sections)
            for name in sections:
                migrated.setdefault(name, {}).setdefault(key, value)

        return migrated

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults.

        Args:
            data: Configuration dictionary.
        """
        sections = ["plane_sweep", "tvl1", "tgv", "sparse_fusion", "runtime"]

        for section in sections:
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json", by_alias=True)

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int):
                # Array index
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
