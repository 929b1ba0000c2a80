"""
Pydantic schemas for sampler parameters.

These schemas define the contract between callers and the sampler,
validating ranges of every hyperparameter before any iteration runs.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import get_settings


class InitMethodEnum(str, Enum):
    """How the chain state is initialized."""
    LCA = "lca"
    RANDOM = "random"


class DDTLCMParams(BaseModel):
    """Parameters for a DDT-LCM chain."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    n_classes: int = Field(ge=2, description="Number of latent classes (tree leaves)")
    total_iters: int = Field(default=5000, ge=1, description="Number of MCMC iterations")

    # Divergence function a(t) = c / (1 - t)
    c: float = Field(default=1.0, gt=0, description="Initial divergence constant")
    fix_c: bool = Field(default=False, description="Keep c fixed instead of sampling it")
    c_prior_shape: float = Field(default=1.0, gt=0, description="Gamma prior shape for c")
    c_prior_rate: float = Field(default=1.0, gt=0, description="Gamma prior rate for c")

    # LCM priors
    class_prob_concentration: float = Field(
        default=1.0, gt=0, description="Symmetric Dirichlet concentration for class probabilities"
    )
    variance_prior_shape: float = Field(
        default=2.0, gt=0, description="Inverse-gamma prior shape for group diffusion variances"
    )
    variance_prior_rate: float = Field(
        default=2.0, gt=0, description="Inverse-gamma prior rate for group diffusion variances"
    )
    initial_variance: float = Field(default=1.0, gt=0, description="Starting diffusion variance")

    # Initialization
    init_method: InitMethodEnum = Field(default=InitMethodEnum.LCA, description="Initialization method")
    em_n_init: int = Field(default=10, ge=1, le=100, description="EM random starts for LCA initialization")
    em_max_iter: int = Field(default=100, ge=1, le=10000, description="EM iterations per start")

    # Numerics
    pg_truncation: int = Field(
        default=200, ge=10, le=5000, description="Terms kept in the Polya-Gamma series"
    )
    allow_missing: bool = Field(default=False, description="Treat NaN responses as missing")

    @classmethod
    def from_settings(cls, n_classes: int, **overrides: Any) -> "DDTLCMParams":
        """Build parameters from ``Settings`` defaults, applying ``overrides``."""
        settings = get_settings()
        values = {
            "n_classes": n_classes,
            "total_iters": settings.default_total_iters,
            "c": settings.default_c,
            "pg_truncation": settings.default_pg_truncation,
            "em_n_init": settings.default_em_n_init,
            "em_max_iter": settings.default_em_max_iter,
        }
        values.update(overrides)
        return cls(**values)
