"""
Pydantic configuration schemas for type safety and validation
"""
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import List, Optional, Literal
from pathlib import Path

from ..errors import ConfigurationError


StrategyName = Literal["kmeans", "agglomerative", "spectral", "gmm", "hdbscan"]
ReduceMethod = Literal["none", "var", "mad", "pca"]


class SweepConfig(BaseModel):
    """Parameter sweep configuration"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    strategy: StrategyName = Field(
        default="kmeans",
        description="Clustering strategy run for every parameter combination"
    )
    ks: List[int] = Field(
        default=[3, 4, 5, 6, 7, 8],
        alias="k",
        description="Target cluster counts (ignored by density strategies)"
    )
    min_cluster_sizes: List[int] = Field(
        default=[5, 10],
        description="Density parameters for the hdbscan strategy"
    )
    distances: List[str] = Field(
        default=["euclidean"],
        description="Dissimilarity choices passed to the strategy"
    )
    reduce_methods: List[ReduceMethod] = Field(
        default=["pca"],
        alias="reduceMethod",
        description="Per-combination dimensionality reduction"
    )
    n_reduced_dims: List[int] = Field(
        default=[10, 50],
        alias="nReducedDims",
        description="Reduced dimensionality per combination"
    )
    n_jobs: int = Field(
        default=1,
        ge=1,
        description="Number of parallel workers for the sweep"
    )
    backend: Literal["thread", "process"] = Field(
        default="thread",
        description="Executor used when n_jobs > 1"
    )
    random_state: int = Field(
        default=42,
        ge=0,
        description="Seed handed to every randomized strategy invocation"
    )

    @field_validator("ks", "min_cluster_sizes", "n_reduced_dims")
    @classmethod
    def validate_positive(cls, v: List[int]) -> List[int]:
        """All grid values must be positive"""
        if any(x < 1 for x in v):
            raise ValueError(f"Grid values must be >= 1, got {v}")
        return v

    @field_validator("distances", "reduce_methods")
    @classmethod
    def validate_non_empty(cls, v: List[str]) -> List[str]:
        """Grid axes cannot be empty"""
        if len(v) == 0:
            raise ValueError("Grid axis must contain at least one value")
        return v


class ConsensusConfig(BaseModel):
    """Co-clustering consensus configuration"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    combine_proportion: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        alias="combineProportion",
        description="Minimum co-clustering fraction to treat two samples as grouped"
    )
    combine_min_size: int = Field(
        default=5,
        ge=1,
        alias="combineMinSize",
        description="Consensus clusters smaller than this are set to -1"
    )
    min_assigned: int = Field(
        default=1,
        ge=0,
        description="Labelings with fewer assigned samples are ignored (1 drops all-unassigned labelings)"
    )
    linkage: Literal["average", "complete", "single"] = Field(
        default="complete",
        description="Linkage used on 1 - co-clustering"
    )
    n_clusters: Optional[int] = Field(
        default=None,
        ge=1,
        description="Cut to this many clusters instead of the proportion threshold"
    )


class HierarchyConfig(BaseModel):
    """Cluster hierarchy configuration"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    reduce_method: ReduceMethod = Field(
        default="mad",
        alias="reduceMethod",
        description="Feature selection for cluster representative points"
    )
    n_dims: Optional[int] = Field(
        default=500,
        ge=1,
        alias="ndims",
        description="Number of features (or components) kept for representative points"
    )
    linkage: Literal["ward", "average", "complete", "single"] = Field(
        default="average",
        description="Linkage over cluster medians"
    )
    metric: str = Field(
        default="euclidean",
        description="Distance between cluster medians"
    )

    @model_validator(mode="after")
    def validate_ward_metric(self) -> "HierarchyConfig":
        """Ward linkage is only defined for euclidean distances"""
        if self.linkage == "ward" and self.metric != "euclidean":
            raise ValueError("ward linkage requires metric='euclidean'")
        return self


class MergeConfig(BaseModel):
    """Hierarchical merging configuration"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cutoff: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        alias="mergeCutoff",
        description="Nodes with adjusted p >= cutoff are merged"
    )
    method: Literal["global", "node"] = Field(
        default="global",
        alias="mergeMethod",
        description="Adjust across all node tests of a pass, or per node"
    )
    correction: str = Field(
        default="fdr_bh",
        description="statsmodels multipletests method"
    )

    @field_validator("correction")
    @classmethod
    def validate_correction(cls, v: str) -> str:
        """Only corrections supported by statsmodels"""
        valid = {"fdr_bh", "fdr_by", "bonferroni", "holm", "sidak", "hommel"}
        if v not in valid:
            raise ValueError(f"Invalid correction: {v}. Valid: {valid}")
        return v


class ContrastConfig(BaseModel):
    """Contrast generation configuration"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    contrast_type: Literal["F", "Pairs", "OneAgainstAll", "Dendro"] = Field(
        default="OneAgainstAll",
        alias="contrastType",
        description="Contrast strategy"
    )
    number: int = Field(
        default=25,
        ge=1,
        description="Top features kept per contrast"
    )
    p_value: Optional[float] = Field(
        default=None,
        gt=0.0,
        le=1.0,
        description="Only keep features with adjusted p below this value"
    )
    n_jobs: int = Field(
        default=1,
        ge=1,
        description="Contrasts evaluated concurrently"
    )


class AppConfig(BaseModel):
    """Root configuration schema"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    # Global settings
    seed: int = Field(
        default=42,
        ge=0,
        description="Random seed for reproducibility"
    )
    is_count: bool = Field(
        default=False,
        alias="isCount",
        description="Input holds raw counts and is log2(x + 1) transformed"
    )
    verbose: bool = Field(
        default=True,
        description="Verbose output"
    )

    # Sub-configs
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    consensus: ConsensusConfig = Field(default_factory=ConsensusConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    contrasts: ContrastConfig = Field(default_factory=ContrastConfig)

    # Paths
    input_path: Optional[Path] = Field(
        default=None,
        description="Feature matrix file (samples x features)"
    )
    output_dir: Path = Field(
        default=Path("outputs"),
        description="Output directory"
    )

    @field_validator("input_path", "output_dir")
    @classmethod
    def validate_path(cls, v: Optional[Path]) -> Optional[Path]:
        """Convert string to Path if needed"""
        return Path(v) if v is not None else v


def validate_against_data(config: AppConfig, n_samples: int) -> None:
    """
    Check parameters that can only be judged once the matrix shape is known

    Raises:
        ConfigurationError: on contradictory parameters
    """
    problems = []

    if config.consensus.combine_min_size > n_samples:
        problems.append(
            f"combineMinSize={config.consensus.combine_min_size} exceeds "
            f"sample count {n_samples}"
        )
    if config.consensus.n_clusters is not None and config.consensus.n_clusters > n_samples:
        problems.append(
            f"consensus n_clusters={config.consensus.n_clusters} exceeds "
            f"sample count {n_samples}"
        )
    if config.sweep.strategy != "hdbscan" and len(config.sweep.ks) == 0:
        problems.append("parameter grid is empty: no k values")
    if config.sweep.strategy == "hdbscan" and len(config.sweep.min_cluster_sizes) == 0:
        problems.append("parameter grid is empty: no min_cluster_sizes")
    if config.sweep.strategy != "hdbscan" and config.sweep.ks and all(
        k >= n_samples for k in config.sweep.ks
    ):
        problems.append(f"every k in {config.sweep.ks} is >= sample count {n_samples}")

    if problems:
        raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(problems))
