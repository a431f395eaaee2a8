"""Pipeline facade for convenient API access

Runs sweep -> consensus -> hierarchy -> merge -> contrasts, caching each stage's
frozen artifact. Changing the matrix or a stage's configuration drops that
stage's artifact and everything downstream of it; upstream artifacts are kept.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import numpy as np

from .config import AppConfig, ConfigHash, load_config, validate_against_data
from .data.contracts import FeatureMatrix
from .errors import ConfigurationError
from .modeling.consensus import CoClusteringConsensus, ConsensusPartition
from .modeling.contrasts import ContrastEngine, ContrastReport
from .modeling.hierarchy import ClusterHierarchy, ClusterHierarchyBuilder
from .modeling.merging import HierarchicalMerger, MergeResult
from .modeling.strategies import ClusteringStrategy, get_strategy
from .modeling.sweep import ParameterSweepRunner, SweepResult, build_parameter_grid
from .modeling.testing import DifferentialTester, WelchTester
from .utils.io import load_matrix
from .utils.seeds import set_seed
from .utils.timers import Timer

logger = logging.getLogger(__name__)

# Cached artifacts in dependency order
STAGES = ("sweep", "consensus", "hierarchy", "merge", "final_hierarchy", "contrasts")

# First stage affected by each configuration key
_CONFIG_STAGE = {
    "sweep": "sweep",
    "seed": "sweep",
    "consensus": "consensus",
    "hierarchy": "hierarchy",
    "merge": "merge",
    "contrasts": "contrasts",
}


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Every artifact of one complete run"""
    config: AppConfig
    config_hash: ConfigHash
    matrix: FeatureMatrix
    sweep: SweepResult
    consensus: ConsensusPartition
    hierarchy: ClusterHierarchy
    merge: MergeResult
    final_hierarchy: ClusterHierarchy
    contrasts: Optional[ContrastReport] = None

    @property
    def final_labels(self) -> np.ndarray:
        return self.merge.labels


class Pipeline:
    """Main pipeline orchestrator

    Example:
        >>> from consensus_clustering import Pipeline
        >>> pipeline = Pipeline(config_path="config.yaml")
        >>> result = pipeline.run()
        >>> pipeline.update_config("merge", cutoff=0.01)  # drops merge + contrasts only
        >>> pipeline.merge().n_clusters

    Args:
        config: Validated AppConfig (defaults when neither config nor config_path is given)
        config_path: YAML config file, used when config is None
        matrix: Feature matrix; loaded from config.input_path when omitted
        strategy: Clustering strategy overriding config.sweep.strategy
        tester: Differential tester (default: WelchTester with the merge correction)
        seed: Optional random seed (overrides config)
        output_dir: Optional output directory (overrides config)
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        config_path: Optional[Union[str, Path]] = None,
        matrix: Optional[FeatureMatrix] = None,
        strategy: Optional[ClusteringStrategy] = None,
        tester: Optional[DifferentialTester] = None,
        seed: Optional[int] = None,
        output_dir: Optional[Union[str, Path]] = None,
    ):
        if config is None:
            config = load_config(config_path, quiet=True) if config_path is not None else AppConfig()

        # Override settings if provided
        overrides: Dict[str, Any] = {}
        if seed is not None:
            overrides["seed"] = seed
        if output_dir is not None:
            overrides["output_dir"] = Path(output_dir)
        if overrides:
            config = config.model_copy(update=overrides)

        self.config = config
        self.strategy = strategy
        self._tester = tester
        self._matrix = matrix
        self._cache: Dict[str, Any] = {}

        set_seed(self.config.seed)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def matrix(self) -> FeatureMatrix:
        if self._matrix is None:
            if self.config.input_path is None:
                raise ConfigurationError("No feature matrix given and config.input_path is not set")
            self._matrix = load_matrix(self.config.input_path, is_count=self.config.is_count)
        return self._matrix

    @property
    def tester(self) -> DifferentialTester:
        if self._tester is not None:
            return self._tester
        return WelchTester(correction=self.config.merge.correction)

    def set_matrix(self, matrix: FeatureMatrix) -> None:
        """Replace the input matrix; every cached artifact is dropped"""
        self._matrix = matrix
        self.invalidate("sweep")

    def update_config(self, section: str, **changes: Any) -> None:
        """
        Change one configuration section (or a top-level key) and drop the
        artifacts that depend on it

        Example:
            >>> pipeline.update_config("consensus", combine_min_size=3)
            >>> pipeline.update_config("is_count", value=True)
        """
        current = self.config.model_dump()
        if section in ("seed", "is_count", "verbose", "input_path", "output_dir"):
            if set(changes) != {"value"}:
                raise ConfigurationError(f"Top-level setting '{section}' takes a single value=...")
            current[section] = changes["value"]
        elif section in current and isinstance(current[section], dict):
            current[section] = {**current[section], **changes}
        else:
            raise ConfigurationError(f"Unknown configuration section '{section}'")

        new_config = AppConfig.model_validate(current)
        if new_config.model_dump() == self.config.model_dump():
            return
        self.config = new_config

        if section == "seed":
            set_seed(new_config.seed)
        if section in ("is_count", "input_path"):
            # The matrix itself changes (transform or source)
            if self._matrix is not None and section == "is_count":
                m = self._matrix
                self._matrix = FeatureMatrix(
                    values=m.values,
                    sample_ids=m.sample_ids,
                    feature_names=m.feature_names,
                    is_count=new_config.is_count,
                    original_index=m.original_index,
                )
            elif section == "input_path":
                self._matrix = None
            self.invalidate("sweep")
        elif section in _CONFIG_STAGE:
            self.invalidate(_CONFIG_STAGE[section])

    def invalidate(self, stage: str) -> None:
        """Drop the cached artifact of `stage` and of every later stage"""
        if stage not in STAGES:
            raise ValueError(f"Unknown stage: {stage}")
        for name in STAGES[STAGES.index(stage):]:
            if self._cache.pop(name, None) is not None:
                logger.debug(f"Invalidated cached {name}")

    def is_cached(self, stage: str) -> bool:
        return stage in self._cache

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def sweep(self) -> SweepResult:
        """Label matrix over the configured parameter grid"""
        if "sweep" not in self._cache:
            self._check()
            cfg = self.config.sweep
            runner = ParameterSweepRunner(
                strategy=self.strategy or get_strategy(cfg.strategy),
                combinations=build_parameter_grid(cfg),
                n_jobs=cfg.n_jobs,
                backend=cfg.backend,
            )
            with Timer("Parameter sweep", verbose=self.config.verbose):
                self._cache["sweep"] = runner.run(self.matrix)
        return self._cache["sweep"]

    def consensus(self) -> ConsensusPartition:
        if "consensus" not in self._cache:
            label_matrix = self.sweep().label_matrix
            self._check()
            with Timer("Consensus", verbose=self.config.verbose):
                self._cache["consensus"] = CoClusteringConsensus.from_config(
                    self.config.consensus
                ).fit(label_matrix)
        return self._cache["consensus"]

    def hierarchy(self) -> ClusterHierarchy:
        """Hierarchy over the consensus clusters"""
        if "hierarchy" not in self._cache:
            partition = self.consensus()
            with Timer("Cluster hierarchy", verbose=self.config.verbose):
                self._cache["hierarchy"] = self._builder().build(self.matrix, partition)
        return self._cache["hierarchy"]

    def merge(self, preview: bool = False) -> MergeResult:
        """
        Final partition after hierarchical merging

        A preview is computed fresh every time and never cached, so it
        cannot stand in for the final partition downstream.
        """
        if preview or "merge" not in self._cache:
            partition = self.consensus()
            hierarchy = self.hierarchy()
            merger = HierarchicalMerger.from_config(self.config.merge, self.tester)
            with Timer("Hierarchical merging", verbose=self.config.verbose):
                result = merger.merge(self.matrix, partition, hierarchy, preview=preview)
            if preview:
                return result
            self._cache["merge"] = result
        return self._cache["merge"]

    def final_hierarchy(self) -> ClusterHierarchy:
        """Hierarchy rebuilt over the final clusters (used by Dendro contrasts)"""
        if "final_hierarchy" not in self._cache:
            labels = self.merge().labels
            self._cache["final_hierarchy"] = self._builder().build(self.matrix, labels)
        return self._cache["final_hierarchy"]

    def contrasts(self, contrast_type: Optional[str] = None) -> ContrastReport:
        """Ranked contrast tables for the final partition"""
        contrast_type = contrast_type or self.config.contrasts.contrast_type
        cached = self._cache.setdefault("contrasts", {})
        if contrast_type not in cached:
            merge_result = self.merge()
            hierarchy = self.final_hierarchy() if contrast_type == "Dendro" else None
            engine = ContrastEngine.from_config(self.config.contrasts, self.tester)
            with Timer(f"{contrast_type} contrasts", verbose=self.config.verbose):
                cached[contrast_type] = engine.run(self.matrix, merge_result, contrast_type, hierarchy)
        return cached[contrast_type]

    def run(self) -> PipelineResult:
        """Run every stage (reusing cached artifacts) and collect the results"""
        merge_result = self.merge()

        contrasts = None
        if merge_result.n_clusters >= 2:
            contrasts = self.contrasts()
        else:
            logger.warning(
                f"Final partition has {merge_result.n_clusters} cluster(s); contrasts skipped"
            )

        return PipelineResult(
            config=self.config,
            config_hash=ConfigHash.from_config(self.config),
            matrix=self.matrix,
            sweep=self.sweep(),
            consensus=self.consensus(),
            hierarchy=self.hierarchy(),
            merge=merge_result,
            final_hierarchy=self.final_hierarchy(),
            contrasts=contrasts,
        )

    def save_results(self, result: Optional[PipelineResult] = None, output_dir: Optional[Union[str, Path]] = None) -> Path:
        """Write every artifact of a run to disk (see pipelines.run_all.write_outputs)"""
        from .pipelines.run_all import write_outputs

        if result is None:
            result = self.run()
        return write_outputs(result, output_dir or self.config.output_dir)

    def _builder(self) -> ClusterHierarchyBuilder:
        return ClusterHierarchyBuilder.from_config(self.config.hierarchy)

    def _check(self) -> None:
        validate_against_data(self.config, self.matrix.n_samples)


def run_pipeline(
    matrix: Optional[FeatureMatrix] = None,
    config: Optional[AppConfig] = None,
    config_path: Optional[Union[str, Path]] = None,
    tester: Optional[DifferentialTester] = None,
    strategy: Optional[ClusteringStrategy] = None,
) -> PipelineResult:
    """Convenience function: build a Pipeline and run every stage

    Example:
        >>> from consensus_clustering import run_pipeline
        >>> result = run_pipeline(matrix, AppConfig(consensus={"combineMinSize": 3}))
        >>> result.merge.n_clusters
    """
    pipeline = Pipeline(
        config=config,
        config_path=config_path,
        matrix=matrix,
        strategy=strategy,
        tester=tester,
    )
    return pipeline.run()
