"""
Descriptor algorithm selection.

The algorithm is a deployment decision: one strategy is built from the
"descriptor" config section and used for every capture and enrollment.
"""

import logging
from typing import Any, Dict, Optional, Type

from faceid.descriptors.block_pattern import BlockPatternHistogram
from faceid.descriptors.geometric_texture import GeometricTextureComposite
from faceid.descriptors.interfaces import DescriptorAlgorithm

logger = logging.getLogger(__name__)

ALGORITHMS: Dict[str, Type[DescriptorAlgorithm]] = {
    BlockPatternHistogram.name: BlockPatternHistogram,
    GeometricTextureComposite.name: GeometricTextureComposite,
}

DEFAULT_ALGORITHM = BlockPatternHistogram.name


def create_algorithm(config: Optional[Dict[str, Any]] = None) -> DescriptorAlgorithm:
    """
    Build the configured descriptor algorithm.

    Args:
        config: The "descriptor" configuration section, e.g.
            {"algorithm": "block_pattern", "grid_size": 64,
             "block_pattern": {"block_grid": [4, 4]}}

    Returns:
        A DescriptorAlgorithm instance.

    Raises:
        ValueError: If the algorithm name is unknown.
    """
    if config is None:
        config = {}

    name = str(config.get("algorithm", DEFAULT_ALGORITHM))
    if name not in ALGORITHMS:
        raise ValueError(
            f"Unknown descriptor algorithm '{name}'. Available: {sorted(ALGORITHMS)}"
        )

    options = dict(config.get(name, {}) or {})
    options.setdefault("grid_size", config.get("grid_size", 64))

    algorithm = ALGORITHMS[name](options)
    logger.info(f"Descriptor algorithm: {algorithm.tag} (length={algorithm.length})")
    return algorithm
