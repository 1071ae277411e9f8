"""
Descriptor extraction package.

Components:
    - interfaces: Descriptor value type, DescriptorAlgorithm contract, DescriptorExtractor
    - block_pattern: Block local-pattern histogram strategy (default)
    - geometric_texture: Geometric + texture-energy composite strategy
    - registry: Configuration-driven strategy selection
"""

from faceid.descriptors.interfaces import (
    Descriptor,
    DescriptorAlgorithm,
    DescriptorExtractor,
)
from faceid.descriptors.block_pattern import BlockPatternHistogram
from faceid.descriptors.geometric_texture import GeometricTextureComposite
from faceid.descriptors.registry import ALGORITHMS, create_algorithm

__all__ = [
    "Descriptor",
    "DescriptorAlgorithm",
    "DescriptorExtractor",
    "BlockPatternHistogram",
    "GeometricTextureComposite",
    "ALGORITHMS",
    "create_algorithm",
]
