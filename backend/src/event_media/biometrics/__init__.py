"""Biometric face index adapters."""

from typing import Dict

from .base import DELETE_FACES_CEILING, BiometricIndex, sanitize_external_image_id
from .rekognition import RekognitionIndex


def make_biometric_index(config: Dict) -> BiometricIndex:
    """Build the configured biometric index."""
    section = config["biometrics"]
    backend = section.get("backend", "rekognition")
    if backend != "rekognition":
        raise ValueError(f"Unknown biometrics backend: {backend}")
    return RekognitionIndex(
        region=section.get("region", "us-east-1"),
        timeout=float(config["remote"]["timeout"]),
        collection_prefix=section.get("collection_prefix", ""),
        max_pool_connections=max(
            int(config["remote"].get("max_pool_connections", 16)),
            int(config["search"].get("max_workers", 8)),
        ),
    )


__all__ = [
    'DELETE_FACES_CEILING',
    'BiometricIndex',
    'RekognitionIndex',
    'make_biometric_index',
    'sanitize_external_image_id',
]
