"""Detector registry: the closed set of discovery strategies, in merge order."""

from __future__ import annotations

from key_cypher.core.base import BaseDetector
from key_cypher.detectors.cyphered import CypheredNameScan
from key_cypher.detectors.directories import AllowlistDirectoryScan
from key_cypher.detectors.env_files import EnvFileScan
from key_cypher.detectors.extensions import ExtensionScan
from key_cypher.detectors.key_content import ContentSniffScan
from key_cypher.detectors.single_files import AllowlistFileScan

# Order matters: when two detectors report the same path, the first one wins
# the detectedBy attribution.
DETECTOR_TYPES: tuple[type[BaseDetector], ...] = (
    AllowlistDirectoryScan,
    AllowlistFileScan,
    ExtensionScan,
    ContentSniffScan,
    EnvFileScan,
    CypheredNameScan,
)


def get_all_detectors() -> list[BaseDetector]:
    """Instantiate every detector with its default settings."""
    return [detector_type() for detector_type in DETECTOR_TYPES]


def get_detector(name: str) -> BaseDetector | None:
    """Get a detector by name."""
    for detector in get_all_detectors():
        if detector.name == name:
            return detector
    return None
