"""Inference engine interfaces for wmerase."""

from abc import ABC, abstractmethod

import numpy as np


class EngineBase(ABC):
    """Abstract interface for inpainting inference engines."""

    @abstractmethod
    def load(self) -> None:
        """Load model resources into memory."""

    @abstractmethod
    def run(self, feeds: dict[str, np.ndarray]) -> np.ndarray:
        """Run one inference pass and return the first model output."""

    @abstractmethod
    def release(self) -> None:
        """Release model resources."""
