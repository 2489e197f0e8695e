import logging
from typing import Any, List, Mapping, Optional

import torch

from screening.calibration import PredictionResult, decide
from screening.config import ConfigResolver, ScreenConfig
from screening.model_loader import ModelLoader
from screening.output_resolver import resolve
from screening.preprocess import normalize

logger = logging.getLogger(__name__)

class Screener:
    """image -> PredictionResult, against the loader's cached predictor."""

    def __init__(self, loader: ModelLoader, resolver: Optional[ConfigResolver] = None, strict_output: bool = False):
        self.loader = loader
        self.resolver = resolver or ConfigResolver()
        self.strict_output = strict_output

    async def load(self):
        return await self.loader.load()

    async def predict(self, image, query: Optional[Mapping[str, Any]] = None) -> PredictionResult:
        await self.loader.load()
        return self.predict_loaded(image, self.resolver.config(query))

    def predict_loaded(self, image, config: ScreenConfig) -> PredictionResult:
        """Synchronous CPU part; the loader must already hold a predictor."""
        scope: List[torch.Tensor] = []
        x = outs = None
        try:
            x = normalize(image, config)
            scope.append(x)
            logger.info("x range: %.4f -> %.4f div255=%s bgr=%s",
                        float(x.min()), float(x.max()), config.div255, config.bgr)
            outs = self.loader.predict(x)
            scope.extend(outs)
            logger.info("out shape=%s n_outputs=%d", tuple(outs[0].shape) if outs else None, len(outs))
            raw = resolve(outs, config, strict=self.strict_output)
            result = decide(raw, config.threshold)
            logger.info("raw=%.6f thr=%s label=%s score=%.3f conf=%.3f",
                        result.raw_score, result.threshold, result.label, result.score, result.confidence)
            return result
        finally:
            scope.clear()
            del x, outs
