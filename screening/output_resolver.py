import math, logging
from typing import List, Sequence

import torch

from screening.config import ChannelOrder, ScreenConfig
from screening.errors import UnexpectedOutputShapeError

logger = logging.getLogger(__name__)

SOFTMAX_TOL = 1e-3

def sigmoid(v: float) -> float:
    # branch on sign so exp() never overflows
    if v >= 0:
        return 1.0 / (1.0 + math.exp(-v))
    z = math.exp(v)
    return z / (1.0 + z)

def flatten_first(outputs) -> List[float]:
    """First output tensor (or the bare tensor) -> flat list of python floats."""
    if not isinstance(outputs, torch.Tensor) and len(outputs) == 0:
        raise UnexpectedOutputShapeError("Model produced no output tensors")
    first = outputs if isinstance(outputs, torch.Tensor) else outputs[0]
    return torch.as_tensor(first).detach().reshape(-1).to("cpu", torch.float64).tolist()

def select(values: Sequence[float], order: ChannelOrder) -> float:
    return float(values[order.positive_index])

def resolve(outputs, config: ScreenConfig = ScreenConfig(), strict: bool = False) -> float:
    """
    Raw model output -> raw positive-class score. Decided purely from the output's length, sum and range:
      len 1                 -> value as-is (assumed to already be a probability)
      len 2, sums to ~1 and both values in [0, 1] -> softmax; pick the channel named by config.order
      len 2, otherwise      -> logits; sigmoid each channel, then pick
      other                 -> first value with a warning (UnexpectedOutputShapeError if strict)
    Not clamped.
    """
    data = flatten_first(outputs)
    n = len(data)
    if n == 1:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("len=1 first=%s sigmoid(first)=%s", data[0], sigmoid(data[0]))
        raw = data[0]
    elif n == 2:
        p0, p1 = data
        total = p0 + p1
        logger.debug("len=2 p0=%s p1=%s sum=%s", p0, p1, total)
        if abs(total - 1.0) < SOFTMAX_TOL and 0.0 <= p0 <= 1.0 and 0.0 <= p1 <= 1.0:
            raw = select((p0, p1), config.order)
        else:
            s0, s1 = sigmoid(p0), sigmoid(p1)
            logger.debug("treated as logits s0=%s s1=%s", s0, s1)
            raw = select((s0, s1), config.order)
    elif n == 0:
        raise UnexpectedOutputShapeError("Model produced an empty output tensor")
    else:
        if strict:
            raise UnexpectedOutputShapeError(f"Unexpected output length {n}; expected 1 or 2")
        logger.warning("Unexpected output length %d -> using first value", n)
        raw = data[0]
    logger.debug("raw after selection = %s", raw)
    return float(raw)
