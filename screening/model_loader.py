import json, asyncio, logging, threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import torch
import torch.nn as nn

from screening.config import THRESHOLD_DEFAULT, LOW, HIGH
from screening.errors import (
    ModelDescriptorError, ModelLoadError, ModelNotLoadedError,
    NoGraphSignatureError, ScreeningError, UnknownModelFormatError,
)
from screening.nets import build_network, with_head

logger = logging.getLogger(__name__)

GRAPH, LAYERS = "graph", "layers"

def read_descriptor(path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ModelDescriptorError(f"Model descriptor not found: {path}")
    try:
        desc = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ModelDescriptorError(f"Could not parse model descriptor {path}: {e}") from e
    if not isinstance(desc, dict):
        raise ModelDescriptorError(f"Model descriptor {path} is not a JSON object")
    return desc

def detect_format(desc: Dict[str, Any]) -> str:
    fmt = str(desc.get("format") or "").lower()
    if "graph" in fmt:  return GRAPH
    if "layers" in fmt: return LAYERS
    if desc.get("modelTopology") is not None: return LAYERS
    raise UnknownModelFormatError("Unknown model descriptor format: expected a graph/layers 'format' or a 'modelTopology'")

def _signature_names(desc: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    sig = desc.get("signature")
    if not isinstance(sig, dict):
        return None
    ins, outs = sig.get("inputs") or {}, sig.get("outputs") or {}
    if not ins or not outs:
        return None
    return next(iter(ins)), next(iter(outs))

def _as_tensor_list(y) -> List[torch.Tensor]:
    if isinstance(y, torch.Tensor):
        return [y]
    if isinstance(y, Mapping):
        y = list(y.values())
    return [t if isinstance(t, torch.Tensor) else torch.as_tensor(t) for t in y]

class Predictor:
    """Runnable classifier: execute(NHWC tensor) -> list of output tensors."""
    kind = "base"

    def __init__(self, device: str = "cpu"):
        self.device = device
        self._lock = threading.Lock()

    def execute(self, x: torch.Tensor) -> List[torch.Tensor]:
        with self._lock, torch.inference_mode():
            return _as_tensor_list(self._run(x.to(self.device)))

    def _run(self, x: torch.Tensor):
        raise NotImplementedError

class GraphPredictor(Predictor):
    """TorchScript graph; falls back to the descriptor signature's input/output names."""
    kind = GRAPH

    def __init__(self, module, signature: Optional[Tuple[str, str]] = None, device: str = "cpu"):
        super().__init__(device)
        self.module = module
        self.signature = signature

    def _run(self, x):
        try:
            return self.module(x)
        except Exception as e:
            if self.signature is None:
                raise NoGraphSignatureError(f"Graph execution failed and no signature is available: {e}") from e
            in_name, out_name = self.signature
            logger.info("Graph positional call failed (%s); executing with names %s -> %s", e, in_name, out_name)
            y = self.module(**{in_name: x})
            return y[out_name] if isinstance(y, Mapping) else y

class LayersPredictor(Predictor):
    """nn.Module built from modelTopology; torch convs are channels-first so NHWC is permuted."""
    kind = LAYERS

    def __init__(self, net: nn.Module, device: str = "cpu"):
        super().__init__(device)
        self.net = net.eval().to(device)

    def _run(self, x):
        return self.net(x.permute(0, 3, 1, 2).contiguous())

def _build_graph(path: Path, desc: Dict[str, Any], device: str) -> GraphPredictor:
    graph_path = path.parent / desc.get("graphPath", "model.pt")
    if not graph_path.exists():
        raise ModelDescriptorError(f"Graph file not found: {graph_path}")
    module = torch.jit.load(str(graph_path), map_location=device)
    module.eval()
    sig = _signature_names(desc)
    logger.info("graph file=%s signature=%s", graph_path, sig)
    return GraphPredictor(module, signature=sig, device=device)

def _build_layers(path: Path, desc: Dict[str, Any], device: str) -> LayersPredictor:
    topology = desc.get("modelTopology") or {}
    net = build_network(topology)
    weights = desc.get("weightsPath")
    if weights:
        wpath = path.parent / weights
        if not wpath.exists():
            raise ModelDescriptorError(f"Weights file not found: {wpath}")
        state = torch.load(wpath, map_location="cpu")
        net.load_state_dict(state["state_dict"] if isinstance(state, dict) and "state_dict" in state else state)
    else:
        logger.warning("Descriptor %s has no weightsPath; using untrained weights", path)
    net = with_head(net, topology.get("head"))
    logger.info("layers arch=%s num_classes=%s head=%s",
                topology.get("arch", "tiny_cnn"), topology.get("num_classes", 2), topology.get("head"))
    return LayersPredictor(net, device=device)

def instantiate(path, device: str = "cpu") -> Tuple[str, Predictor]:
    """Fetch, parse and build. Returns (model_type, predictor)."""
    path = Path(path)
    desc = read_descriptor(path)
    model_type = detect_format(desc)
    logger.info("detected model type = %s (%s)", model_type, path)
    try:
        if model_type == GRAPH:
            return model_type, _build_graph(path, desc, device)
        return model_type, _build_layers(path, desc, device)
    except ScreeningError:
        raise
    except Exception as e:
        raise ModelLoadError(f"Failed to instantiate {model_type} model from {path}: {e}") from e

class ModelLoader:
    """Owns the one cached Predictor. Only successful loads are cached."""

    def __init__(self, descriptor_path, device: str = "cpu"):
        self.descriptor_path = Path(descriptor_path)
        self.device = device
        self._predictor: Optional[Predictor] = None
        self._model_type: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._predictor is not None

    @property
    def model_type(self) -> Optional[str]:
        return self._model_type

    def load_sync(self) -> Predictor:
        if self._predictor is not None:
            return self._predictor
        # callers arriving mid-load block here, then find the cached predictor
        with self._lock:
            if self._predictor is None:
                model_type, predictor = instantiate(self.descriptor_path, self.device)
                self._model_type, self._predictor = model_type, predictor
                logger.info("model ready: type=%s device=%s thresholds=%s",
                            model_type, self.device, {"THRESHOLD_DEFAULT": THRESHOLD_DEFAULT, "LOW": LOW, "HIGH": HIGH})
        return self._predictor

    async def load(self) -> Predictor:
        if self._predictor is not None:
            return self._predictor
        return await asyncio.to_thread(self.load_sync)

    def predict(self, x: torch.Tensor) -> List[torch.Tensor]:
        if self._predictor is None:
            raise ModelNotLoadedError("Model not loaded; await load() first")
        return self._predictor.execute(x)
