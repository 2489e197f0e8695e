import json, time, asyncio
import pytest
import torch

from screening import model_loader
from screening.errors import (
    ModelDescriptorError, ModelLoadError, ModelNotLoadedError, NoGraphSignatureError, UnknownModelFormatError,
)
from screening.model_loader import GraphPredictor, LayersPredictor, ModelLoader, detect_format
from helpers import write_graph_model, write_layers_model

@pytest.mark.parametrize("desc,expected", [
    ({"format": "graph-model"}, "graph"),
    ({"format": "GraphModel"}, "graph"),
    ({"format": "layers-model"}, "layers"),
    ({"format": "Layers"}, "layers"),
    ({"modelTopology": {"arch": "tiny_cnn"}}, "layers"),
    ({"format": "", "modelTopology": {}}, "layers"),
])
def test_detect_format(desc, expected):
    assert detect_format(desc) == expected

@pytest.mark.parametrize("desc", [{}, {"format": "onnx"}, {"weightsManifest": []}, {"modelTopology": None}])
def test_detect_format_unknown(desc):
    with pytest.raises(UnknownModelFormatError):
        detect_format(desc)

def test_unknown_descriptor_is_not_cached(tmp_path):
    p = tmp_path / "model.json"
    p.write_text(json.dumps({"weightsManifest": []}))
    loader = ModelLoader(p)
    with pytest.raises(UnknownModelFormatError):
        asyncio.run(loader.load())
    assert not loader.loaded and loader.model_type is None
    with pytest.raises(ModelNotLoadedError):
        loader.predict(torch.zeros(1, 224, 224, 3))

def test_failed_load_is_retried(tmp_path):
    p = tmp_path / "m" / "model.json"
    loader = ModelLoader(p)
    with pytest.raises(ModelDescriptorError):
        loader.load_sync()
    write_layers_model(tmp_path / "m", fc_bias=[0.3, 0.7])
    assert isinstance(loader.load_sync(), LayersPredictor)
    assert loader.model_type == "layers"

def test_not_json_descriptor(tmp_path):
    p = tmp_path / "model.json"
    p.write_text("<html>")
    with pytest.raises(ModelDescriptorError):
        ModelLoader(p).load_sync()

def test_concurrent_loads_instantiate_once(tmp_path, monkeypatch):
    path = write_layers_model(tmp_path, fc_bias=[0.3, 0.7])
    calls = []
    real = model_loader.read_descriptor
    def slow_read(p):
        calls.append(p)
        time.sleep(0.2)
        return real(p)
    monkeypatch.setattr(model_loader, "read_descriptor", slow_read)
    loader = ModelLoader(path)

    async def both():
        return await asyncio.gather(loader.load(), loader.load(), loader.load())
    a, b, c = asyncio.run(both())
    assert a is b is c
    assert len(calls) == 1
    assert loader.load_sync() is a
    assert len(calls) == 1

def test_layers_predictor_runs_nhwc(tmp_path):
    loader = ModelLoader(write_layers_model(tmp_path, fc_bias=[0.3, 0.7]))
    loader.load_sync()
    outs = loader.predict(torch.rand(1, 224, 224, 3))
    assert isinstance(outs, list) and len(outs) == 1
    assert outs[0].tolist()[0] == pytest.approx([0.3, 0.7], abs=1e-6)

def test_layers_topology_without_format_and_softmax_head(tmp_path):
    loader = ModelLoader(write_layers_model(tmp_path, fc_bias=[1.0, 3.0], head="softmax", with_format=False))
    loader.load_sync()
    assert loader.model_type == "layers"
    p = loader.predict(torch.rand(1, 224, 224, 3))[0][0]
    assert float(p.sum()) == pytest.approx(1.0, abs=1e-6)

def test_layers_missing_weights_file(tmp_path):
    (tmp_path / "model.json").write_text(json.dumps({"modelTopology": {"arch": "tiny_cnn"}, "weightsPath": "nope.pt"}))
    with pytest.raises(ModelDescriptorError):
        ModelLoader(tmp_path / "model.json").load_sync()

def test_layers_bad_head_is_load_error(tmp_path):
    (tmp_path / "model.json").write_text(json.dumps({"modelTopology": {"arch": "tiny_cnn", "head": "tanh"}}))
    with pytest.raises(ModelLoadError):
        ModelLoader(tmp_path / "model.json").load_sync()

def test_graph_model_loads_and_executes(tmp_path):
    loader = ModelLoader(write_graph_model(tmp_path, [0.2, 0.8]))
    assert isinstance(loader.load_sync(), GraphPredictor)
    outs = loader.predict(torch.rand(1, 224, 224, 3))
    assert outs[0].tolist()[0] == pytest.approx([0.2, 0.8])

def test_graph_missing_file(tmp_path):
    (tmp_path / "model.json").write_text(json.dumps({"format": "graph-model", "graphPath": "missing.pt"}))
    with pytest.raises(ModelDescriptorError):
        ModelLoader(tmp_path / "model.json").load_sync()

class NamedOnlyGraph:
    """Rejects positional execution, answers named execution with a dict of outputs."""
    def __init__(self):
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, sorted(kwargs)))
        if args:
            raise RuntimeError("forward() expected a named input")
        return {"probs": torch.tensor([[0.1, 0.9]]), "features": torch.zeros(1, 8)}

def test_graph_falls_back_to_signature_names():
    g = NamedOnlyGraph()
    outs = GraphPredictor(g, signature=("serving_input", "probs")).execute(torch.zeros(1, 224, 224, 3))
    assert outs[0].tolist()[0] == pytest.approx([0.1, 0.9])
    assert g.calls[1] == ((), ["serving_input"])

def test_graph_without_signature_raises():
    with pytest.raises(NoGraphSignatureError):
        GraphPredictor(NamedOnlyGraph(), signature=None).execute(torch.zeros(1, 224, 224, 3))

def test_signature_names_from_descriptor():
    desc = {"signature": {"inputs": {"input_1": {}}, "outputs": {"dense_2": {}, "aux": {}}}}
    assert model_loader._signature_names(desc) == ("input_1", "dense_2")
    assert model_loader._signature_names({"signature": {"inputs": {}, "outputs": {"a": {}}}}) is None
