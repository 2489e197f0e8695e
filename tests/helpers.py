import json

import torch
import torch.nn as nn

from screening.nets import TinyCNN

class ConstOutput(nn.Module):
    """Emits the same row for every image; stands in for a trained graph."""
    def __init__(self, values):
        super().__init__()
        self.register_buffer("values", torch.tensor(values, dtype=torch.float32))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.values.unsqueeze(0).expand(x.shape[0], -1) + x.mean() * 0.0

def write_graph_model(folder, values, signature=None):
    folder.mkdir(parents=True, exist_ok=True)
    torch.jit.script(ConstOutput(values)).save(str(folder / "model.pt"))
    desc = {"format": "graph-model", "graphPath": "model.pt"}
    if signature:
        desc["signature"] = signature
    (folder / "model.json").write_text(json.dumps(desc))
    return folder / "model.json"

def write_layers_model(folder, fc_bias=None, head=None, with_format=True):
    """tiny_cnn checkpoint; with fc_bias the fc weights are zeroed so the output equals the bias."""
    folder.mkdir(parents=True, exist_ok=True)
    torch.manual_seed(0)
    net = TinyCNN(num_classes=len(fc_bias) if fc_bias else 2)
    if fc_bias:
        with torch.no_grad():
            net.fc.weight.zero_()
            net.fc.bias.copy_(torch.tensor(fc_bias))
    torch.save({"state_dict": net.state_dict(), "arch": "tiny_cnn"}, folder / "weights.pt")
    topo = {"arch": "tiny_cnn", "num_classes": net.fc.out_features}
    if head:
        topo["head"] = head
    desc = {"modelTopology": topo, "weightsPath": "weights.pt"}
    if with_format:
        desc["format"] = "layers-model"
    (folder / "model.json").write_text(json.dumps(desc))
    return folder / "model.json"

