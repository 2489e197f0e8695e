from typing import Any, Dict

import torch.nn as nn
import timm

HEADS = {"sigmoid": lambda: nn.Sigmoid(), "softmax": lambda: nn.Softmax(dim=1)}

class TinyCNN(nn.Module):
    """Minimal CNN for smoke tests and local wiring; real descriptors name a timm arch."""
    def __init__(self, num_classes: int = 2, in_chans: int = 3):
        super().__init__()
        self.features = nn.Sequential(
            nn.Conv2d(in_chans, 16, 3, padding=1), nn.ReLU(), nn.MaxPool2d(2),
            nn.Conv2d(16, 32, 3, padding=1), nn.ReLU(), nn.MaxPool2d(2),
            nn.Conv2d(32, 64, 3, padding=1), nn.ReLU(),
        )
        self.pool = nn.AdaptiveAvgPool2d(1)
        self.fc = nn.Linear(64, num_classes)

    def forward(self, x):
        h = self.features(x)
        h = self.pool(h).flatten(1)
        return self.fc(h)

def build_network(topology: Dict[str, Any]) -> nn.Module:
    """modelTopology {arch, num_classes, in_chans} -> untrained module, without the output head."""
    arch = str(topology.get("arch", "tiny_cnn"))
    num_classes = int(topology.get("num_classes", 2))
    in_chans = int(topology.get("in_chans", 3))
    if arch == "tiny_cnn":
        net = TinyCNN(num_classes=num_classes, in_chans=in_chans)
    else:
        net = timm.create_model(arch, pretrained=False, num_classes=num_classes, in_chans=in_chans)
    return net

def with_head(net: nn.Module, head) -> nn.Module:
    """Append the activation named by modelTopology.head; None keeps raw logits."""
    if not head:
        return net
    if head not in HEADS:
        raise ValueError(f"Unknown head {head!r}; expected one of {sorted(HEADS)}")
    return nn.Sequential(net, HEADS[head]())
