import os, sys; sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import argparse, json
from pathlib import Path

from screening.model_loader import detect_format, read_descriptor

def graph_descriptor(model: Path, input_name=None, output_name=None) -> dict:
    desc = {"format": "graph-model", "graphPath": model.name}
    if input_name and output_name:
        desc["signature"] = {"inputs": {input_name: {}}, "outputs": {output_name: {}}}
    return desc

def layers_descriptor(arch: str, weights: Path, num_classes: int = 2, head=None) -> dict:
    topo = {"arch": arch, "num_classes": num_classes, "in_chans": 3}
    if head:
        topo["head"] = head
    return {"format": "layers-model", "modelTopology": topo, "weightsPath": weights.name}

def main():
    ap = argparse.ArgumentParser(description="Write model.json next to a TorchScript graph or a layered checkpoint.")
    sub = ap.add_subparsers(dest="kind", required=True)
    g = sub.add_parser("graph")
    g.add_argument("--model", required=True, help="TorchScript archive (.pt)")
    g.add_argument("--input-name", default=None)
    g.add_argument("--output-name", default=None)
    l = sub.add_parser("layers")
    l.add_argument("--arch", required=True, help="tiny_cnn or a timm model name")
    l.add_argument("--weights", required=True, help="state_dict checkpoint (.pt)")
    l.add_argument("--num-classes", type=int, default=2)
    l.add_argument("--head", choices=["sigmoid", "softmax"], default=None)
    ap.add_argument("--out", default=None, help="Descriptor path (default: model.json beside the artifact)")
    args = ap.parse_args()

    if args.kind == "graph":
        artifact = Path(args.model)
        desc = graph_descriptor(artifact, args.input_name, args.output_name)
    else:
        artifact = Path(args.weights)
        desc = layers_descriptor(args.arch, artifact, args.num_classes, args.head)
    out = Path(args.out) if args.out else artifact.parent / "model.json"
    if out.parent.resolve() != artifact.parent.resolve():
        raise SystemExit("Descriptor must sit in the same folder as the artifact (paths are relative).")
    out.write_text(json.dumps(desc, indent=2))
    print(f"Wrote {out} ({detect_format(read_descriptor(out))}-style)")

if __name__ == "__main__":
    main()
