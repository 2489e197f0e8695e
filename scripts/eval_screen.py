import os, sys; sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import argparse, json, logging, time
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from sklearn.metrics import (
    confusion_matrix, roc_curve, auc, precision_recall_curve, average_precision_score
)

from screening.config import ConfigResolver, OverrideStore, get_settings
from screening.io_utils import IMAGE_EXTS, load_image_path
from screening.model_loader import ModelLoader
from screening.pipeline import Screener

CLASS_NAMES = ["Normal", "Abnormal"]
ALIASES = {"normal": 0, "0": 0, "abnormal": 1, "1": 1}

def ensure_dir(d: Path): d.mkdir(parents=True, exist_ok=True)

def load_csv(csv_path):
    df = pd.read_csv(csv_path)
    need = {"path", "label"}
    missing = need - set(df.columns)
    if missing:
        raise ValueError(f"{csv_path} missing {missing}")
    df["y"] = df["label"].astype(str).str.strip().str.lower().map(ALIASES)
    bad = df["y"].isna()
    if bad.any():
        raise ValueError(f"{csv_path}: unrecognised labels {sorted(df.loc[bad, 'label'].astype(str).unique())}")
    df["y"] = df["y"].astype(int)
    return df

def scan_folders(root):
    """root/normal/*, root/abnormal/* -> DataFrame(path, label, y)."""
    rows = []
    for sub in sorted(p for p in Path(root).iterdir() if p.is_dir()):
        y = ALIASES.get(sub.name.strip().lower())
        if y is None: continue
        for f in sorted(sub.rglob("*")):
            if f.is_file() and f.suffix.lower() in IMAGE_EXTS:
                rows.append({"path": str(f), "label": CLASS_NAMES[y], "y": y})
    return pd.DataFrame(rows, columns=["path", "label", "y"])

def plot_cm(cm, labels, out_path, title="Confusion Matrix"):
    fig, ax = plt.subplots(figsize=(5,4))
    im = ax.imshow(cm, interpolation="nearest")
    plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    ax.set(
        xticks=np.arange(len(labels)),
        yticks=np.arange(len(labels)),
        xticklabels=labels, yticklabels=labels,
        ylabel="True label", xlabel="Predicted label", title=title
    )
    thresh = cm.max() / 2.0
    for i in range(cm.shape[0]):
        for j in range(cm.shape[1]):
            ax.text(j, i, int(cm[i, j]), ha="center", va="center",
                    color="white" if cm[i, j] > thresh else "black")
    fig.tight_layout()
    fig.savefig(out_path, dpi=160)
    plt.close(fig)

def plot_roc(y_true, y_score, out_path):
    fpr, tpr, _ = roc_curve(y_true, y_score)
    roc_auc = auc(fpr, tpr)
    fig, ax = plt.subplots(figsize=(6,5))
    ax.plot(fpr, tpr, label=f"AUC = {roc_auc:.3f}")
    ax.plot([0,1],[0,1],"--", lw=1)
    ax.set(xlabel="False Positive Rate", ylabel="True Positive Rate", title="ROC (Abnormal vs Normal)")
    ax.legend(loc="lower right")
    fig.tight_layout(); fig.savefig(out_path, dpi=160); plt.close(fig)
    return roc_auc

def plot_pr(y_true, y_score, out_path):
    precision, recall, _ = precision_recall_curve(y_true, y_score)
    ap = average_precision_score(y_true, y_score)
    fig, ax = plt.subplots(figsize=(6,5))
    ax.plot(recall, precision, label=f"AP = {ap:.3f}")
    ax.set(xlabel="Recall", ylabel="Precision", title="Precision-Recall (Abnormal vs Normal)")
    ax.legend(loc="lower left")
    fig.tight_layout(); fig.savefig(out_path, dpi=160); plt.close(fig)
    return ap

def threshold_sweep(y_true, y_score, n=201):
    """Best Youden-J threshold over the observed raw-score range; labels use raw > t."""
    lo, hi = float(np.min(y_score)), float(np.max(y_score))
    ts = np.linspace(lo, hi, n) if hi > lo else np.array([lo])
    best_t, best_j = float(ts[0]), -1.0
    js = []
    for t in ts:
        y_pred = (y_score > t).astype(int)
        tp = ((y_pred==1) & (y_true==1)).sum()
        tn = ((y_pred==0) & (y_true==0)).sum()
        fp = ((y_pred==1) & (y_true==0)).sum()
        fn = ((y_pred==0) & (y_true==1)).sum()
        J = tp / max(tp+fn, 1) - fp / max(fp+tn, 1)
        js.append(J)
        if J > best_j:
            best_j, best_t = float(J), float(t)
    return ts, np.array(js), best_t, best_j

def suggest_anchors(y_true, y_score):
    """LOW = 10th pct of normal raw scores, HIGH = 90th pct of abnormal raw scores."""
    neg, pos = y_score[y_true == 0], y_score[y_true == 1]
    if len(neg) == 0 or len(pos) == 0:
        return None, None
    return float(np.percentile(neg, 10)), float(np.percentile(pos, 90))

def main():
    ap = argparse.ArgumentParser()
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--csv", help="CSV with columns path,label (Normal/Abnormal or 0/1)")
    src.add_argument("--root", help="Folder with normal/ and abnormal/ subfolders")
    ap.add_argument("--out", default="runs/eval_screen")
    ap.add_argument("--model", default=None, help="Model descriptor (default: SCREEN_MODEL_PATH)")
    ap.add_argument("--img_limit", type=int, default=0, help="Limit #images for quick runs (0=all)")
    ap.add_argument("--thr", default=None, help="Threshold override (as the ?thr= query)")
    ap.add_argument("--order", default=None, help="normal_abnormal | abnormal_normal")
    args = ap.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    out_dir = Path(args.out); ensure_dir(out_dir)
    print(f"[eval] writing artifacts to {out_dir}")

    df = load_csv(args.csv) if args.csv else scan_folders(args.root)
    if df.empty:
        raise SystemExit("No images found.")
    if args.img_limit > 0:
        df = df.sample(n=min(args.img_limit, len(df)), random_state=42).reset_index(drop=True)

    loader = ModelLoader(args.model or settings.model_path, device=settings.device)
    screener = Screener(loader, ConfigResolver(OverrideStore(settings.overrides_path)), strict_output=settings.strict_output)
    loader.load_sync()
    cfg = screener.resolver.config({"thr": args.thr, "order": args.order})

    rows = []
    start = time.time()
    for p, y in zip(df["path"], df["y"]):
        r = screener.predict_loaded(load_image_path(p), cfg)
        rows.append({"path": p, "true_label": CLASS_NAMES[int(y)], "pred_label": r.label,
                     "raw_score": r.raw_score, "score": r.score, "confidence": r.confidence})
    dt = time.time() - start
    print(f"[eval] ran {len(df)} images in {dt:.1f}s ({loader.model_type} model)")

    pred = pd.DataFrame(rows)
    pred.to_csv(out_dir/"predictions.csv", index=False)
    y_true = df["y"].to_numpy().astype(int)
    raw = pred["raw_score"].to_numpy().astype(float)
    y_pred = (pred["pred_label"] == "Abnormal").to_numpy().astype(int)

    cm = confusion_matrix(y_true, y_pred, labels=[0,1])
    plot_cm(cm, CLASS_NAMES, out_dir/"cm_binary.png", f"Confusion Matrix @ thr={cfg.threshold:g}")

    summary = {
        "n": int(len(df)),
        "model_type": loader.model_type,
        "threshold": cfg.threshold,
        "order": cfg.order.value,
        "acc_binary": float((y_pred == y_true).mean()),
        "cm_binary": cm.tolist(),
        "note": "Non-diagnostic use",
    }
    if (y_true == 0).any() and (y_true == 1).any():
        summary["roc_auc"] = float(plot_roc(y_true, raw, out_dir/"roc_binary.png"))
        summary["ap"] = float(plot_pr(y_true, raw, out_dir/"pr_binary.png"))
        ts, js, best_t, best_j = threshold_sweep(y_true, raw)
        fig, ax = plt.subplots(figsize=(6,5))
        ax.plot(ts, js, label="Youden J")
        ax.axvline(best_t, linestyle="--", label=f"Best J @ {best_t:.4f}")
        ax.set(xlabel="Threshold (raw score)", ylabel="J", title="Threshold sweep")
        ax.legend(); fig.tight_layout(); fig.savefig(out_dir/"threshold_sweep.png", dpi=160); plt.close(fig)
        low, high = suggest_anchors(y_true, raw)
        summary.update({"best_threshold_by_YoudenJ": best_t, "best_J": best_j,
                        "suggested_low": low, "suggested_high": high})
        print(f"[eval] ROC_AUC={summary['roc_auc']:.4f} | AP={summary['ap']:.4f}")
        print(f"[eval] Suggested threshold (Youden-J): {best_t:.6f} | anchors LOW={low:.6f} HIGH={high:.6f}")

    with open(out_dir/"eval_report.json", "w") as f:
        json.dump(summary, f, indent=2)
    print(f"[eval] acc(binary)={summary['acc_binary']:.4f}")
    print(f"[eval] Artifacts: {out_dir}")

if __name__ == "__main__":
    main()
