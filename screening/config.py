import os, json, math, logging, tempfile, threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

INPUT_SIZE = 224
THRESHOLD_DEFAULT = 0.135
# raw-score anchors: confidence 0 at LOW, 1 at HIGH
LOW  = 0.109233
HIGH = 0.233867

class ChannelOrder(str, Enum):
    NORMAL_ABNORMAL = "normal_abnormal"   # data=[p_norm, p_abn] -> positive second
    ABNORMAL_NORMAL = "abnormal_normal"   # data=[p_abn, p_norm] -> positive first

    @property
    def positive_index(self) -> int:
        return 1 if self is ChannelOrder.NORMAL_ABNORMAL else 0

ORDER_DEFAULT = ChannelOrder.NORMAL_ABNORMAL
DIV255_DEFAULT = True
BGR_DEFAULT = False

@dataclass(frozen=True)
class ScreenConfig:
    threshold: float = THRESHOLD_DEFAULT
    order: ChannelOrder = ORDER_DEFAULT
    div255: bool = DIV255_DEFAULT
    bgr: bool = BGR_DEFAULT

# ---------- value parsers (None = malformed / absent) ----------
_TRUE  = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

def parse_threshold(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        t = float(v.strip() if isinstance(v, str) else v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(t) or t < 0:
        return None
    return t

def parse_order(v: Any) -> Optional[ChannelOrder]:
    if isinstance(v, ChannelOrder):
        return v
    if not isinstance(v, str):
        return None
    try:
        return ChannelOrder(v.strip().lower())
    except ValueError:
        return None

def parse_bool(v: Any) -> Optional[bool]:
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        s = v.strip().lower()
        if s in _TRUE:  return True
        if s in _FALSE: return False
    return None

# key -> (query parameter, parser, compiled default)
KEYS: Dict[str, tuple] = {
    "threshold": ("thr",    parse_threshold, THRESHOLD_DEFAULT),
    "order":     ("order",  parse_order,     ORDER_DEFAULT),
    "div255":    ("div255", parse_bool,      DIV255_DEFAULT),
    "bgr":       ("bgr",    parse_bool,      BGR_DEFAULT),
}

def _parser(key: str) -> Callable[[Any], Any]:
    if key not in KEYS:
        raise KeyError(f"Unknown configuration key: {key}")
    return KEYS[key][1]

# ---------- persisted overrides ----------
class OverrideStore:
    """Flat JSON object on disk holding field-tuning overrides (threshold, order, switches)."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable overrides file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring overrides file %s: not a JSON object", self.path)
            return {}
        return data

    def get(self, key: str) -> Any:
        return self.all().get(key)

    def parsed(self) -> Dict[str, Any]:
        """Known keys whose stored values are well-formed, as plain JSON values."""
        out = {}
        for key, (_, parse, _) in KEYS.items():
            v = parse(self.get(key))
            if v is not None:
                out[key] = v.value if isinstance(v, Enum) else v
        return out

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and persist; a None value removes the key."""
        with self._lock:
            data = self.all()
            for key, value in values.items():
                if value is None:
                    data.pop(key, None)
                    continue
                parsed = _parser(key)(value)
                if parsed is None:
                    raise ValueError(f"Invalid value for {key}: {value!r}")
                data[key] = parsed.value if isinstance(parsed, Enum) else parsed
            self._write(data)
            return data

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()

    def _write(self, data: Dict[str, Any]) -> None:
        # temp file + rename: readers see the old or the new object, never a partial one
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name + ".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

# ---------- resolver ----------
class ConfigResolver:
    """Resolves each key independently: query override -> persisted override -> compiled default."""

    def __init__(self, store: Optional[OverrideStore] = None):
        self.store = store

    def resolve(self, key: str, query: Optional[Mapping[str, Any]] = None):
        _parser(key)
        param, parse, default = KEYS[key]
        if query is not None:
            v = parse(query.get(param))
            if v is not None:
                return v
            if query.get(param) is not None:
                logger.warning("Ignoring malformed query override %s=%r", param, query.get(param))
        if self.store is not None:
            stored = self.store.get(key)
            v = parse(stored)
            if v is not None:
                return v
            if stored is not None:
                logger.warning("Ignoring malformed persisted override %s=%r", key, stored)
        return default

    def config(self, query: Optional[Mapping[str, Any]] = None) -> ScreenConfig:
        return ScreenConfig(**{k: self.resolve(k, query) for k in KEYS})

# ---------- process settings (environment) ----------
def _pick_device() -> str:
    import torch
    if torch.backends.mps.is_available(): return "mps"
    return "cuda" if torch.cuda.is_available() else "cpu"

@dataclass(frozen=True)
class Settings:
    model_path: str
    overrides_path: str
    device: str
    strict_output: bool
    preload: bool
    log_level: str

def get_settings() -> Settings:
    return Settings(
        model_path=os.getenv("SCREEN_MODEL_PATH", "models/model.json"),
        overrides_path=os.getenv("SCREEN_OVERRIDES_PATH", "models/overrides.json"),
        device=os.getenv("SCREEN_DEVICE") or _pick_device(),
        strict_output=bool(parse_bool(os.getenv("SCREEN_STRICT_OUTPUT", "false"))),
        preload=bool(parse_bool(os.getenv("SCREEN_PRELOAD", "false"))),
        log_level=os.getenv("SCREEN_LOG_LEVEL", "INFO").upper(),
    )
