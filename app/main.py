import asyncio, logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, UploadFile, File, HTTPException, Query, Request

from app.schemas import PredictResponse, LoadResponse, HealthResponse, Overrides
from app.presentation import confidence_band, badge_text, guidance_text
from screening.config import LOW, HIGH, ConfigResolver, OverrideStore, get_settings
from screening.errors import (
    InvalidImageError, ModelLoadError, NoGraphSignatureError, UnexpectedOutputShapeError,
)
from screening.io_utils import IMAGE_EXTS, decode_image_bytes
from screening.model_loader import ModelLoader
from screening.pipeline import Screener

logger = logging.getLogger(__name__)

def build_screener(settings=None) -> Screener:
    settings = settings or get_settings()
    loader = ModelLoader(settings.model_path, device=settings.device)
    resolver = ConfigResolver(OverrideStore(settings.overrides_path))
    return Screener(loader, resolver, strict_output=settings.strict_output)

def ensure_screener(app: FastAPI) -> Screener:
    if getattr(app.state, "screener", None) is None:
        app.state.screener = build_screener()
    return app.state.screener

async def _load_or_503(screener: Screener):
    try:
        await screener.load()
    except ModelLoadError as e:
        logger.error("Model load failed: %s", e)
        raise HTTPException(status_code=503, detail=f"Model unavailable: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.state.screener = build_screener(settings)
    if settings.preload:
        await _load_or_503(app.state.screener)
    yield
    app.state.screener = None

app = FastAPI(title="Dimple Screen (Not for Diagnostic Use)", lifespan=lifespan)

@app.get("/health", response_model=HealthResponse)
def health(request: Request):
    screener = ensure_screener(request.app)
    return HealthResponse(model_loaded=screener.loader.loaded, model_type=screener.loader.model_type)

@app.post("/load", response_model=LoadResponse)
async def load(request: Request):
    screener = ensure_screener(request.app)
    await _load_or_503(screener)
    return LoadResponse(model_type=screener.loader.model_type, threshold=screener.resolver.resolve("threshold"),
                        low=LOW, high=HIGH)

@app.post("/predict", response_model=PredictResponse)
async def predict(
    request: Request,
    file: UploadFile = File(...),
    thr: Optional[str] = Query(None, description="Decision threshold override"),
    order: Optional[str] = Query(None, description="normal_abnormal | abnormal_normal"),
    div255: Optional[str] = Query(None, description="Scale pixels to [0,1]"),
    bgr: Optional[str] = Query(None, description="Feed channels as BGR"),
):
    screener = ensure_screener(request.app)
    fname = (file.filename or "").lower()
    ctype = (file.content_type or "").lower()
    if not (fname.endswith(IMAGE_EXTS) or ctype.startswith("image/")):
        raise HTTPException(status_code=415, detail="Unsupported file type. Upload a PNG/JPG/BMP/TIF/WEBP photo.")
    try:
        img = decode_image_bytes(await file.read())
    except InvalidImageError as e:
        raise HTTPException(status_code=422, detail=f"Could not read file: {e}")

    await _load_or_503(screener)
    cfg = screener.resolver.config({"thr": thr, "order": order, "div255": div255, "bgr": bgr})
    try:
        result = await asyncio.to_thread(screener.predict_loaded, img, cfg)
    except InvalidImageError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (NoGraphSignatureError, UnexpectedOutputShapeError) as e:
        logger.error("Prediction failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    band = confidence_band(result.confidence)
    return PredictResponse(
        label=result.label,
        confidence=round(result.confidence, 4),
        score=round(result.score, 4),
        raw_score=result.raw_score,
        threshold=result.threshold,
        confidence_band=band,
        badge=badge_text(band),
        guidance=guidance_text(result.label, band),
    )

# ---------- persisted overrides (field tuning) ----------
@app.get("/overrides", response_model=Overrides)
def get_overrides(request: Request):
    return Overrides(**ensure_screener(request.app).resolver.store.parsed())

@app.put("/overrides", response_model=Overrides)
def put_overrides(body: Overrides, request: Request):
    store = ensure_screener(request.app).resolver.store
    try:
        store.update(body.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return Overrides(**store.parsed())

@app.delete("/overrides", response_model=Overrides)
def delete_overrides(request: Request):
    ensure_screener(request.app).resolver.store.clear()
    return Overrides()
