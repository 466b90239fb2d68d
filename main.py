import asyncio
import io
import logging
import time
from typing import Optional

from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from services.compressor import compressor_instance, SIZE_PRESETS, COMPRESSION_LEVELS
from services.encoders import EncoderError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION
)

# Add CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

@app.get("/")
async def root():
    return {
        "status": "healthy",
        "version": settings.API_VERSION,
        "message": "ImageFit API is running!",
        "docs": "/docs",
        "presets": "/v1/presets"
    }

@app.get("/health")
async def health():
    return {"status": "ok"}

@app.get("/v1/presets")
async def get_presets():
    """Fixed-size presets and the searched quality range"""
    qmin, qmax = compressor_instance.quality_range
    return {
        "sizes": SIZE_PRESETS,
        "levels": COMPRESSION_LEVELS,
        "quality_range": {"min": qmin, "max": qmax},
        "encoder": getattr(compressor_instance.encoder, "name", "custom")
    }


# Helper functions
async def load_upload(file: UploadFile) -> bytes:
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="No image file provided")
    if len(contents) > settings.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_FILE_SIZE} bytes"
        )
    return contents

def return_result(result, label: str) -> StreamingResponse:
    filename = f"compressed_{label}_{int(time.time() * 1000)}.{result.extension}"
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "X-Original-Size": str(result.original_size),
        "X-Compressed-Size": str(result.size),
        "X-Fits-Budget": "true" if result.fits_budget else "false",
        "X-Compression-Ratio": f"{result.compression_ratio:.2f}",
    }
    if result.quality is not None:
        headers["X-Quality-Used"] = str(result.quality)
    return StreamingResponse(io.BytesIO(result.data), media_type=result.media_type, headers=headers)

async def process_with_timeout(func, *args, timeout=None):
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args),
            timeout=timeout or settings.PROCESSING_TIMEOUT
        )
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Processing timeout")

async def run_tool(tool: str, func, *args):
    try:
        return await process_with_timeout(func, *args)
    except EncoderError as e:
        log.warning("%s failed: %s", tool, e)
        raise HTTPException(status_code=422, detail=f"Failed to process {tool}: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

def kb_to_bytes(target_kb: int) -> int:
    if target_kb <= 0:
        raise HTTPException(status_code=400, detail="target_kb must be a positive integer")
    return target_kb * 1024

# ============================================================================
# COMPRESSION ENDPOINTS
# ============================================================================

@app.post("/v1/compress")
async def compress(
    file: UploadFile = File(...),
    level: str = "medium",
    quality: Optional[int] = None,
    format: str = settings.DEFAULT_FORMAT
):
    """Fixed-quality compression (low / medium / high / custom)"""
    data = await load_upload(file)
    result = await run_tool("compress", compressor_instance.smart_compress, data, quality, level, format)
    return return_result(result, level.lower())

@app.post("/v1/compress-to-size")
async def compress_to_size(
    file: UploadFile = File(...),
    target_kb: int = 100,
    target_bytes: Optional[int] = None,
    format: str = settings.DEFAULT_FORMAT
):
    """Highest quality that fits the byte budget"""
    data = await load_upload(file)
    budget = target_bytes if target_bytes is not None else kb_to_bytes(target_kb)
    log.info("Processing compress-to-size: target=%d bytes", budget)

    result = await run_tool("compress-to-size", compressor_instance.compress_to_size, data, budget, format)
    log.info("compress-to-size completed: output size=%d bytes", result.size)
    return return_result(result, f"{budget}b")

async def _compress_kb(tool: str, file: UploadFile, target_kb: int):
    data = await load_upload(file)
    budget = kb_to_bytes(target_kb)
    log.info("Processing %s: target=%dKB (%d bytes)", tool, target_kb, budget)

    result = await run_tool(tool, compressor_instance.compress_to_size, data, budget)
    log.info("%s completed: output size=%d bytes", tool, result.size)
    return return_result(result, f"{target_kb}kb")

@app.post("/v1/reduce-size-kb")
async def reduce_size_kb(file: UploadFile = File(...), target_kb: int = 100):
    return await _compress_kb("reduce-size-kb", file, target_kb)

@app.post("/v1/compress-kb")
async def compress_kb(file: UploadFile = File(...), target_kb: int = 100):
    return await _compress_kb("compress-kb", file, target_kb)

@app.post("/v1/mb-to-kb")
async def mb_to_kb(file: UploadFile = File(...), target_kb: int = 500):
    return await _compress_kb("mb-to-kb", file, target_kb)

@app.post("/v1/increase-size-kb")
async def increase_size_kb(file: UploadFile = File(...), target_kb: int = 200):
    """Re-encode at high quality and upscale until the file reaches the target"""
    data = await load_upload(file)
    budget = kb_to_bytes(target_kb)

    result = await run_tool("increase-size-kb", compressor_instance.increase_to_size, data, budget)
    return return_result(result, f"increased_{target_kb}kb")

# Must stay last: matches any /v1/compress-<label>
@app.post("/v1/compress-{preset}")
async def compress_preset(preset: str, file: UploadFile = File(...)):
    """Fixed-size presets: 5kb ... 2mb"""
    preset = preset.lower()
    if preset not in SIZE_PRESETS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown preset: {preset}. Available: {', '.join(SIZE_PRESETS)}"
        )

    data = await load_upload(file)
    result = await run_tool(f"compress-{preset}", compressor_instance.compress_to_preset, preset, data)
    return return_result(result, preset)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
