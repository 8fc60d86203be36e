import os

import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    # Single worker: the in-memory inventory backend and its per-product
    # locks live in one process, and asyncio primitives are not fork-safe.
    workers = int(os.environ.get("WEB_CONCURRENCY", 1))
    uvicorn.run(
        "caraudio_pos.main:app",
        host="0.0.0.0",
        port=port,
        workers=workers,
    )
