import os

import uvicorn

if __name__ == "__main__":
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 8000))

    # Reload only in development
    reload = os.getenv("ENV") == "development"

    uvicorn.run(
        "metersync.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        workers=1,  # scheduler state is per process
        lifespan="on",
    )
