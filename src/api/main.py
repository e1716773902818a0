from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes.queue import router as queue_router
from src.api.routes.recovery import router as recovery_router
from src.api.routes.videos import router as videos_router

app = FastAPI(
    title="Caption Phrase Indexer API",
    description="YouTube caption acquisition and phrase indexing",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
    ],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(videos_router)
app.include_router(queue_router)
app.include_router(recovery_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    from src.config import settings

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
