"""
Kirikou - Application Entry Point
==================================
FastAPI application factory.  Registers the routes from
``kirikou.src.api.routes`` and, in the lifespan, builds the process-wide
clients exactly once:

    Mongo client → SlidingWindowRateLimiter
    Gemini embeddings → KnowledgeVectorStore → retrieval tool
    Gemini chat model + tool → KnowledgeAgent
    limiter + agent → ChatPipeline  (stored on ``app.state.pipeline``)

Passing a ready ``ChatPipeline`` to ``create_app`` skips client
construction entirely (used by the tests).

Run:
    kirikou-server
    uvicorn kirikou.src.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from kirikou.config.settings import settings
from kirikou.src.api.routes import router
from kirikou.src.core.pipeline import ChatPipeline
from kirikou.src.utils.logger import get_logger, uvicorn_log_config

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if getattr(app.state, "pipeline", None) is not None:
        logger.info("Using injected ChatPipeline.")
        yield
        return

    import motor.motor_asyncio
    from langchain_google_genai import ChatGoogleGenerativeAI, GoogleGenerativeAIEmbeddings

    from kirikou.src.core.agent import KnowledgeAgent
    from kirikou.src.core.rate_limiter import SlidingWindowRateLimiter
    from kirikou.src.core.retrieval_tool import build_retrieval_tool
    from kirikou.src.database.vector_store import KnowledgeVectorStore

    api_key = settings.GOOGLE_API_KEY.get_secret_value()
    mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value())
    logger.info("MongoDB async client created.")

    try:
        limiter = SlidingWindowRateLimiter(
            mongo_client[settings.MONGO_DB_NAME][settings.RATE_LIMIT_COLLECTION],
            limit=settings.RATE_LIMIT_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        await limiter.ensure_indexes()

        embedder = GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=api_key)
        store = KnowledgeVectorStore(embedder)
        tool = build_retrieval_tool(store, k=settings.RETRIEVAL_K, fetch_k=settings.RETRIEVAL_FETCH_K, lambda_mult=settings.RETRIEVAL_LAMBDA)

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, google_api_key=api_key)
        logger.info("LLM initialised: %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        agent = KnowledgeAgent(llm, [tool])

        app.state.pipeline = ChatPipeline(limiter, agent, return_intermediate_steps=settings.RETURN_INTERMEDIATE_STEPS)
        logger.info("ChatPipeline ready (structured default=%s).", settings.RETURN_INTERMEDIATE_STEPS)
        yield
    finally:
        mongo_client.close()
        logger.info("MongoDB client closed.")


def create_app(pipeline: ChatPipeline | None = None) -> FastAPI:
    """Build the FastAPI app, optionally around a ready pipeline."""
    app = FastAPI(title="Kirikou: KNUST IDL Assistant", lifespan=_lifespan)
    if pipeline is not None:
        app.state.pipeline = pipeline
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("kirikou.src.main:app", host=settings.HOST, port=settings.PORT, log_config=uvicorn_log_config())


if __name__ == "__main__":
    run()
