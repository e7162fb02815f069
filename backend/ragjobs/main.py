from typing import Optional

from fastapi import FastAPI

from ragjobs.api import events, health, jobs, status
from ragjobs.core.config import BACKEND_PORT, DB_PATH, SchedulerConfig, ensure_dirs
from ragjobs.db.connection import Database
from ragjobs.db.jobs_repo import JobsRepo
from ragjobs.services.executor import JobExecutor
from ragjobs.services.indexer import DocumentIndexer, HttpDocumentIndexer
from ragjobs.services.jobs import JobService
from ragjobs.services.registry import ActiveJobRegistry
from ragjobs.services.scheduler import IndexingScheduler
from ragjobs.websocket.manager import manager


def create_app(
    indexer: Optional[DocumentIndexer] = None,
    db_path: Optional[str] = None,
    config: Optional[SchedulerConfig] = None,
) -> FastAPI:
    app = FastAPI(title="RAG Indexing Jobs", version="0.1.0")
    app.include_router(health.router)
    app.include_router(status.router)
    app.include_router(jobs.router)
    app.include_router(events.router)

    @app.on_event("startup")
    async def on_startup() -> None:
        if db_path is None:
            ensure_dirs()
        db = Database(db_path or DB_PATH)
        await db.connect()
        scheduler_config = config or SchedulerConfig.from_env()
        repo = JobsRepo(db)
        registry = ActiveJobRegistry()
        document_indexer = indexer or HttpDocumentIndexer()
        executor = JobExecutor(repo, document_indexer, registry, scheduler_config)
        scheduler = IndexingScheduler(repo, executor, registry, scheduler_config)
        app.state.db = db
        app.state.indexer = document_indexer
        app.state.scheduler = scheduler
        app.state.job_service = JobService(repo, registry, scheduler_config, scheduler)
        await scheduler.start()
        await manager.emit_log("info", "backend started")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.scheduler.stop()
        if isinstance(app.state.indexer, HttpDocumentIndexer):
            await app.state.indexer.close()
        await app.state.db.close()
        await manager.emit_log("info", "backend stopped")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "ragjobs.main:app",
        host="127.0.0.1",
        port=BACKEND_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
