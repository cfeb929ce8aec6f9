import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studynode.config import settings
from studynode.db import init_all_databases
from studynode.services.scheduler import InvalidGradeError, InvalidStateError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Bad scheduler settings fail here rather than on the first review
    app.state.scheduler_params = settings.scheduler_params()
    await init_all_databases(settings.studynode_data_dir)
    yield


async def _invalid_grade_handler(request: Request, exc: InvalidGradeError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    logger.error("Invalid review state on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Stored review state is invalid; reset the card to recover"},
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title="StudyNode Backend", version="0.1.0", lifespan=lifespan
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(InvalidGradeError, _invalid_grade_handler)
    application.add_exception_handler(InvalidStateError, _invalid_state_handler)

    from studynode.routers import decks, health, quiz

    application.include_router(health.router)
    application.include_router(
        decks.router, prefix="/decks", tags=["decks"]
    )
    application.include_router(
        quiz.router, prefix="/quiz", tags=["quiz"]
    )

    return application


app = create_app()
