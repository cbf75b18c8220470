"""HTTP API for the dashboard frontend.

JSON only, CORS open to any origin and no authentication: the server
is meant to listen on localhost.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from fastapi import Body, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hostguard import __version__
from hostguard.checks.sensors import get_temperature_data
from hostguard.core.context import ExecutionContext
from hostguard.core.exceptions import HostGuardError, UnknownCheckError, UnknownFixError
from hostguard.scripts import PLATFORMS, platform_from_user_agent, scripts_for_platform
from hostguard.service import HostGuard


GuardFactory = Callable[[], Awaitable[HostGuard]]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    guard: Optional[HostGuard] = None,
    ctx: Optional[ExecutionContext] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        guard: Prebuilt components; built on the first request when omitted
        ctx: Execution context used to build them
    """
    app = FastAPI(title="hostguard", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    state: dict[str, Any] = {"guard": guard}
    lock = asyncio.Lock()

    async def get_guard() -> HostGuard:
        async with lock:
            if state["guard"] is None:
                state["guard"] = await HostGuard.create(ctx or ExecutionContext())
        return state["guard"]

    @app.exception_handler(UnknownCheckError)
    @app.exception_handler(UnknownFixError)
    async def unknown_id_handler(request: Request, exc: HostGuardError) -> JSONResponse:
        return _error(404, exc.message)

    @app.exception_handler(HostGuardError)
    async def hostguard_error_handler(request: Request, exc: HostGuardError) -> JSONResponse:
        return _error(500, exc.message)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/checks")
    async def run_all_checks() -> dict[str, Any]:
        guard = await get_guard()
        results = await guard.aggregator.run_all()
        return results.to_dict()

    @app.get("/api/checks/{check_id}")
    async def run_check(check_id: str) -> dict[str, Any]:
        guard = await get_guard()
        report = await guard.aggregator.run_one(check_id)
        return report.to_dict()

    @app.post("/api/fixes/{fix_id}")
    async def apply_fix(fix_id: str, params: Optional[dict[str, Any]] = Body(None)) -> dict[str, Any]:
        guard = await get_guard()
        outcome = await guard.fixes.apply(fix_id, params)
        return outcome.to_dict()

    @app.get("/api/temperature")
    async def temperature() -> dict[str, Any]:
        guard = await get_guard()
        return await get_temperature_data(guard.bridge)

    @app.get("/api/scripts", response_model=None)
    async def scripts(request: Request, platform: Optional[str] = None) -> Any:
        if platform == "auto":
            platform = platform_from_user_agent(request.headers.get("user-agent", ""))
        if platform is not None and platform not in PLATFORMS:
            return _error(400, f"Unknown platform: {platform}")
        return scripts_for_platform(platform)

    return app
