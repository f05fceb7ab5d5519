import logging
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse

from clipvault import __version__
from clipvault.errors import ClipvaultError
from clipvault.services.access import AccessGate
from clipvault.services.clipboard_service import ClipboardService

logger = logging.getLogger(__name__)


def ok(message: str, data: Any = None) -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def create_app(service: ClipboardService, gate: Optional[AccessGate] = None) -> FastAPI:
    gate = gate or AccessGate(service.settings.admin_key)
    app = FastAPI(title="clipvault", version=__version__)
    app.state.service = service

    def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
        gate.require(x_admin_key)

    @app.exception_handler(ClipvaultError)
    async def clipvault_error(request: Request, exc: ClipvaultError):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code,
                            content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return JSONResponse(status_code=400,
                            content={"success": False, "message": f"Invalid request: {fields}"})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500,
                            content={"success": False, "message": "Internal server error"})

    @app.get("/")
    def root():
        return "running"

    @app.get("/health")
    def health():
        data = service.health()
        return ok(f"clipvault is {data['status']}", data)

    # ==================== UPLOADS (no admin key) ====================

    @app.post("/screenshots")
    def upload_screenshot(payload: Dict[str, Any] = Body(...)):
        return ok("Screenshot uploaded and processed successfully", service.upload_screenshot(payload))

    @app.post("/ocr")
    def upload_ocr(payload: Dict[str, Any] = Body(...)):
        return ok("OCR text stored successfully", service.upload_ocr(payload))

    # ==================== ADMIN ====================

    admin = [Depends(require_admin)]

    @app.get("/users", dependencies=admin)
    def list_users():
        return ok("Users retrieved successfully", service.list_users())

    @app.get("/users/{user_id}/screenshots", dependencies=admin)
    def get_user_screenshots(user_id: str):
        return ok("User screenshots retrieved successfully", service.get_user_screenshots(user_id))

    @app.get("/users/{user_id}/screenshots/{entry_id}", dependencies=admin)
    def get_screenshot(user_id: str, entry_id: str):
        return ok("Screenshot retrieved successfully", service.get_screenshot(user_id, entry_id))

    @app.get("/users/{user_id}/screenshots/{entry_id}/text", dependencies=admin)
    def get_screenshot_text(user_id: str, entry_id: str):
        return ok("Screenshot text retrieved successfully", service.get_screenshot_text(user_id, entry_id))

    @app.delete("/users/{user_id}/screenshots/{entry_id}", dependencies=admin)
    def delete_screenshot(user_id: str, entry_id: str):
        return ok("Screenshot and associated text deleted successfully",
                  service.delete_screenshot(user_id, entry_id))

    @app.get("/users/{user_id}/ocr", dependencies=admin)
    def get_user_ocr(user_id: str):
        return ok("User OCR entries retrieved successfully", service.get_user_ocr(user_id))

    @app.delete("/users/{user_id}/ocr/{entry_id}", dependencies=admin)
    def delete_ocr(user_id: str, entry_id: str):
        return ok("OCR entry deleted successfully", service.delete_ocr(user_id, entry_id))

    @app.delete("/users/{user_id}", dependencies=admin)
    def clear_user(user_id: str):
        result = service.clear_user(user_id)
        return ok(f"Cleared {result['screenshotsCleared']} screenshots and "
                  f"{result['ocrEntriesCleared']} OCR entries for user {user_id}", result)

    @app.get("/search", dependencies=admin)
    def search_text(query: str = Query(""), userId: Optional[str] = Query(None)):
        result = service.search_text(query, userId)
        return ok(f"Found {result['totalResults']} entries containing \"{query}\"", result)

    @app.get("/stats", dependencies=admin)
    def get_stats():
        return ok("Statistics retrieved successfully", service.get_stats())

    @app.get("/export", dependencies=admin)
    def export(userId: Optional[str] = Query(None), format: str = Query("json"),
               minConfidence: Optional[float] = Query(None)):
        result = service.export_questions(userId, format, minConfidence)
        if isinstance(result, str):
            return HTMLResponse(result)
        return ok(f"Exported {len(result)} questions", {"questions": result, "total": len(result)})

    return app
