from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from fastapi import Request
from teashop.utils.enums import UserRole


ACCESS_MATRIX = {
    UserRole.ADMIN.value: ["*"],  # полный доступ
    UserRole.MANAGER.value: ["/api/admin/orders"],
}


class RBACMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Проверяем только разделы админки
        if path.startswith("/api/admin"):
            role = (request.session.get("role") or "").strip().lower()

            if not request.session.get("user_id") or not role:
                return JSONResponse({"success": False, "error": "Необходима авторизация"}, status_code=401)

            allowed_paths = ACCESS_MATRIX.get(role, [])
            if "*" in allowed_paths or any(path.startswith(p) for p in allowed_paths):
                return await call_next(request)

            return JSONResponse({"success": False, "error": "Недостаточно прав"}, status_code=403)

        return await call_next(request)
