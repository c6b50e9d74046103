"""REST client for the Mate AI backend.

Every call goes through BackendGateway._request, which attaches the bearer
token from the injected SessionContext, unwraps the {success, data,
message} envelope and maps failures to TransportError:

- 401 -> "Credenciales inválidas"
- 429 -> "Demasiadas peticiones..."
- 500 -> "Error del servidor..."
- other non-2xx -> server message, or "Error <status>: <reason>"
- network failures -> TransportError with status_code None
"""

from __future__ import annotations

from typing import Any, Literal

import httpx
import structlog

from mateai.core.errors import TransportError
from mateai.core.models import AssignedTest, Exercise, PerformanceReportPayload
from mateai.core.session_context import SessionContext

logger = structlog.get_logger(__name__)

STATUS_MESSAGES: dict[int, str] = {
    401: "Credenciales inválidas",
    429: "Demasiadas peticiones. Espera un momento antes de intentar nuevamente.",
    500: "Error del servidor. Intenta más tarde.",
}


def _data(body: dict[str, Any], default: Any = None) -> Any:
    value = body.get("data")
    return default if value is None else value


class BackendGateway:
    """Client for the Mate AI REST backend."""

    def __init__(
        self,
        base_url: str,
        context: SessionContext | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.context = context or SessionContext()
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BackendGateway:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {}
        if self.context.token:
            headers["Authorization"] = f"Bearer {self.context.token}"

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = self._client.request(
                method, endpoint, json=json, params=params or None, headers=headers
            )
        except httpx.RequestError as e:
            logger.error("backend_request_failed", method=method, endpoint=endpoint, error=str(e))
            raise TransportError(f"No se pudo conectar con el servidor: {e}") from e

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text}
        else:
            body = {"message": response.text}

        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_error:
            status = response.status_code
            message = STATUS_MESSAGES.get(status) or body.get("message") or (
                f"Error {status}: {response.reason_phrase}"
            )
            logger.error(
                "backend_error_response",
                method=method,
                endpoint=endpoint,
                status=status,
                message=message,
            )
            raise TransportError(message, status_code=status)

        return body

    # =========================================================================
    # AUTH AND PROFILE
    # =========================================================================

    def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and store token and profile in the session context."""
        body = self._request(
            "POST", "/usuarios/login", json={"correo": email, "contrasena": password}
        )
        return self._store_auth(_data(body, {}))

    def register(self, data: dict[str, Any]) -> dict[str, Any]:
        """Register a student or teacher and log in."""
        body = self._request("POST", "/usuarios/registro", json=data)
        return self._store_auth(_data(body, {}))

    def _store_auth(self, auth: dict[str, Any]) -> dict[str, Any]:
        if auth.get("token"):
            self.context.set_login(auth["token"], auth.get("usuario") or {})
            self.context.save()
            logger.info("login_stored", user_id=self.context.user_id)
        return auth

    def logout(self) -> None:
        self.context.clear()

    def get_me(self) -> dict[str, Any]:
        return _data(self._request("GET", "/usuarios/me"), {})

    def update_profile(self, updates: dict[str, Any]) -> dict[str, Any]:
        return _data(self._request("PUT", "/usuarios/me", json=updates), {})

    def list_teachers(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/usuarios/docentes"), [])

    def search_users(
        self,
        role: str | None = None,
        grade: str | None = None,
        specialty: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"rol": role, "grado": grade, "especialidad": specialty}
        return _data(self._request("GET", "/usuarios", params=params), [])

    def assign_teacher(self, teacher_id: str) -> Any:
        return _data(
            self._request("PUT", "/usuarios/asignar-docente", json={"docenteId": teacher_id})
        )

    def remove_student(self, student_id: str) -> Any:
        return _data(self._request("PUT", f"/usuarios/{student_id}/remover"))

    def my_students(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/usuarios/mis-alumnos"), [])

    # =========================================================================
    # ASSOCIATION REQUESTS
    # =========================================================================

    def send_request(self, teacher_id: str) -> Any:
        return _data(self._request("POST", "/solicitudes", json={"docenteId": teacher_id}))

    def my_requests(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/solicitudes/mis-solicitudes"), [])

    def received_requests(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/solicitudes/recibidas"), [])

    def respond_request(
        self,
        request_id: str,
        action: Literal["aceptar", "rechazar"],
        message: str | None = None,
    ) -> Any:
        return _data(
            self._request(
                "PUT",
                f"/solicitudes/{request_id}/responder",
                json={"accion": action, "mensaje": message},
            )
        )

    def cancel_request(self, request_id: str) -> Any:
        return _data(self._request("DELETE", f"/solicitudes/{request_id}"))

    # =========================================================================
    # GROUPS
    # =========================================================================

    def list_groups(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/grupos"), [])

    def create_group(
        self, name: str, students: list[str], description: str | None = None
    ) -> Any:
        payload = {"nombre": name, "descripcion": description, "alumnos": students}
        return _data(self._request("POST", "/grupos", json=payload))

    def update_group(
        self, group_id: str, name: str, students: list[str], description: str | None = None
    ) -> Any:
        payload = {"nombre": name, "descripcion": description, "alumnos": students}
        return _data(self._request("PUT", f"/grupos/{group_id}", json=payload))

    def delete_group(self, group_id: str) -> Any:
        return _data(self._request("DELETE", f"/grupos/{group_id}"))

    # =========================================================================
    # ANNOUNCEMENTS
    # =========================================================================

    def create_announcement(
        self,
        title: str,
        content: str,
        kind: str,
        student_id: str | None = None,
        group_id: str | None = None,
    ) -> Any:
        payload: dict[str, Any] = {"titulo": title, "contenido": content, "tipo": kind}
        if student_id:
            payload["alumnoId"] = student_id
        if group_id:
            payload["grupoId"] = group_id
        return _data(self._request("POST", "/anuncios/crear", json=payload))

    def sent_announcements(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/anuncios/enviados"), [])

    def student_announcements(self) -> Any:
        return _data(self._request("GET", "/anuncios/alumno"), [])

    def delete_announcement(self, announcement_id: str) -> Any:
        return _data(self._request("DELETE", f"/anuncios/{announcement_id}"))

    def mark_announcement_read(self, announcement_id: str) -> Any:
        return _data(self._request("PUT", f"/anuncios/{announcement_id}/leer"))

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def create_template(self, title: str, content: str, category: str | None = None) -> Any:
        payload = {"titulo": title, "contenido": content, "categoria": category}
        return _data(self._request("POST", "/plantillas", json=payload))

    def my_templates(self, category: str | None = None) -> list[dict[str, Any]]:
        return _data(
            self._request("GET", "/plantillas/mis-plantillas", params={"categoria": category}), []
        )

    def public_templates(self, category: str | None = None) -> list[dict[str, Any]]:
        return _data(
            self._request("GET", "/plantillas/publicas", params={"categoria": category}), []
        )

    def get_template(self, template_id: str) -> Any:
        return _data(self._request("GET", f"/plantillas/{template_id}"))

    def update_template(self, template_id: str, updates: dict[str, Any]) -> Any:
        return _data(self._request("PUT", f"/plantillas/{template_id}", json=updates))

    def delete_template(self, template_id: str) -> Any:
        return _data(self._request("DELETE", f"/plantillas/{template_id}"))

    def duplicate_template(self, template_id: str) -> Any:
        return _data(self._request("POST", f"/plantillas/{template_id}/duplicar"))

    # =========================================================================
    # TESTS AND ASSIGNMENTS
    # =========================================================================

    def list_tests(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/tests"), [])

    def teacher_tests(self) -> Any:
        return _data(self._request("GET", "/tests/docente"), [])

    def get_test(self, test_id: str) -> Any:
        return _data(self._request("GET", f"/tests/{test_id}"))

    def create_test(self, data: dict[str, Any]) -> Any:
        return _data(self._request("POST", "/tests", json=data))

    def update_test(self, test_id: str, data: dict[str, Any]) -> Any:
        return _data(self._request("PUT", f"/tests/{test_id}", json=data))

    def delete_test(self, test_id: str) -> Any:
        return _data(self._request("DELETE", f"/tests/{test_id}"))

    def list_assignments(self) -> list[dict[str, Any]]:
        return _data(self._request("GET", "/asignaciones"), [])

    def create_assignment(self, data: dict[str, Any]) -> Any:
        return _data(self._request("POST", "/asignaciones", json=data))

    def update_assignment(self, assignment_id: str, data: dict[str, Any]) -> Any:
        return _data(self._request("PUT", f"/asignaciones/{assignment_id}", json=data))

    def delete_assignment(self, assignment_id: str) -> Any:
        return _data(self._request("DELETE", f"/asignaciones/{assignment_id}"))

    def get_test_to_solve(self, assignment_id: str) -> dict[str, Any]:
        """Raw test plus the assignment's time limit and instructions."""
        return _data(self._request("GET", f"/asignaciones/{assignment_id}/test"), {})

    def get_assigned_test(self, assignment_id: str, grade: str) -> AssignedTest:
        """Load an assigned test and map its questions to exercises."""
        data = self.get_test_to_solve(assignment_id)
        test = data.get("test")
        if not test:
            raise TransportError("Test no encontrado", status_code=404)

        title = test.get("titulo", "")
        questions = []
        for index, q in enumerate(test.get("preguntas") or []):
            difficulty = q.get("dificultad") or "basica"
            if difficulty not in ("basica", "media", "avanzada"):
                difficulty = "basica"
            questions.append(
                Exercise(
                    id=str(q.get("_id") or f"pregunta-{index + 1}"),
                    statement=q.get("enunciado", ""),
                    options=tuple(q.get("opciones") or ()),
                    correct_answer=str(q.get("respuestaCorrecta", "")),
                    explanation=q.get("explicacion") or "",
                    difficulty=difficulty,
                    topic=title,
                    grade=grade,
                )
            )

        teacher = test.get("docenteId")
        if isinstance(teacher, dict):
            teacher = teacher.get("_id")

        return AssignedTest(
            test_id=str(test.get("_id", "")),
            assignment_id=assignment_id,
            title=title,
            description=test.get("descripcion") or "",
            questions=questions,
            time_limit_minutes=data.get("tiempoLimite"),
            instructions=data.get("instrucciones"),
            teacher_id=teacher,
        )

    def submit_test_answers(self, data: dict[str, Any]) -> Any:
        return _data(self._request("POST", "/tests/respuestas", json=data))

    def get_test_progress(self, assignment_id: str, student_id: str) -> Any:
        return _data(self._request("GET", f"/tests/progreso/{assignment_id}/{student_id}"))

    # =========================================================================
    # PERFORMANCE REPORTS
    # =========================================================================

    def save_performance_report(self, payload: PerformanceReportPayload) -> Any:
        body = self._request("POST", "/rendimientoreporte", json=payload.to_dict())
        logger.info("performance_report_saved", student_id=payload.student_id, topic=payload.topic)
        return _data(body)

    def student_reports(self, student_id: str, limit: int = 10, page: int = 1) -> list[dict[str, Any]]:
        """List a student's reports, newest first.

        The backend has answered with {reportes: [...]}, a bare list, or
        the list under data.reportes; all three are accepted.
        """
        body = self._request(
            "GET",
            f"/rendimientoreporte/alumno/{student_id}",
            params={"limite": limit, "pagina": page},
        )
        data = body.get("data", body)
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("reportes"), list):
            return data["reportes"]
        return []

    def latest_report(self, student_id: str) -> Any:
        return _data(self._request("GET", f"/rendimientoreporte/alumno/{student_id}/ultimo"))

    def teacher_reports(self, limit: int = 50, page: int = 1) -> dict[str, Any]:
        return _data(
            self._request(
                "GET", "/rendimientoreporte/docente", params={"limite": limit, "pagina": page}
            ),
            {"reportes": []},
        )
