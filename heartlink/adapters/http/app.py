"""
FastAPI transport for the heartlink facade.

Routes only parse requests and map envelopes to HTTP status codes. Reads of
heart-rate data must name the viewing account in the viewer header; in-process
callers may pass no viewer to the facade.
"""

from datetime import date

import structlog
import uvicorn
from fastapi import FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from heartlink.adapters.http.schemas import (
    ConnectRequest,
    LoginRequest,
    RegistrationRequest,
    SampleRequest,
)
from heartlink.config import AppConfig, get_config
from heartlink.domain.models import Envelope
from heartlink.errors import ErrorKind
from heartlink.observability import configure_logging
from heartlink.services.facade import HeartlinkService

logger = structlog.get_logger(__name__)

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT.value: 400,
    ErrorKind.INVALID_ROLE.value: 400,
    ErrorKind.UNAUTHORIZED.value: 401,
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.CONFLICT.value: 409,
    ErrorKind.STORE_UNAVAILABLE.value: 500,
}


def respond(envelope: Envelope, success_status: int = 200) -> JSONResponse:
    status = success_status if envelope.ok else STATUS_BY_KIND.get(envelope.error or "", 500)
    return JSONResponse(status_code=status, content=envelope.model_dump(mode="json"))


def viewer_required(header: str) -> JSONResponse:
    envelope = Envelope(
        ok=False, message=f"The {header} header is required.", error=ErrorKind.UNAUTHORIZED.value
    )
    return respond(envelope)


def create_app(
    config: AppConfig | None = None, service: HeartlinkService | None = None
) -> FastAPI:
    """Build the FastAPI app. Without arguments it wires itself from the environment."""
    config = config or get_config()
    configure_logging(config.logging)
    service = service or HeartlinkService.from_config(config)
    viewer_header = config.api.viewer_header

    app = FastAPI(title="heartlink", debug=config.debug)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.state.service = service

    @app.post("/register")
    def register(data: RegistrationRequest) -> JSONResponse:
        envelope = service.register(
            data.full_name, data.email, data.phone, data.password, data.username, data.role
        )
        return respond(envelope, success_status=201)

    @app.post("/login")
    def login(data: LoginRequest) -> JSONResponse:
        return respond(service.authenticate(data.email, data.password))

    @app.get("/health")
    def health() -> JSONResponse:
        return respond(service.health_check())

    @app.get("/accounts")
    def find_account(email: str = Query(...)) -> JSONResponse:
        return respond(service.find_account_by_email(email))

    @app.post("/relationships")
    def connect(data: ConnectRequest) -> JSONResponse:
        return respond(service.connect(data.user_id, data.party_id), success_status=201)

    @app.delete("/relationships/{user_id}/{party_id}")
    def disconnect(user_id: int, party_id: int) -> JSONResponse:
        return respond(service.disconnect(user_id, party_id))

    @app.get("/users/{user_id}/responsible-parties")
    def list_responsible_parties(user_id: int) -> JSONResponse:
        return respond(service.list_responsible_parties(user_id))

    @app.get("/responsible-parties/{party_id}/users")
    def list_users(party_id: int) -> JSONResponse:
        return respond(service.list_users(party_id))

    @app.post("/users/{user_id}/samples")
    def record_sample(user_id: int, data: SampleRequest) -> JSONResponse:
        envelope = service.record_sample(user_id, data.heart_rate, data.timestamp)
        return respond(envelope, success_status=201)

    @app.get("/users/{user_id}/aggregates/latest")
    def latest_aggregate(
        user_id: int, viewer_id: int | None = Header(default=None, alias=viewer_header)
    ) -> JSONResponse:
        if viewer_id is None:
            return viewer_required(viewer_header)
        return respond(service.latest_aggregate(user_id, viewer_id=viewer_id))

    @app.get("/users/{user_id}/aggregates/{day}")
    def aggregate_for_day(
        user_id: int,
        day: date,
        viewer_id: int | None = Header(default=None, alias=viewer_header),
    ) -> JSONResponse:
        if viewer_id is None:
            return viewer_required(viewer_header)
        return respond(service.aggregate_for_day(user_id, day, viewer_id=viewer_id))

    @app.get("/users/{user_id}/aggregates")
    def recent_aggregates(
        user_id: int,
        n: int | None = Query(default=None),
        viewer_id: int | None = Header(default=None, alias=viewer_header),
    ) -> JSONResponse:
        if viewer_id is None:
            return viewer_required(viewer_header)
        return respond(service.recent_aggregates(user_id, n, viewer_id=viewer_id))

    @app.get("/users/{user_id}/history")
    def intraday_history(
        user_id: int,
        day: date | None = Query(default=None),
        viewer_id: int | None = Header(default=None, alias=viewer_header),
    ) -> JSONResponse:
        if viewer_id is None:
            return viewer_required(viewer_header)
        return respond(service.intraday_history(user_id, day, viewer_id=viewer_id))

    logger.info("http_app_created", environment=config.environment)
    return app


def main() -> None:
    config = get_config()
    uvicorn.run(
        "heartlink.adapters.http.app:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
    )


if __name__ == "__main__":
    main()
