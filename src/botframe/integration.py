"""FastAPI webhook that feeds channel requests into the adapter."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from botframe.adapter import BotFrameworkAdapter
from botframe.errors import AuthenticationError
from botframe.middleware import BotCallbackHandler
from botframe.schema import Activity

DEFAULT_ROUTE = "/api/messages"


def create_app(adapter: BotFrameworkAdapter, bot: BotCallbackHandler, *, route: str = DEFAULT_ROUTE) -> FastAPI:
    """Build an app whose `POST {route}` runs one turn per request.

    Invoke turns answer with the bot's invoke response; other turns with 201.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await adapter.aclose()

    app = FastAPI(title="botframe", lifespan=lifespan)

    @app.post(route)
    async def messages(request: Request) -> Response:
        if "application/json" not in request.headers.get("content-type", ""):
            return Response(status_code=415)
        try:
            body = await request.json()
            activity = Activity.model_validate(body)
        except (ValueError, ValidationError) as exc:
            logger.warning("webhook.bad_request error={}", exc)
            return JSONResponse(status_code=400, content={"error": "invalid activity"})

        auth_header = request.headers.get("Authorization", "")
        try:
            invoke_response = await adapter.process_activity(auth_header, activity, bot)
        except AuthenticationError as exc:
            logger.warning("webhook.unauthorized error={}", exc)
            return Response(status_code=401)

        if invoke_response is not None:
            return JSONResponse(status_code=invoke_response.status, content=jsonable_encoder(invoke_response.body))
        return Response(status_code=201)

    return app
