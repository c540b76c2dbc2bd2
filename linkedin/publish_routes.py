from __future__ import annotations

import base64
import binascii

from pydantic import AliasChoices, BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from linkedin.auth_routes import json_error
from linkedin.cookies import CookieSessionStore
from linkedin.errors import (
    InternalError,
    InvalidRequest,
    PipelineError,
    RateLimited,
    UnsupportedMediaType,
)
from linkedin.publisher import MediaPublisher, require_session
from lipub.constants import (
    ALLOWED_IMAGE_TYPES,
    DEFAULT_MAX_IMAGE_BYTES,
    LOGGER,
    MAX_CAPTION_LENGTH,
)

logger = LOGGER.getChild("publish")


class PublishRequest(BaseModel):
    caption: str = ""
    image_base64: str = Field(
        default="",
        validation_alias=AliasChoices("imageBase64", "imageB64"),
    )
    mime_type: str = Field(
        default="image/png",
        validation_alias=AliasChoices("mimeType", "mime_type"),
    )


def decode_image(data: str) -> bytes:
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError) as error:
        raise InvalidRequest("Image is not valid base64.", message="Invalid image data") from error


class PublishRoutes:
    def __init__(
        self,
        *,
        store: CookieSessionStore,
        publisher: MediaPublisher,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.max_image_bytes = max_image_bytes

    def routes(self) -> list[Route]:
        return [Route("/publish", self._handle_publish, methods=["POST"])]

    async def _handle_publish(self, request: Request) -> Response:
        try:
            session = require_session(self.store.read_session(request.cookies))
            payload = await self._parse_body(request)
            image = self._validate(payload)
            result = await self.publisher.publish(
                session,
                payload.caption,
                image,
                payload.mime_type.strip().lower(),
            )
        except PipelineError as error:
            logger.warning("Publish failed (%s): %s", error.code, error)
            return self._error_response(error)
        except Exception:
            logger.exception("Unexpected error while publishing")
            return self._error_response(InternalError())

        return JSONResponse(
            {"success": True, "postUrl": result.post_url, "postId": result.post_id}
        )

    async def _parse_body(self, request: Request) -> PublishRequest:
        body = await request.body()
        try:
            return PublishRequest.model_validate_json(body or b"{}")
        except ValidationError as error:
            raise InvalidRequest(
                f"Publish body rejected: {error.error_count()} error(s).",
                message="Missing caption or image",
            ) from error

    def _validate(self, payload: PublishRequest) -> bytes:
        if not payload.caption.strip() or not payload.image_base64:
            raise InvalidRequest("Caption or image missing.", message="Missing caption or image")
        if len(payload.caption) > MAX_CAPTION_LENGTH:
            raise InvalidRequest("Caption exceeds the post limit.", message="Caption too long")
        if payload.mime_type.strip().lower() not in ALLOWED_IMAGE_TYPES:
            raise UnsupportedMediaType(f"Rejected image type {payload.mime_type!r}.")

        image = decode_image(payload.image_base64)
        if not image:
            raise InvalidRequest("Decoded image is empty.", message="Missing caption or image")
        if len(image) > self.max_image_bytes:
            raise InvalidRequest(
                f"Image is {len(image)} bytes; limit is {self.max_image_bytes}.",
                message="Image too large",
            )
        return image

    def _error_response(self, error: PipelineError) -> Response:
        if isinstance(error, RateLimited):
            response = JSONResponse(
                {"error": error.message, "retryAfter": error.retry_after},
                status_code=error.status_code,
                headers={"Retry-After": str(error.retry_after)},
            )
        else:
            response = json_error(error)
        if error.clears_session:
            self.store.clear_session(response)
        return response
