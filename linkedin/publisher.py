from __future__ import annotations

import httpx

from linkedin.errors import (
    AuthExpired,
    InvalidSession,
    NotAuthenticated,
    PipelineError,
    PostCreationFailed,
    RateLimited,
    UploadFailed,
    UploadRegistrationFailed,
)
from linkedin.models import (
    PostRequest,
    PostResult,
    Session,
    UploadSession,
    is_valid_person_urn,
)
from linkedin.oauth2 import api_headers
from linkedin.urls import post_url
from lipub.constants import DEFAULT_API_VERSION, DEFAULT_RETRY_AFTER_SECONDS, LOGGER
from lipub.http import retry_after_seconds

REGISTER_UPLOAD_URL = "https://api.linkedin.com/v2/assets?action=registerUpload"
UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"

FEEDSHARE_IMAGE_RECIPE = "urn:li:digitalmediaRecipe:feedshare-image"
UPLOAD_MECHANISM_KEY = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
SHARE_CONTENT_KEY = "com.linkedin.ugc.ShareContent"
VISIBILITY_KEY = "com.linkedin.ugc.MemberNetworkVisibility"

logger = LOGGER.getChild("publish")


def require_session(session: Session | None) -> Session:
    """Fail closed unless the session carries a token and a well-formed identity."""
    if session is None or not session.access_token or not session.person_urn:
        raise NotAuthenticated("Session is missing an access token or identity.")
    if not is_valid_person_urn(session.person_urn):
        raise InvalidSession("Session identity is malformed.")
    return session


def _raise_for_api_status(response: httpx.Response, failure: type[PipelineError]) -> None:
    if response.status_code in (200, 201):
        return
    if response.status_code == 401:
        raise AuthExpired("LinkedIn rejected the access token.")
    if response.status_code == 429:
        retry_after = retry_after_seconds(
            response.headers.get("retry-after"),
            default=DEFAULT_RETRY_AFTER_SECONDS,
        )
        raise RateLimited(retry_after, f"LinkedIn rate limited {response.request.url.path}.")
    raise failure(f"LinkedIn returned status {response.status_code}.")


class MediaPublisher:
    """Publish an image post: register an upload, send the bytes, create the post.

    Each phase needs the previous one's output, so they run strictly in order
    and the first failure ends the attempt. Nothing is retried here; after a
    RateLimited error the caller should start over with a new publish, since
    an upload registration is not guaranteed to outlive the wait.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        upload_client: httpx.AsyncClient | None = None,
        api_version: str = DEFAULT_API_VERSION,
    ) -> None:
        self._client = client
        self._upload_client = upload_client or client
        self.api_version = api_version

    async def publish(
        self,
        session: Session | None,
        caption: str,
        image: bytes,
        mime_type: str,
    ) -> PostResult:
        session = require_session(session)

        upload = await self.register_upload(session.access_token, session.person_urn)
        await self.upload_image(upload, image, mime_type)
        result = await self.create_post(
            session.access_token,
            PostRequest(
                author_urn=session.person_urn,
                caption=caption,
                asset_urn=upload.asset_urn,
            ),
        )
        logger.info("Published post %s for %s", result.post_id, session.person_urn)
        return result

    async def register_upload(self, access_token: str, owner_urn: str) -> UploadSession:
        body = {
            "registerUploadRequest": {
                "recipes": [FEEDSHARE_IMAGE_RECIPE],
                "owner": owner_urn,
                "serviceRelationships": [
                    {
                        "relationshipType": "OWNER",
                        "identifier": "urn:li:userGeneratedContent",
                    }
                ],
            }
        }
        try:
            response = await self._client.post(
                REGISTER_UPLOAD_URL,
                json=body,
                headers=api_headers(access_token, self.api_version),
            )
        except httpx.HTTPError as error:
            raise UploadRegistrationFailed(f"Register upload error: {type(error).__name__}") from error
        _raise_for_api_status(response, UploadRegistrationFailed)

        try:
            value = response.json().get("value") or {}
            mechanism = value.get("uploadMechanism") or {}
            upload_url = (mechanism.get(UPLOAD_MECHANISM_KEY) or {}).get("uploadUrl")
            asset_urn = value.get("asset")
        except (ValueError, AttributeError) as error:
            raise UploadRegistrationFailed("Register upload response is malformed.") from error

        if not isinstance(upload_url, str) or not upload_url:
            raise UploadRegistrationFailed("Register upload response has no upload URL.")
        if not isinstance(asset_urn, str) or not asset_urn:
            raise UploadRegistrationFailed("Register upload response has no asset URN.")
        return UploadSession(upload_url=upload_url, asset_urn=asset_urn)

    async def upload_image(self, upload: UploadSession, image: bytes, mime_type: str) -> None:
        try:
            response = await self._upload_client.put(
                upload.upload_url,
                content=image,
                headers={
                    "Content-Type": mime_type,
                    "Content-Length": str(len(image)),
                },
            )
        except httpx.HTTPError as error:
            raise UploadFailed(f"Image upload error: {type(error).__name__}") from error

        if response.status_code not in (200, 201):
            raise UploadFailed(f"Image upload returned status {response.status_code}.")

    async def create_post(self, access_token: str, post: PostRequest) -> PostResult:
        body = {
            "author": post.author_urn,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                SHARE_CONTENT_KEY: {
                    "shareCommentary": {"text": post.caption},
                    "shareMediaCategory": "IMAGE",
                    "media": [{"status": "READY", "media": post.asset_urn}],
                }
            },
            "visibility": {VISIBILITY_KEY: post.visibility},
        }
        try:
            response = await self._client.post(
                UGC_POSTS_URL,
                json=body,
                headers=api_headers(access_token, self.api_version),
            )
        except httpx.HTTPError as error:
            raise PostCreationFailed(f"Create post error: {type(error).__name__}") from error
        _raise_for_api_status(response, PostCreationFailed)

        post_id = _post_id(response)
        if not post_id:
            raise PostCreationFailed("Create post response has no identifier.")
        return PostResult(post_id=post_id, post_url=post_url(post_id))


def _post_id(response: httpx.Response) -> str | None:
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    if isinstance(payload, dict):
        for key in ("id", "value"):
            candidate = payload.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
    return response.headers.get("x-restli-id") or None
