import base64

from linkedin.cookies import ACCESS_TOKEN_COOKIE, PERSON_COOKIE, SESSION_COOKIES
from linkedin.publisher import REGISTER_UPLOAD_URL, UGC_POSTS_URL, UPLOAD_MECHANISM_KEY
from tests.helpers import PERSON_URN, _build_app, _set_cookie_header, _sign_in

UPLOAD_URL = "https://api.linkedin.com/mediaUpload/C5522AQ/feedshare-uploadedImage/0"
ASSET_URN = "urn:li:digitalmediaAsset:C5522AQHn46pwH96hxQ"
IMAGE = b"\x89PNG\r\n\x1a\nfake-image-bytes"


def _payload(**overrides) -> dict:
    payload = {
        "caption": "Shipping day!",
        "imageBase64": base64.b64encode(IMAGE).decode(),
        "mimeType": "image/png",
    }
    payload.update(overrides)
    return payload


def _signed_in_app(**setting_overrides):
    app, test_client = _build_app(**setting_overrides)
    _sign_in(test_client, app.state.store)
    return app, test_client


def _add_register(httpx_mock) -> None:
    httpx_mock.add_response(
        url=REGISTER_UPLOAD_URL,
        method="POST",
        json={
            "value": {
                "uploadMechanism": {UPLOAD_MECHANISM_KEY: {"uploadUrl": UPLOAD_URL}},
                "asset": ASSET_URN,
            }
        },
    )


def test_publish_requires_sign_in(httpx_mock) -> None:
    _, test_client = _build_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}
    assert httpx_mock.get_requests() == []


def test_publish_with_forged_session_clears_cookies(httpx_mock) -> None:
    _, test_client = _build_app()
    test_client.cookies.set(ACCESS_TOKEN_COOKIE, "forged")
    test_client.cookies.set(PERSON_COOKIE, PERSON_URN)

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid authentication state"}
    for name in SESSION_COOKIES:
        assert "max-age=0" in _set_cookie_header(response, name).lower()
    assert httpx_mock.get_requests() == []


def test_publish_success(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT", status_code=201)
    httpx_mock.add_response(
        url=UGC_POSTS_URL,
        method="POST",
        status_code=201,
        json={"id": "urn:li:share:7123"},
    )
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "postUrl": "https://www.linkedin.com/feed/update/urn:li:share:7123/",
        "postId": "urn:li:share:7123",
    }
    upload = httpx_mock.get_request(url=UPLOAD_URL)
    assert upload.content == IMAGE


def test_publish_accepts_data_url(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT")
    httpx_mock.add_response(url=UGC_POSTS_URL, method="POST", json={"id": "urn:li:share:1"})
    _, test_client = _signed_in_app()
    data_url = "data:image/jpeg;base64," + base64.b64encode(IMAGE).decode()

    response = test_client.post(
        "/publish",
        json={"caption": "Hi", "imageB64": data_url, "mime_type": "image/jpeg"},
    )

    assert response.status_code == 200
    upload = httpx_mock.get_request(url=UPLOAD_URL)
    assert upload.content == IMAGE
    assert upload.headers["content-type"] == "image/jpeg"


def test_publish_accepts_line_wrapped_base64(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT")
    httpx_mock.add_response(url=UGC_POSTS_URL, method="POST", json={"id": "urn:li:share:1"})
    _, test_client = _signed_in_app()
    encoded = base64.b64encode(IMAGE * 10).decode()
    wrapped = "\r\n".join(encoded[i : i + 76] for i in range(0, len(encoded), 76))

    response = test_client.post("/publish", json=_payload(imageBase64=wrapped))

    assert "\n" in wrapped
    assert response.status_code == 200
    assert httpx_mock.get_request(url=UPLOAD_URL).content == IMAGE * 10


def test_publish_upload_failure(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT", status_code=500)
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to upload image"}
    assert httpx_mock.get_requests(url=UGC_POSTS_URL) == []


def test_publish_rate_limited(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT")
    httpx_mock.add_response(
        url=UGC_POSTS_URL,
        method="POST",
        status_code=429,
        headers={"Retry-After": "30"},
    )
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 429
    assert response.headers["retry-after"] == "30"
    assert response.json() == {
        "error": "Rate limited. Please try again later.",
        "retryAfter": 30,
    }


def test_publish_auth_expired_clears_session(httpx_mock) -> None:
    httpx_mock.add_response(url=REGISTER_UPLOAD_URL, method="POST", status_code=401)
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication expired"}
    for name in SESSION_COOKIES:
        assert "max-age=0" in _set_cookie_header(response, name).lower()


def test_publish_post_creation_failure(httpx_mock) -> None:
    _add_register(httpx_mock)
    httpx_mock.add_response(url=UPLOAD_URL, method="PUT")
    httpx_mock.add_response(url=UGC_POSTS_URL, method="POST", status_code=500)
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 502
    assert response.json() == {"error": "Failed to create post"}


def test_publish_missing_caption(httpx_mock) -> None:
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload(caption="   "))

    assert response.status_code == 400
    assert response.json() == {"error": "Missing caption or image"}
    assert httpx_mock.get_requests() == []


def test_publish_missing_image() -> None:
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json={"caption": "Hi"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing caption or image"}


def test_publish_malformed_body() -> None:
    _, test_client = _signed_in_app()

    response = test_client.post(
        "/publish",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Missing caption or image"}


def test_publish_invalid_base64() -> None:
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload(imageBase64="not base64!"))

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid image data"}


def test_publish_caption_too_long() -> None:
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload(caption="x" * 3001))

    assert response.status_code == 400
    assert response.json() == {"error": "Caption too long"}


def test_publish_unsupported_media_type() -> None:
    _, test_client = _signed_in_app()

    response = test_client.post("/publish", json=_payload(mimeType="image/svg+xml"))

    assert response.status_code == 415
    assert response.json() == {"error": "Unsupported image type"}


def test_publish_image_too_large() -> None:
    _, test_client = _signed_in_app(max_image_bytes=8)

    response = test_client.post("/publish", json=_payload())

    assert response.status_code == 400
    assert response.json() == {"error": "Image too large"}


def test_publish_rejects_get() -> None:
    _, test_client = _build_app()

    response = test_client.get("/publish")

    assert response.status_code == 405
    assert response.json() == {"error": "Method not allowed"}
