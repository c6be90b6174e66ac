from urllib.parse import quote

from app.core.config import settings

JPEG = b"\xff\xd8\xff" + b"\x00" * 3069


async def _upload(client, name="测试.jpg", data=JPEG, content_type="image/jpeg"):
    return await client.post("/api/media/upload", files=[("files", (name, data, content_type))])


async def test_gallery_scenario(client):
    resp = await _upload(client)
    assert resp.status_code == 201
    [media] = resp.json()
    assert media["name"] == "测试.jpg"
    assert media["size"] == 3072
    assert media["type"] == "photo"
    media_id = media["id"]

    listing = (await client.get("/api/media")).json()
    assert [m["id"] for m in listing] == [media_id]
    assert listing[0]["likes"] == {"count": 0, "users": []}

    like = await client.post(f"/api/media/{media_id}/like", json={"user": "alice"})
    assert like.json() == {"count": 1, "users": ["alice"]}
    unlike = await client.post(f"/api/media/{media_id}/like", json={"user": "alice"})
    assert unlike.json() == {"count": 0, "users": []}

    comment = await client.post(f"/api/media/{media_id}/comments", json={"content": "hi", "author": "bob"})
    assert comment.status_code == 201
    comment_id = comment.json()["id"]
    reply = await client.post(
        f"/api/media/{media_id}/comments",
        json={"content": "hello", "author": "alice", "replyTo": comment_id},
    )
    assert reply.status_code == 201
    assert reply.json()["replyTo"] == comment_id

    detail = (await client.get(f"/api/media/{media_id}")).json()
    assert [c["content"] for c in detail["comments"]] == ["hi"]
    assert [r["content"] for r in detail["comments"][0]["replies"]] == ["hello"]
    assert detail["source"] == "cache"


async def test_file_download(client, blob_store):
    media = (await _upload(client)).json()[0]
    resp = await client.get(media["url"])
    assert resp.status_code == 200
    assert resp.content == JPEG
    assert resp.headers["content-type"] == "image/jpeg"
    assert resp.headers["content-length"] == "3072"
    assert resp.headers["content-disposition"] == f"inline; filename*=UTF-8''{quote('测试.jpg')}"
    assert blob_store.opened == blob_store.closed == 1


async def test_missing_file(client):
    resp = await client.get("/api/media/file/nope")
    assert resp.status_code == 404


async def test_file_without_blob_store(client, blob_store):
    blob_store.available = False
    resp = await client.get("/api/media/file/anything")
    assert resp.status_code == 503


async def test_upload_rejects_non_media(client):
    resp = await _upload(client, name="notes.txt", data=b"text", content_type="text/plain")
    assert resp.status_code == 400
    assert resp.json()["error"] == "UnsupportedMediaTypeError"


async def test_upload_without_files(client):
    resp = await client.post("/api/media/upload", data={"other": "x"})
    assert resp.status_code == 400


async def test_upload_too_large(client, monkeypatch):
    from main import app

    monkeypatch.setattr(app.state.media_service.media_config, "MAX_FILE_SIZE", 1024)
    resp = await _upload(client)
    assert resp.status_code == 413


async def test_type_filter(client):
    await _upload(client, name="a.jpg")
    await _upload(client, name="b.mp4", content_type="video/mp4")
    videos = (await client.get("/api/media", params={"type": "video"})).json()
    assert [m["name"] for m in videos] == ["b.mp4"]


async def test_like_requires_user(client):
    media = (await _upload(client)).json()[0]
    resp = await client.post(f"/api/media/{media['id']}/like", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User is required"


async def test_favorites(client):
    media = (await _upload(client)).json()[0]
    resp = await client.post(f"/api/media/{media['id']}/favorite", json={"user": "alice"})
    assert resp.json() == {"users": ["alice"]}
    assert (await client.get(f"/api/media/{media['id']}/favorites")).json() == {"users": ["alice"]}

    favorites = (await client.get("/api/media/user/alice/favorites")).json()
    assert [m["id"] for m in favorites] == [media["id"]]
    assert (await client.get("/api/media/user/bob/favorites")).json() == []


async def test_orphan_reply_is_silently_ignored(client):
    media = (await _upload(client)).json()[0]
    resp = await client.post(
        f"/api/media/{media['id']}/comments",
        json={"content": "hello", "author": "alice", "replyTo": "missing"},
    )
    assert resp.status_code == 201
    assert (await client.get(f"/api/media/{media['id']}/comments")).json() == []


async def test_orphan_reply_is_404_when_configured(client, monkeypatch):
    from main import app

    monkeypatch.setattr(app.state.media_service.media_config, "REJECT_ORPHAN_REPLIES", True)
    media = (await _upload(client)).json()[0]
    resp = await client.post(
        f"/api/media/{media['id']}/comments",
        json={"content": "hello", "author": "alice", "replyTo": "missing"},
    )
    assert resp.status_code == 404


async def test_delete_comment_reply(client):
    media_id = (await _upload(client)).json()[0]["id"]
    parent = (await client.post(f"/api/media/{media_id}/comments", json={"content": "hi", "author": "bob"})).json()
    reply = (await client.post(
        f"/api/media/{media_id}/comments",
        json={"content": "hello", "author": "alice", "replyTo": parent["id"]},
    )).json()

    resp = await client.delete(f"/api/media/{media_id}/comments/{reply['id']}", params={"parentId": parent["id"]})
    assert resp.status_code == 200
    comments = (await client.get(f"/api/media/{media_id}/comments")).json()
    assert comments[0]["replies"] == []


async def test_delete_media(client, blob_store):
    media = (await _upload(client)).json()[0]
    resp = await client.delete(f"/api/media/{media['id']}")
    assert resp.status_code == 200
    assert blob_store.objects == {}
    assert (await client.get(f"/api/media/{media['id']}")).status_code == 404
    assert (await client.delete(f"/api/media/{media['id']}")).status_code == 404


async def test_sync(client):
    await _upload(client, name="a.jpg")
    await _upload(client, name="b.jpg")
    resp = await client.post("/api/media/sync")
    assert resp.json() == {"message": "Cache synchronized successfully", "count": 2}


async def test_mutations_need_csrf_token(app_client):
    resp = await app_client.post("/api/media/m1/like", json={"user": "alice"})
    assert resp.status_code == 403
    # чтение без токена разрешено
    assert (await app_client.get("/api/media")).status_code == 200


async def test_csrf_can_be_disabled(app_client, monkeypatch):
    monkeypatch.setattr(settings.security, "CSRF_ENABLED", False)
    resp = await app_client.post("/api/media/m1/like", json={"user": "alice"})
    assert resp.status_code == 200
