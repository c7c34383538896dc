from io import BytesIO

import pytest

from conftest import image_bytes
from mediaopt.web import create_app


@pytest.fixture
def client(config):
    app = create_app(config)
    app.config.update(TESTING=True)
    return app.test_client()


def test_optimize_endpoint(client, config, make_image):
    make_image(config.uploads_root / "events" / "a.jpg")
    make_image(config.uploads_root / "events" / "b.png")
    (config.uploads_root / "sites").mkdir()
    broken = config.uploads_root / "sites" / "bad.webp"
    broken.write_bytes(b"nope")

    resp = client.post("/admin/images/optimize")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["summary"]["totalProcessed"] == 2
    assert body["summary"]["totalFailed"] == 1
    assert body["summary"]["totalSavedBytes"] > 0
    assert body["summary"]["totalSavedBytesHuman"].split()[-1] in {"Bytes", "KB", "MB"}

    details = {d["directory"]: d for d in body["details"]}
    assert details["events"]["processed"] == 2
    assert details["sites"]["failed"] == 1
    assert details["figures"] == {
        "directory": "figures",
        "status": "skipped",
        "reason": "Directory does not exist",
    }
    assert broken.exists()


def test_optimize_endpoint_reports_root_errors(client, monkeypatch):
    def fail(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr("mediaopt.web.run_batch", fail)

    resp = client.post("/admin/images/optimize")

    assert resp.status_code == 500
    assert resp.get_json()["success"] is False


def test_cancel_without_running_batch(client):
    resp = client.post("/admin/images/optimize/cancel")

    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "cancelled": False}


def test_stats_endpoint(client, config):
    (config.uploads_root / "news").mkdir()
    (config.uploads_root / "news" / "n.webp").write_bytes(b"0" * 1536)

    resp = client.get("/admin/images/stats")

    body = resp.get_json()
    assert resp.status_code == 200
    assert body["summary"]["totalDirectories"] == 8
    assert body["summary"]["totalFiles"] == 1
    assert body["summary"]["totalSizeHuman"] == "1.5 KB"
    news = next(d for d in body["details"] if d["directory"] == "news")
    assert news == {
        "directory": "news",
        "exists": True,
        "fileCount": 1,
        "totalSize": 1536,
        "totalSizeHuman": "1.5 KB",
    }


def test_upload_endpoint_returns_optimized_url(client, config):
    resp = client.post(
        "/admin/images/upload/figures",
        data={"image": (BytesIO(image_bytes("PNG")), "Tran Hung Dao.png")},
        content_type="multipart/form-data",
    )

    assert resp.status_code == 200
    [entry] = resp.get_json()["files"]
    assert entry["url"].startswith("/uploads/figures/Tran_Hung_Dao-")
    assert entry["url"].endswith(".webp")
    assert entry["fallbackUrl"].endswith(".png")
    assert entry["originalName"] == "Tran Hung Dao.png"

    saved = config.uploads_root / "figures" / entry["filename"]
    assert saved.stat().st_size == entry["size"]

    served = client.get(entry["url"])
    assert served.status_code == 200
    assert served.data == saved.read_bytes()
    served.close()


def test_upload_endpoint_keeps_undecodable_file(client, config):
    resp = client.post(
        "/admin/images/upload/news",
        data={"image": (BytesIO(b"garbage"), "x.jpg")},
        content_type="multipart/form-data",
    )

    [entry] = resp.get_json()["files"]
    assert entry["filename"].endswith(".jpg")
    assert "fallbackUrl" not in entry
    assert (config.uploads_root / "news" / entry["filename"]).read_bytes() == b"garbage"


def test_upload_endpoint_rejects_non_image_files(client, config):
    resp = client.post(
        "/admin/images/upload/news",
        data={
            "image": (BytesIO(image_bytes("PNG")), "ok.png"),
            "page": (BytesIO(b"<script>alert(1)</script>"), "x.html"),
        },
        content_type="multipart/form-data",
    )

    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    news = config.uploads_root / "news"
    assert not news.exists() or not any(news.iterdir())


def test_upload_endpoint_rejects_image_extension_with_wrong_mimetype(client, config):
    resp = client.post(
        "/admin/images/upload/news",
        data={"image": (BytesIO(b"<html></html>"), "x.png", "text/html")},
        content_type="multipart/form-data",
    )

    assert resp.status_code == 400
    assert not (config.uploads_root / "news").exists()


def test_uploads_route_only_serves_images(client, config):
    (config.uploads_root / "news").mkdir()
    (config.uploads_root / "news" / "page.html").write_text("<script>alert(1)</script>")

    resp = client.get("/uploads/news/page.html")

    assert resp.status_code == 404


def test_upload_endpoint_rejects_unknown_category(client):
    resp = client.post(
        "/admin/images/upload/secrets",
        data={"image": (BytesIO(b"x"), "x.png")},
        content_type="multipart/form-data",
    )

    assert resp.status_code == 404


def test_upload_endpoint_requires_a_file(client):
    resp = client.post("/admin/images/upload/events", data={}, content_type="multipart/form-data")

    assert resp.status_code == 400
