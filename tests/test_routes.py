import io
import time
import zipfile
import threading
from PIL import Image


def make_jpeg_bytes():
    img = Image.new("RGB", (10, 10), color="blue")
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def upload_jpegs(test_client, session_id, names, mode="multiple"):
    files = [("images", (name, make_jpeg_bytes(), "image/jpeg")) for name in names]
    return test_client.post(f"/api/upload/{mode}", files=files, headers={"X-Session-ID": session_id})


# ------------------------------
# /api/upload
# ------------------------------

def test_upload_single_generates_session_id(test_client):
    files = {"image": ("one.jpg", make_jpeg_bytes(), "image/jpeg")}
    resp = test_client.post("/api/upload/single", files=files)
    assert resp.status_code == 200
    body = resp.json()
    assert body["sessionId"]
    assert body["file"]["filename"] == "one.jpg"
    assert body["file"]["mimetype"] == "image/jpeg"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_upload_multiple(test_client, storage):
    resp = upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["sessionId"] == "s1"
    assert body["message"] == "2 files uploaded successfully"
    assert storage.list_images("s1") == ["a.jpg", "b.jpg"]


def test_upload_folder_groups_by_directory_and_flattens(test_client, storage):
    resp = upload_jpegs(test_client, "s1", ["trip/a.jpg", "trip/b.jpg", "c.jpg"], mode="folder")
    assert resp.status_code == 200
    body = resp.json()
    assert sorted(body["filesByDirectory"]) == [".", "trip"]
    assert len(body["filesByDirectory"]["trip"]) == 2
    assert storage.list_images("s1") == ["a.jpg", "b.jpg", "c.jpg"]


def test_upload_invalid_file_type(test_client):
    files = [("images", ("f.txt", b"notimg", "text/plain"))]
    resp = test_client.post("/api/upload/multiple", files=files)
    assert resp.status_code == 400


def test_upload_without_files(test_client):
    resp = test_client.post("/api/upload/multiple", data={"x": "y"})
    assert resp.status_code == 400
    resp = test_client.post("/api/upload/single", data={"x": "y"})
    assert resp.status_code == 400


def test_upload_invalid_session_header(test_client):
    resp = upload_jpegs(test_client, "..", ["a.jpg"])
    assert resp.status_code == 400


def test_sessions_list_get_delete(test_client, storage):
    upload_jpegs(test_client, "s1", ["a.jpg"])
    upload_jpegs(test_client, "s2", ["b.jpg", "c.jpg"])

    resp = test_client.get("/api/upload/sessions")
    assert resp.status_code == 200
    sessions = {s["sessionId"]: s for s in resp.json()["sessions"]}
    assert sessions["s2"]["fileCount"] == 2
    assert sessions["s1"]["status"] == "uploaded"

    resp = test_client.get("/api/upload/sessions/s2")
    assert resp.status_code == 200
    assert [f["filename"] for f in resp.json()["files"]] == ["b.jpg", "c.jpg"]

    resp = test_client.delete("/api/upload/sessions/s2")
    assert resp.status_code == 200
    assert not storage.session_exists("s2")
    assert test_client.get("/api/upload/sessions/s2").status_code == 404
    assert test_client.delete("/api/upload/sessions/s2").status_code == 404


# ------------------------------
# /api/caption
# ------------------------------

def test_upload_generate_status_scenario(test_client, storage, fake_captioner):
    upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg", "c.jpg"])

    status = test_client.get("/api/caption/status/s1").json()
    assert (status["totalImages"], status["processedImages"], status["progress"]) == (3, 0, 0)
    assert status["isComplete"] is False

    resp = test_client.post("/api/caption/generate", json={
        "sessionId": "s1", "apiKey": "sk-test", "globalTags": "mystyle",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "completed"
    assert len(body["results"]) == 3
    assert body["errors"] == []
    assert {o["status"] for o in body["outcomes"]} == {"success"}
    assert storage.list_captions("s1") == ["a.txt", "b.txt", "c.txt"]
    assert storage.read_caption("s1", "a.txt") == "photo, a, mystyle"
    assert fake_captioner.closed is True
    assert all(max_tokens == 300 for _, max_tokens in fake_captioner.calls)

    status = test_client.get("/api/caption/status/s1").json()
    assert status["progress"] == 100
    assert status["isComplete"] is True
    assert status["status"] == "complete"
    assert status["job"]["jobId"] == body["jobId"]
    assert status["job"]["state"] == "completed"

    job = test_client.get(f"/api/caption/jobs/{body['jobId']}").json()
    assert job["succeeded"] == 3

    session = test_client.get("/api/upload/sessions/s1").json()
    assert session["status"] == "captioned"


def test_generate_reports_per_file_errors(test_client, storage, fake_captioner):
    upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg"])
    fake_captioner.fail_on = {"b.jpg"}

    body = test_client.post("/api/caption/generate", json={"sessionId": "s1", "apiKey": "k"}).json()

    assert [r["file"] for r in body["results"]] == ["a.jpg"]
    assert body["errors"][0]["file"] == "b.jpg"
    assert body["message"] == "Caption generation completed for 1 files. 1 errors."


def test_batch_with_file_indices(test_client, storage, fake_captioner):
    upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg", "c.jpg", "d.jpg"])

    resp = test_client.post("/api/caption/batch", json={
        "sessionId": "s1", "apiKey": "k", "fileIndices": [3, 1], "maxTokens": 50,
    })
    assert resp.status_code == 200
    assert [r["file"] for r in resp.json()["results"]] == ["d.jpg", "b.jpg"]
    assert fake_captioner.calls == [("d.jpg", 50), ("b.jpg", 50)]


def test_generate_validation(test_client):
    assert test_client.post("/api/caption/generate", json={"apiKey": "k"}).status_code == 400
    assert test_client.post("/api/caption/generate", json={"sessionId": "s1"}).status_code == 400
    assert test_client.post("/api/caption/generate", json={"sessionId": "nope", "apiKey": "k"}).status_code == 404


def test_generate_accepts_null_global_tags(test_client, storage):
    upload_jpegs(test_client, "s1", ["a.jpg"])
    resp = test_client.post(
        "/api/caption/generate", json={"sessionId": "s1", "apiKey": "k", "globalTags": None}
    )
    assert resp.status_code == 200
    assert storage.read_caption("s1", "a.txt") == "photo, a"


def test_generate_empty_session(test_client, storage):
    storage.save_upload("s1", "readme.md", b"x")
    resp = test_client.post("/api/caption/generate", json={"sessionId": "s1", "apiKey": "k"})
    assert resp.status_code == 400


def test_add_global_tags_route(test_client, storage):
    storage.write_caption("s1", "a.jpg", "a")

    resp = test_client.post("/api/caption/add-global-tags", json={"sessionId": "s1", "globalTags": "a, b"})
    assert resp.status_code == 200
    assert resp.json()["results"][0]["updatedCaption"] == "a, b"
    assert storage.read_caption("s1", "a.txt") == "a, b"

    assert test_client.post("/api/caption/add-global-tags", json={"sessionId": "s1"}).status_code == 400
    assert test_client.post(
        "/api/caption/add-global-tags", json={"sessionId": "nope", "globalTags": "x"}
    ).status_code == 404


def test_status_not_found(test_client):
    assert test_client.get("/api/caption/status/nope").status_code == 404


def test_job_routes(test_client):
    assert test_client.get("/api/caption/jobs/missing").status_code == 404
    assert test_client.post("/api/caption/jobs/missing/cancel").status_code == 404
    resp = test_client.post("/api/caption/cancel/s1")
    assert resp.status_code == 200
    assert resp.json()["cancelledJobs"] == []


def test_cancel_finished_job(test_client, storage):
    upload_jpegs(test_client, "s1", ["a.jpg"])
    job_id = test_client.post(
        "/api/caption/generate", json={"sessionId": "s1", "apiKey": "k", "jobId": "job-1"}
    ).json()["jobId"]
    assert job_id == "job-1"
    assert test_client.post("/api/caption/jobs/job-1/cancel").status_code == 400


def wait_until_running(test_client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not test_client.app.state.jobs.is_active(job_id):
        assert time.monotonic() < deadline, f"job {job_id} never started"
        time.sleep(0.02)


def test_cancel_job_in_flight(test_client, storage, fake_captioner):
    fake_captioner.delay = 5.0
    upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg"])
    responses = {}

    def generate():
        responses["generate"] = test_client.post(
            "/api/caption/generate", json={"sessionId": "s1", "apiKey": "k", "jobId": "job-1"}
        )

    worker = threading.Thread(target=generate)
    worker.start()
    wait_until_running(test_client, "job-1")

    resp = test_client.post("/api/caption/jobs/job-1/cancel")
    assert resp.status_code == 200
    assert resp.json()["cancelledJobs"] == ["job-1"]

    worker.join(timeout=10)
    assert not worker.is_alive()
    body = responses["generate"].json()
    assert body["state"] == "cancelled"
    assert [o["status"] for o in body["outcomes"]] == ["cancelled", "cancelled"]
    assert storage.list_captions("s1") == []
    assert test_client.get("/api/caption/jobs/job-1").json()["state"] == "cancelled"


def test_cancel_session_in_flight(test_client, storage, fake_captioner):
    fake_captioner.delay = 5.0
    upload_jpegs(test_client, "s1", ["a.jpg"])
    responses = {}

    def generate():
        responses["generate"] = test_client.post(
            "/api/caption/generate", json={"sessionId": "s1", "apiKey": "k", "jobId": "job-2"}
        )

    worker = threading.Thread(target=generate)
    worker.start()
    wait_until_running(test_client, "job-2")

    resp = test_client.post("/api/caption/cancel/s1")
    assert resp.json()["cancelledJobs"] == ["job-2"]

    worker.join(timeout=10)
    assert not worker.is_alive()
    assert responses["generate"].json()["state"] == "cancelled"


# ------------------------------
# /api/download
# ------------------------------

def captioned_session(test_client, storage):
    upload_jpegs(test_client, "s1", ["a.jpg", "b.jpg"])
    storage.write_caption("s1", "a.jpg", "cap a")


def test_download_single_files(test_client, storage):
    captioned_session(test_client, storage)

    resp = test_client.get("/api/download/caption/s1/a.txt")
    assert resp.status_code == 200
    assert resp.text == "cap a"
    assert "attachment" in resp.headers["content-disposition"]

    resp = test_client.get("/api/download/image/s1/b.jpg")
    assert resp.status_code == 200
    assert resp.content[:2] == b"\xff\xd8"

    assert test_client.get("/api/download/caption/s1/b.txt").status_code == 404
    assert test_client.get("/api/download/image/s1/zzz.jpg").status_code == 404


def test_download_all_formats(test_client, storage):
    captioned_session(test_client, storage)

    expected = {
        "separate": ["captions/a.txt", "images/a.jpg", "images/b.jpg"],
        "flat": ["a.jpg", "a.txt", "b.jpg"],
        "paired": ["a/a.jpg", "a/a.txt", "b/b.jpg"],
    }
    for fmt, names in expected.items():
        resp = test_client.get(f"/api/download/all/s1", params={"format": fmt})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert 'filename="lora-training-s1.zip"' in resp.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            assert sorted(zf.namelist()) == names


def test_download_all_default_and_invalid_format(test_client, storage):
    captioned_session(test_client, storage)
    resp = test_client.get("/api/download/all/s1")
    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        assert "images/a.jpg" in zf.namelist()
    assert test_client.get("/api/download/all/s1", params={"format": "tree"}).status_code == 422
    assert test_client.get("/api/download/all/nope").status_code == 404


def test_download_all_captions(test_client, storage):
    captioned_session(test_client, storage)
    resp = test_client.get("/api/download/all-captions/s1")
    assert resp.status_code == 200
    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        assert zf.namelist() == ["a.txt"]
    assert test_client.get("/api/download/all-captions/nope").status_code == 404


def test_download_status_route(test_client, storage):
    captioned_session(test_client, storage)
    body = test_client.get("/api/download/status/s1").json()
    assert body["imageCount"] == 2
    assert body["captionCount"] == 1
    assert body["allCaptioned"] is False
    assert body["downloadLinks"]["allCaptions"] == "/api/download/all-captions/s1"
    assert body["captionFiles"][0]["imageFile"] == "a.jpg"


def test_download_custom(test_client, storage):
    captioned_session(test_client, storage)
    resp = test_client.post("/api/download/custom", json={
        "sessionId": "s1", "imageFiles": ["b.jpg"], "captionFiles": ["a.txt", "missing.txt"],
    })
    assert resp.status_code == 200
    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        assert sorted(zf.namelist()) == ["captions/a.txt", "images/b.jpg"]

    assert test_client.post("/api/download/custom", json={"sessionId": "s1"}).status_code == 400
    assert test_client.post("/api/download/custom", json={"imageFiles": ["a.jpg"]}).status_code == 400
