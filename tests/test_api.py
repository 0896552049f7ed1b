from __future__ import annotations

import io
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient
from PIL import Image

from imagezip import main
from imagezip.job_queue import JobQueue

WAIT = 10


class ApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.output_dir = root / "downloads"
        self.output_dir.mkdir()
        self.zip_path = root / "photos.zip"
        buf = io.BytesIO()
        Image.new("RGB", (4, 4), (1, 2, 3)).save(buf, format="BMP")
        with zipfile.ZipFile(self.zip_path, "w") as zf:
            zf.writestr("raw/pic.bmp", buf.getvalue())

        self.events = main.EventBuffer(50)
        self.queue = JobQueue(output_dir=self.output_dir, temp_root=root, event_cb=self.events)
        patchers = [
            mock.patch.object(main, "job_queue", self.queue),
            mock.patch.object(main, "events", self.events),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        self.queue.wait_until_idle(WAIT)
        self.temp_dir.cleanup()

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_diagnostics(self) -> None:
        body = self.client.get("/api/diagnostics").json()
        self.assertEqual(body["jpeg_quality"], 95)

    def test_enqueue_requires_paths(self) -> None:
        resp = self.client.post("/api/jobs", json={"paths": ["  "]})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_job(self) -> None:
        self.assertEqual(self.client.get("/api/jobs/nope").status_code, 404)
        self.assertEqual(self.client.get("/api/jobs/nope/download").status_code, 404)

    def test_full_job_lifecycle(self) -> None:
        resp = self.client.post("/api/jobs", json={"paths": [str(self.zip_path)]})
        self.assertEqual(resp.status_code, 200)
        job_id = resp.json()["items"][0]["id"]
        self.assertTrue(self.queue.wait_until_idle(WAIT))

        job = self.client.get(f"/api/jobs/{job_id}").json()
        self.assertEqual(job["status"], "success")
        self.assertTrue(job["output_path"].endswith("photos-converted.zip"))

        download = self.client.get(f"/api/jobs/{job_id}/download")
        self.assertEqual(download.status_code, 200)
        with zipfile.ZipFile(io.BytesIO(download.content)) as zf:
            self.assertEqual(sorted(zf.namelist()), ["raw/pic.jpg", "report.json"])

        names = [item["event"] for item in self.client.get("/api/events").json()["items"]]
        self.assertIn("processing-progress", names)
        self.assertEqual(names[-1], "job-complete")
        last_seq = self.client.get("/api/events").json()["items"][-1]["seq"]
        self.assertEqual(self.client.get(f"/api/events?since={last_seq}").json()["items"], [])

        listed = self.client.get("/api/jobs").json()
        self.assertEqual(len(listed["items"]), 1)
        self.assertEqual(self.client.post("/api/jobs/clear").json(), {"removed": 1})
        self.assertEqual(self.client.get("/api/jobs").json()["items"], [])

    def test_failed_job_cannot_be_downloaded(self) -> None:
        resp = self.client.post("/api/jobs", json={"paths": [str(self.zip_path.with_name("missing.zip"))]})
        job_id = resp.json()["items"][0]["id"]
        self.assertTrue(self.queue.wait_until_idle(WAIT))

        job = self.client.get(f"/api/jobs/{job_id}").json()
        self.assertEqual(job["status"], "failed")
        self.assertEqual(self.client.get(f"/api/jobs/{job_id}/download").status_code, 409)

    def test_cancel_endpoint(self) -> None:
        self.assertEqual(self.client.post("/api/jobs/cancel").json(), {"ok": True})


if __name__ == "__main__":
    unittest.main()
