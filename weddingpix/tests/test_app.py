import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from fastapi.testclient import TestClient

from weddingpix import worker
from weddingpix.app import create_app
from weddingpix.auth import create_session_token
from weddingpix.config import Settings
from weddingpix.dependencies import (
    get_document_store,
    get_gallery_store,
    get_queue_client,
    get_storage_client,
)
from weddingpix.migration import DataMigrationService
from weddingpix.runner import MigrationRunner

RULES_PATH = Path(__file__).resolve().parents[2] / "firestore.rules"


class ApiTests(unittest.TestCase):
    def setUp(self):
        get_gallery_store().reset()
        get_document_store().reset()
        get_storage_client().reset()
        get_queue_client().clear()
        self.client = TestClient(create_app())

    def _register(self, username: str = "jane") -> dict:
        res = self.client.post(
            "/api/auth/register",
            json={"username": username, "password": "pw-123", "display_name": username.title()},
        )
        self.assertEqual(res.status_code, 201, res.text)
        return res.json()

    def _headers(self, session: dict) -> dict:
        return {"Authorization": f"Bearer {session['access_token']}"}

    def _admin_headers(self) -> dict:
        token = create_session_token("admin", "admin", is_admin=True)
        return {"Authorization": f"Bearer {token}"}

    def _upload(self, session: dict, filename: str = "photo.jpg") -> dict:
        res = self.client.post(
            "/api/media/upload",
            files={"file": (filename, b"jpeg-bytes", "image/jpeg")},
            headers=self._headers(session),
        )
        self.assertEqual(res.status_code, 201, res.text)
        return res.json()

    def test_register_login_and_me(self):
        session = self._register()
        self.assertEqual(session["token_type"], "bearer")
        self.assertEqual(session["user"]["username"], "jane")
        self.assertNotIn("password_hash", session["user"])

        duplicate = self.client.post(
            "/api/auth/register",
            json={"username": "jane", "password": "x", "display_name": "Jane"},
        )
        self.assertEqual(duplicate.status_code, 400)

        bad = self.client.post("/api/auth/login", json={"username": "jane", "password": "wrong"})
        self.assertEqual(bad.status_code, 401)

        login = self.client.post("/api/auth/login", json={"username": "jane", "password": "pw-123"})
        self.assertEqual(login.status_code, 200)
        me = self.client.get("/api/auth/me", headers=self._headers(login.json()))
        self.assertEqual(me.json()["id"], session["user"]["id"])

    def test_routes_require_a_valid_token(self):
        self.assertEqual(self.client.get("/api/media").status_code, 401)
        res = self.client.get("/api/media", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)

    def test_upload_is_stored_under_caller(self):
        session = self._register()
        media = self._upload(session, "beach day.jpg")

        user_id = session["user"]["id"]
        self.assertEqual(media["user_id"], user_id)
        self.assertEqual(media["type"], "image")
        self.assertTrue(media["storage_path"].startswith(f"users/{user_id}/media/"))

        listed = self.client.get("/api/media", headers=self._headers(session)).json()
        self.assertEqual([m["id"] for m in listed], [media["id"]])

    def test_upload_rejects_unsupported_type(self):
        session = self._register()
        res = self.client.post(
            "/api/media/upload",
            files={"file": ("doc.pdf", b"%PDF", "application/pdf")},
            headers=self._headers(session),
        )
        self.assertEqual(res.status_code, 400)

    def test_other_users_cannot_modify_media(self):
        owner = self._register("jane")
        other = self._register("bob")
        media = self._upload(owner)

        res = self.client.put(
            f"/api/media/{media['id']}", json={"name": "mine"}, headers=self._headers(other)
        )
        self.assertEqual(res.status_code, 403)
        res = self.client.delete(f"/api/media/{media['id']}", headers=self._headers(other))
        self.assertEqual(res.status_code, 403)
        res = self.client.get(f"/api/media/{media['id']}", headers=self._headers(other))
        self.assertEqual(res.status_code, 403)

        res = self.client.delete(f"/api/media/{media['id']}", headers=self._headers(owner))
        self.assertEqual(res.status_code, 204)
        res = self.client.delete(f"/api/media/{media['id']}", headers=self._headers(owner))
        self.assertEqual(res.status_code, 404)

    def test_comments_and_like_toggle(self):
        owner = self._register("jane")
        guest = self._register("bob")
        media = self._upload(owner)
        headers = self._headers(guest)

        comment = self.client.post(
            "/api/comments",
            json={"media_id": media["id"], "text": "Lovely", "user_name": "Bob", "device_id": "d1"},
            headers=headers,
        )
        self.assertEqual(comment.status_code, 201)
        self.assertEqual(comment.json()["user_id"], guest["user"]["id"])

        body = {"media_id": media["id"], "user_name": "Bob", "device_id": "d1"}
        first = self.client.post("/api/likes/toggle", json=body, headers=headers).json()
        self.assertTrue(first["liked"])
        second = self.client.post("/api/likes/toggle", json=body, headers=headers).json()
        self.assertFalse(second["liked"])
        likes = self.client.get("/api/likes", params={"media_id": media["id"]}, headers=headers)
        self.assertEqual(likes.json(), [])

    def test_like_toggle_keeps_likes_of_users_sharing_a_name(self):
        jane = self._register("jane")
        bob = self._register("bob")
        media = self._upload(jane)
        body = {"media_id": media["id"], "user_name": "Jane", "device_id": "d1"}

        res = self.client.post("/api/likes/toggle", json=body, headers=self._headers(jane))
        self.assertTrue(res.json()["liked"])
        res = self.client.post("/api/likes/toggle", json=body, headers=self._headers(bob))
        self.assertTrue(res.json()["liked"])

        likes = self.client.get(
            "/api/likes", params={"media_id": media["id"]}, headers=self._headers(jane)
        ).json()
        self.assertEqual(
            sorted(like["user_id"] for like in likes),
            sorted([jane["user"]["id"], bob["user"]["id"]]),
        )

    def test_like_toggle_on_missing_media_is_404(self):
        session = self._register()
        res = self.client.post(
            "/api/likes/toggle",
            json={"media_id": "nope", "user_name": "Jane", "device_id": "d1"},
            headers=self._headers(session),
        )
        self.assertEqual(res.status_code, 404)

    def test_stories_are_grouped_by_uploader(self):
        session = self._register()
        res = self.client.post(
            "/api/stories",
            files={"file": ("clip.mp4", b"video", "video/mp4")},
            headers=self._headers(session),
        )
        self.assertEqual(res.status_code, 201, res.text)
        self.assertEqual(res.json()["type"], "video")

        groups = self.client.get("/api/stories/grouped", headers=self._headers(session)).json()
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0]["latest_story"]["id"], res.json()["id"])

    def test_profile_update_is_limited_to_self(self):
        jane = self._register("jane")
        bob = self._register("bob")
        jane_id = jane["user"]["id"]

        res = self.client.put(f"/api/users/{jane_id}", json={"bio": "hi"}, headers=self._headers(bob))
        self.assertEqual(res.status_code, 403)
        res = self.client.put(f"/api/users/{jane_id}", json={"bio": "hi"}, headers=self._headers(jane))
        self.assertEqual(res.json()["bio"], "hi")

    def test_admin_routes_reject_regular_users(self):
        session = self._register()
        res = self.client.get("/api/admin/users", headers=self._headers(session))
        self.assertEqual(res.status_code, 403)

    def test_admin_login_requires_configured_password(self):
        res = self.client.post("/api/admin/login", json={"username": "admin", "password": "secret"})
        self.assertEqual(res.status_code, 401)

        with patch(
            "weddingpix.auth.get_settings", return_value=Settings(admin_password="secret")
        ):
            res = self.client.post(
                "/api/admin/login", json={"username": "admin", "password": "secret"}
            )
        self.assertEqual(res.status_code, 200, res.text)
        token = res.json()["access_token"]

        self._register()
        users = self.client.get("/api/admin/users", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual([u["username"] for u in users.json()], ["jane"])

    def test_admin_analysis_and_per_user_migration(self):
        documents = get_document_store()
        documents.set("media/m1", {"deviceId": "dev1", "name": "a.jpg"})
        documents.set("likes/l1", {"deviceId": "dev1", "mediaId": "m1"})

        analysis = self.client.get("/api/admin/migration/analysis", headers=self._admin_headers())
        self.assertEqual(analysis.json()["unsecured_data"], 2)

        status_before = self.client.get(
            "/api/admin/migration/users/dev1/status", headers=self._admin_headers()
        ).json()
        self.assertTrue(status_before["migration_needed"])
        blank = self.client.get(
            "/api/admin/migration/users/%20/status", headers=self._admin_headers()
        )
        self.assertEqual(blank.status_code, 400)

        stats = self.client.post(
            "/api/admin/migration/users/dev1",
            json={"delete_source": True},
            headers=self._admin_headers(),
        ).json()
        self.assertEqual(stats["media_items_migrated"], 1)
        self.assertEqual(stats["likes_migrated"], 1)

        validation = self.client.get(
            "/api/admin/migration/validation", headers=self._admin_headers()
        ).json()
        self.assertTrue(validation["success"])
        self.assertEqual(validation["per_user_counts"], {"dev1": 2})

    def test_migration_run_is_queued_and_processed(self):
        documents = get_document_store()
        documents.set("media/m1", {"deviceId": "dev1", "name": "a.jpg"})
        documents.set("comments/c1", {"userName": "Jane Doe", "mediaId": "m1"})

        res = self.client.post("/api/admin/migration/runs", headers=self._admin_headers())
        self.assertEqual(res.status_code, 202)
        job = res.json()
        self.assertEqual(job["status"], "WAITING")
        self.assertEqual(get_queue_client().pending(), 1)

        runner = MigrationRunner(
            DataMigrationService(documents, get_storage_client(), rules_path=str(RULES_PATH)),
            retry_delay_seconds=0,
            sleep=Mock(),
        )
        self.assertTrue(worker.process_next(runner=runner, block=False))

        fetched = self.client.get(
            f"/api/admin/migration/runs/{job['job_id']}", headers=self._admin_headers()
        ).json()
        self.assertEqual(fetched["status"], "SUCCESS")
        self.assertEqual([step["status"] for step in fetched["steps"]], ["completed"] * 6)
        self.assertIsNotNone(documents.get("users/jane-doe/comments/c1"))

        missing = self.client.get("/api/admin/migration/runs/nope", headers=self._admin_headers())
        self.assertEqual(missing.status_code, 404)


if __name__ == "__main__":
    unittest.main()
