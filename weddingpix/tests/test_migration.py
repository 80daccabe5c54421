import json
import os
import re
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from weddingpix.documents import InMemoryDocumentStore, InMemoryWriteBatch
from weddingpix.migration import (
    BatchWriter,
    DataMigrationService,
    extract_user_id_from_comment,
    extract_user_id_from_media,
    legacy_reference,
)
from weddingpix.storage import InMemoryStorageClient


class FailingBatch(InMemoryWriteBatch):
    def commit(self) -> None:
        raise RuntimeError("deadline exceeded")


class FailingBatchStore(InMemoryDocumentStore):
    def batch(self):
        return FailingBatch(self)


class ExtractUserIdTests(unittest.TestCase):
    def test_user_id_wins_verbatim(self):
        data = {"userId": "u1", "deviceId": "dev9", "uploadedBy": "Jane"}
        self.assertEqual(extract_user_id_from_media(data), "u1")

    def test_numeric_user_id_becomes_string(self):
        self.assertEqual(extract_user_id_from_media({"userId": 42}), "42")

    def test_device_id_used_unless_web_client(self):
        self.assertEqual(extract_user_id_from_media({"deviceId": "dev2"}), "dev2")
        self.assertEqual(
            extract_user_id_from_media({"deviceId": "web-client", "uploadedBy": "Jane Doe"}),
            "jane-doe",
        )

    def test_name_slug_matches_pattern(self):
        for name in ("Jane Doe", "Ömer & Zoë!", "  Max.Mustermann 2  "):
            slug = extract_user_id_from_media({"uploadedBy": name})
            self.assertRegex(slug, r"^[a-z0-9-]+$")

    def test_anonymous_and_blank_are_unresolvable(self):
        self.assertIsNone(extract_user_id_from_media({"uploadedBy": "Anonymous"}))
        self.assertIsNone(extract_user_id_from_media({"uploadedBy": "   "}))
        self.assertIsNone(extract_user_id_from_media({"deviceId": "web-client"}))
        self.assertIsNone(extract_user_id_from_media({}))

    def test_comment_falls_back_to_user_name(self):
        self.assertEqual(extract_user_id_from_comment({"userName": "Jane Doe"}), "jane-doe")
        self.assertIsNone(extract_user_id_from_comment({"uploadedBy": "Jane Doe"}))


class BatchWriterTests(unittest.TestCase):
    def test_limit_must_fit_a_move_and_the_firestore_ceiling(self):
        store = InMemoryDocumentStore()
        with self.assertRaises(ValueError):
            BatchWriter(store, limit=1)
        with self.assertRaises(ValueError):
            BatchWriter(store, limit=451)
        self.assertEqual(BatchWriter(store, limit=450).limit, 450)

    def test_fresh_batch_after_each_commit(self):
        store = InMemoryDocumentStore()
        for i in range(7):
            store.set(f"media/m{i}", {"deviceId": "dev"})
        writer = BatchWriter(store, limit=5)
        for i in range(7):
            writer.move(f"media/m{i}", f"users/dev/media/m{i}", {"deviceId": "dev"}, f"m{i}")
        writer.flush()
        self.assertEqual(store.committed_batch_sizes, [4, 4, 4, 2])
        self.assertEqual(len(writer.committed), 7)
        self.assertEqual(store.stream("media"), [])


class DataMigrationServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.storage = InMemoryStorageClient()
        self.service = DataMigrationService(self.store, self.storage)

    def test_three_media_documents_scenario(self):
        self.store.set("media/a", {"userId": "u1", "name": "a.jpg"})
        self.store.set("media/b", {"deviceId": "dev2", "name": "b.jpg"})
        self.store.set("media/c", {"uploadedBy": "Jane Doe", "name": "c.jpg"})

        result = self.service.migrate_media_to_user_isolated()

        self.assertTrue(result.success)
        self.assertEqual(result.migrated_items, 3)
        self.assertEqual(result.errors, [])
        self.assertEqual(self.store.stream("media"), [])
        for owner in ("u1", "dev2", "jane-doe"):
            self.assertEqual(len(self.store.stream(f"users/{owner}/media")), 1)

        migrated = self.store.get("users/jane-doe/media/c")
        self.assertEqual(migrated.data["originalId"], "c")
        self.assertEqual(migrated.data["userId"], "jane-doe")
        self.assertEqual(migrated.data["uploadedBy"], "Jane Doe")
        self.assertIsInstance(migrated.data["migratedAt"], datetime)

    def test_existing_user_id_is_not_overwritten(self):
        self.store.set("media/a", {"userId": "u1", "deviceId": "dev2"})
        self.service.migrate_media_to_user_isolated()
        self.assertEqual(self.store.get("users/u1/media/a").data["userId"], "u1")

    def test_batches_never_exceed_limit(self):
        for i in range(1000):
            self.store.set(f"media/m{i:04d}", {"deviceId": f"dev{i % 7}"})

        result = self.service.migrate_media_to_user_isolated()

        self.assertTrue(result.success)
        self.assertEqual(result.migrated_items, 1000)
        self.assertTrue(all(size <= 450 for size in self.store.committed_batch_sizes))
        self.assertEqual(sum(self.store.committed_batch_sizes), 2000)
        self.assertEqual(sum(self.service.per_user_counts().values()), 1000)

    def test_full_run_conserves_documents_minus_unresolved(self):
        self.store.set("media/m1", {"userId": "u1"})
        self.store.set("media/m2", {"uploadedBy": "Anonymous", "deviceId": "web-client"})
        self.store.set("comments/c1", {"userName": "Jane Doe", "mediaId": "m1"})
        self.store.set("comments/c2", {"deviceId": "dev3", "mediaId": "m1"})
        self.store.set("likes/l1", {"userName": "Jane Doe", "mediaId": "m1"})
        self.store.set("stories/s1", {"uploadedBy": "Max"})
        self.store.set("stories/s2", {})
        before = 7

        result = self.service.migrate_all_collections()

        self.assertEqual(len(result.errors), 2)
        self.assertIn("Could not determine user for media: m2", result.errors)
        self.assertIn("Could not determine user for story: s2", result.errors)
        self.assertEqual(result.migrated_items, 5)
        self.assertEqual(sum(self.service.per_user_counts().values()), before - 2)
        self.assertEqual(
            self.service.per_user_counts(), {"u1": 1, "jane-doe": 2, "dev3": 1, "max": 1}
        )
        # Unresolved documents stay where they were.
        self.assertIsNotNone(self.store.get("media/m2"))
        self.assertIsNotNone(self.store.get("stories/s2"))

    def test_second_run_is_a_no_op(self):
        self.store.set("media/m1", {"deviceId": "dev1"})
        self.store.set("comments/c1", {"userName": "Jane Doe"})
        first = self.service.migrate_all_collections()
        counts = self.service.per_user_counts()

        second = self.service.migrate_all_collections()

        self.assertEqual(first.migrated_items, 2)
        self.assertTrue(second.success)
        self.assertEqual(second.migrated_items, 0)
        self.assertEqual(second.errors, [])
        self.assertEqual(self.service.per_user_counts(), counts)

    def test_restored_source_overwrites_instead_of_duplicating(self):
        self.store.set("media/m1", {"deviceId": "dev1", "name": "old"})
        self.service.migrate_media_to_user_isolated()
        self.store.set("media/m1", {"deviceId": "dev1", "name": "restored"})

        self.service.migrate_media_to_user_isolated()

        docs = self.store.stream("users/dev1/media")
        self.assertEqual(len(docs), 1)
        self.assertEqual(docs[0].data["name"], "restored")

    def test_slug_collision_is_reported_not_resolved(self):
        self.store.set("media/m1", {"uploadedBy": "Jane Doe"})
        self.store.set("media/m2", {"uploadedBy": "jane doe"})
        self.store.set("media/m3", {"uploadedBy": "Jane.Doe"})

        result = self.service.migrate_media_to_user_isolated()

        self.assertTrue(result.success)
        self.assertEqual(len(self.store.stream("users/jane-doe/media")), 3)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("jane-doe", result.warnings[0])

    def test_owner_with_slash_is_rejected(self):
        self.store.set("media/m1", {"deviceId": "ios/123"})
        result = self.service.migrate_media_to_user_isolated()
        self.assertEqual(result.migrated_items, 0)
        self.assertEqual(len(result.errors), 1)
        self.assertIsNotNone(self.store.get("media/m1"))

    def test_failed_commit_is_reported_and_keeps_sources(self):
        store = FailingBatchStore()
        store.set("media/m1", {"deviceId": "dev1"})
        service = DataMigrationService(store)

        result = service.migrate_media_to_user_isolated()

        self.assertFalse(result.success)
        self.assertEqual(result.migrated_items, 0)
        self.assertTrue(any("Batch commit failed" in error for error in result.errors))
        self.assertIsNotNone(store.get("media/m1"))
        self.assertIsNone(store.get("users/dev1/media/m1"))

    def test_security_analysis_counts_global_documents(self):
        self.store.set("media/m1", {"deviceId": "dev1"})
        self.store.set("media/m2", {"deviceId": "dev1"})
        self.store.set("likes/l1", {"deviceId": "dev1"})

        analysis = self.service.analyze_security_issues()

        self.assertEqual(analysis.global_collections, ["media", "likes"])
        self.assertEqual(analysis.unsecured_data, 3)
        self.assertEqual(len(analysis.risky_operations), 2)

    def test_validation_fails_while_global_data_remains(self):
        self.store.set("media/m1", {"deviceId": "dev1"})
        self.store.set("users/dev1/media/m0", {"deviceId": "dev1"})

        result = self.service.validate_data_isolation()

        self.assertFalse(result.success)
        self.assertEqual(result.errors, ["Found 1 items in global media collection"])

    def test_validation_succeeds_after_migration(self):
        self.store.set("media/m1", {"deviceId": "dev1"})
        self.store.set("stories/s1", {"deviceId": "dev2"})
        self.service.migrate_all_collections()

        result = self.service.validate_data_isolation()

        self.assertTrue(result.success)
        self.assertEqual(result.migrated_items, 2)

    def test_backup_writes_json_per_collection(self):
        self.store.set("media/m1", {"deviceId": "dev1"})
        now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

        result = self.service.backup_global_collections(now=now)

        self.assertTrue(result.success)
        self.assertEqual(result.migrated_items, 1)
        payload = json.loads(
            self.storage.get_bytes("backups/migration-20240501_120000/media.json")
        )
        self.assertEqual(payload, [{"id": "m1", "deviceId": "dev1"}])
        self.assertEqual(
            json.loads(self.storage.get_bytes("backups/migration-20240501_120000/likes.json")),
            [],
        )

    def test_backup_without_storage_fails(self):
        result = DataMigrationService(self.store).backup_global_collections()
        self.assertFalse(result.success)

    def test_storage_migration_moves_objects_and_rewrites_references(self):
        self.storage.upload_bytes("galleries/u1/photo.jpg", b"jpeg", "image/jpeg")
        self.storage.upload_bytes("galleries/orphan", b"?")
        self.store.set(
            "users/u1/media/m1",
            {"storagePath": "galleries/u1/photo.jpg", "url": "old"},
        )

        result = self.service.migrate_storage_to_user_isolated()

        self.assertEqual(result.migrated_items, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(self.storage.get_bytes("users/u1/photo.jpg"), b"jpeg")
        self.assertEqual(self.storage.content_types["users/u1/photo.jpg"], "image/jpeg")
        self.assertNotIn("galleries/u1/photo.jpg", self.storage.stored_objects)
        doc = self.store.get("users/u1/media/m1")
        self.assertEqual(doc.data["storagePath"], "users/u1/photo.jpg")
        self.assertEqual(doc.data["url"], self.storage.public_url("users/u1/photo.jpg"))

    def test_storage_migration_follows_url_only_references(self):
        old_url = self.storage.public_url("galleries/u1/image/1_a.jpg")
        self.storage.upload_bytes("galleries/u1/image/1_a.jpg", b"jpeg", "image/jpeg")
        self.store.set("users/u1/media/m1", {"url": old_url, "name": "a.jpg"})

        result = self.service.migrate_storage_to_user_isolated()

        self.assertTrue(result.success)
        self.assertEqual(result.warnings, [])
        doc = self.store.get("users/u1/media/m1")
        self.assertEqual(doc.data["storagePath"], "users/u1/image/1_a.jpg")
        self.assertEqual(doc.data["url"], self.storage.public_url("users/u1/image/1_a.jpg"))
        self.assertNotIn("galleries/u1/image/1_a.jpg", self.storage.stored_objects)

    def test_storage_migration_rewrites_documents_left_in_global_collections(self):
        self.storage.upload_bytes("galleries/u9/story.jpg", b"jpeg", "image/jpeg")
        # No owner can be resolved, so the story stays in the global collection.
        self.store.set("stories/s1", {"storagePath": "galleries/u9/story.jpg"})

        result = self.service.migrate_storage_to_user_isolated()

        self.assertEqual(result.migrated_items, 1)
        self.assertEqual(
            self.store.get("stories/s1").data["storagePath"], "users/u9/story.jpg"
        )
        self.assertEqual(self.storage.get_bytes("users/u9/story.jpg"), b"jpeg")
        self.assertNotIn("galleries/u9/story.jpg", self.storage.stored_objects)

    def test_storage_source_is_kept_when_a_reference_cannot_be_updated(self):
        self.storage.upload_bytes("galleries/u1/photo.jpg", b"jpeg", "image/jpeg")
        self.store.set("users/u1/media/m1", {"storagePath": "galleries/u1/photo.jpg"})

        with patch.object(self.store, "update", side_effect=RuntimeError("offline")):
            result = self.service.migrate_storage_to_user_isolated()

        self.assertEqual(result.migrated_items, 1)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("galleries/u1/photo.jpg", result.warnings[0])
        self.assertEqual(self.storage.get_bytes("galleries/u1/photo.jpg"), b"jpeg")
        self.assertEqual(self.storage.get_bytes("users/u1/photo.jpg"), b"jpeg")
        self.assertEqual(
            self.store.get("users/u1/media/m1").data["storagePath"], "galleries/u1/photo.jpg"
        )

    def test_legacy_reference_decodes_download_urls(self):
        legacy = {"galleries/u1/image/a b.jpg": "users/u1/image/a b.jpg"}
        url = (
            "https://firebasestorage.googleapis.com/v0/b/bucket/o/"
            "galleries%2Fu1%2Fimage%2Fa%20b.jpg?alt=media&token=t"
        )
        self.assertEqual(legacy_reference({"url": url}, legacy), "galleries/u1/image/a b.jpg")
        self.assertIsNone(legacy_reference({"url": "https://cdn.test/other.jpg"}, legacy))
        self.assertIsNone(legacy_reference({"storagePath": None}, legacy))

    def test_storage_migration_with_nothing_to_move(self):
        result = self.service.migrate_storage_to_user_isolated()
        self.assertTrue(result.success)
        self.assertEqual(result.migrated_items, 0)


class SecurityRulesCheckTests(unittest.TestCase):
    def _rules_file(self, content: str) -> str:
        handle = tempfile.NamedTemporaryFile("w", suffix=".rules", delete=False)
        handle.write(content)
        handle.close()
        self.addCleanup(os.remove, handle.name)
        return handle.name

    def test_rules_scoping_users_pass(self):
        path = self._rules_file("match /users/{userId} {\n allow read: if false;\n}\n")
        result = DataMigrationService(InMemoryDocumentStore(), rules_path=path).check_security_rules()
        self.assertTrue(result.success)
        self.assertTrue(re.search("firebase deploy", result.details))

    def test_rules_without_user_scope_fail(self):
        path = self._rules_file("match /media/{id} { allow read: if true; }\n")
        result = DataMigrationService(InMemoryDocumentStore(), rules_path=path).check_security_rules()
        self.assertFalse(result.success)

    def test_missing_rules_file_fails(self):
        service = DataMigrationService(InMemoryDocumentStore(), rules_path="/nonexistent/firestore.rules")
        result = service.check_security_rules()
        self.assertFalse(result.success)
        self.assertIn("not found", result.errors[0])


if __name__ == "__main__":
    unittest.main()
