import os
import tempfile
import unittest

from orchard.db import InMemoryDbClient, JsonFileDbClient, SqlDbClient
from orchard.errors import ConflictError, NotFoundError, StorageError


def _tree_fields(**overrides):
    fields = {
        "variety": "Ri6",
        "status": "Khỏe mạnh",
        "notes": "",
        "images": [],
        "harvest_info": [],
    }
    fields.update(overrides)
    return fields


class DbClientBehaviour:
    """Checks shared by every DbClient implementation."""

    def make_client(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_client()

    def tearDown(self):
        self.db.close()

    def test_create_and_get_garden(self):
        garden = self.db.create_garden("Vườn A", 4, 6)
        self.assertIsNotNone(garden.id)
        self.assertGreater(garden.created_at, 0)

        fetched = self.db.get_garden("Vườn A")
        self.assertEqual(fetched.id, garden.id)
        self.assertEqual((fetched.rows, fetched.cols), (4, 6))
        self.assertIsNone(self.db.get_garden("vườn a"))

    def test_duplicate_name_conflicts(self):
        self.db.create_garden("Vườn A", 4, 6)
        with self.assertRaises(ConflictError):
            self.db.create_garden("Vườn A", 9, 9)
        self.assertEqual(self.db.get_garden("Vườn A").rows, 4)
        self.assertEqual(self.db.count_gardens(), 1)

    def test_list_gardens_newest_first_with_trees(self):
        first = self.db.create_garden("first", 2, 2)
        second = self.db.create_garden("second", 3, 3)
        self.db.upsert_tree(first.id, 0, 1, **_tree_fields())

        gardens = self.db.list_gardens()
        self.assertEqual([g.name for g in gardens], ["second", "first"])
        self.assertEqual(gardens[0].trees, [])
        self.assertEqual([(t.row, t.col) for t in gardens[1].trees], [(0, 1)])
        self.assertEqual(second.id, gardens[0].id)

    def test_upsert_updates_in_place(self):
        garden = self.db.create_garden("g", 5, 5)
        created = self.db.upsert_tree(garden.id, 1, 1, **_tree_fields(variety="Ri6"))
        updated = self.db.upsert_tree(
            garden.id, 1, 1, **_tree_fields(variety="Musang King", harvest_info=[{"kg": 12}])
        )

        trees = self.db.list_trees(garden.id)
        self.assertEqual(len(trees), 1)
        self.assertEqual(trees[0].variety, "Musang King")
        self.assertEqual(trees[0].harvest_info, [{"kg": 12}])
        self.assertEqual(updated.created_at, created.created_at)
        self.assertGreaterEqual(updated.updated_at, created.updated_at)

    def test_list_trees_keeps_insertion_order(self):
        garden = self.db.create_garden("g", 5, 5)
        self.db.upsert_tree(garden.id, 3, 3, **_tree_fields())
        self.db.upsert_tree(garden.id, 1, 1, **_tree_fields())
        self.db.upsert_tree(garden.id, 3, 3, **_tree_fields(status="Sâu bệnh"))

        coords = [(t.row, t.col) for t in self.db.list_trees(garden.id)]
        self.assertEqual(coords, [(3, 3), (1, 1)])

    def test_get_tree(self):
        garden = self.db.create_garden("g", 5, 5)
        self.assertIsNone(self.db.get_tree(garden.id, 0, 0))
        self.db.upsert_tree(garden.id, 0, 0, **_tree_fields(images=["/uploads/1-a.png"]))
        self.assertEqual(self.db.get_tree(garden.id, 0, 0).images, ["/uploads/1-a.png"])

    def test_coordinates_at_64_bit_limits(self):
        garden = self.db.create_garden("g", 5, 5)
        self.db.upsert_tree(garden.id, 2**63 - 1, -(2**63), **_tree_fields())
        tree = self.db.get_tree(garden.id, 2**63 - 1, -(2**63))
        self.assertEqual((tree.row, tree.col), (2**63 - 1, -(2**63)))

    def test_upsert_requires_existing_garden(self):
        with self.assertRaises(NotFoundError):
            self.db.upsert_tree(999, 0, 0, **_tree_fields())

    def test_delete_garden_cascades(self):
        garden = self.db.create_garden("g", 5, 5)
        other = self.db.create_garden("other", 5, 5)
        self.db.upsert_tree(garden.id, 0, 0, **_tree_fields())
        self.db.upsert_tree(other.id, 0, 0, **_tree_fields())

        self.assertTrue(self.db.delete_garden("g"))
        self.assertFalse(self.db.delete_garden("g"))
        self.assertIsNone(self.db.get_garden("g"))
        self.assertEqual(self.db.list_trees(garden.id), [])
        self.assertEqual(len(self.db.list_trees(other.id)), 1)
        self.assertEqual([g.name for g in self.db.list_gardens()], ["other"])

    def test_returned_records_are_copies(self):
        garden = self.db.create_garden("g", 5, 5)
        tree = self.db.upsert_tree(garden.id, 0, 0, **_tree_fields(images=["a"]))
        tree.images.append("b")
        self.assertEqual(self.db.get_tree(garden.id, 0, 0).images, ["a"])


class InMemoryDbClientTests(DbClientBehaviour, unittest.TestCase):
    def make_client(self):
        return InMemoryDbClient()

    def test_reset(self):
        self.db.create_garden("g", 1, 1)
        self.db.reset()
        self.assertEqual(self.db.count_gardens(), 0)


class SqlDbClientTests(DbClientBehaviour, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def make_client(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:")

    def test_requires_url(self):
        with self.assertRaises(ValueError):
            SqlDbClient("")

    def test_usable_after_conflict(self):
        self.db.create_garden("g", 1, 1)
        with self.assertRaises(ConflictError):
            self.db.create_garden("g", 1, 1)
        self.db.create_garden("h", 1, 1)
        self.assertEqual(self.db.count_gardens(), 2)


class JsonFileDbClientTests(DbClientBehaviour, unittest.TestCase):
    def make_client(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "data", "gardens.json")
        return JsonFileDbClient(self.path)

    def test_state_survives_reopen(self):
        garden = self.db.create_garden("Vườn Mẫu", 5, 5)
        self.db.upsert_tree(garden.id, 2, 2, **_tree_fields(status="Sâu bệnh"))

        reopened = JsonFileDbClient(self.path)
        gardens = reopened.list_gardens()
        self.assertEqual(gardens[0].name, "Vườn Mẫu")
        self.assertEqual(gardens[0].trees[0].status, "Sâu bệnh")
        next_garden = reopened.create_garden("second", 1, 1)
        self.assertGreater(next_garden.id, garden.id)

    def test_corrupt_file_raises_storage_error(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with self.assertRaises(StorageError):
            self.db.list_gardens()


if __name__ == "__main__":
    unittest.main()
