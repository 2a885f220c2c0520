import tempfile
import unittest
from pathlib import Path

from sqlsync.config import FolderConfig, SqlSyncConfig
from sqlsync.traverser import process_sources, traverse, walk_folder


def write(base: Path, relative: str, text: str = "SELECT 1;\n") -> None:
    path = base / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def make_config(base: Path, sources: dict[str, FolderConfig]) -> SqlSyncConfig:
    return SqlSyncConfig(
        base_dir=base,
        output_dir=base / "migrations",
        state_file=base / "sqlsync-state.json",
        sources=sources,
    )


SCHEMA = FolderConfig(
    order=("functions", "tables"),
    children={
        "tables": FolderConfig(
            order=("users", "products"),
            ordered_subdirectory_file_order=("types.sql", "table.sql", "indexes.sql"),
        ),
    },
)


class TestTraverser(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        for relative in [
            "schema/functions/b.sql",
            "schema/functions/a.sql",
            "schema/tables/users/table.sql",
            "schema/tables/users/indexes.sql",
            "schema/tables/users/types.sql",
            "schema/tables/products/table.sql",
            "schema/tables/archive/table.sql",
            "schema/seed.sql",
            "schema/notes.txt",
        ]:
            write(self.base, relative)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_configured_order_then_alphabetical(self) -> None:
        paths = walk_folder(self.base, "schema", SCHEMA)
        self.assertEqual(
            paths,
            [
                "schema/functions/a.sql",
                "schema/functions/b.sql",
                "schema/tables/users/types.sql",
                "schema/tables/users/table.sql",
                "schema/tables/users/indexes.sql",
                "schema/tables/products/table.sql",
                "schema/tables/archive/table.sql",
                "schema/seed.sql",
            ],
        )

    def test_missing_listed_items_are_traced(self) -> None:
        messages: list[str] = []
        config = FolderConfig(order=("ghost.sql", "seed.sql"))
        paths = walk_folder(self.base, "schema", config, trace=messages.append)
        self.assertEqual(paths[0], "schema/seed.sql")
        self.assertTrue(any("ghost.sql" in m for m in messages))

    def test_traverse_pairs_sections_with_paths(self) -> None:
        write(self.base, "data/rows.sql")
        config = make_config(self.base, {"schema": FolderConfig(order=("seed.sql",)), "data": FolderConfig(), "missing": FolderConfig()})
        pairs = traverse(config)
        self.assertEqual(pairs[0], ("schema", "schema/seed.sql"))
        self.assertEqual(pairs[-1], ("data", "data/rows.sql"))
        self.assertNotIn("missing", {section for section, _ in pairs})

    def test_process_sources(self) -> None:
        config = make_config(self.base, {"schema": SCHEMA})
        processed = process_sources(config)
        self.assertEqual(len(processed), 8)
        self.assertTrue(all(f.error is None for f in processed))
        self.assertEqual(processed[0].path, "schema/functions/a.sql")


if __name__ == "__main__":
    unittest.main()
