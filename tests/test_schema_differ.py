import unittest

from sqlsync.models import AlterKind, ColumnDefinition, ForeignKey, TableDefinition
from sqlsync.schema_differ import (
    RenameCandidate,
    column_similarity,
    detect_renames,
    diff_tables,
    levenshtein,
    name_similarity,
    render_column,
)
from sqlsync.table_parser import parse_column_definition, parse_create_table


def table(name: str, *columns: ColumnDefinition, schema: str = "public") -> TableDefinition:
    return TableDefinition(name=name, columns=tuple(columns), schema=schema)


ID = ColumnDefinition("id", "SERIAL", primary_key=True)


class TestNameSimilarity(unittest.TestCase):
    def test_levenshtein(self) -> None:
        self.assertEqual(levenshtein("kitten", "sitting"), 3)
        self.assertEqual(levenshtein("", "abc"), 3)
        self.assertEqual(levenshtein("same", "same"), 0)

    def test_exact_match_ignores_case(self) -> None:
        self.assertEqual(name_similarity("Email", "email"), 1.0)

    def test_common_rename_patterns(self) -> None:
        self.assertEqual(name_similarity("user_name", "username"), 0.9)
        self.assertEqual(name_similarity("ext_billing_id", "billing_id"), 0.9)
        self.assertEqual(name_similarity("created", "created_at"), 0.9)

    def test_word_overlap_for_multi_word_names(self) -> None:
        self.assertEqual(name_similarity("home_phone", "phone_home"), 1.0)
        self.assertLess(name_similarity("home_phone", "phone"), 1.0)


class TestDiffTables(unittest.TestCase):
    def test_identical_tables_have_no_operations(self) -> None:
        users = table("users", ID, ColumnDefinition("email", "TEXT"))
        self.assertEqual(diff_tables(users, users), ())

    def test_underscore_rename_is_a_single_rename(self) -> None:
        old = table("users", ID, ColumnDefinition("user_name", "VARCHAR(255)", nullable=False))
        new = table("users", ID, ColumnDefinition("username", "VARCHAR(255)", nullable=False))
        ops = diff_tables(old, new)
        self.assertEqual(len(ops), 1)
        self.assertEqual(ops[0].kind, AlterKind.RENAME_COLUMN)
        self.assertEqual(ops[0].sql, "ALTER TABLE users RENAME COLUMN user_name TO username;")
        self.assertFalse(ops[0].requires_confirmation)
        self.assertGreaterEqual(ops[0].confidence, 0.9)

    def test_unrelated_columns_are_drop_and_add(self) -> None:
        old = table("products", ID, ColumnDefinition("price", "NUMERIC(10,2)", nullable=False, default="0"))
        new = table("products", ID, ColumnDefinition("cost", "INTEGER", nullable=False, default="1"))
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.ADD_COLUMN, AlterKind.DROP_COLUMN])
        self.assertEqual(ops[0].sql, "ALTER TABLE products ADD COLUMN cost INTEGER NOT NULL DEFAULT 1;")
        self.assertEqual(ops[1].sql, "ALTER TABLE products DROP COLUMN price;")

    def test_low_confidence_rename_requires_confirmation(self) -> None:
        old = table("people", ID, ColumnDefinition("first_name", "TEXT"))
        new = table("people", ID, ColumnDefinition("fname", "VARCHAR(50)"))
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.RENAME_COLUMN, AlterKind.MODIFY_COLUMN])
        self.assertTrue(ops[0].requires_confirmation)
        self.assertAlmostEqual(ops[0].confidence, 0.575)
        self.assertEqual(
            ops[1].statements,
            ("ALTER TABLE people ALTER COLUMN fname TYPE VARCHAR(50) USING fname::VARCHAR(50);",),
        )

    def test_modify_emits_one_statement_per_changed_attribute(self) -> None:
        old = table("users", ID, ColumnDefinition("status", "VARCHAR(10)"))
        new = table("users", ID, ColumnDefinition("status", "VARCHAR(15)", nullable=False, default="'active'"))
        ops = diff_tables(old, new)
        self.assertEqual(len(ops), 1)
        self.assertEqual(ops[0].kind, AlterKind.MODIFY_COLUMN)
        self.assertEqual(
            ops[0].statements,
            (
                "ALTER TABLE users ALTER COLUMN status TYPE VARCHAR(15) USING status::VARCHAR(15);",
                "ALTER TABLE users ALTER COLUMN status SET NOT NULL;",
                "ALTER TABLE users ALTER COLUMN status SET DEFAULT 'active';",
            ),
        )

    def test_constraint_changes_use_postgres_default_names(self) -> None:
        old = table(
            "orders",
            ID,
            ColumnDefinition("code", "TEXT"),
            ColumnDefinition("user_id", "INT", foreign_key=ForeignKey("users", "id")),
            ColumnDefinition("qty", "INT", check="qty > 0"),
        )
        new = table(
            "orders",
            ID,
            ColumnDefinition("code", "TEXT", unique=True),
            ColumnDefinition("user_id", "INT", foreign_key=ForeignKey("users", "id", on_delete="CASCADE")),
            ColumnDefinition("qty", "INT"),
        )
        statements = [stmt for op in diff_tables(old, new) for stmt in op.statements]
        self.assertEqual(
            statements,
            [
                "ALTER TABLE orders ADD CONSTRAINT orders_code_key UNIQUE (code);",
                "ALTER TABLE orders DROP CONSTRAINT IF EXISTS orders_user_id_fkey;",
                "ALTER TABLE orders ADD CONSTRAINT orders_user_id_fkey FOREIGN KEY (user_id) "
                "REFERENCES users(id) ON DELETE CASCADE;",
                "ALTER TABLE orders DROP CONSTRAINT IF EXISTS orders_qty_check;",
            ],
        )

    def test_primary_key_change(self) -> None:
        old = table("t", ColumnDefinition("id", "INT"))
        new = table("t", ColumnDefinition("id", "INT", primary_key=True))
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.MODIFY_COLUMN, AlterKind.ADD_PRIMARY_KEY])
        self.assertEqual(
            [stmt for op in ops for stmt in op.statements],
            [
                "ALTER TABLE t ALTER COLUMN id SET NOT NULL;",
                "ALTER TABLE t ADD CONSTRAINT t_pkey PRIMARY KEY (id);",
            ],
        )

    def test_primary_key_is_dropped_before_not_null(self) -> None:
        old = parse_create_table("CREATE TABLE t (id INT PRIMARY KEY);")
        new = parse_create_table("CREATE TABLE t (id INT);")
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.DROP_PRIMARY_KEY, AlterKind.MODIFY_COLUMN])
        self.assertEqual(
            [stmt for op in ops for stmt in op.statements],
            [
                "ALTER TABLE t DROP CONSTRAINT IF EXISTS t_pkey;",
                "ALTER TABLE t ALTER COLUMN id DROP NOT NULL;",
            ],
        )

    def test_adding_composite_primary_key(self) -> None:
        old = parse_create_table("CREATE TABLE t (a INT NOT NULL, b INT NOT NULL);")
        new = parse_create_table("CREATE TABLE t (a INT NOT NULL, b INT NOT NULL, PRIMARY KEY (a, b));")
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.ADD_PRIMARY_KEY])
        self.assertEqual(ops[0].sql, "ALTER TABLE t ADD CONSTRAINT t_pkey PRIMARY KEY (a, b);")

    def test_shrinking_composite_primary_key(self) -> None:
        old = parse_create_table("CREATE TABLE t (a INT NOT NULL, b INT NOT NULL, PRIMARY KEY (a, b));")
        new = parse_create_table("CREATE TABLE t (a INT NOT NULL, b INT NOT NULL, PRIMARY KEY (a));")
        statements = [stmt for op in diff_tables(old, new) for stmt in op.statements]
        self.assertEqual(
            statements,
            [
                "ALTER TABLE t DROP CONSTRAINT IF EXISTS t_pkey;",
                "ALTER TABLE t ADD CONSTRAINT t_pkey PRIMARY KEY (a);",
            ],
        )

    def test_growing_composite_primary_key(self) -> None:
        old = parse_create_table("CREATE TABLE t (a INT PRIMARY KEY, b INT NOT NULL);")
        new = parse_create_table("CREATE TABLE t (a INT NOT NULL, b INT NOT NULL, PRIMARY KEY (a, b));")
        statements = [stmt for op in diff_tables(old, new) for stmt in op.statements]
        self.assertEqual(
            statements,
            [
                "ALTER TABLE t DROP CONSTRAINT IF EXISTS t_pkey;",
                "ALTER TABLE t ADD CONSTRAINT t_pkey PRIMARY KEY (a, b);",
            ],
        )

    def test_added_key_column_gets_the_key_as_a_constraint(self) -> None:
        old = table("t", ColumnDefinition("a", "INT", nullable=False))
        new = table("t", ColumnDefinition("a", "INT", primary_key=True), ColumnDefinition("b", "INT", primary_key=True))
        statements = [stmt for op in diff_tables(old, new) for stmt in op.statements]
        self.assertEqual(
            statements,
            [
                "ALTER TABLE t ADD COLUMN b INT NOT NULL;",
                "ALTER TABLE t ADD CONSTRAINT t_pkey PRIMARY KEY (a, b);",
            ],
        )

    def test_renamed_key_column_keeps_the_key(self) -> None:
        old = parse_create_table("CREATE TABLE t (user_id INT PRIMARY KEY);")
        new = parse_create_table("CREATE TABLE t (userid INT PRIMARY KEY);")
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.RENAME_COLUMN])

    def test_constraint_drops_come_before_type_change(self) -> None:
        old = table("t", ColumnDefinition("qty", "INT", check="qty>0"))
        new = table("t", ColumnDefinition("qty", "BIGINT", check="qty>=0"))
        self.assertEqual(
            diff_tables(old, new)[0].statements,
            (
                "ALTER TABLE t DROP CONSTRAINT IF EXISTS t_qty_check;",
                "ALTER TABLE t ALTER COLUMN qty TYPE BIGINT USING qty::BIGINT;",
                "ALTER TABLE t ADD CONSTRAINT t_qty_check CHECK (qty>=0);",
            ),
        )

    def test_table_rename_comes_first(self) -> None:
        old = table("users", ID, ColumnDefinition("email", "TEXT"))
        new = table("members", ID, ColumnDefinition("email", "TEXT"), ColumnDefinition("age", "INT"))
        ops = diff_tables(old, new)
        self.assertEqual([op.kind for op in ops], [AlterKind.RENAME_TABLE, AlterKind.ADD_COLUMN])
        self.assertEqual(ops[0].sql, "ALTER TABLE users RENAME TO members;")
        self.assertEqual(ops[1].sql, "ALTER TABLE members ADD COLUMN age INT;")

    def test_schema_qualified_tables(self) -> None:
        old = table("users", ID, schema="app")
        new = table("users", ID, ColumnDefinition("nick", "TEXT"), schema="app")
        self.assertEqual(diff_tables(old, new)[0].sql, "ALTER TABLE app.users ADD COLUMN nick TEXT;")

    def test_equal_scores_prefer_the_earlier_old_column(self) -> None:
        old = table("t", ColumnDefinition("col_a", "INT"), ColumnDefinition("col_b", "INT"))
        new = table("t", ColumnDefinition("col_c", "INT"))
        self.assertEqual(column_similarity(old.columns[0], new.columns[0]), column_similarity(old.columns[1], new.columns[0]))
        self.assertEqual(detect_renames(old, new), [RenameCandidate("col_a", "col_c", 0.9)])
        ops = diff_tables(old, new)
        self.assertEqual([(op.kind, op.column) for op in ops], [(AlterKind.RENAME_COLUMN, "col_a"), (AlterKind.DROP_COLUMN, "col_b")])

    def test_equal_scores_prefer_the_earlier_new_column(self) -> None:
        old = table("t", ColumnDefinition("col_a", "INT"))
        new = table("t", ColumnDefinition("col_b", "INT"), ColumnDefinition("col_c", "INT"))
        self.assertEqual(detect_renames(old, new), [RenameCandidate("col_a", "col_b", 0.9)])

    def test_diff_of_parsed_tables(self) -> None:
        old = parse_create_table("CREATE TABLE users (id SERIAL PRIMARY KEY, user_name TEXT NOT NULL, age INT);")
        new = parse_create_table(
            "CREATE TABLE users (id SERIAL PRIMARY KEY, username TEXT NOT NULL, age BIGINT, bio TEXT);"
        )
        ops = diff_tables(old, new)
        self.assertEqual(
            [(op.kind, op.column) for op in ops],
            [
                (AlterKind.RENAME_COLUMN, "user_name"),
                (AlterKind.MODIFY_COLUMN, "age"),
                (AlterKind.ADD_COLUMN, "bio"),
            ],
        )


class TestRenderColumn(unittest.TestCase):
    def test_add_column_round_trips_through_the_parser(self) -> None:
        columns = [
            ColumnDefinition(
                "email",
                "VARCHAR(255)",
                nullable=False,
                default="'x'",
                unique=True,
                foreign_key=ForeignKey("accounts", "id", on_delete="SET NULL"),
                check="length(email)>3",
            ),
            ColumnDefinition("id", "BIGINT", primary_key=True),
            ColumnDefinition("created_at", "TIMESTAMP WITH TIME ZONE", default="now()"),
            ColumnDefinition("tags", "TEXT[]"),
            ColumnDefinition("Display Name", "TEXT"),
        ]
        for col in columns:
            with self.subTest(column=col.name):
                self.assertEqual(parse_column_definition(render_column(col)), col)

    def test_clause_order(self) -> None:
        col = ColumnDefinition("n", "INT", nullable=False, default="0", unique=True, check="n >= 0")
        self.assertEqual(render_column(col), "n INT NOT NULL DEFAULT 0 UNIQUE CHECK (n >= 0)")


if __name__ == "__main__":
    unittest.main()
