"""
Tests for the DDL extractor: type normalization, nullability and key
detection, lookup helpers and the tagged parse_ddl() result.
"""

import unittest

from parse_errors import EmptyInputError, SQLSyntaxError
from schema_model import SchemaModel
from schema_parser import normalize_data_type, parse_ddl, parse_schema, validate_ddl
from sql_ast import DataTypeSpec


ECOMMERCE_DDL = """
CREATE TABLE users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) NOT NULL,
    name TEXT,
    is_active BOOLEAN,
    created_at TIMESTAMP
);

CREATE TABLE orders (
    id BIGSERIAL,
    user_id INTEGER REFERENCES users(id),
    total NUMERIC(10, 2) NOT NULL,
    status VARCHAR(20),
    PRIMARY KEY (id)
);

CREATE INDEX idx_orders_user ON orders (user_id);
"""


class TestParseSchema(unittest.TestCase):

    def setUp(self):
        self.schema = parse_schema(ECOMMERCE_DDL)

    def test_tables_lower_cased(self):
        self.assertEqual(set(self.schema.tables), {"users", "orders"})

    def test_canonical_types(self):
        users = self.schema.tables["users"]
        self.assertEqual(users["id"], "SERIAL")
        self.assertEqual(users["email"], "VARCHAR(255)")
        self.assertEqual(users["name"], "TEXT")
        self.assertEqual(users["is_active"], "BOOLEAN")
        self.assertEqual(users["created_at"], "TIMESTAMP")

        orders = self.schema.tables["orders"]
        self.assertEqual(orders["id"], "BIGSERIAL")
        self.assertEqual(orders["user_id"], "INT")
        self.assertEqual(orders["total"], "NUMERIC(10,2)")

    def test_numeric_scenario(self):
        schema = parse_schema("CREATE TABLE t (a NUMERIC(10,2), b NUMERIC(5), c NUMERIC);")
        self.assertEqual(schema.tables["t"], {"a": "NUMERIC(10,2)", "b": "NUMERIC(5)", "c": "NUMERIC"})

    def test_column_level_primary_key(self):
        users = self.schema.get_table_details("users")
        id_col = users.columns[0]
        self.assertTrue(id_col.is_primary_key)
        self.assertFalse(id_col.nullable)

    def test_table_level_primary_key(self):
        orders = self.schema.get_table_details("orders")
        by_name = {c.name: c for c in orders.columns}
        self.assertTrue(by_name["id"].is_primary_key)
        self.assertFalse(by_name["id"].nullable)
        self.assertFalse(by_name["user_id"].is_primary_key)

    def test_nullability(self):
        users = {c.name: c for c in self.schema.get_table_details("users").columns}
        self.assertFalse(users["email"].nullable)
        self.assertTrue(users["name"].nullable)

    def test_column_level_foreign_key(self):
        orders = {c.name: c for c in self.schema.get_table_details("orders").columns}
        self.assertTrue(orders["user_id"].is_foreign_key)
        self.assertFalse(orders["status"].is_foreign_key)

    def test_non_create_table_statements_skipped(self):
        self.assertEqual(self.schema.table_count, 2)

    def test_schema_qualifier(self):
        schema = parse_schema("CREATE TABLE sales.invoices (id INT);")
        details = schema.table_details[0]
        self.assertEqual(details.name, "invoices")
        self.assertEqual(details.schema, "sales")
        self.assertIn("invoices", schema.tables)

    def test_case_insensitive_lookups(self):
        schema = parse_schema("CREATE TABLE Users (Email TEXT);")
        self.assertTrue(schema.table_exists("USERS"))
        self.assertTrue(schema.column_exists("users", "EMAIL"))
        self.assertEqual(schema.lookup_column("Users", "email"), "TEXT")
        self.assertIsNone(schema.lookup_column("users", "missing"))
        self.assertEqual(schema.get_table_columns("users"), {"email": "TEXT"})
        self.assertEqual(schema.get_table_columns("nope"), {})

    def test_wire_shape(self):
        data = self.schema.to_dict()
        self.assertIn("tables", data)
        self.assertIn("tableDetails", data)
        users = data["tableDetails"][0]
        self.assertEqual(users["name"], "users")
        self.assertNotIn("schema", users)
        self.assertEqual(
            users["columns"][0],
            {"name": "id", "dataType": "SERIAL", "nullable": False, "isPrimaryKey": True, "isForeignKey": False},
        )

    def test_from_dict_rebuilds_model(self):
        rebuilt = SchemaModel.from_dict(self.schema.to_dict())
        self.assertEqual(rebuilt.to_dict(), self.schema.to_dict())

    def test_from_dict_accepts_bare_table_map(self):
        model = SchemaModel.from_dict({"tables": {"Users": {"ID": "INT"}}})
        self.assertEqual(model.lookup_column("users", "id"), "INT")

    def test_ddl_without_tables_yields_empty_model(self):
        schema = parse_schema("DROP TABLE IF EXISTS old_users;")
        self.assertEqual(schema.tables, {})
        self.assertEqual(schema.table_details, [])


class TestSchemaErrors(unittest.TestCase):

    def test_empty_ddl(self):
        for ddl in ("", "   "):
            with self.assertRaises(EmptyInputError) as ctx:
                parse_schema(ddl)
            self.assertIn("empty", str(ctx.exception))

    def test_syntax_error(self):
        with self.assertRaises(SQLSyntaxError) as ctx:
            parse_schema("CREATE TABLE users (id INT, name TEXT")
        self.assertTrue(str(ctx.exception).startswith("Failed to parse DDL:"))

    def test_parse_ddl_success(self):
        result = parse_ddl(ECOMMERCE_DDL)
        self.assertTrue(result.success)
        self.assertEqual(result.table_count, 2)
        data = result.to_dict()
        self.assertEqual(data["tableCount"], 2)
        self.assertNotIn("error", data)

    def test_parse_ddl_failure(self):
        result = parse_ddl("")
        self.assertFalse(result.success)
        self.assertIsNone(result.schema)
        self.assertEqual(result.to_dict(), {"success": False, "error": "DDL cannot be empty"})

    def test_validate_ddl(self):
        self.assertEqual(validate_ddl(ECOMMERCE_DDL), {"valid": True})
        self.assertFalse(validate_ddl("CREATE TABLE users (id INT")["valid"])
        self.assertFalse(validate_ddl("")["valid"])


class TestNormalizeDataType(unittest.TestCase):

    def test_integer_family(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("int4")), "INT")
        self.assertEqual(normalize_data_type(DataTypeSpec("int8")), "BIGINT")
        self.assertEqual(normalize_data_type(DataTypeSpec("smallint")), "SMALLINT")
        self.assertEqual(normalize_data_type(DataTypeSpec("serial8")), "BIGSERIAL")

    def test_floating_point(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("float")), "REAL")
        self.assertEqual(normalize_data_type(DataTypeSpec("double")), "DOUBLE PRECISION")

    def test_parameters_kept_for_parameterized_types(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("varchar", ("64",))), "VARCHAR(64)")
        self.assertEqual(normalize_data_type(DataTypeSpec("decimal", ("12", " 4"))), "NUMERIC(12,4)")
        self.assertEqual(normalize_data_type(DataTypeSpec("timestamp", ("3",))), "TIMESTAMP(3)")

    def test_parameters_dropped_for_fixed_types(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("int", ("11",))), "INT")

    def test_binary_and_documents(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("varbinary")), "BYTEA")
        self.assertEqual(normalize_data_type(DataTypeSpec("jsonb")), "JSONB")
        self.assertEqual(normalize_data_type(DataTypeSpec("timestamptz")), "TIMESTAMPTZ")

    def test_arrays(self):
        spec = DataTypeSpec("array", array_of=DataTypeSpec("text"))
        self.assertEqual(normalize_data_type(spec), "TEXT[]")

    def test_unknown_names_upper_cased(self):
        self.assertEqual(normalize_data_type(DataTypeSpec("mood")), "MOOD")
        self.assertEqual(normalize_data_type(DataTypeSpec("geography", ("point", "4326"))), "GEOGRAPHY(point,4326)")

    def test_missing_type(self):
        self.assertEqual(normalize_data_type(None), "UNKNOWN")


if __name__ == "__main__":
    unittest.main()
