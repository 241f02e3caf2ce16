"""
Complex query tests: nested subqueries, CTEs, set operations, multi-way
joins, window functions, CASE expressions and the nesting depth cap.
"""

import unittest

from parse_errors import SQLSyntaxError
from query_facts import QueryType
from sql_ast import parse_sql_text
from sql_extractor import StatementExtractor, parse_sql


class TestSubqueries(unittest.TestCase):

    def test_from_subquery_alias_registered(self):
        sql = """
            SELECT uo.id, uo.order_count
            FROM (
                SELECT u.id, COUNT(o.id) AS order_count
                FROM users u
                LEFT JOIN orders o ON o.user_id = u.id
                GROUP BY u.id
            ) uo
            WHERE uo.order_count > 5
        """
        fact = parse_sql(sql)
        names = [t.name for t in fact.tables]
        self.assertIn("uo", names)
        self.assertIn("users", names)
        self.assertIn("orders", names)
        self.assertEqual(len(fact.subqueries), 1)
        self.assertEqual(fact.where_conditions, ["order_count > 5"])

        # outer references resolve against the subquery alias
        self.assertTrue(fact.find_column("order_count", "uo").is_filter_column)

        # the join stays with the subquery, its columns merge upward
        self.assertEqual(fact.joins, [])
        self.assertEqual(len(fact.subqueries[0].joins), 1)
        self.assertTrue(fact.find_column("user_id", "orders").is_join_column)

    def test_three_level_nesting(self):
        sql = """
            SELECT *
            FROM (
                SELECT *
                FROM (
                    SELECT id, name FROM users WHERE status = 'active'
                ) active_users
                WHERE id > 100
            ) filtered_users
        """
        fact = parse_sql(sql)
        names = [t.name for t in fact.tables]
        self.assertIn("filtered_users", names)
        self.assertIn("active_users", names)
        self.assertIn("users", names)
        self.assertEqual(len(fact.subqueries), 1)
        self.assertEqual(len(fact.subqueries[0].subqueries), 1)
        self.assertEqual(fact.subqueries[0].subqueries[0].where_conditions, ["status = 'active'"])
        self.assertEqual(len(list(fact.iter_facts())), 3)

    def test_nested_raw_sql(self):
        fact = parse_sql("SELECT * FROM (SELECT id FROM users) sub")
        self.assertIn("FROM users", fact.subqueries[0].raw_sql)

    def test_correlated_exists(self):
        sql = """
            SELECT u.id, u.name
            FROM users u
            WHERE EXISTS (
                SELECT 1 FROM orders o WHERE o.user_id = u.id AND o.total > 100
            )
        """
        fact = parse_sql(sql)
        self.assertEqual(len(fact.subqueries), 1)
        inner = fact.subqueries[0]
        # u resolves through the enclosing statement
        self.assertTrue(inner.find_column("id", "users").is_filter_column)
        self.assertTrue(inner.find_column("user_id", "orders").is_filter_column)
        self.assertEqual(inner.where_conditions, ["user_id = id", "total > 100"])
        self.assertIn("orders", [t.name for t in fact.tables])

    def test_in_subquery(self):
        sql = "SELECT * FROM products WHERE category_id IN (SELECT id FROM categories WHERE active = TRUE)"
        fact = parse_sql(sql)
        self.assertEqual(len(fact.subqueries), 1)
        self.assertIn("categories", [t.name for t in fact.tables])
        self.assertEqual(len(fact.where_conditions), 1)
        self.assertTrue(fact.where_conditions[0].startswith("category_id IN ("))

    def test_scalar_subqueries_in_select_list(self):
        sql = """
            SELECT
                u.name,
                (SELECT MAX(o.total) FROM orders o WHERE o.user_id = u.id) AS max_order,
                (SELECT MIN(o.total) FROM orders o WHERE o.user_id = u.id) AS min_order
            FROM users u
        """
        fact = parse_sql(sql)
        self.assertEqual(len(fact.subqueries), 2)
        self.assertIn("users", [t.name for t in fact.tables])
        self.assertTrue(fact.find_column("total", "orders").is_selected)


class TestCommonTableExpressions(unittest.TestCase):

    def test_single_cte(self):
        sql = """
            WITH active_users AS (
                SELECT id, name FROM users WHERE status = 'active'
            )
            SELECT au.name FROM active_users au
        """
        fact = parse_sql(sql)
        self.assertEqual(fact.type, QueryType.CTE)
        self.assertEqual(len(fact.ctes), 1)
        self.assertEqual(fact.ctes[0].where_conditions, ["status = 'active'"])
        self.assertEqual(fact.where_conditions, [])

        names = [t.name for t in fact.tables]
        self.assertIn("active_users", names)
        self.assertIn("users", names)
        self.assertTrue(fact.find_column("name", "active_users").is_selected)
        self.assertIn("FROM users", fact.ctes[0].raw_sql)

    def test_multiple_ctes_in_sequence(self):
        sql = """
            WITH
              active_users AS (
                SELECT id, name, email FROM users WHERE status = 'active'
              ),
              user_orders AS (
                SELECT user_id, COUNT(*) AS order_count, SUM(total) AS total_spent
                FROM orders
                GROUP BY user_id
              ),
              top_customers AS (
                SELECT au.*, uo.order_count, uo.total_spent
                FROM active_users au
                INNER JOIN user_orders uo ON au.id = uo.user_id
                WHERE uo.total_spent > 1000
              )
            SELECT * FROM top_customers ORDER BY total_spent DESC
        """
        fact = parse_sql(sql)
        self.assertEqual(fact.type, QueryType.CTE)
        self.assertEqual(len(fact.ctes), 3)
        self.assertIn("top_customers", [t.name for t in fact.tables])

        # a later CTE resolves earlier CTE names
        top = fact.ctes[2]
        self.assertEqual(len(top.joins), 1)
        self.assertEqual(top.joins[0].left_table, "active_users")
        self.assertEqual(top.joins[0].right_table, "user_orders")

    def test_cte_used_twice(self):
        sql = """
            WITH user_stats AS (
                SELECT user_id, COUNT(*) AS cnt FROM transactions GROUP BY user_id
            )
            SELECT u.name, us1.cnt, us2.cnt
            FROM users u
            INNER JOIN user_stats us1 ON u.id = us1.user_id
            LEFT JOIN user_stats us2 ON u.id = us2.user_id
        """
        fact = parse_sql(sql)
        names = [t.name for t in fact.tables]
        self.assertIn("users", names)
        self.assertIn("user_stats", names)
        self.assertEqual([j.type.value for j in fact.joins], ["INNER", "LEFT"])

    def test_recursive_cte_rejected(self):
        sql = """
            WITH RECURSIVE nums AS (
                SELECT 1 AS n
                UNION ALL
                SELECT n + 1 FROM nums WHERE n < 10
            )
            SELECT n FROM nums
        """
        with self.assertRaises(SQLSyntaxError) as ctx:
            parse_sql(sql)
        self.assertIn("RECURSIVE", str(ctx.exception))


class TestSetOperations(unittest.TestCase):

    def test_three_way_union_all_flattened(self):
        sql = """
            SELECT id, name FROM customers WHERE region = 'EU'
            UNION ALL
            SELECT id, name FROM suppliers WHERE region = 'EU'
            UNION ALL
            SELECT id, name FROM partners
        """
        fact = parse_sql(sql)
        self.assertEqual(fact.type, QueryType.SELECT)
        self.assertEqual([t.name for t in fact.tables], ["customers", "suppliers", "partners"])
        self.assertEqual(fact.where_conditions, ["region = 'EU'", "region = 'EU'"])
        self.assertEqual(fact.subqueries, [])

    def test_union_distinct(self):
        fact = parse_sql("SELECT email FROM users UNION SELECT email FROM leads")
        self.assertEqual([t.name for t in fact.tables], ["users", "leads"])
        self.assertTrue(fact.find_column("email").is_selected)

    def test_intersect_rejected(self):
        with self.assertRaises(SQLSyntaxError) as ctx:
            parse_sql("SELECT id FROM a INTERSECT SELECT id FROM b")
        self.assertIn("INTERSECT", str(ctx.exception))

    def test_except_rejected(self):
        with self.assertRaises(SQLSyntaxError):
            parse_sql("SELECT id FROM a EXCEPT SELECT id FROM b")

    def test_grouping_sets_rejected(self):
        with self.assertRaises(SQLSyntaxError) as ctx:
            parse_sql("SELECT region, product, SUM(total) FROM sales GROUP BY GROUPING SETS ((region), (product))")
        self.assertIn("GROUPING SETS", str(ctx.exception))

    def test_similar_to_rejected(self):
        with self.assertRaises(SQLSyntaxError) as ctx:
            parse_sql("SELECT id FROM users WHERE name SIMILAR TO '(a|b)%'")
        self.assertIn("SIMILAR TO", str(ctx.exception))


class TestMultiWayJoins(unittest.TestCase):

    def test_five_join_chain(self):
        sql = """
            SELECT o.id, c.name, p.name, cat.name, s.name
            FROM orders o
            INNER JOIN customers c ON o.customer_id = c.id
            INNER JOIN order_items oi ON o.id = oi.order_id
            INNER JOIN products p ON oi.product_id = p.id
            INNER JOIN categories cat ON p.category_id = cat.id
            LEFT JOIN suppliers s ON p.supplier_id = s.id
            WHERE o.status = 'shipped'
        """
        fact = parse_sql(sql)
        self.assertEqual(len(fact.tables), 6)
        self.assertEqual(len(fact.joins), 5)
        self.assertEqual(
            [j.type.value for j in fact.joins],
            ["INNER", "INNER", "INNER", "INNER", "LEFT"],
        )
        self.assertEqual(
            [(j.left_table, j.right_table) for j in fact.joins],
            [
                ("orders", "customers"),
                ("orders", "order_items"),
                ("order_items", "products"),
                ("products", "categories"),
                ("products", "suppliers"),
            ],
        )

    def test_join_tables_present_in_tables(self):
        sql = """
            SELECT *
            FROM orders o
            INNER JOIN users u ON o.user_id = u.id
            LEFT JOIN brands b ON o.brand_id = b.id
        """
        fact = parse_sql(sql)
        names = {t.name for t in fact.tables} | {t.alias for t in fact.tables if t.alias}
        for join in fact.joins:
            self.assertIn(join.left_table, names)
            self.assertIn(join.right_table, names)


class TestExpressions(unittest.TestCase):

    def test_window_function_columns(self):
        sql = """
            SELECT
                department_id,
                employee_name,
                ROW_NUMBER() OVER (PARTITION BY department_id ORDER BY salary DESC) AS rn
            FROM employees
        """
        fact = parse_sql(sql)
        selected = {c.name for c in fact.columns if c.is_selected}
        self.assertEqual(selected, {"department_id", "employee_name", "salary"})

    def test_window_frame_rejected(self):
        sql = """
            SELECT SUM(amount) OVER (
                ORDER BY created_at ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW
            ) FROM payments
        """
        with self.assertRaises(SQLSyntaxError):
            parse_sql(sql)

    def test_searched_case(self):
        sql = """
            SELECT id,
                   CASE WHEN total > 1000 THEN 'large'
                        WHEN total > 100 THEN 'medium'
                        ELSE category END AS size
            FROM orders
        """
        fact = parse_sql(sql)
        self.assertTrue(fact.find_column("total").is_selected)
        self.assertTrue(fact.find_column("category").is_selected)
        self.assertEqual(fact.where_conditions, [])

    def test_case_inside_aggregate(self):
        sql = "SELECT SUM(CASE WHEN a.kind = 'credit' THEN a.amount ELSE 0 END) FROM accounts a"
        fact = parse_sql(sql)
        self.assertTrue(fact.find_column("kind", "accounts").is_selected)
        self.assertTrue(fact.find_column("amount", "accounts").is_selected)

    def test_coalesce_and_arithmetic(self):
        sql = "SELECT COALESCE(nickname, name) AS label, price * quantity AS line_total FROM order_items"
        fact = parse_sql(sql)
        selected = {c.name for c in fact.columns if c.is_selected}
        self.assertEqual(selected, {"nickname", "name", "price", "quantity"})
        # aliases only attach to direct column references
        self.assertIsNone(fact.find_column("price").alias)


class TestDepthCap(unittest.TestCase):

    SQL = """
        SELECT * FROM (
            SELECT * FROM (
                SELECT * FROM (SELECT id FROM users) a
            ) b
        ) c
    """

    def test_depth_cap_skips_deep_levels(self):
        statement = parse_sql_text(self.SQL)[0].statement
        fact = StatementExtractor(max_depth=1).extract(statement)
        self.assertEqual(len(fact.subqueries), 1)
        self.assertEqual(fact.subqueries[0].subqueries, [])
        self.assertTrue(any(w.construct == "depth" for w in fact.warnings))
        self.assertNotIn("users", [t.name for t in fact.tables])

    def test_default_depth_reaches_every_level(self):
        fact = parse_sql(self.SQL)
        self.assertIn("users", [t.name for t in fact.tables])
        self.assertEqual(fact.warnings, [])


if __name__ == "__main__":
    unittest.main()
