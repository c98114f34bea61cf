from helpdesk.core.database import split_sql_statements


def test_split_keeps_semicolons_inside_literals():
    sql = "INSERT INTO t VALUES ('a;b');\nINSERT INTO t VALUES (\"c;d\");"

    assert split_sql_statements(sql) == [
        "INSERT INTO t VALUES ('a;b')",
        'INSERT INTO t VALUES ("c;d")',
    ]


def test_split_handles_escaped_quotes_and_comments():
    sql = "-- seed data; ignored\nINSERT INTO t VALUES ('it''s; fine');\nSELECT 1"

    assert split_sql_statements(sql) == [
        "INSERT INTO t VALUES ('it''s; fine')",
        "SELECT 1",
    ]


def test_split_ignores_empty_statements():
    assert split_sql_statements(";;  ;\n") == []
