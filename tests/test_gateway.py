"""End-to-end tests for the gateway router.

Every request goes through the full application: authorization, route
resolution, permission tiers, parsing and the in-memory DuckDB store.
"""

import pytest


class TestAuthentication:
    def test_missing_header_is_401(self, client):
        response = client.get("/api/tables")

        assert response.status_code == 401
        assert response.json() == {
            "code": 1,
            "message": "Authentication required: Missing or malformed Authorization header.",
        }

    def test_malformed_header_is_401(self, client):
        response = client.get("/api/tables", headers={"Authorization": "Token abc"})

        assert response.status_code == 401

    def test_invalid_token_is_401(self, client):
        response = client.get("/api/tables", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid authentication token."

    def test_welcome_requires_authentication(self, client):
        assert client.get("/").status_code == 401

    @pytest.mark.parametrize("path", ["/", "/api", "/api/", "/other/path"])
    def test_welcome_payload(self, client, read_headers, path):
        response = client.get(path, headers=read_headers)

        assert response.status_code == 200
        assert response.json() == {
            "code": 0,
            "data": {"message": "Welcome to the SQL Gateway API!"},
        }


class TestRouting:
    def test_unknown_path_is_404(self, client, read_headers):
        response = client.get("/api/widgets/unknown", headers=read_headers)

        assert response.status_code == 404
        assert response.json()["code"] == 1
        assert response.json()["message"].startswith("Invalid API path.")

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/tables"),
            ("GET", "/api/create-table"),
            ("POST", "/api/widgets/count"),
            ("PATCH", "/api/widgets/records/101"),
        ],
    )
    def test_wrong_method_is_405(self, client, write_headers, method, path):
        response = client.request(method, path, headers=write_headers)

        assert response.status_code == 405
        assert response.json() == {"code": 1, "message": "Method not allowed."}

    def test_options_gets_envelope_405(self, client, write_headers):
        response = client.options("/api/tables", headers=write_headers)

        assert response.status_code == 405
        assert response.json() == {"code": 1, "message": "Method not allowed."}

    def test_options_without_credentials_is_401(self, client):
        response = client.options("/api/tables")

        assert response.status_code == 401
        assert response.json()["code"] == 1

    def test_head_is_handled_by_gateway(self, client, read_headers):
        response = client.head("/api/widgets/count", headers=read_headers)

        assert response.status_code == 405

    def test_request_id_is_echoed(self, client, read_headers):
        headers = {**read_headers, "X-Request-ID": "req-123"}

        response = client.get("/api", headers=headers)

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client, read_headers):
        response = client.get("/api", headers=read_headers)

        assert response.headers["X-Request-ID"]

    def test_unbound_store_is_500(self, unbound_client, read_headers):
        response = unbound_client.get("/api/tables", headers=read_headers)

        assert response.status_code == 500
        assert response.json() == {"code": 1, "message": "Database binding not found."}


class TestPermissions:
    @pytest.mark.parametrize(
        "method,path,body,action",
        [
            ("POST", "/api/widgets/records", {"c1": "x"}, "insert records"),
            ("PUT", "/api/widgets/records/101", {"c1": "y"}, "update records"),
            ("DELETE", "/api/widgets/records/101", None, "delete records"),
            ("POST", "/api/create-table", {"tableName": "other"}, "create tables"),
            ("DELETE", "/api/tables/widgets", None, "drop tables"),
            ("DELETE", "/api/widgets/index/idx_widgets_c1", None, "drop indexes"),
        ],
    )
    def test_read_only_token_cannot_write(
        self, client, widgets, read_headers, write_headers, method, path, body, action
    ):
        before = client.get("/api/widgets/records", headers=write_headers).json()

        response = client.request(method, path, json=body, headers=read_headers)

        assert response.status_code == 403
        assert response.json() == {
            "code": 1,
            "message": f"Forbidden: Write access required to {action}.",
        }
        # Nothing reached the store
        assert client.get("/api/widgets/records", headers=write_headers).json() == before
        tables = client.get("/api/tables", headers=read_headers).json()["data"]["tables"]
        assert tables == ["widgets"]

    def test_forbidden_before_input_validation(self, client, read_headers):
        response = client.put("/api/widgets/records", json={}, headers=read_headers)

        assert response.status_code == 403

    def test_write_token_can_read(self, client, widgets, write_headers):
        response = client.get("/api/widgets/count", headers=write_headers)

        assert response.status_code == 200


class TestTableAdministration:
    def test_create_table(self, client, write_headers):
        response = client.post(
            "/api/create-table", json={"tableName": "widgets"}, headers=write_headers
        )

        assert response.status_code == 201
        body = response.json()
        assert body["code"] == 0
        assert body["data"]["message"] == (
            "Table 'widgets' created successfully with initial data."
        )
        assert len(body["data"]["results"]) == 5
        assert all(r["success"] for r in body["data"]["results"])

    def test_created_table_holds_only_reserved_rows(self, client, widgets, read_headers):
        response = client.get("/api/widgets/records", headers=read_headers)

        assert response.status_code == 200
        assert [r["id"] for r in response.json()["data"]] == [1, 100]

    def test_create_table_with_unique_c1(self, client, write_headers):
        response = client.post(
            "/api/create-table",
            json={"tableName": "widgets", "c1Unique": True},
            headers=write_headers,
        )
        assert response.status_code == 201
        assert len(response.json()["data"]["results"]) == 4

        client.post("/api/widgets/records", json={"c1": "dup"}, headers=write_headers)
        duplicate = client.post(
            "/api/widgets/records", json={"c1": "dup"}, headers=write_headers
        )

        assert duplicate.status_code == 500
        assert duplicate.json()["message"] == "Failed to create record"
        assert duplicate.json()["data"]["details"]

    def test_create_table_requires_name(self, client, write_headers):
        response = client.post("/api/create-table", json={}, headers=write_headers)

        assert response.status_code == 400
        assert response.json() == {"code": 1, "message": "tableName is required."}

    def test_create_table_invalid_body_type(self, client, write_headers):
        response = client.post(
            "/api/create-table",
            json={"tableName": "widgets", "c1Unique": [1, 2]},
            headers=write_headers,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid create-table body."

    @pytest.mark.parametrize("name", ["bad-name", "tables", "sqlite_x", "1st"])
    def test_create_table_rejects_bad_names(self, client, write_headers, name):
        response = client.post(
            "/api/create-table", json={"tableName": name}, headers=write_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == 1

    def test_create_table_partial_failure(self, client, store, write_headers):
        # A same-named table without the template columns
        store.run('CREATE TABLE "w" (id INTEGER)')

        response = client.post(
            "/api/create-table", json={"tableName": "w"}, headers=write_headers
        )

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == 1
        assert body["message"] == (
            "Failed to create table or insert initial data. Some operations failed."
        )
        assert isinstance(body["data"], list)
        assert len(body["data"]) == 5
        assert any(r["success"] is False for r in body["data"])
        assert any(r["error"] for r in body["data"])

    def test_drop_table_failure(self, client, store, write_headers):
        # A view cannot be dropped as a table
        store.run('CREATE VIEW "w" AS SELECT 1 AS id')

        response = client.delete("/api/tables/w", headers=write_headers)

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to drop table."
        assert response.json()["data"]["details"]

    def test_list_tables(self, client, widgets, read_headers):
        response = client.get("/api/tables", headers=read_headers)

        assert response.status_code == 200
        assert response.json() == {"code": 0, "data": {"tables": ["widgets"]}}

    def test_drop_table(self, client, widgets, write_headers, read_headers):
        response = client.delete("/api/tables/widgets", headers=write_headers)

        assert response.status_code == 200
        assert response.json()["data"]["message"] == "Table 'widgets' dropped successfully."
        tables = client.get("/api/tables", headers=read_headers).json()["data"]["tables"]
        assert tables == []

    def test_drop_missing_table_succeeds(self, client, write_headers):
        response = client.delete("/api/tables/never_created", headers=write_headers)

        assert response.status_code == 200

    def test_drop_index(self, client, widgets, write_headers):
        response = client.delete("/api/widgets/index/idx_widgets_c1", headers=write_headers)

        assert response.status_code == 200
        assert response.json()["data"]["message"] == (
            "Index 'idx_widgets_c1' from table 'widgets' dropped successfully."
        )
        assert response.json()["data"]["results"]["success"] is True


class TestRecords:
    def test_insert_then_read_with_read_only_token(
        self, client, widgets, write_headers, read_headers
    ):
        created = client.post(
            "/api/widgets/records", json={"c1": "x"}, headers=write_headers
        )

        assert created.status_code == 201
        body = created.json()
        assert body["code"] == 0
        assert body["data"]["message"] == "Record created successfully"
        record_id = body["data"]["id"]
        assert record_id >= 101

        fetched = client.get(f"/api/widgets/records/{record_id}", headers=read_headers)

        assert fetched.status_code == 200
        rows = fetched.json()["data"]
        assert len(rows) == 1
        assert rows[0]["c1"] == "x"
        assert rows[0]["id"] == record_id
        assert rows[0]["c2"] is None
        # Timestamp defaults come back as ISO strings
        assert isinstance(rows[0]["v1"], str)

    def test_generated_ids_after_explicit_id(self, client, widgets, write_headers):
        explicit = client.post(
            "/api/widgets/records", json={"id": 102, "c1": "a"}, headers=write_headers
        )
        assert explicit.status_code == 201
        assert explicit.json()["data"]["id"] == 102

        ids = []
        for n in range(3):
            response = client.post(
                "/api/widgets/records", json={"c1": f"auto{n}"}, headers=write_headers
            )
            assert response.status_code == 201
            ids.append(response.json()["data"]["id"])

        assert len(set(ids + [102])) == 4
        assert ids == sorted(ids)

    def test_insert_empty_body(self, client, widgets, write_headers):
        response = client.post("/api/widgets/records", json={}, headers=write_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "No data provided for insertion."

    def test_insert_reserved_id(self, client, widgets, write_headers):
        response = client.post(
            "/api/widgets/records", json={"id": 100, "c1": "x"}, headers=write_headers
        )

        assert response.status_code == 400

    def test_insert_unknown_column(self, client, widgets, write_headers):
        response = client.post(
            "/api/widgets/records", json={"nope": "x"}, headers=write_headers
        )

        assert response.status_code == 400
        assert "Unknown column" in response.json()["message"]

    def test_insert_invalid_json(self, client, widgets, write_headers):
        response = client.post(
            "/api/widgets/records",
            content=b"{not json",
            headers={**write_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"code": 1, "message": "Invalid JSON body."}

    def test_insert_non_object_body(self, client, widgets, write_headers):
        response = client.post(
            "/api/widgets/records", json=["c1", "x"], headers=write_headers
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Request body must be a JSON object."

    def test_get_missing_record(self, client, widgets, read_headers):
        response = client.get("/api/widgets/records/999", headers=read_headers)

        assert response.status_code == 404
        assert response.json() == {"code": 1, "message": "Record not found.", "data": []}

    def test_non_integer_record_id(self, client, widgets, read_headers):
        response = client.get("/api/widgets/records/abc", headers=read_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Record ID must be an integer."

    def test_get_by_c1(self, client, widgets, write_headers, read_headers):
        for value in ("match", "other", "match"):
            client.post("/api/widgets/records", json={"c1": value}, headers=write_headers)

        response = client.get(
            "/api/widgets/records", params={"c1": "match"}, headers=read_headers
        )

        assert response.status_code == 200
        assert [r["c1"] for r in response.json()["data"]] == ["match", "match"]

    def test_c1_takes_precedence_over_range(self, client, widgets, write_headers, read_headers):
        client.post("/api/widgets/records", json={"c1": "x"}, headers=write_headers)

        response = client.get(
            "/api/widgets/records",
            params={"c1": "x", "min_id": "5000", "limit": "0"},
            headers=read_headers,
        )

        assert len(response.json()["data"]) == 1

    def test_min_id_hides_reserved_rows(self, client, widgets, write_headers, read_headers):
        client.post("/api/widgets/records", json={"c1": "a"}, headers=write_headers)

        response = client.get(
            "/api/widgets/records", params={"min_id": "100"}, headers=read_headers
        )

        assert all(r["id"] > 100 for r in response.json()["data"])
        assert len(response.json()["data"]) == 1

    def test_pagination_is_deterministic(self, client, widgets, write_headers, read_headers):
        for value in ("a", "b"):
            client.post("/api/widgets/records", json={"c1": value}, headers=write_headers)

        pages = [
            client.get(
                "/api/widgets/records",
                params={"limit": "1", "offset": "1"},
                headers=read_headers,
            ).json()["data"]
            for _ in range(3)
        ]

        assert all([r["id"] for r in page] == [100] for page in pages)

    @pytest.mark.parametrize(
        "params", [{"limit": "-1"}, {"offset": "x"}, {"min_id": "1.5"}]
    )
    def test_bad_query_parameters(self, client, widgets, read_headers, params):
        response = client.get("/api/widgets/records", params=params, headers=read_headers)

        assert response.status_code == 400

    def test_update(self, client, widgets, write_headers, read_headers):
        record_id = client.post(
            "/api/widgets/records", json={"c1": "x"}, headers=write_headers
        ).json()["data"]["id"]

        response = client.put(
            f"/api/widgets/records/{record_id}",
            json={"c2": "y", "d1": 2.5},
            headers=write_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "message": "Record updated successfully",
            "changes": 1,
        }
        row = client.get(
            f"/api/widgets/records/{record_id}", headers=read_headers
        ).json()["data"][0]
        assert (row["c1"], row["c2"], row["d1"]) == ("x", "y", 2.5)

    def test_update_missing_record_reports_zero_changes(self, client, widgets, write_headers):
        response = client.put(
            "/api/widgets/records/999", json={"c1": "y"}, headers=write_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["changes"] == 0

    def test_update_id_column_rejected(self, client, widgets, write_headers):
        response = client.put(
            "/api/widgets/records/100", json={"id": 500}, headers=write_headers
        )

        assert response.status_code == 400
        assert response.json()["message"] == "The id column cannot be updated."

    def test_update_empty_body(self, client, widgets, write_headers):
        response = client.put("/api/widgets/records/100", json={}, headers=write_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "No fields provided for update."

    @pytest.mark.parametrize("method,verb", [("PUT", "update"), ("DELETE", "delete")])
    def test_record_id_required(self, client, widgets, write_headers, method, verb):
        response = client.request(
            method, "/api/widgets/records", json={"c1": "x"}, headers=write_headers
        )

        assert response.status_code == 400
        assert response.json() == {
            "code": 1,
            "message": f"Record ID is required for {verb}.",
        }

    def test_delete_then_delete_again(self, client, widgets, write_headers, read_headers):
        record_id = client.post(
            "/api/widgets/records", json={"c1": "x"}, headers=write_headers
        ).json()["data"]["id"]

        first = client.delete(f"/api/widgets/records/{record_id}", headers=write_headers)
        second = client.delete(f"/api/widgets/records/{record_id}", headers=write_headers)

        assert first.status_code == 200
        assert first.json()["data"] == {"message": "Record deleted successfully"}
        assert second.status_code == 404
        assert second.json() == {
            "code": 1,
            "message": "Record not found or already deleted.",
        }
        fetched = client.get(f"/api/widgets/records/{record_id}", headers=read_headers)
        assert fetched.status_code == 404

    def test_missing_table_read_is_500(self, client, read_headers):
        response = client.get("/api/missing/records", headers=read_headers)

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error while trying to read records."
        assert body["data"]["details"]

    def test_missing_table_insert_is_500(self, client, write_headers):
        response = client.post(
            "/api/missing/records", json={"c1": "x"}, headers=write_headers
        )

        assert response.status_code == 500
        assert response.json()["data"]["details"]

    def test_invalid_table_name_in_path(self, client, read_headers):
        response = client.get("/api/bad-name/records", headers=read_headers)

        assert response.status_code == 400


class TestMetadata:
    def test_count_equals_full_scan_length(self, client, widgets, write_headers, read_headers):
        for value in ("a", "b", "c"):
            client.post("/api/widgets/records", json={"c1": value}, headers=write_headers)
        client.delete("/api/widgets/records/102", headers=write_headers)

        count = client.get("/api/widgets/count", headers=read_headers).json()["data"]["count"]
        rows = client.get("/api/widgets/records", headers=read_headers).json()["data"]

        assert count == len(rows) == 4

    def test_count_with_range(self, client, widgets, write_headers, read_headers):
        for value in ("a", "b"):
            client.post("/api/widgets/records", json={"c1": value}, headers=write_headers)

        response = client.get(
            "/api/widgets/count", params={"min_id": "100"}, headers=read_headers
        )

        assert response.json() == {"code": 0, "data": {"count": 2}}

    def test_max_id_of_fresh_table(self, client, widgets, read_headers):
        response = client.get("/api/widgets/max_id", headers=read_headers)

        assert response.status_code == 200
        assert response.json()["data"]["max_id"] >= 100

    def test_max_id_of_emptied_table_is_null(self, client, widgets, write_headers, read_headers):
        for record_id in (1, 100):
            client.delete(f"/api/widgets/records/{record_id}", headers=write_headers)

        response = client.get("/api/widgets/max_id", headers=read_headers)

        assert response.status_code == 200
        assert response.json() == {"code": 0, "data": {"max_id": None}}

    def test_count_missing_table_is_500(self, client, read_headers):
        response = client.get("/api/missing/count", headers=read_headers)

        assert response.status_code == 500
        assert response.json()["message"] == (
            "Internal server error while trying to count records."
        )
