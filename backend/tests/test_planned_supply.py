"""
Supply planning tests (public read-only endpoints).
"""

import pytest


class TestLowStock:

    def test_default_threshold(self, client, rose, make_flower):
        make_flower("Хризантема", [(60, 500, 45.0)])
        make_flower("Сальвія", [(40, 3, 20.0)], published=False)

        resp = client.get("/api/planned-supply/low-stock")

        assert resp.status_code == 200
        assert resp.json["threshold"] == 100
        rows = resp.json["data"]
        assert [(r["flowerSlug"], r["length"], r["currentStock"]) for r in rows] == [
            ("troyanda-chervona", 70, 50),
            ("troyanda-chervona", 60, 100),
        ]
        assert rows[0]["flowerDocumentId"] == rose.document_id
        assert rows[0]["price"] == 90.0

    def test_custom_threshold(self, client, rose):
        resp = client.get("/api/planned-supply/low-stock?threshold=60")
        assert [r["currentStock"] for r in resp.json["data"]] == [50]

    @pytest.mark.parametrize("threshold", ["-1", "10001", "many"])
    def test_invalid_threshold(self, client, db_session, threshold):
        resp = client.get(f"/api/planned-supply/low-stock?threshold={threshold}")
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_THRESHOLD"


class TestSearch:

    def test_search_matches_slug(self, client, rose, make_flower):
        make_flower("Хризантема", [(60, 5, 45.0)])

        resp = client.get("/api/planned-supply/search?q=TROYANDA")

        assert resp.status_code == 200
        assert [f["name"] for f in resp.json["data"]] == ["Троянда червона"]
        assert len(resp.json["data"][0]["variants"]) == 2

    @pytest.mark.parametrize("query", ["", "t", "%20%20"])
    def test_query_too_short(self, client, db_session, query):
        resp = client.get(f"/api/planned-supply/search?q={query}")
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_QUERY"

    def test_all_flowers_skips_drafts(self, client, rose, make_flower):
        make_flower("Сальвія", [(40, 3, 20.0)], published=False)
        make_flower("Гортензія блакитна", [(50, 10, 140.0)])

        resp = client.get("/api/planned-supply/all-flowers")

        assert [f["slug"] for f in resp.json["data"]] == ["hortenziya-blakytna", "troyanda-chervona"]
