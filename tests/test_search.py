"""End-to-end search tests against an on-disk catalog."""
from __future__ import annotations

import json
import sqlite3

import pytest
from typer.testing import CliRunner


runner = CliRunner()


def _paths(engine, **criteria):
    from imgquery.search.criteria import SearchCriteria
    return engine.find(SearchCriteria(**criteria)).paths


@pytest.fixture
def engine(sample_catalog):
    from imgquery.search.engine import SearchEngine
    return SearchEngine(sample_catalog)


# ── Facet semantics ───────────────────────────────────────────────────────────

class TestFacets:
    def test_no_filters_returns_everything_in_path_order(self, engine):
        assert _paths(engine) == [
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
            "/photos/beach_walk.jpg",
            "/photos/c_sunset.jpg",
            "/photos/d_cat.jpg",
            "/photos/e_dog.jpg",
        ]

    def test_keyword_and_flag(self, engine):
        assert _paths(engine, keywords=["sunset"], no_nudity=True) == [
            "/photos/a_sunset.jpg",
            "/photos/c_sunset.jpg",
        ]

    def test_exact_match_ignores_case(self, engine):
        assert _paths(engine, keywords=["SUNSET"]) == _paths(engine, keywords=["sunset"])
        assert _paths(engine, camera_make=["canon"]) == ["/photos/a_sunset.jpg", "/photos/c_sunset.jpg"]

    def test_wildcard_keyword(self, engine):
        assert _paths(engine, keywords=["sun*"]) == [
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
            "/photos/c_sunset.jpg",
        ]

    def test_literal_percent_in_pattern(self, engine):
        assert _paths(engine, keywords=["50%*"]) == ["/photos/d_cat.jpg"]
        assert _paths(engine, keywords=["50%_off"]) == ["/photos/d_cat.jpg"]

    def test_tokens_within_facet_are_alternatives(self, engine):
        cat = set(_paths(engine, objects=["cat"]))
        dog = set(_paths(engine, objects=["dog"]))
        assert set(_paths(engine, objects=["cat", "dog"])) == cat | dog
        assert cat | dog == {"/photos/c_sunset.jpg", "/photos/d_cat.jpg", "/photos/e_dog.jpg"}

    def test_adding_a_facet_never_adds_results(self, engine):
        broad = set(_paths(engine, objects=["cat", "dog"]))
        narrow = set(_paths(engine, objects=["cat", "dog"], keywords=["dog"]))
        assert narrow <= broad
        assert narrow == {"/photos/e_dog.jpg"}

    def test_scene_facet(self, engine):
        assert _paths(engine, scenes=["beach"]) == ["/photos/a_sunset.jpg"]

    def test_description_substring(self, engine):
        assert _paths(engine, description_search=["*beach*"]) == ["/photos/d_cat.jpg"]

    def test_path_like(self, engine):
        assert _paths(engine, path_like=["beach"]) == ["/photos/beach_walk.jpg"]
        assert _paths(engine, path_like=["file:///photos/d_"]) == ["/photos/d_cat.jpg"]

    def test_any_spans_every_field(self, engine):
        # keyword, path and long description respectively
        assert _paths(engine, any=["beach"]) == [
            "/photos/a_sunset.jpg",
            "/photos/beach_walk.jpg",
            "/photos/d_cat.jpg",
        ]

    def test_any_is_anded_with_other_facets(self, engine):
        assert _paths(engine, any=["beach"], keywords=["cat"]) == ["/photos/d_cat.jpg"]

    def test_any_with_quote_is_safe(self, engine):
        assert _paths(engine, any=["o'brien"]) == []
        assert len(_paths(engine)) == 6


class TestRanges:
    def test_numeric_range_excludes_nulls(self, engine):
        assert _paths(engine, iso=[100, 400]) == ["/photos/a_sunset.jpg", "/photos/c_sunset.jpg"]

    def test_reversed_bounds(self, engine):
        assert _paths(engine, iso=[400, 100]) == _paths(engine, iso=[100, 400])

    def test_single_value(self, engine):
        assert _paths(engine, iso=[800]) == ["/photos/b_sunset.jpg"]

    def test_single_date_is_whole_day(self, engine):
        assert _paths(engine, date_taken=["2024-06-15"]) == ["/photos/a_sunset.jpg"]
        assert _paths(engine, date_taken=["2024:06:15"]) == ["/photos/a_sunset.jpg"]

    def test_date_range_includes_last_day(self, engine):
        assert _paths(engine, date_taken=["2024-06-01", "2024-06-16"]) == [
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
        ]


class TestGeoSearch:
    def test_distance_filter(self, engine):
        from imgquery.search.geo import build_geo, haversine_km
        # c_sunset lies inside the bounding box but outside the circle
        g = build_geo(52.0, 5.0, 10_000)
        assert g.lat_box[0] <= 52.08 <= g.lat_box[1]
        assert g.lon_boxes[0][0] <= 5.14 <= g.lon_boxes[0][1]
        assert haversine_km(52.0, 5.0, 52.08, 5.14) > 10.0

        assert _paths(engine, geo_location=(52.0, 5.0, 10_000)) == [
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
        ]

    def test_larger_radius(self, engine):
        assert _paths(engine, geo_location=(52.0, 5.0, 20_000)) == [
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
            "/photos/c_sunset.jpg",
        ]

    def test_across_antimeridian(self, catalog, add_image):
        from imgquery.search.engine import SearchEngine
        add_image(catalog, "/fiji/east.jpg", gps_latitude=-17.0, gps_longitude=179.99)
        add_image(catalog, "/fiji/west.jpg", gps_latitude=-17.0, gps_longitude=-179.99)
        add_image(catalog, "/fiji/far.jpg", gps_latitude=-17.0, gps_longitude=178.0)
        engine = SearchEngine(catalog)
        assert _paths(engine, geo_location=(-17.0, 179.995, 5_000)) == [
            "/fiji/east.jpg",
            "/fiji/west.jpg",
        ]


# ── Confidence threshold ──────────────────────────────────────────────────────

class TestMinConfidence:
    def test_drops_records_without_surviving_match(self, engine):
        assert _paths(engine, people=["alice"]) == ["/photos/b_sunset.jpg", "/photos/c_sunset.jpg"]
        assert _paths(engine, people=["alice"], min_confidence_ratio=0.8) == ["/photos/b_sunset.jpg"]

    def test_other_facet_keeps_record(self, engine):
        from imgquery.search.criteria import SearchCriteria
        result = engine.find(SearchCriteria(people=["alice"], keywords=["sunset"], min_confidence_ratio=0.8))
        assert result.paths == ["/photos/b_sunset.jpg", "/photos/c_sunset.jpg"]
        c = result.records[1]
        assert c.people.faces == ["bob"]
        assert c.people.count == 1

    def test_objects_recounted(self, engine):
        from imgquery.search.criteria import SearchCriteria
        result = engine.find(SearchCriteria(objects=["dog"], min_confidence_ratio=0.7))
        assert result.paths == ["/photos/c_sunset.jpg"]
        objs = result.records[0].objects
        assert objs.count == len(objs.predictions) == 2
        assert objs.label_counts == {"dog": 1, "ball": 1}

    def test_unset_threshold_keeps_everything(self, engine):
        from imgquery.search.criteria import SearchCriteria
        result = engine.find(SearchCriteria(objects=["dog"]))
        c = result.records[0]
        assert c.objects.count == 3
        assert c.objects.label_counts == {"dog": 2, "ball": 1}


# ── Result pipeline ───────────────────────────────────────────────────────────

class TestPipeline:
    def test_streaming_matches_materialized(self, engine):
        from imgquery.search.criteria import SearchCriteria
        criteria = SearchCriteria(keywords=["sun*"], min_confidence_ratio=0.5)
        streamed = list(engine.iter_records(criteria))
        result = engine.find(criteria)
        assert streamed == result.records
        assert result.elapsed >= 0.0
        assert len(result) == 3

    def test_shared_seen_set_deduplicates_runs(self, engine):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.dedup import SeenPaths
        seen = SeenPaths()
        first = engine.find(SearchCriteria(keywords=["sunset"]), seen=seen)
        second = engine.find(SearchCriteria(keywords=["sunset"]), seen=seen)
        assert len(first) == 3
        assert len(second) == 0
        third = engine.find(SearchCriteria(keywords=["sun*", "cat"]), seen=seen)
        assert third.paths == ["/photos/d_cat.jpg"]

    def test_carry_over_emitted_first_and_not_duplicated(self, engine):
        from imgquery.search.criteria import SearchCriteria
        earlier = engine.find(SearchCriteria(keywords=["cat"])).records
        result = engine.find(SearchCriteria(keywords=["cat", "sunset"]), carry_over=earlier)
        assert result.paths == [
            "/photos/d_cat.jpg",
            "/photos/a_sunset.jpg",
            "/photos/b_sunset.jpg",
            "/photos/c_sunset.jpg",
        ]

    def test_records_are_mapped(self, engine):
        from imgquery.search.criteria import SearchCriteria
        a = engine.find(SearchCriteria(path_like=["a_sunset"])).records[0]
        assert a.metadata.camera.make == "Canon"
        assert a.metadata.exposure.f_number == 8.0
        assert a.metadata.gps.latitude == 52.0
        assert (a.width, a.height) == (1920, 1080)
        assert a.description.keywords == ["sunset", "beach"]
        assert a.scenes.label == "beach" and a.scenes.success is True
        assert a.people.count == 0 and a.people.predictions == []

    def test_document_and_flat_storage_agree(self, catalog, add_image):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        add_image(
            catalog, "/flat.jpg", keywords=["tree"], camera_make="Leica", iso=100,
            people=[("carol", 0.9, [1, 2, 3, 4])], scene=("forest", 0.75),
        )
        add_image(
            catalog, "/doc.jpg", keywords=["tree"], flat_detections=False,
            people=[("carol", 0.9, [1, 2, 3, 4])],
            metadata_json={"Camera": {"Make": "Leica"}, "Exposure": {"ISO": 100}},
            description_json={"Keywords": ["tree"]},
            people_json={
                "Count": 1, "Faces": ["carol"], "Success": True,
                "Predictions": [{"Confidence": 0.9, "BBox": [1, 2, 3, 4], "UserId": "carol"}],
            },
            scenes_json={"Label": "forest", "Confidence": 0.75},
        )
        records = SearchEngine(catalog).find(SearchCriteria(keywords=["tree"])).records
        doc, flat = records
        assert doc.path == "/doc.jpg"
        assert doc.to_dict() == dict(flat.to_dict(), Path="/doc.jpg")

    def test_malformed_document_does_not_abort(self, catalog, add_image):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        add_image(catalog, "/bad.jpg", keywords=["x"], camera_make="Pentax", metadata_json="{oops")
        records = SearchEngine(catalog).find(SearchCriteria(keywords=["x"])).records
        assert records[0].metadata.camera.make == "Pentax"

    def test_embed_images(self, catalog, add_image, tmp_path):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        pic = tmp_path / "pic.png"
        pic.write_bytes(b"png-bytes")
        add_image(catalog, str(pic), keywords=["x"])
        add_image(catalog, str(tmp_path / "missing.jpg"), keywords=["x"])
        result = SearchEngine(catalog, embed_images=True).find(SearchCriteria(keywords=["x"]))
        missing, embedded = sorted(result.paths, key=lambda p: p.startswith("data:"))
        assert embedded.startswith("data:image/png;base64,")
        assert missing == str(tmp_path / "missing.jpg")

    def test_embedded_carry_over_not_duplicated(self, catalog, add_image, tmp_path):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        pic = tmp_path / "pic.png"
        pic.write_bytes(b"png-bytes")
        add_image(catalog, str(pic), keywords=["cat"])
        criteria = SearchCriteria(keywords=["cat"])

        earlier = SearchEngine(catalog, embed_images=True).find(criteria)
        assert len(earlier) == 1

        again = SearchEngine(catalog, embed_images=True).find(criteria, carry_over=earlier.records)
        assert again.paths == earlier.paths

        plain = SearchEngine(catalog).find(criteria, carry_over=earlier.records)
        assert plain.paths == earlier.paths

    def test_query_failure_propagates(self, tmp_path):
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        conn = sqlite3.connect(str(tmp_path / "broken.db"))
        conn.execute("CREATE TABLE images (id INTEGER PRIMARY KEY, path TEXT)")
        with pytest.raises(sqlite3.OperationalError):
            SearchEngine(conn).find(SearchCriteria())
        conn.close()


class TestCatalog:
    def test_missing_catalog(self, tmp_path):
        from imgquery.db.connection import open_catalog
        from imgquery.errors import CatalogError
        with pytest.raises(CatalogError, match="not found"):
            open_catalog(tmp_path / "nope.db")
        assert not (tmp_path / "nope.db").exists()

    def test_read_only_connection(self, sample_catalog, catalog_path):
        from imgquery.db.connection import open_catalog
        from imgquery.search.criteria import SearchCriteria
        from imgquery.search.engine import SearchEngine
        conn = open_catalog(catalog_path)
        try:
            assert len(SearchEngine(conn).find(SearchCriteria(keywords=["sunset"]))) == 3
            with pytest.raises(sqlite3.OperationalError):
                conn.execute("DELETE FROM images")
        finally:
            conn.close()


# ── CLI ───────────────────────────────────────────────────────────────────────

class TestCLI:
    def test_find_json_lines(self, sample_catalog, catalog_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["find", "-k", "sunset", "--no-nudity", "--json", "--db", str(catalog_path)])
        assert result.exit_code == 0, result.output
        lines = [json.loads(line) for line in result.stdout.splitlines() if line.strip()]
        assert [d["Path"] for d in lines] == ["/photos/a_sunset.jpg", "/photos/c_sunset.jpg"]

    def test_find_table(self, sample_catalog, catalog_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["find", "-k", "sunset", "--no-nudity", "--db", str(catalog_path)])
        assert result.exit_code == 0, result.output
        assert "2 result(s)" in result.output

    def test_find_no_results(self, sample_catalog, catalog_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["find", "-k", "volcano", "--db", str(catalog_path)])
        assert result.exit_code == 0
        assert "No results found" in result.output

    def test_append_is_idempotent(self, sample_catalog, catalog_path, tmp_path):
        from imgquery.cli import app
        first = runner.invoke(app, ["find", "-k", "cat", "--json", "--db", str(catalog_path)])
        earlier = tmp_path / "earlier.jsonl"
        earlier.write_text(first.stdout, encoding="utf-8")
        result = runner.invoke(
            app, ["find", "-k", "cat", "--json", "--append", str(earlier), "--db", str(catalog_path)]
        )
        assert result.exit_code == 0, result.output
        paths = [json.loads(line)["Path"] for line in result.stdout.splitlines() if line.strip()]
        assert paths == ["/photos/d_cat.jpg"]

    def test_append_with_embedded_images(self, catalog, add_image, catalog_path, tmp_path):
        from imgquery.cli import app
        pic = tmp_path / "pic.png"
        pic.write_bytes(b"png-bytes")
        add_image(catalog, str(pic), keywords=["cat"])
        args = ["find", "-k", "cat", "--json", "--embed-images", "--db", str(catalog_path)]

        first = runner.invoke(app, args)
        assert first.exit_code == 0, first.output
        earlier = tmp_path / "earlier.jsonl"
        earlier.write_text(first.stdout, encoding="utf-8")

        result = runner.invoke(app, args + ["--append", str(earlier)])
        assert result.exit_code == 0, result.output
        lines = [line for line in result.stdout.splitlines() if line.strip()]
        assert len(lines) == 1
        assert json.loads(lines[0])["Path"].startswith("data:image/png;base64,")

    def test_missing_append_file_exits_with_error(self, sample_catalog, catalog_path, tmp_path):
        from imgquery.cli import app
        result = runner.invoke(
            app,
            ["find", "-k", "cat", "--append", str(tmp_path / "none.jsonl"), "--db", str(catalog_path)],
        )
        assert result.exit_code == 1
        assert not isinstance(result.exception, OSError)

    def test_bad_range_exits_with_error(self, sample_catalog, catalog_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["find", "--iso", "100,200,400", "--db", str(catalog_path)])
        assert result.exit_code == 1

    def test_missing_catalog_exits_with_error(self, tmp_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["find", "-k", "x", "--db", str(tmp_path / "none.db")])
        assert result.exit_code == 1

    def test_sql_command(self):
        from imgquery.cli import app
        result = runner.invoke(app, ["sql", "-k", "*set", "--iso", "100,400"])
        assert result.exit_code == 0, result.output
        assert "EXISTS" in result.output
        assert "'%set'" in result.output
        assert "image_keywords.keyword" in result.output

    def test_sql_command_bad_date_exits_with_error(self):
        from imgquery.cli import app
        from imgquery.errors import CriteriaError
        result = runner.invoke(app, ["sql", "--date-taken", "notadate"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, CriteriaError)

    def test_info_command(self, sample_catalog, catalog_path):
        from imgquery.cli import app
        result = runner.invoke(app, ["info", "--db", str(catalog_path)])
        assert result.exit_code == 0, result.output
        assert "image_keywords" in result.output
