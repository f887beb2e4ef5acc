"""Main CLI entry point using Typer."""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from imgquery.errors import CatalogError, CriteriaError

app = typer.Typer(
    name="imgquery",
    help="Search a pre-indexed image catalog by keywords, people, objects, scenes, EXIF and location.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)


# ── Option parsing helpers ────────────────────────────────────────────────────

def _parse_number(text: str) -> float | int:
    """``400`` → 400, ``2.8`` → 2.8, ``1/500`` → 0.002."""
    text = text.strip()
    if "/" in text:
        num, den = text.split("/", 1)
        return float(num) / float(den)
    value = float(text)
    return int(value) if value.is_integer() and "." not in text else value


def _parse_range(name: str, text: Optional[str], numeric: bool = True) -> list[Any] | None:
    """``MIN[,MAX]`` → ``[min]`` or ``[min, max]``."""
    if text is None:
        return None
    parts = [p.strip() for p in text.split(",") if p.strip()]
    if not numeric:
        return parts
    try:
        return [_parse_number(p) for p in parts]
    except (ValueError, ZeroDivisionError) as exc:
        raise CriteriaError(f"--{name}: expected MIN[,MAX] numbers, got {text!r}") from exc


def _parse_geo(text: Optional[str]) -> tuple[float, float, float] | None:
    if text is None:
        return None
    try:
        lat, lon, meters = (float(p) for p in text.split(","))
    except ValueError as exc:
        raise CriteriaError(f"--geo: expected LAT,LON,METERS, got {text!r}") from exc
    return lat, lon, meters


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_carry_over(path: Path) -> list:
    """Read JSON-lines records produced by ``find --json``."""
    from imgquery.models import ImageRecord

    records = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(ImageRecord.from_dict(json.loads(line)))
            except json.JSONDecodeError as exc:
                raise typer.BadParameter(f"{path}:{lineno}: {exc}") from exc
    return records


def _build_criteria(**opts: Any):
    from imgquery.search.criteria import SearchCriteria

    return SearchCriteria(
        description_search=opts["description"],
        keywords=opts["keywords"],
        people=opts["people"],
        objects=opts["objects"],
        scenes=opts["scenes"],
        picture_type=opts["picture_type"],
        style_type=opts["style_type"],
        overall_mood=opts["overall_mood"],
        path_like=opts["path_like"],
        camera_make=opts["camera_make"],
        camera_model=opts["camera_model"],
        gps_latitude=_parse_range("latitude", opts["latitude"]),
        gps_longitude=_parse_range("longitude", opts["longitude"]),
        gps_altitude=_parse_range("altitude", opts["altitude"]),
        exposure_time=_parse_range("exposure-time", opts["exposure_time"]),
        f_number=_parse_range("f-number", opts["f_number"]),
        iso=_parse_range("iso", opts["iso"]),
        focal_length=_parse_range("focal-length", opts["focal_length"]),
        width=_parse_range("width", opts["width"]),
        height=_parse_range("height", opts["height"]),
        date_taken=_parse_range("date-taken", opts["date_taken"], numeric=False),
        has_nudity=opts["nudity"] is True,
        no_nudity=opts["nudity"] is False,
        has_explicit_content=opts["explicit"] is True,
        no_explicit_content=opts["explicit"] is False,
        geo_location=_parse_geo(opts["geo"]),
        any=opts["any"],
        min_confidence_ratio=opts["min_confidence"],
    )


# ── Shared options ────────────────────────────────────────────────────────────

_DESCRIPTION = typer.Option(None, "--description", "-d", help="Description text; wildcards * and ? allowed")
_KEYWORDS = typer.Option(None, "--keyword", "-k", help="Keyword (repeatable)")
_PEOPLE = typer.Option(None, "--person", "-p", help="Recognized person name (repeatable)")
_OBJECTS = typer.Option(None, "--object", "-o", help="Detected object label (repeatable)")
_SCENES = typer.Option(None, "--scene", "-s", help="Scene label (repeatable)")
_PICTURE_TYPE = typer.Option(None, "--picture-type", help="Picture type (repeatable)")
_STYLE_TYPE = typer.Option(None, "--style-type", help="Style type (repeatable)")
_MOOD = typer.Option(None, "--mood", help="Overall mood (repeatable)")
_PATH_LIKE = typer.Option(None, "--path-like", help="Path fragment or file: URI (repeatable)")
_MAKE = typer.Option(None, "--camera-make", help="Camera make (repeatable)")
_MODEL = typer.Option(None, "--camera-model", help="Camera model (repeatable)")
_LAT = typer.Option(None, "--latitude", help="GPS latitude MIN[,MAX]")
_LON = typer.Option(None, "--longitude", help="GPS longitude MIN[,MAX]")
_ALT = typer.Option(None, "--altitude", help="GPS altitude MIN[,MAX]")
_EXPOSURE = typer.Option(None, "--exposure-time", help="Exposure time MIN[,MAX], e.g. 1/500,1/60")
_FNUMBER = typer.Option(None, "--f-number", help="F-number MIN[,MAX]")
_ISO = typer.Option(None, "--iso", help="ISO MIN[,MAX]")
_FOCAL = typer.Option(None, "--focal-length", help="Focal length MIN[,MAX]")
_WIDTH = typer.Option(None, "--width", help="Width in pixels MIN[,MAX]")
_HEIGHT = typer.Option(None, "--height", help="Height in pixels MIN[,MAX]")
_DATE = typer.Option(None, "--date-taken", help="Date taken FROM[,TO] (YYYY-MM-DD or ISO datetime)")
_NUDITY = typer.Option(None, "--has-nudity/--no-nudity", help="Only images with / without nudity")
_EXPLICIT = typer.Option(
    None, "--has-explicit-content/--no-explicit-content",
    help="Only images with / without explicit content",
)
_GEO = typer.Option(None, "--geo", help="LAT,LON,METERS — images within METERS of the point")
_ANY = typer.Option(None, "--any", "-a", help="Free text matched against every field (repeatable)")
_MIN_CONF = typer.Option(
    None, "--min-confidence", min=0.0, max=1.0,
    help="Drop face/object/scene detections below this confidence (0–1)",
)
_DB = typer.Option(None, "--db", help="Catalog database file (default: IMGQUERY_DB_PATH)")
_LANGUAGE = typer.Option(None, "--language", help="Description language (default: IMGQUERY_LANGUAGE or en)")


@app.command()
def find(
    description: Optional[list[str]] = _DESCRIPTION,
    keywords: Optional[list[str]] = _KEYWORDS,
    people: Optional[list[str]] = _PEOPLE,
    objects: Optional[list[str]] = _OBJECTS,
    scenes: Optional[list[str]] = _SCENES,
    picture_type: Optional[list[str]] = _PICTURE_TYPE,
    style_type: Optional[list[str]] = _STYLE_TYPE,
    overall_mood: Optional[list[str]] = _MOOD,
    path_like: Optional[list[str]] = _PATH_LIKE,
    camera_make: Optional[list[str]] = _MAKE,
    camera_model: Optional[list[str]] = _MODEL,
    latitude: Optional[str] = _LAT,
    longitude: Optional[str] = _LON,
    altitude: Optional[str] = _ALT,
    exposure_time: Optional[str] = _EXPOSURE,
    f_number: Optional[str] = _FNUMBER,
    iso: Optional[str] = _ISO,
    focal_length: Optional[str] = _FOCAL,
    width: Optional[str] = _WIDTH,
    height: Optional[str] = _HEIGHT,
    date_taken: Optional[str] = _DATE,
    nudity: Optional[bool] = _NUDITY,
    explicit: Optional[bool] = _EXPLICIT,
    geo: Optional[str] = _GEO,
    any_text: Optional[list[str]] = _ANY,
    min_confidence: Optional[float] = _MIN_CONF,
    db: Optional[Path] = _DB,
    language: Optional[str] = _LANGUAGE,
    embed_images: Optional[bool] = typer.Option(
        None, "--embed-images/--no-embed-images",
        help="Replace paths with base64 data URIs",
    ),
    as_json: bool = typer.Option(False, "--json", help="Stream results as JSON lines"),
    append: Optional[Path] = typer.Option(
        None, "--append",
        help="JSON-lines file of earlier results to emit first (never duplicated)",
    ),
    show_sql: bool = typer.Option(False, "--show-sql", help="Print the compiled SQL before running it"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output (debug logging)"),
) -> None:
    """Find images in the catalog matching every given filter.

    Several values for one filter are alternatives; different filters must
    all match.

    Example::

        imgquery find -k sunset --no-nudity
        imgquery find -p Alice -p Bob --min-confidence 0.8
        imgquery find --geo 52.37,4.89,5000 --date-taken 2024-06-01,2024-06-30
        imgquery find --any beach --json > beach.jsonl
    """
    from dotenv import load_dotenv
    load_dotenv()

    from imgquery.config import load_settings
    from imgquery.db.connection import open_catalog
    from imgquery.search.compiler import compile_criteria
    from imgquery.search.engine import SearchEngine

    settings = load_settings(db_path=db, language=language, embed_images=embed_images)
    _setup_logging("DEBUG" if verbose else settings.log_level)

    try:
        criteria = _build_criteria(
            description=description, keywords=keywords, people=people,
            objects=objects, scenes=scenes, picture_type=picture_type,
            style_type=style_type, overall_mood=overall_mood, path_like=path_like,
            camera_make=camera_make, camera_model=camera_model,
            latitude=latitude, longitude=longitude, altitude=altitude,
            exposure_time=exposure_time, f_number=f_number, iso=iso,
            focal_length=focal_length, width=width, height=height,
            date_taken=date_taken, nudity=nudity, explicit=explicit, geo=geo,
            any=any_text, min_confidence=min_confidence,
        )
        compiled = compile_criteria(criteria)
        carry_over = _load_carry_over(append) if append else []
        conn = open_catalog(settings.db_path)
    except (CriteriaError, CatalogError) as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    except OSError as exc:
        err_console.print(f"[red]Cannot read --append file: {exc}[/red]")
        raise typer.Exit(1)

    engine = SearchEngine(conn, embed_images=settings.embed_images)

    if show_sql:
        err_console.print(compiled.sql, markup=False, highlight=False)
        err_console.print(f"[dim]params: {compiled.params!r}[/dim]")

    try:
        if as_json:
            count = 0
            for record in engine.iter_records(criteria, carry_over=carry_over):
                sys.stdout.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
                count += 1
            if count == 0:
                err_console.print(f"[yellow]No results found for {criteria.describe()}[/yellow]")
            return

        result = engine.find(criteria, carry_over=carry_over)
    finally:
        conn.close()

    if not result.records:
        console.print(f"[yellow]No results found for {criteria.describe()}[/yellow]")
        return

    _print_results(result)


def _print_results(result) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=4)
    table.add_column("File", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Scene")
    table.add_column("People")
    table.add_column("Objects")
    table.add_column("Keywords")

    for i, r in enumerate(result.records, 1):
        short = r.path[:32] + "…" if r.path.startswith("data:") else r.path
        size = f"{r.width}×{r.height}" if r.width and r.height else ""
        scene = r.scenes.label if r.scenes.success else ""
        objs = ", ".join(f"{label}×{n}" for label, n in r.objects.label_counts.items())
        table.add_row(
            str(i),
            short,
            size,
            scene,
            ", ".join(r.people.faces),
            objs,
            ", ".join(r.description.keywords[:6]),
        )

    console.print(table)
    console.print(f"\n{len(result)} result(s) in {result.elapsed:.3f}s")


@app.command(name="sql")
def show_sql(
    description: Optional[list[str]] = _DESCRIPTION,
    keywords: Optional[list[str]] = _KEYWORDS,
    people: Optional[list[str]] = _PEOPLE,
    objects: Optional[list[str]] = _OBJECTS,
    scenes: Optional[list[str]] = _SCENES,
    picture_type: Optional[list[str]] = _PICTURE_TYPE,
    style_type: Optional[list[str]] = _STYLE_TYPE,
    overall_mood: Optional[list[str]] = _MOOD,
    path_like: Optional[list[str]] = _PATH_LIKE,
    camera_make: Optional[list[str]] = _MAKE,
    camera_model: Optional[list[str]] = _MODEL,
    latitude: Optional[str] = _LAT,
    longitude: Optional[str] = _LON,
    altitude: Optional[str] = _ALT,
    exposure_time: Optional[str] = _EXPOSURE,
    f_number: Optional[str] = _FNUMBER,
    iso: Optional[str] = _ISO,
    focal_length: Optional[str] = _FOCAL,
    width: Optional[str] = _WIDTH,
    height: Optional[str] = _HEIGHT,
    date_taken: Optional[str] = _DATE,
    nudity: Optional[bool] = _NUDITY,
    explicit: Optional[bool] = _EXPLICIT,
    geo: Optional[str] = _GEO,
    any_text: Optional[list[str]] = _ANY,
) -> None:
    """Print the compiled SQL and bound parameters without running it.

    Example::

        imgquery sql -k "sun*" --camera-make Canon
    """
    from imgquery.search.compiler import compile_criteria

    try:
        criteria = _build_criteria(
            description=description, keywords=keywords, people=people,
            objects=objects, scenes=scenes, picture_type=picture_type,
            style_type=style_type, overall_mood=overall_mood, path_like=path_like,
            camera_make=camera_make, camera_model=camera_model,
            latitude=latitude, longitude=longitude, altitude=altitude,
            exposure_time=exposure_time, f_number=f_number, iso=iso,
            focal_length=focal_length, width=width, height=height,
            date_taken=date_taken, nudity=nudity, explicit=explicit, geo=geo,
            any=any_text, min_confidence=None,
        )
        compiled = compile_criteria(criteria)
    except CriteriaError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    console.print(compiled.sql, markup=False, highlight=False)
    console.print()
    for name, value in compiled.params.items():
        console.print(f"  [bold]:{name}[/bold] = {value!r}")
    if compiled.full_scan_columns:
        console.print(
            f"\n[yellow]Leading wildcard, full scan of:[/yellow] "
            f"{', '.join(compiled.full_scan_columns)}"
        )


@app.command()
def info(
    db: Optional[Path] = _DB,
    language: Optional[str] = _LANGUAGE,
) -> None:
    """Show the resolved settings and catalog row counts."""
    from dotenv import load_dotenv
    load_dotenv()

    from imgquery.config import load_settings
    from imgquery.db.connection import open_catalog
    from imgquery.db.schema import CHILD_TABLES, IMAGES_TABLE

    settings = load_settings(db_path=db, language=language)
    console.print(f"[bold]Database:[/bold] {settings.db_path}")
    console.print(f"[bold]Language:[/bold] {settings.language}")
    console.print(f"[bold]Embed images:[/bold] {settings.embed_images}")

    try:
        conn = open_catalog(settings.db_path)
    except CatalogError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    table = Table(title="Catalog", show_header=True, header_style="bold cyan")
    table.add_column("Table", style="bold")
    table.add_column("Rows", justify="right")
    try:
        for name in [IMAGES_TABLE] + [t.name for t in CHILD_TABLES.values()]:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {name}").fetchone()
            table.add_row(name, str(row["cnt"]))
    finally:
        conn.close()
    console.print(table)


if __name__ == "__main__":
    app()
