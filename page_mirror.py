#!/usr/bin/env python3
import argparse
import hashlib
import json
import logging
import os
import re
import sys
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union
from urllib.parse import urljoin, urlparse

import rcssmin
import requests
import yaml
from bs4 import BeautifulSoup

# -------------------- Config --------------------

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')

PAGE_FILE_NAME = "output.html"
EMBEDDED_CSS_FILE_NAME = "embedded_css.css"
MANIFEST_FILE_NAME = "manifest.json"

# Asset kinds, in the order their phases run.
STYLESHEET = "stylesheet"
EMBEDDED_STYLE = "embedded_style"
IMAGE = "image"
SCRIPT = "script"
PAGE = "page"
ASSET_KINDS = (STYLESHEET, EMBEDDED_STYLE, IMAGE, SCRIPT)

FILE_PREFIXES = {STYLESHEET: "style", IMAGE: "image", SCRIPT: "script"}
KIND_LABELS = {
    STYLESHEET: "Linked CSS file",
    EMBEDDED_STYLE: "Embedded CSS",
    IMAGE: "Image file",
    SCRIPT: "JS file",
}

COLLISION_POLICIES = ("overwrite", "hash")
MAX_NAME_CHARS = 200

# -------------------- Errors --------------------


class MirrorError(Exception):
    exit_code = 1


class ConfigError(MirrorError):
    exit_code = 1


class InvalidUrl(MirrorError):
    exit_code = 3


class TransportError(MirrorError):
    exit_code = 4


class HttpError(MirrorError):
    exit_code = 5

    def __init__(self, url: str, status: int):
        self.url = url
        self.status = status
        super().__init__(f"{url} -> HTTP {status}")


class DecodeError(MirrorError):
    exit_code = 6


class ParseError(MirrorError):
    exit_code = 7


class FileWriteError(MirrorError):
    exit_code = 8


class MinifyError(MirrorError):
    exit_code = 9


# -------------------- Settings --------------------


@dataclass
class Settings:
    timeout: Optional[float] = None  # None: transport default
    minify_css: bool = True
    collision_policy: str = "overwrite"  # overwrite | hash
    write_manifest: bool = False

    def validate(self) -> None:
        if self.collision_policy not in COLLISION_POLICIES:
            raise ConfigError(
                f"unknown collision policy {self.collision_policy!r}; "
                f"use one of: {', '.join(COLLISION_POLICIES)}"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be positive")


# -------------------- Data model --------------------


@dataclass(frozen=True)
class AssetReference:
    kind: str
    raw_value: str  # URL as written in the page, or inline CSS text


@dataclass(frozen=True)
class ResolvedAsset:
    kind: str
    absolute_url: Optional[str]  # None for embedded CSS


@dataclass
class OutputFile:
    path: Path
    kind: str
    url: Optional[str] = None


@dataclass
class AssetFailure:
    kind: str
    reference: str
    error: str


@dataclass
class MirrorReport:
    page_url: str
    output_dir: Path
    written: List[OutputFile] = field(default_factory=list)
    failures: List[AssetFailure] = field(default_factory=list)

    def files_of(self, kind: str) -> List[OutputFile]:
        return [f for f in self.written if f.kind == kind]


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:MAX_NAME_CHARS]


def short_h(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:8]


def is_absolute_http_url(u: str) -> bool:
    try:
        p = urlparse(u)
    except ValueError:
        return False
    return p.scheme in {"http", "https"} and bool(p.netloc)


def build_session() -> requests.Session:
    # Plain session: no retry adapter and no custom headers.
    return requests.Session()


def write_output(path: Path, data: bytes) -> None:
    try:
        if path.exists():
            logging.debug("overwriting %s", path)
        path.write_bytes(data)
    except OSError as e:
        raise FileWriteError(f"failed to write {path}: {e}") from e


# -------------------- URL resolution --------------------


def resolve(base: str, reference: str) -> str:
    """Turn a page reference into an absolute URL.

    References starting with ``http`` are returned untouched; anything else
    is joined against ``base``.
    """
    if reference.startswith("http"):
        return reference
    if not is_absolute_http_url(base):
        raise InvalidUrl(f"cannot parse base URL: {base!r}")
    try:
        absolute = urljoin(base, reference.strip())
    except ValueError as e:
        raise InvalidUrl(f"cannot join {reference!r} onto {base}: {e}") from e
    p = urlparse(absolute)
    if not p.scheme or not p.netloc:
        raise InvalidUrl(f"{reference!r} does not resolve to a fetchable URL")
    return absolute


def resolve_asset(ref: AssetReference, base: str) -> ResolvedAsset:
    if ref.kind == EMBEDDED_STYLE:
        return ResolvedAsset(ref.kind, None)
    return ResolvedAsset(ref.kind, resolve(base, ref.raw_value))


def derive_filename(url: str) -> str:
    """Last non-empty path segment of ``url``, or "" when there is none."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    segs = [seg for seg in path.split("/") if seg]
    return segs[-1] if segs else ""


def output_name(kind: str, absolute_url: str, policy: str = "overwrite") -> str:
    name = derive_filename(absolute_url)
    if policy == "hash":
        base, ext = os.path.splitext(name)
        name = f"{sanitize_filename(base)}_{short_h(absolute_url)}{ext}"
    else:
        name = name[:MAX_NAME_CHARS]
    return f"{FILE_PREFIXES[kind]}{name}"


# -------------------- HTTP --------------------


@dataclass
class FetchResult:
    url: str
    status_code: Optional[int] = None
    content: Optional[bytes] = None
    error: Optional[str] = None  # set on transport failure

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise TransportError(f"request failed for {self.url}: {self.error}")
        if not self.ok:
            raise HttpError(self.url, self.status_code or 0)

    def text(self) -> str:
        try:
            return (self.content or b"").decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"{self.url} is not valid UTF-8: {e}") from e


def fetch(
    session: requests.Session, url: str, *, timeout: Optional[float] = None
) -> FetchResult:
    try:
        r = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        return FetchResult(url, error=str(e) or e.__class__.__name__)
    if not 200 <= r.status_code < 300:
        return FetchResult(url, status_code=r.status_code)
    return FetchResult(url, status_code=r.status_code, content=r.content)


# -------------------- CSS --------------------


def minify_css(css_text: str) -> str:
    try:
        return rcssmin.cssmin(css_text)
    except Exception as e:
        raise MinifyError(f"failed to minify CSS: {e}") from e


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        logging.debug("lxml unavailable, falling back to html.parser")
    try:
        return BeautifulSoup(html, "html.parser")
    except Exception as e:
        raise ParseError(f"failed to parse HTML: {e}") from e


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        try:
            joined = urljoin(fallback, tag["href"])
        except ValueError:
            return fallback
        if is_absolute_http_url(joined):
            return joined
    return fallback


# -------------------- Extraction --------------------


def find_stylesheets(soup: BeautifulSoup) -> List[str]:
    hrefs: List[str] = []
    for link in soup.find_all("link"):
        rels = link.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if "stylesheet" not in {r.lower() for r in rels}:
            continue
        if link.has_attr("href"):
            hrefs.append(link["href"])
    return hrefs


def find_embedded_styles(soup: BeautifulSoup) -> str:
    return "\n".join(style.get_text() for style in soup.find_all("style"))


def find_images(soup: BeautifulSoup) -> List[str]:
    return [tag["src"] for tag in soup.find_all("img") if tag.has_attr("src")]


def find_scripts(soup: BeautifulSoup) -> List[str]:
    return [tag["src"] for tag in soup.find_all("script") if tag.has_attr("src")]


def scan_document(soup: BeautifulSoup) -> Iterator[AssetReference]:
    for href in find_stylesheets(soup):
        yield AssetReference(STYLESHEET, href)
    embedded = find_embedded_styles(soup)
    if embedded:
        yield AssetReference(EMBEDDED_STYLE, embedded)
    for src in find_images(soup):
        yield AssetReference(IMAGE, src)
    for src in find_scripts(soup):
        yield AssetReference(SCRIPT, src)


# -------------------- Asset processing --------------------


def process_asset(
    session: requests.Session,
    ref: AssetReference,
    base_url: str,
    out_dir: Path,
    settings: Settings,
) -> OutputFile:
    asset = resolve_asset(ref, base_url)

    if asset.absolute_url is None:
        css = minify_css(ref.raw_value) if settings.minify_css else ref.raw_value
        path = out_dir / EMBEDDED_CSS_FILE_NAME
        write_output(path, css.encode("utf-8"))
        return OutputFile(path, ref.kind)

    result = fetch(session, asset.absolute_url, timeout=settings.timeout)
    result.raise_for_failure()
    if asset.kind == IMAGE:
        data = result.content or b""
    else:
        text = result.text()
        if asset.kind == STYLESHEET and settings.minify_css:
            text = minify_css(text)
        data = text.encode("utf-8")

    path = out_dir / output_name(
        asset.kind, asset.absolute_url, settings.collision_policy
    )
    write_output(path, data)
    return OutputFile(path, asset.kind, asset.absolute_url)


# -------------------- Manifest --------------------


def write_manifest(report: MirrorReport) -> Path:
    def rel(p: Path) -> str:
        return str(Path(p).resolve().relative_to(report.output_dir))

    created_ts = (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
    data = {
        "page": report.page_url,
        "created_utc": created_ts,
        "files": [
            {"path": rel(f.path), "kind": f.kind, "url": f.url} for f in report.written
        ],
        "failures": [
            {"kind": f.kind, "reference": f.reference, "error": f.error}
            for f in report.failures
        ],
    }
    path = report.output_dir / MANIFEST_FILE_NAME
    write_output(path, json.dumps(data, indent=2).encode("utf-8"))
    return path


# -------------------- Main: single page --------------------


def mirror_page(
    page_url: str,
    output_folder: Union[str, Path],
    settings: Settings,
    session: Optional[requests.Session] = None,
) -> MirrorReport:
    if not is_absolute_http_url(page_url):
        raise InvalidUrl(f"invalid page URL {page_url!r}; use http:// or https://")
    settings.validate()
    session = session or build_session()

    logging.info("GET %s", page_url)
    page = fetch(session, page_url, timeout=settings.timeout)
    page.raise_for_failure()
    html = page.text()
    soup = bs4_parse(html)
    base = effective_base_url(soup, page_url)

    out_root = Path(output_folder).resolve()
    try:
        out_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileWriteError(f"cannot create output directory {out_root}: {e}") from e

    report = MirrorReport(page_url=page_url, output_dir=out_root)
    refs = list(scan_document(soup))

    for kind in ASSET_KINDS:
        batch = [r for r in refs if r.kind == kind]
        logging.debug("phase %s: %d reference(s)", kind, len(batch))
        for ref in batch:
            label = KIND_LABELS[kind]
            shown = "<style> blocks" if kind == EMBEDDED_STYLE else ref.raw_value
            try:
                out = process_asset(session, ref, base, out_root, settings)
            except MirrorError as e:
                logging.warning("failed %s %s: %s", label, shown, e)
                report.failures.append(AssetFailure(kind, shown, str(e)))
                continue
            logging.info("%s saved: %s", label, out.path.name)
            report.written.append(out)

    page_path = out_root / PAGE_FILE_NAME
    write_output(page_path, page.content or b"")
    logging.info("HTML content saved: %s", page_path.name)
    report.written.append(OutputFile(page_path, PAGE, page_url))

    if settings.write_manifest:
        logging.info("manifest: %s", write_manifest(report))
    return report


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool]]:
    p = Path(path)
    suf = p.suffix.lower()
    try:
        if suf in {".toml", ".tml"}:
            with open(p, "rb") as f:
                data = tomllib.load(f) or {}
        elif suf in {".yaml", ".yml"}:
            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            raise ConfigError("Unsupported config format. Use .toml or .yaml")
    except (OSError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be a mapping")
    return data


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Fetch one page and mirror its stylesheets, images and scripts.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("url", nargs="?", default=None, help="http(s) URL of the page")
    p.add_argument(
        "-o", "--output", default=".", help="output directory (default: current)"
    )
    p.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="request timeout seconds (default: none)",
    )
    p.add_argument(
        "--no-minify",
        dest="minify_css",
        action="store_false",
        help="write stylesheets without minifying them",
    )
    p.add_argument(
        "--collision-policy",
        choices=COLLISION_POLICIES,
        default="overwrite",
        help="overwrite same-named files, or add a URL hash to every name",
    )
    p.add_argument(
        "--manifest",
        dest="write_manifest",
        action="store_true",
        help="write manifest.json next to output"
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        flat = dict(cfg)
        for g in ("general", "mirror", "http"):
            if isinstance(cfg.get(g), dict):
                flat.update(cfg[g])
        parser.set_defaults(**flat)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    try:
        args = parse_args(argv)
    except ConfigError as e:
        print(f"Config error: {e}")
        sys.exit(e.exit_code)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.url:
        print("No URL given. Pass one on the command line or set 'url' in --config.")
        sys.exit(ConfigError.exit_code)
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(InvalidUrl.exit_code)

    settings = Settings(
        timeout=args.timeout,
        minify_css=args.minify_css,
        collision_policy=args.collision_policy,
        write_manifest=args.write_manifest,
    )

    try:
        report = mirror_page(args.url, args.output, settings)
    except MirrorError as e:
        print(f"Critical error: {e}")
        sys.exit(e.exit_code)

    print("Mirroring complete")
    print(f"Saved {len(report.written)} file(s) to: {report.output_dir}")
    if report.failures:
        print(f"{len(report.failures)} asset(s) failed, see log above")


if __name__ == "__main__":
    main()
