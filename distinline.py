#!/usr/bin/env python3
"""
distinline - fold a built static site into a single index.html

Post-build pass that works in place on a flat output directory: external
JavaScript and CSS are minified and inlined into index.html, web fonts
referenced from that CSS and the favicon are embedded as base64 data URIs,
the resulting HTML is minified, and the files that were folded in are
deleted.

Usage:
    python distinline.py                    # process ./dist
    python distinline.py build/site         # process another directory
    python distinline.py --single-pass      # scan in plain listing order

Environment variables:
    DISTINLINE_TARGET_DIR - Directory to process (default: dist)
"""

import asyncio
import base64
import logging
import os
import re
import sys
from typing import Dict, List, Optional, Tuple

import csscompressor
import htmlmin
from calmjs.parse import es5
from calmjs.parse.exceptions import ECMASyntaxError
from calmjs.parse.unparsers.es5 import minify_print

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

TARGET_DIR = os.environ.get("DISTINLINE_TARGET_DIR", "dist")
INDEX_HTML = "index.html"
FAVICON_ICO = "favicon.ico"

MIME_MAP = {
    ".ico": "image/x-icon",
    ".ttf": "font/ttf",
    ".woff2": "font/woff2",
}
BINARY_EXTS = tuple(MIME_MAP)
TEXT_EXTS = (".js", ".css")

# References in index.html to external JS, CSS and the favicon
JS_REGEX = re.compile(
    r'<script\s+(?:type="text/javascript"\s+)?src="([^"]+\.js)"\s*></script>',
    re.IGNORECASE,
)
CSS_LINK_REGEX = re.compile(
    r'<link\s+rel="stylesheet"\s+href="([^"]+\.css)"(?:\s+/)?\s*>',
    re.IGNORECASE,
)
FAVICON_REGEX = re.compile(
    r'(<link\s+[^>]*?rel="(?:icon|shortcut\s+icon)"[^>]*?href="([^"]+\.ico)"[^>]*?>)',
    re.IGNORECASE,
)

# Font references inside CSS
CSS_URL_REGEX = re.compile(
    r"""url\(['"]?([^'")]+\.(?:ttf|woff2))['"]?\)""",
    re.IGNORECASE,
)

# Inline blocks still present in the assembled HTML
INLINE_SCRIPT_REGEX = re.compile(
    r"(<script(?:\s+type=\"text/javascript\")?\s*>)(.*?)(</script>)",
    re.IGNORECASE | re.DOTALL,
)
INLINE_STYLE_REGEX = re.compile(
    r"(<style(?:\s+type=\"text/css\")?\s*>)(.*?)(</style>)",
    re.IGNORECASE | re.DOTALL,
)

HTMLMIN_OPTIONS = {
    "remove_comments": True,
    "remove_empty_space": True,
    "remove_optional_attribute_quotes": False,
    "pre_tags": ("pre", "textarea", "script", "style"),
}


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class InlineContext:
    """Lookup tables and deletion list for a single run over one directory."""

    def __init__(self, target_dir: str):
        self.target_dir = os.path.abspath(target_dir)
        self.index_html = os.path.join(self.target_dir, INDEX_HTML)
        self.favicon = os.path.join(self.target_dir, FAVICON_ICO)
        # {full path: data URI} for fonts and icons
        self.assets: Dict[str, str] = {}
        # {full path: minified code} for JS and CSS
        self.texts: Dict[str, str] = {}
        self.to_delete: List[str] = []

    def add_asset(self, path: str, uri: str):
        self.assets[path] = uri
        self.to_delete.append(path)

    def add_text(self, path: str, code: str):
        self.texts[path] = code
        self.to_delete.append(path)


class DeletionResult:
    """Outcome of removing one consumed file."""

    def __init__(self, path: str, error: Optional[BaseException] = None):
        self.path = path
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self):
        state = "ok" if self.ok else f"failed: {self.error}"
        return f"<DeletionResult {os.path.basename(self.path)} {state}>"


class InlineReport:
    """What a run did: which files were folded in and how their removal went."""

    def __init__(self, target_dir: str, aborted: bool = False):
        self.target_dir = target_dir
        self.aborted = aborted
        self.inlined: List[str] = []
        self.deletions: List[DeletionResult] = []

    @property
    def failed_deletions(self) -> List[DeletionResult]:
        return [r for r in self.deletions if not r.ok]


# ---------------------------------------------------------------------------
# Asset encoding
# ---------------------------------------------------------------------------


def encode_asset(path: str) -> Optional[str]:
    """Read a font or icon file and return it as a base64 data URI.

    Returns None for unsupported extensions and unreadable files; the
    caller then leaves the file where it is.
    """
    ext = os.path.splitext(path)[1].lower()
    mime_type = MIME_MAP.get(ext)
    if not mime_type:
        logger.warning("Unsupported type for base64 embedding: %s - %s", ext, os.path.basename(path))
        return None

    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.error("Base64 conversion failed: %s (%s)", path, e)
        return None

    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a base64 data URI back into (mime type, payload bytes)."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError(f"not a base64 data URI: {uri[:40]!r}")
    return header[len("data:"):-len(";base64")], base64.b64decode(payload)


# ---------------------------------------------------------------------------
# Minifiers
# ---------------------------------------------------------------------------


def minify_js_code(code: str) -> Optional[str]:
    """Minify JS with local name mangling; comments are dropped by the parser."""
    try:
        return minify_print(es5(code), obfuscate=True, obfuscate_globals=False)
    except ECMASyntaxError as e:
        logger.error("JS minification failed: %s", e)
        logger.info("\tOnly ES5 syntax can be minified; files using let/const/arrow functions stay external")
    except RecursionError:
        # the unparser recurses once per nested node, long expression chains overflow it
        logger.error("JS minification failed: expression nesting too deep")
    return None


def _resolve(base_dir: str, ref: str) -> str:
    """Join ``ref`` onto ``base_dir``; a leading slash still means under ``base_dir``."""
    return os.path.normpath(os.path.join(base_dir, ref.lstrip("/")))


def rewrite_font_urls(css: str, target_dir: str, assets: Dict[str, str]) -> str:
    """Swap url(...) font references for the data URIs in ``assets``.

    Paths are resolved against ``target_dir`` whatever directory the CSS
    file itself lives in, so fonts must sit directly under the root.
    """

    def _replace(m):
        url_path = m.group(1)
        uri = assets.get(_resolve(target_dir, url_path))
        if uri:
            logger.info("\t-> embedded font: %s", url_path)
            return f"url('{uri}')"
        logger.warning("\tFont file missing or failed to convert: %s, keeping reference", url_path)
        return m.group(0)

    return CSS_URL_REGEX.sub(_replace, css)


def minify_css_code(css: str, target_dir: str, assets: Dict[str, str]) -> Optional[str]:
    """Embed fonts, then minify. Returns None if the minifier fails."""
    css = rewrite_font_urls(css, target_dir, assets)
    try:
        return csscompressor.compress(css)
    except Exception as e:
        logger.error("CSS minification failed: %s", e)
        return None


def _minify_inline_blocks(html: str) -> str:
    """Minify the contents of inline <script> and <style> blocks.

    A block that does not minify cleanly is left as it was.
    """

    def _script(m):
        body = m.group(2)
        if not body.strip():
            return m.group(0)
        try:
            code = minify_print(es5(body), obfuscate=True, obfuscate_globals=False)
        except (ECMASyntaxError, RecursionError) as e:
            logger.debug("Leaving inline script as is: %s", e)
            return m.group(0)
        return m.group(1) + code + m.group(3)

    def _style(m):
        body = m.group(2)
        if not body.strip():
            return m.group(0)
        try:
            code = csscompressor.compress(body)
        except Exception as e:
            logger.debug("Leaving inline style as is: %s", e)
            return m.group(0)
        return m.group(1) + code + m.group(3)

    html = INLINE_SCRIPT_REGEX.sub(_script, html)
    return INLINE_STYLE_REGEX.sub(_style, html)


def minify_html(html: str) -> str:
    return htmlmin.minify(_minify_inline_blocks(html), **HTMLMIN_OPTIONS)


# ---------------------------------------------------------------------------
# HTML assembly
# ---------------------------------------------------------------------------


def inline_scripts(html: str, base_dir: str, texts: Dict[str, str]) -> str:
    def _replace(m):
        src = m.group(1)
        code = texts.get(_resolve(base_dir, src))
        if code:
            logger.info("\t-> embedded JS: %s", src)
            return f"<script>{code}</script>"
        logger.warning("\tJS file missing or failed to minify: %s, keeping reference", src)
        return m.group(0)

    return JS_REGEX.sub(_replace, html)


def inline_stylesheets(html: str, base_dir: str, texts: Dict[str, str]) -> str:
    def _replace(m):
        href = m.group(1)
        code = texts.get(_resolve(base_dir, href))
        if code:
            logger.info("\t-> embedded CSS: %s", href)
            return f"<style>{code}</style>"
        logger.warning("\tCSS file missing or failed to minify: %s, keeping reference", href)
        return m.group(0)

    return CSS_LINK_REGEX.sub(_replace, html)


def inline_favicon(html: str, favicon_uri: str) -> str:
    """Point the first favicon.ico <link> at ``favicon_uri``, leaving the rest of the tag alone."""
    done = False

    def _replace(m):
        nonlocal done
        tag, href = m.group(1), m.group(2)
        if done or os.path.basename(href).lower() != FAVICON_ICO:
            return m.group(0)
        done = True
        logger.info("\t-> embedded favicon: %s", href)
        return tag.replace(f'href="{href}"', f'href="{favicon_uri}"', 1)

    return FAVICON_REGEX.sub(_replace, html)


def assemble_html(html: str, base_dir: str, texts: Dict[str, str],
                  favicon_uri: Optional[str] = None) -> str:
    """Replace external JS/CSS/favicon references in ``html`` with inline content."""
    html = inline_scripts(html, base_dir, texts)
    html = inline_stylesheets(html, base_dir, texts)
    if favicon_uri:
        html = inline_favicon(html, favicon_uri)
    return html


async def embed_and_minify_html(html_path: str, texts: Dict[str, str],
                                favicon_uri: Optional[str] = None):
    """Assemble and minify ``html_path`` and overwrite it with the result."""
    html = await asyncio.to_thread(_read_text, html_path)
    html = assemble_html(html, os.path.dirname(html_path), texts, favicon_uri)
    html = minify_html(html)
    await asyncio.to_thread(_write_text, html_path, html)
    logger.info("HTML inlined and minified: %s", html_path)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _write_text(path: str, text: str):
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def _list_files(target_dir: str) -> List[str]:
    with os.scandir(target_dir) as it:
        return [entry.name for entry in it if entry.is_file()]


async def _collect_asset(ctx: InlineContext, name: str):
    path = os.path.join(ctx.target_dir, name)
    uri = await asyncio.to_thread(encode_asset, path)
    if uri:
        mime_type, data = decode_data_uri(uri)
        logger.info("- base64 encoded (to embed): %s (%s, %d bytes -> %d chars)",
                    name, mime_type, len(data), len(uri))
        ctx.add_asset(path, uri)


async def _collect_text(ctx: InlineContext, name: str, ext: str):
    path = os.path.join(ctx.target_dir, name)
    try:
        code = await asyncio.to_thread(_read_text, path)
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Cannot read %s: %s", name, e)
        return

    if ext == ".js":
        minified = minify_js_code(code)
    else:
        minified = minify_css_code(code, ctx.target_dir, ctx.assets)
    if minified:
        logger.info("- %s minified (to embed): %s", ext[1:].upper(), name)
        ctx.add_text(path, minified)


async def collect_files(ctx: InlineContext, two_pass: bool = True):
    """Encode or minify every file directly inside the target directory.

    With ``two_pass`` fonts and icons are handled before any JS/CSS, so every
    font is in ``ctx.assets`` by the time a stylesheet refers to it. Without it
    files are taken in directory listing order.
    """
    names = await asyncio.to_thread(_list_files, ctx.target_dir)

    def _ext(name):
        return os.path.splitext(name)[1].lower()

    if two_pass:
        names = ([n for n in names if _ext(n) in BINARY_EXTS]
                 + [n for n in names if _ext(n) in TEXT_EXTS])

    for name in names:
        ext = _ext(name)
        if ext in BINARY_EXTS:
            await _collect_asset(ctx, name)
        elif ext in TEXT_EXTS:
            await _collect_text(ctx, name, ext)


async def _remove(path: str) -> DeletionResult:
    try:
        await asyncio.to_thread(os.remove, path)
    except OSError as e:
        logger.error("Could not delete %s: %s", os.path.basename(path), e)
        return DeletionResult(path, e)
    logger.info("- deleted: %s", os.path.basename(path))
    return DeletionResult(path)


async def delete_files(paths: List[str]) -> List[DeletionResult]:
    """Remove all ``paths`` concurrently; one failure does not stop the others."""
    return list(await asyncio.gather(*(_remove(p) for p in paths)))


async def run_inline(target_dir: str = TARGET_DIR, *, two_pass: bool = True) -> InlineReport:
    """Fold the JS, CSS, fonts and favicon in ``target_dir`` into its index.html."""
    ctx = InlineContext(target_dir)
    logger.info("Processing directory in place: %s ...", target_dir)

    if not os.path.isdir(ctx.target_dir):
        logger.error("Target directory %s does not exist.", target_dir)
        return InlineReport(ctx.target_dir, aborted=True)
    if not os.path.isfile(ctx.index_html):
        logger.error("Entry file %s does not exist.", ctx.index_html)
        return InlineReport(ctx.target_dir, aborted=True)

    logger.info("--- 1. Collecting external assets ---")
    await collect_files(ctx, two_pass=two_pass)

    logger.info("--- 2. Inlining and minifying HTML ---")
    await embed_and_minify_html(ctx.index_html, ctx.texts, ctx.assets.get(ctx.favicon))

    logger.info("--- 3. Deleting inlined files ---")
    report = InlineReport(ctx.target_dir)
    report.inlined = list(ctx.to_delete)
    report.deletions = await delete_files(ctx.to_delete)

    if report.failed_deletions:
        logger.warning("%d inlined file(s) could not be deleted.", len(report.failed_deletions))
    logger.info("Done: %s now holds a single-file build.", target_dir)
    return report


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(
        description="Inline and minify JS, CSS, fonts and favicon into index.html, in place"
    )
    parser.add_argument(
        "target_dir", nargs="?", default=TARGET_DIR,
        help=f"Build output directory (default: {TARGET_DIR})",
    )
    parser.add_argument(
        "--single-pass", action="store_true",
        help="Process files strictly in directory listing order",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        asyncio.run(run_inline(args.target_dir, two_pass=not args.single_pass))
    except Exception:
        logger.exception("Fatal error while inlining")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
