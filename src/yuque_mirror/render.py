"""Render cached Yuque documents into Markdown files.

The renderer owns everything about document markup: picking the body,
converting sheets to tables, rewriting links between mirrored documents,
downloading images into the shared ``assets`` area and writing the YAML
frontmatter. The build engine only decides whether to call it and where
its output goes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import posixpath
import re
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
import yaml
from markdown_it import MarkdownIt
from markdown_it.common.utils import unescapeAll
from markdown_it.token import Token

from yuque_mirror.config import ASSETS_DIR_NAME, DEFAULT_HOST
from yuque_mirror.models import DocDetail
from yuque_mirror.source import ContentSource
from yuque_mirror.tree.builder import MARKDOWN_SUFFIX, TreeNode

logger = logging.getLogger(__name__)

# Directory-documents shorter than this are treated as plain folders.
MIN_DIRECTORY_DOC_LENGTH = 50

_md = MarkdownIt("commonmark")
_DESTINATION = r"(?:[^\s()<>\\]|\\.|\((?:[^\s()<>\\]|\\.)*\))+"
_LINK = re.compile(
    r"(?P<bang>!?)\[(?P<text>(?:[^\[\]]|\[[^\[\]]*\])*)\]"
    r"\(\s*(?:<(?P<angle>[^<>\n]*)>|(?P<url>" + _DESTINATION + r"))"
    r"(?P<title>\s+(?:\"[^\"]*\"|'[^']*'|\([^()]*\)))?\s*\)"
    r"|<(?P<auto>[A-Za-z][A-Za-z0-9+.\-]{1,31}:[^\s<>]*)>"
)
_CODE_SPAN = re.compile(r"(`+)(?:.|\n)*?(?<!`)\1(?!`)")
_BR = re.compile(r"<br\s*/?>", re.IGNORECASE)
_FONT_TAG = re.compile(r"\\?</?font[^>]*>", re.IGNORECASE)
_NEEDS_ANGLE = re.compile(r"[\s()]")


def lakesheet_to_markdown(body_sheet: str) -> str:
    """Convert a ``lakesheet`` JSON payload into Markdown tables."""
    try:
        sheet_data = json.loads(body_sheet)
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to parse lakesheet data: %s", exc)
        return ""

    sheets = sheet_data.get("data") if isinstance(sheet_data, dict) else None
    if not sheets:
        return ""

    sections = []
    for sheet in sheets:
        table = sheet.get("table") or []
        if not table:
            continue
        lines = []
        if len(sheets) > 1:
            lines.append(f"## {sheet.get('name', '')}\n")
        for row_index, row in enumerate(table):
            cells = [str(cell or "").replace("|", "\\|") for cell in row]
            lines.append(f"| {' | '.join(cells)} |")
            if row_index == 0:
                lines.append(f"| {' | '.join('---' for _ in row)} |")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def frontmatter(title: str, url: str) -> str:
    dumped = yaml.safe_dump({"title": title, "url": url}, allow_unicode=True, sort_keys=False)
    return f"---\n{dumped}---\n\n"


def _code_line_ranges(tokens: list[Token]) -> list[tuple[int, int]]:
    return [(token.map[0], token.map[1]) for token in tokens if token.type in ("fence", "code_block") and token.map]


def _link_targets(tokens: list[Token]) -> tuple[set[str], set[str]]:
    """Normalized destinations of the links and images markdown-it recognizes."""
    links: set[str] = set()
    images: set[str] = set()
    for token in tokens:
        for child in token.children or ():
            if child.type == "link_open":
                links.add(str(child.attrGet("href") or ""))
            elif child.type == "image":
                images.add(str(child.attrGet("src") or ""))
    return links, images


def _split_prose(text: str, tokens: list[Token]) -> list[tuple[str, bool]]:
    """Split ``text`` into ``(chunk, is_prose)`` pieces, code excluded from prose."""
    lines = text.splitlines(keepends=True)
    code = [False] * len(lines)
    for start, end in _code_line_ranges(tokens):
        for line_no in range(start, min(end, len(lines))):
            code[line_no] = True

    blocks: list[tuple[str, bool]] = []
    for line, is_code in zip(lines, code, strict=True):
        if blocks and blocks[-1][1] == (not is_code):
            blocks[-1] = (blocks[-1][0] + line, not is_code)
        else:
            blocks.append((line, not is_code))

    pieces: list[tuple[str, bool]] = []
    for chunk, is_prose in blocks:
        if not is_prose:
            pieces.append((chunk, False))
            continue
        cursor = 0
        for match in _CODE_SPAN.finditer(chunk):
            pieces.append((chunk[cursor : match.start()], True))
            pieces.append((match.group(0), False))
            cursor = match.end()
        pieces.append((chunk[cursor:], True))
    return pieces


def _destination(url: str) -> str:
    return f"<{url}>" if _NEEDS_ANGLE.search(url) else url


class DocumentRenderer:
    """Turn a DOC-like tree node into the text of its Markdown file."""

    def __init__(
        self,
        source: ContentSource,
        *,
        output_dir: Path,
        host: str = DEFAULT_HOST,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._source = source
        self._output_dir = output_dir
        self._host = host.rstrip("/")
        self._http = http_client

    def render(self, node: TreeNode, docs: Mapping[str, TreeNode]) -> str | None:
        """Return rendered Markdown, or ``None`` when there is nothing to write."""
        detail = self._source.fetch_document_body(node.namespace, node.slug)
        if detail is None:
            logger.warning("Doc file not found for %s, skipping...", node.identity_key)
            return None

        body = self._rewrite_prose(self._body(node, detail), node, docs)

        if node.children and len(body.strip()) < MIN_DIRECTORY_DOC_LENGTH:
            logger.info("Skipping empty directory-document: %s (has %d children)", node.title, len(node.children))
            return None

        return frontmatter(node.title, f"{self._host}/{node.namespace}/{node.slug}") + body

    def _body(self, node: TreeNode, detail: DocDetail) -> str:
        if detail.format == "lakesheet" and detail.body_sheet:
            return lakesheet_to_markdown(detail.body_sheet)
        body = detail.body or detail.body_lake or ""
        if not body:
            logger.warning('Document "%s" (%s) has no content. Format: %s', node.title, node.slug, detail.format)
        return body

    # ------------------------------------------------------------------
    # Links and assets
    # ------------------------------------------------------------------

    def _rewrite_prose(self, body: str, node: TreeNode, docs: Mapping[str, TreeNode]) -> str:
        """Clean up prose markup and rewrite the links markdown-it finds in it.

        Only destinations that parse as a link or image are touched; text that
        merely looks like one (inside HTML, escaped brackets) stays as written.
        """
        tokens = _md.parse(body)
        links, images = _link_targets(tokens)

        def _replace(match: re.Match[str]) -> str:
            auto = match.group("auto")
            if auto is not None:
                if _md.normalizeLink(auto) not in links:
                    return match.group(0)
                new_url = self._relative_doc_link(auto, node, docs)
                return match.group(0) if new_url == auto else f"[{auto}]({_destination(new_url)})"

            bang = match.group("bang")
            angle = match.group("angle")
            raw = angle if angle is not None else match.group("url")
            url = unescapeAll(raw)
            text = _LINK.sub(_replace, match.group("text"))

            new_url = url
            if _md.normalizeLink(url) in (images if bang else links):
                new_url = self._localize_image(url, node) if bang else self._relative_doc_link(url, node, docs)
            if new_url == url:
                if text == match.group("text"):
                    return match.group(0)
                destination = f"<{raw}>" if angle is not None else raw
            else:
                destination = _destination(new_url)
            return f"{bang}[{text}]({destination}{match.group('title') or ''})"

        pieces = []
        for chunk, is_prose in _split_prose(body, tokens):
            if is_prose:
                chunk = _BR.sub("\n", chunk)
                chunk = _LINK.sub(_replace, chunk)
                chunk = _FONT_TAG.sub("", chunk)
            pieces.append(chunk)
        return "".join(pieces)

    def _is_doc_link(self, url: str) -> bool:
        return url.startswith(self._host) and not url.startswith(f"{self._host}/attachments/")

    def _resolve_share_link(self, url: str) -> str:
        if self._http is None:
            return url
        try:
            response = self._http.head(url, follow_redirects=False)
        except httpx.HTTPError as exc:
            logger.warning("Cannot resolve share link %s: %s", url, exc)
            return url
        location = response.headers.get("location")
        return urljoin(self._host, location) if location else url

    def _relative_doc_link(self, url: str, node: TreeNode, docs: Mapping[str, TreeNode]) -> str:
        if not self._is_doc_link(url):
            return url
        if url.startswith(f"{self._host}/docs/share/"):
            url = self._resolve_share_link(url)

        parts = urlsplit(url.replace("view=doc_embed", ""))
        key = parts.path.strip("/")
        target = docs.get(key)
        if target is None:
            logger.warning("%s: link target %s not found", node.identity_key, key)
            return url

        base = posixpath.dirname(node.file_path) or "."
        relative = posixpath.relpath(target.file_path, base) + MARKDOWN_SUFFIX
        return f"{relative}#{parts.fragment}" if parts.fragment else relative

    def _localize_image(self, url: str, node: TreeNode) -> str:
        if not url.startswith(("http://", "https://")) or self._http is None:
            return url

        parts = urlsplit(url)
        name = posixpath.basename(parts.path) or hashlib.sha1(url.encode()).hexdigest()[:12]  # noqa: S324
        asset = f"{ASSETS_DIR_NAME}/{node.slug}/{name}"
        target = self._output_dir.joinpath(*asset.split("/"))

        if not target.exists():
            try:
                response = self._http.get(urlunsplit(parts), follow_redirects=True)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning("Failed to download asset %s for %s: %s", url, node.identity_key, exc)
                return url
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(response.content)

        return posixpath.relpath(asset, posixpath.dirname(node.file_path) or ".")
