from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import os
import re

import yaml
from markdown_it import MarkdownIt
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

from bs4 import BeautifulSoup
from bs4.element import CData, NavigableString, Tag


# ----------------------------
# Models
# ----------------------------

@dataclass
class ConversionResult:
    storage: str
    front_matter: dict[str, Any] = field(default_factory=dict)


# ----------------------------
# Front-matter
# ----------------------------

_FRONT_MATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)

def strip_front_matter(md: str) -> tuple[dict[str, Any], str]:
    """
    Split a leading YAML block off the document.

    Raises yaml.YAMLError when the block is not valid YAML and ValueError when
    it is valid YAML but not a mapping.
    """
    m = _FRONT_MATTER_RE.match(md)
    if not m:
        return {}, md
    data = yaml.safe_load(m.group(1)) or {}
    if not isinstance(data, dict):
        raise ValueError(f"front matter must be a mapping, got {type(data).__name__}")
    return data, md[m.end():]


# ----------------------------
# Converter
# ----------------------------

# Void elements Confluence expects in XHTML form.
_VOID_TAGS = ("br", "hr")


class MdToConfluenceStorage:
    """
    Convert Markdown to Confluence Storage format (XHTML + Confluence macros).
    """

    def __init__(
        self,
        *,
        code_theme: str = "Default",
        code_linenumbers: bool = False,
    ):
        self.code_theme = code_theme
        self.code_linenumbers = code_linenumbers

        self.md = (
            MarkdownIt("commonmark", {"html": False, "linkify": True})
            .enable("table")
            .enable("strikethrough")
            .use(tasklists_plugin, enabled=True)
            .use(footnote_plugin)
        )

    def render(self, body: str) -> str:
        """Render a Markdown body (front matter already removed)."""
        html = self.md.render(body)
        soup = BeautifulSoup(html, "html.parser")

        self._convert_code_blocks(soup)
        self._convert_images(soup)
        self._tasklist_inputs_to_unicode(soup)

        storage = soup.decode(formatter="minimal").strip()
        return self._xhtml_void_tags(storage)

    def convert(self, md_text: str) -> ConversionResult:
        fm, body = strip_front_matter(md_text)
        return ConversionResult(storage=self.render(body), front_matter=fm)

    # ----------------------------
    # Post-process steps
    # ----------------------------

    def _convert_code_blocks(self, soup: BeautifulSoup) -> None:
        """
        <pre><code class="language-python">...</code></pre>
          =>
        <ac:structured-macro ac:name="code">...</ac:structured-macro>
        """
        for pre in list(soup.find_all("pre")):
            code = pre.find("code")
            if not code:
                continue

            lang = self._extract_language(code)
            macro = soup.new_tag("ac:structured-macro", attrs={"ac:name": "code"})

            if lang:
                p_lang = soup.new_tag("ac:parameter", attrs={"ac:name": "language"})
                p_lang.string = lang
                macro.append(p_lang)

            p_theme = soup.new_tag("ac:parameter", attrs={"ac:name": "theme"})
            p_theme.string = self.code_theme
            macro.append(p_theme)

            p_ln = soup.new_tag("ac:parameter", attrs={"ac:name": "linenumbers"})
            p_ln.string = "true" if self.code_linenumbers else "false"
            macro.append(p_ln)

            body = soup.new_tag("ac:plain-text-body")
            body.append(CData(code.get_text()))
            macro.append(body)

            pre.replace_with(macro)

    def _extract_language(self, code_tag: Tag) -> str:
        for c in code_tag.get("class") or []:
            if c.startswith("language-"):
                return c.replace("language-", "", 1).strip()
        return ""

    def _convert_images(self, soup: BeautifulSoup) -> None:
        """
        <img src="https://..." alt="a"> =>
          <ac:image ac:alt="a"><ri:url ri:value="https://..."/></ac:image>

        <img src="relative.png"> =>
          <ac:image><ri:attachment ri:filename="relative.png"/></ac:image>

        Attachments are not uploaded; a relative image only shows once a file
        with that name is attached to the page by hand.
        """
        for img in list(soup.find_all("img")):
            src = (img.get("src") or "").strip()
            alt = (img.get("alt") or "").strip()

            if not src:
                img.decompose()
                continue

            ac_image = soup.new_tag("ac:image")
            if alt:
                ac_image.attrs["ac:alt"] = alt

            if src.startswith(("http://", "https://")):
                ac_image.append(soup.new_tag("ri:url", attrs={"ri:value": src}))
            else:
                filename = os.path.basename(src)
                ac_image.append(soup.new_tag("ri:attachment", attrs={"ri:filename": filename}))

            img.replace_with(ac_image)

    def _tasklist_inputs_to_unicode(self, soup: BeautifulSoup) -> None:
        # storage format has no <input>; checkboxes become glyphs
        for inp in list(soup.find_all("input")):
            if (inp.get("type") or "").lower() != "checkbox":
                continue
            mark = "☑ " if inp.has_attr("checked") else "☐ "
            inp.replace_with(NavigableString(mark))

    def _xhtml_void_tags(self, storage: str) -> str:
        for name in _VOID_TAGS:
            storage = re.sub(rf"<{name}(\s[^<>]*?)?/?>", rf"<{name}\1 />", storage)
        return storage
