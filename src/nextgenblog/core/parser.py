"""Markdown rendering for public post pages."""

from markdown import Markdown
from markdown.extensions import Extension
from markdown.inlinepatterns import SimpleTagInlineProcessor

# Pattern for strikethrough: ~~text~~
# Group 2 must contain the text (SimpleTagInlineProcessor expectation)
STRIKETHROUGH_PATTERN = r"(~~)(.*?)~~"


class StrikethroughExtension(Extension):
    """Markdown extension for ~~strikethrough~~ text."""

    def extendMarkdown(self, md: Markdown) -> None:
        md.inlinePatterns.register(
            SimpleTagInlineProcessor(STRIKETHROUGH_PATTERN, "del"),
            "strikethrough",
            50,
        )


def create_parser() -> Markdown:
    """Create a Markdown parser for post bodies."""
    return Markdown(
        extensions=[
            "extra",  # abbreviations, attr_list, def_list, fenced_code, footnotes, md_in_html, tables
            "sane_lists",
            "smarty",
            "toc",
            "pymdownx.tasklist",
            StrikethroughExtension(),
        ]
    )


def render_markdown(content: str) -> str:
    """Render a post body to HTML."""
    return create_parser().convert(content)


def render_markdown_with_toc(content: str) -> tuple[str, str]:
    """Render a post body and return ``(html, toc_html)``."""
    parser = create_parser()
    html = parser.convert(content)
    toc_html = getattr(parser, "toc", "")
    return html, toc_html
