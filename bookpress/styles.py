"""Stylesheets for the rendered book."""

from pygments.formatters import HtmlFormatter

HIGHLIGHT_STYLE = "friendly"

BASE_CSS = """
body {
    font-family: 'Georgia', 'Times New Roman', serif;
    line-height: 1.6;
    color: #333;
    margin: 0;
}

h1 { color: #1976d2; font-size: 2.2em; margin: 40px 0 30px 0; border-bottom: 3px solid #1976d2; padding-bottom: 15px; }
h2 { color: #388e3c; font-size: 1.7em; margin: 35px 0 25px 0; }
h3 { color: #f57c00; font-size: 1.35em; margin: 30px 0 20px 0; }
h4, h5, h6 { color: #c2185b; font-size: 1.1em; margin: 25px 0 15px 0; }

code {
    background-color: #f5f5f5;
    padding: 3px 6px;
    border-radius: 4px;
    font-family: 'Consolas', 'Monaco', 'Courier New', monospace;
    font-size: 0.9em;
    color: #d73a49;
}

pre {
    background-color: #f8f8f8;
    border: 1px solid #e1e4e8;
    border-left: 4px solid #1976d2;
    border-radius: 6px;
    padding: 16px 20px;
    margin: 20px 0;
    overflow-x: auto;
    font-family: 'Consolas', 'Monaco', 'Courier New', monospace;
    font-size: 0.85em;
    line-height: 1.45;
}

pre code { background: none; padding: 0; border-radius: 0; color: #333; }

table { width: 100%; border-collapse: collapse; margin: 25px 0; }
th, td { border: 1px solid #ddd; padding: 8px 12px; text-align: left; }
th { background-color: #f2f2f2; font-weight: bold; }

blockquote {
    border-left: 4px solid #1976d2;
    margin: 25px 0;
    padding: 15px 25px;
    background-color: #f8f9fa;
    font-style: italic;
    color: #555;
}

.chunk-output pre {
    border-left-color: #388e3c;
    background-color: #fcfcfc;
}

.chunk-error pre { border-left-color: #c62828; }

figure { margin: 25px 0; text-align: center; }
figure img { max-width: 100%; }
figcaption { color: #666; font-style: italic; margin-top: 8px; }

.references p { padding-left: 2em; text-indent: -2em; }

.title-page { text-align: center; padding: 80px 0; }
.title-page h1 { font-size: 3em; border: none; }
.title-page .subtitle { font-size: 1.3em; color: #666; margin-bottom: 20px; font-style: italic; }
.title-page .authors { color: #444; margin-top: 30px; }
.title-page .date { margin-top: 20px; color: #888; }

.toc ul { list-style: none; padding-left: 0; }
.toc .part {
    font-weight: bold;
    color: #1976d2;
    margin: 20px 0 8px 0;
    padding: 6px 0;
    border-bottom: 1px solid #eee;
}
.toc .chapter { margin: 6px 0; padding-left: 15px; }
.toc .chapter a { color: #333; text-decoration: none; }
.toc .chapter.active a { color: #1976d2; font-weight: bold; }
"""

SITE_CSS = """
.book { display: flex; min-height: 100vh; }

.sidebar {
    width: 300px;
    flex-shrink: 0;
    background-color: #fafafa;
    border-right: 1px solid #e1e4e8;
    padding: 20px;
    font-family: 'Helvetica Neue', Arial, sans-serif;
    font-size: 0.9em;
}

.sidebar .book-title { font-weight: bold; font-size: 1.1em; margin-bottom: 20px; }
.sidebar .book-title a { color: #1976d2; text-decoration: none; }

.page { flex-grow: 1; max-width: 860px; margin: 0 auto; padding: 20px 40px 60px 40px; }

.nav-links {
    display: flex;
    justify-content: space-between;
    border-top: 1px solid #eee;
    margin-top: 50px;
    padding-top: 20px;
    font-family: 'Helvetica Neue', Arial, sans-serif;
}
.nav-links a { color: #1976d2; text-decoration: none; }

@media (max-width: 900px) {
    .book { display: block; }
    .sidebar { width: auto; border-right: none; border-bottom: 1px solid #e1e4e8; }
}
"""

PRINT_CSS = """
body { max-width: 800px; margin: 0 auto; padding: 20px; }

@media print {
    body { font-size: 12pt; margin: 0; padding: 0.5in; }
    .page-break { page-break-before: always; }
    .no-print { display: none; }
    h1, h2, h3 { page-break-after: avoid; }
    figure { page-break-inside: avoid; }
}

.title-page, .toc { page-break-after: always; }

.chapter-separator {
    height: 2px;
    background: linear-gradient(to right, #1976d2, transparent);
    margin: 50px 0;
    page-break-after: always;
}
"""

EPUB_CSS = """
body { margin: 1em; }
h1 { font-size: 2em; margin: 1.5em 0 1em 0; padding-bottom: 0.5em; }
pre { padding: 1em; margin: 1em 0; }
.title-page { padding: 2em 0; }
"""


def highlight_css():
    """Pygments rules for the ``codehilite`` blocks."""
    return HtmlFormatter(style=HIGHLIGHT_STYLE).get_style_defs(".codehilite")


def site_css():
    return BASE_CSS + SITE_CSS + highlight_css()


def print_css():
    return BASE_CSS + PRINT_CSS + highlight_css()


def epub_css():
    return BASE_CSS + EPUB_CSS + highlight_css()
