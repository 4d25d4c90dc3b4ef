from mcp_server_notebook.document import Cell, CellKind, CellOutput, OutputItem
from mcp_server_notebook.formatting import format_cell, format_output_item


def test_short_text_output_shown_in_full():
    item = OutputItem("text/plain", b"hello")
    assert format_output_item(1, item, 100) == "1. Text with MIME: text/plain\n\n```\nhello\n```\n\n"


def test_long_text_output_truncated():
    item = OutputItem("application/vnd.code.notebook.stdout", b"a" * 150)
    text = format_output_item(2, item, 100)
    assert text.startswith("2. Truncated text with MIME: application/vnd.code.notebook.stdout, full length: 150 characters")
    assert "a" * 97 + "..." in text
    assert "a" * 98 not in text


def test_binary_output_summarised():
    item = OutputItem("image/png", b"\x89PNG" + b"\x00" * 60)
    assert format_output_item(1, item, 100) == "1. (Not shown) 64 bytes with MIME: image/png\n\n"


def test_code_cell_with_outputs():
    cell = Cell(
        index=3,
        kind=CellKind.CODE,
        content="print(1)",
        language="python",
        execution_order=4,
        outputs=[CellOutput([OutputItem("application/vnd.code.notebook.stdout", b"1\n")])],
    )
    text = format_cell(cell, 2000)
    assert text.startswith("## Cell 3 (code:python)\n\n### In [4]:\n\n```python\nprint(1)\n```\n\n### Out [4]:\n\n")
    assert "#### Output with 1 items" in text


def test_markdown_cell_has_no_execution_sections():
    cell = Cell(index=0, kind=CellKind.MARKUP, content="# Hi", language="markdown")
    assert format_cell(cell, 2000) == "## Cell 0 (markdown)\n\n```markdown\n# Hi\n```\n\n"
