"""Tests for relpipe.output.console module."""

from __future__ import annotations

from relpipe.output.console import ConsoleProtocol, MockConsole, RichConsole, Style


class TestMockConsole:
    def test_prefixes(self) -> None:
        console = MockConsole()
        console.success("done")
        console.error("bad")
        console.warning("careful")
        console.info("fyi")
        console.header("code-testing")

        assert console.messages == [
            "OK done",
            "error: bad",
            "warning: careful",
            "info: fyi",
            "code-testing",
        ]

    def test_helpers(self) -> None:
        console = MockConsole()
        console.print("[1/6] authenticate dev hub", Style.DIM)
        console.print("[2/6] create environment", Style.DIM)
        console.error("boom")

        assert console.has_error()
        assert not console.has_warning()
        assert console.count(Style.DIM) == 2
        assert len(console.find("environment")) == 1
        assert "boom" in console.text

    def test_satisfies_protocol(self) -> None:
        console: ConsoleProtocol = MockConsole()
        console.newline()


def test_style_str() -> None:
    assert str(Style.HEADER) == "header"


def test_rich_console_does_not_interpret_markup(capsys) -> None:
    console = RichConsole()
    console.print("[bold]literal[/bold]")
    console.error("[red]x[/red]")

    out = capsys.readouterr().out
    assert "[bold]literal[/bold]" in out
    assert "error: [red]x[/red]" in out
