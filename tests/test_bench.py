from __future__ import annotations

import curses

import pytest

from bounce_bench import FakeWindow, main, run_benchmark


def test_fake_window_bottom_right_raises_after_write():
    win = FakeWindow(3, 4)
    with pytest.raises(curses.error):
        win.addstr(2, 3, "x")
    assert win.calls == [(2, 3, "x", 0)]


def test_fake_window_rejects_off_screen():
    win = FakeWindow(3, 4)
    with pytest.raises(curses.error):
        win.addstr(5, 0, "x")
    with pytest.raises(curses.error):
        win.addstr(0, 2, "xyz")


def test_line_timing_report(capsys):
    run_benchmark(50, term_rows=20, term_cols=40, line_timing=True)
    out = capsys.readouterr().out
    assert "Per-Frame Component Breakdown" in out
    for name in ("tick", "render", "blit", "TOTAL"):
        assert name in out


def test_profile_report(capsys, tmp_path):
    dump = tmp_path / "prof.out"
    main(["-n", "30", "--rows", "15", "--cols", "30", "--dump", str(dump)])
    out = capsys.readouterr().out
    assert "Effective FPS" in out
    assert dump.exists()
