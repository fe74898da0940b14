# pylint: disable=missing-module-docstring,missing-function-docstring

from audio.frames import VisualizationFrame
from client.main import render_bars


def test_render_bars_one_glyph_per_bar():
    frame = VisualizationFrame(heights=(1.0, 0.0, 0.0, 1.0))

    line = render_bars(frame)

    assert len(line) == 4
    assert line[0] == line[3] == "█"
    assert line[1] == line[2]
    assert line[1] != "█"
