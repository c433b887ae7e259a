from phyloplace.util.progress_display import (
    NULL_CONTEXT,
    LogFileOutput,
    ProgressContext,
    display_wrap,
)


@display_wrap
def _count(items, ui=None):
    return [item for item in ui.series(items, noun="item")], ui


def test_display_wrap_injects_context():
    got, ui = _count([1, 2, 3])
    assert got == [1, 2, 3]
    assert isinstance(ui, ProgressContext)


def test_display_wrap_show_progress_false():
    got, ui = _count(range(2), show_progress=False)
    assert got == [0, 1]
    assert ui is NULL_CONTEXT


def test_series_empty():
    assert list(NULL_CONTEXT.series([])) == []


def test_series_generator_count():
    items = (i for i in range(4))
    assert list(NULL_CONTEXT.series(items, count=4)) == [0, 1, 2, 3]


def test_log_file_output(capsys):
    context = ProgressContext(LogFileOutput)
    assert list(context.series(["a", "b", "c"], noun="query")) == ["a", "b", "c"]
    context.done()
    out = capsys.readouterr().out
    assert "query 1/3" in out
    assert "query 3/3" in out


def test_subcontext_depth():
    context = ProgressContext(LogFileOutput, depth=0)
    assert context.subcontext().depth == 1
    assert NULL_CONTEXT.subcontext() is NULL_CONTEXT
