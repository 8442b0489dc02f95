import io

import pytest

from clipme.errors import ClipError, ParseFailure
from clipme.progress import (
    ProgressAggregator,
    ProgressRecord,
    iter_lines,
    parse_ffmpeg_line,
    parse_template_line,
)


def test_parse_template_line() -> None:
    record = parse_template_line("PROGRESS|45.0%| 1.2MiB/s|00:10|10MiB")
    assert record is not None
    assert record.percent == 45.0
    assert record.rate == "1.2MiB/s"
    assert record.eta == "00:10"
    assert record.downloaded == "45%"
    assert record.total == "10MiB"


def test_parse_template_line_is_repeatable() -> None:
    line = "PROGRESS| 12.5%|900.00KiB/s|00:42|~ 20.00MiB"
    first = parse_template_line(line, job_id=1)
    second = parse_template_line(line, job_id=2)
    assert first is not None and second is not None
    assert first.downloaded == "12.5%"
    assert first.job_id == 1
    assert second.job_id == 2
    assert first == ProgressRecord(
        percent=second.percent,
        rate=second.rate,
        eta=second.eta,
        downloaded=second.downloaded,
        total=second.total,
        job_id=1,
    )


def test_parse_template_line_placeholders() -> None:
    record = parse_template_line("PROGRESS|  0.0%|NA|NA|NA")
    assert record is not None
    assert record.rate == "Calculating..."
    assert record.eta == "--:--"
    assert record.total == "NA"


def test_parse_template_line_bad_percent_defaults_to_zero() -> None:
    record = parse_template_line("PROGRESS|garbled|1KiB/s|00:01|1MiB")
    assert record is not None
    assert record.percent == 0.0


@pytest.mark.parametrize(
    "line",
    [
        "[download] Destination: clip.mp4",
        "PROGRESS|45.0%|1MiB/s",
        "",
        "progress|45.0%|1MiB/s|00:10|10MiB",
    ],
)
def test_parse_template_line_ignores_other_lines(line: str) -> None:
    assert parse_template_line(line) is None


def test_parse_ffmpeg_line() -> None:
    record = parse_ffmpeg_line("frame=10 time=00:01:05.00 bitrate=512kbits/s", 130)
    assert record is not None
    assert record.percent == 50.0
    assert record.rate == "512kbits/s"
    assert record.downloaded == "65.0s"
    assert record.total == "130.0s"


def test_parse_ffmpeg_line_clamps_percent() -> None:
    record = parse_ffmpeg_line("size=1kB time=00:00:20.00 bitrate=1.0kbits/s", 10)
    assert record is not None
    assert record.percent == 100.0


@pytest.mark.parametrize(
    ("line", "duration"),
    [
        ("frame=10 bitrate=512kbits/s", 130),
        ("frame=10 time=N/A bitrate=N/A", 130),
        ("frame=10 time=00:01:05.00 bitrate=512kbits/s", 0),
        ("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mp4':", 130),
    ],
)
def test_parse_ffmpeg_line_without_record(line: str, duration: float) -> None:
    assert parse_ffmpeg_line(line, duration) is None


def test_iter_lines_splits_on_cr_and_lf() -> None:
    stream = io.BytesIO(b"first\r\nsecond\rthird\n\n\r  \nfourth")
    assert list(iter_lines(stream)) == ["first", "second", "third", "fourth"]


def test_iter_lines_flushes_unterminated_tail() -> None:
    stream = io.BytesIO(b"frame=1 time=00:00:05.00 bitrate=100kbits/s")
    lines = list(iter_lines(stream))
    assert len(lines) == 1
    records = [parse_ffmpeg_line(line, 10) for line in lines]
    assert [record.percent for record in records if record is not None] == [50.0]


def test_iter_lines_replaces_invalid_utf8() -> None:
    stream = io.BytesIO(b"bad \xff byte\n")
    assert list(iter_lines(stream)) == ["bad \ufffd byte"]


def _record(percent: float) -> ProgressRecord:
    return ProgressRecord(percent=percent, rate="r", eta="e", downloaded="d", total="t")


def test_aggregator_single_phase_passes_through() -> None:
    seen: list[ProgressRecord] = []
    aggregator = ProgressAggregator(7, 1, seen.append)
    aggregator.report(_record(42.0), 1)
    aggregator.mark_phase_done(1)
    assert [record.percent for record in seen] == [42.0, 100.0]
    assert {record.job_id for record in seen} == {7}


def test_aggregator_two_phase_boundaries() -> None:
    seen: list[ProgressRecord] = []
    aggregator = ProgressAggregator(3, 2, seen.append)
    aggregator.report(_record(60.0), 1)
    aggregator.report(_record(97.0), 1)
    aggregator.mark_phase_done(1)
    aggregator.report(_record(40.0), 2)
    aggregator.report(_record(99.0), 2)
    aggregator.mark_phase_done(2)
    assert [record.percent for record in seen] == [30.0, 48.5, 50.0, 70.0, 99.5, 100.0]


def test_aggregator_never_reports_backwards() -> None:
    seen: list[ProgressRecord] = []
    aggregator = ProgressAggregator(1, 1, seen.append)
    aggregator.report(_record(80.0), 1)
    aggregator.report(_record(10.0), 1)
    assert [record.percent for record in seen] == [80.0, 80.0]
    assert aggregator.percent == 80.0


def test_aggregator_drops_records_after_phase_marker() -> None:
    seen: list[ProgressRecord] = []
    aggregator = ProgressAggregator(3, 2, seen.append)
    aggregator.report(_record(40.0), 1)
    aggregator.mark_phase_done(1)
    aggregator.report(_record(99.0), 1)
    aggregator.report(_record(20.0), 2)
    aggregator.mark_phase_done(2)
    aggregator.report(_record(80.0), 2)
    assert [(record.percent, record.rate) for record in seen] == [
        (20.0, "r"),
        (50.0, "Encoding"),
        (60.0, "r"),
        (100.0, "Done"),
    ]


def test_aggregator_callback_may_read_percent() -> None:
    readings: list[float] = []
    aggregators: list[ProgressAggregator] = []

    def on_progress(record: ProgressRecord) -> None:
        readings.append(aggregators[0].percent)

    aggregator = ProgressAggregator(1, 1, on_progress)
    aggregators.append(aggregator)
    aggregator.report(_record(30.0), 1)
    aggregator.mark_phase_done(1)
    assert readings == [30.0, 100.0]


def test_parse_ffmpeg_line_ignores_negative_start_time() -> None:
    line = "frame=0 size=0kB time=-00:00:01.20 bitrate=N/A speed=N/A"
    assert parse_ffmpeg_line(line, 10) is None


def test_parsers_return_none_instead_of_parse_failure() -> None:
    assert issubclass(ParseFailure, ClipError)
    assert parse_template_line("PROGRESS|") is None
    assert parse_ffmpeg_line("time=garbage bitrate=1kbits/s", 10) is None


def test_aggregator_start_emits_zero() -> None:
    seen: list[ProgressRecord] = []
    ProgressAggregator(1, 1, seen.append).start("Processing", "Starting")
    assert seen[0].percent == 0.0
    assert seen[0].rate == "Processing"


def test_aggregator_rejects_phase_count() -> None:
    with pytest.raises(ValueError):
        ProgressAggregator(1, 3)
