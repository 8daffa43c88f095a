import pytest

from plotbatch.manifest import (
    BatchEntry,
    ManifestError,
    parse_hex,
    parse_manifest,
    parse_manifest_lines,
)

PLOT_ID = bytes(range(32))
MEMO = bytes(range(100, 212))


def make_line(
    k=28,
    strength=2,
    plot_index=5,
    meta_group=1,
    testnet="0",
    plot_id=PLOT_ID.hex(),
    memo=MEMO.hex(),
    out_dir="/plots",
    out_name="a.plot2",
):
    return "\t".join(
        str(v)
        for v in (k, strength, plot_index, meta_group, testnet, plot_id, memo, out_dir, out_name)
    )


def test_parse_hex_round_trip():
    data = bytes(range(256))
    assert parse_hex(data.hex()) == data
    assert parse_hex(data.hex().upper()) == data


def test_parse_hex_empty():
    assert parse_hex("") == b""


@pytest.mark.parametrize("text", ["abc", "0g", "  ", "0x12"])
def test_parse_hex_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_hex(text)


def test_batch_entry_defaults():
    entry = BatchEntry()
    assert (entry.k, entry.strength) == (28, 2)
    assert entry.plot_id == bytes(32)
    assert entry.memo == b""


def test_parse_single_line():
    [entry] = parse_manifest_lines([make_line() + "\n"])
    assert entry == BatchEntry(
        k=28,
        strength=2,
        plot_index=5,
        meta_group=1,
        testnet=False,
        plot_id=PLOT_ID,
        memo=MEMO,
        out_dir="/plots",
        out_name="a.plot2",
    )


def test_comments_and_blank_lines_skipped():
    lines = ["# header\n", "\n", make_line(plot_index=1), "#x\n", make_line(plot_index=2)]
    entries = parse_manifest_lines(lines)
    assert [e.plot_index for e in entries] == [1, 2]


@pytest.mark.parametrize("word", ["1", "true", "True"])
def test_testnet_true_words(word):
    [entry] = parse_manifest_lines([make_line(testnet=word)])
    assert entry.testnet is True


@pytest.mark.parametrize("word", ["0", "false", "TRUE", "yes"])
def test_testnet_other_words_are_false(word):
    [entry] = parse_manifest_lines([make_line(testnet=word)])
    assert entry.testnet is False


def test_empty_memo_hex_is_rejected_as_field_missing():
    # An empty memo cannot be written as a token, so the line is short.
    with pytest.raises(ManifestError, match="expected 9"):
        parse_manifest_lines([make_line(memo="")])


def test_extra_fields_ignored():
    [entry] = parse_manifest_lines([make_line() + " extra more"])
    assert entry.out_name == "a.plot2"


def test_too_few_fields():
    with pytest.raises(ManifestError, match="manifest line 1: expected 9"):
        parse_manifest_lines(["28 2 0 0 1"])


def test_non_integer_field():
    with pytest.raises(ManifestError, match="expected 9"):
        parse_manifest_lines([make_line(k="big")])


def test_whitespace_only_line_is_an_error():
    with pytest.raises(ManifestError):
        parse_manifest_lines(["   \n"])


def test_plot_id_wrong_length():
    with pytest.raises(ManifestError, match="plot_id must be 64 hex chars"):
        parse_manifest_lines([make_line(plot_id=bytes(31).hex())])


def test_plot_id_bad_hex():
    with pytest.raises(ManifestError, match="plot_id"):
        parse_manifest_lines([make_line(plot_id="zz" * 32)])


def test_memo_too_long():
    with pytest.raises(ManifestError, match="memo invalid hex or > 255 bytes"):
        parse_manifest_lines([make_line(memo=bytes(256).hex())])


def test_memo_at_limit_accepted():
    [entry] = parse_manifest_lines([make_line(memo=bytes(255).hex())])
    assert entry.memo == bytes(255)


def test_memo_odd_hex():
    with pytest.raises(ManifestError, match="memo"):
        parse_manifest_lines([make_line(memo="abc")])


def test_error_reports_line_number():
    lines = ["# c\n", make_line(), make_line(plot_id="00")]
    with pytest.raises(ManifestError, match="manifest line 3:"):
        parse_manifest_lines(lines)


def test_parse_manifest_file(tmp_path):
    path = tmp_path / "batch.txt"
    path.write_text("# plots\n" + make_line(plot_index=3) + "\n" + make_line(plot_index=4) + "\n")
    entries = parse_manifest(path)
    assert [e.plot_index for e in entries] == [3, 4]
    assert all(e.plot_id == PLOT_ID for e in entries)


def test_parse_manifest_missing_file(tmp_path):
    missing = tmp_path / "nope.txt"
    with pytest.raises(ManifestError, match="cannot open manifest"):
        parse_manifest(missing)


def test_manifest_error_is_value_error():
    with pytest.raises(ValueError):
        parse_manifest_lines(["bad"])