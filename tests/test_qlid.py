import pytest

from refurbline.core.errors import InvalidIdentifierFormat
from refurbline.services import qlid


class TestEncode:
    def test_first_ticks_have_no_series(self):
        assert qlid.tick_to_qlid(0) == "QLID0000000000"
        assert qlid.tick_to_qlid(1) == "QLID0000000001"
        assert qlid.tick_to_qlid(9_999_999_999) == "QLID9999999999"

    def test_series_rolls_over_after_ten_digits(self):
        assert qlid.tick_to_qlid(10 ** 10) == "QLIDA0000000000"
        assert qlid.tick_to_qlid(26 * 10 ** 10 + 7) == "QLIDZ0000000007"
        assert qlid.tick_to_qlid(27 * 10 ** 10 + 5) == "QLIDAA0000000005"

    def test_negative_tick_rejected(self):
        with pytest.raises(ValueError):
            qlid.tick_to_qlid(-1)

    @pytest.mark.parametrize("tick", [0, 1, 42, 10 ** 10 - 1, 10 ** 10, 702 * 10 ** 10 + 3, 703 * 10 ** 10])
    def test_decode_inverts_encode(self, tick):
        assert qlid.qlid_to_tick(qlid.tick_to_qlid(tick)) == tick

    def test_series_letters_are_bijective(self):
        assert qlid.index_to_series(0) == ""
        assert qlid.index_to_series(26) == "Z"
        assert qlid.index_to_series(27) == "AA"
        assert qlid.index_to_series(702) == "ZZ"
        assert qlid.index_to_series(703) == "AAA"
        assert qlid.series_to_index("AAA") == 703


class TestValidation:
    @pytest.mark.parametrize("value", [
        "QLID0000000001",
        "QLIDA0000000000",
        "QLIDABC1234567890",
    ])
    def test_valid(self, value):
        assert qlid.is_valid_qlid(value)

    @pytest.mark.parametrize("value", [
        "",
        "QLID",
        "QLID123",
        "QLID00000000001",  # 11 digits
        "qlid0000000001",  # format check is case-sensitive
        "QLID0000000001\n",
        "XQLID0000000001",
        "QLID1A000000000",
        "QLID٠١٢٣٤٥٦٧٨٩",  # non-ASCII digits
        None,
        1234,
    ])
    def test_invalid(self, value):
        assert not qlid.is_valid_qlid(value)

    def test_decode_rejects_malformed(self):
        with pytest.raises(InvalidIdentifierFormat):
            qlid.qlid_to_tick("QLID12")


class TestScanPayload:
    def test_bare_identifier(self):
        result = qlid.parse_scan("QLID0000000042")
        assert result.qlid == "QLID0000000042"
        assert result.tick == 42
        assert result.container_id is None
        assert result.series == ""

    def test_container_payload(self):
        result = qlid.parse_scan("P1BBY-QLID0000000001")
        assert result.qlid == "QLID0000000001"
        assert result.tick == 1
        assert result.container_id == "P1BBY"

    def test_container_with_hyphens_splits_on_last_marker(self):
        result = qlid.parse_scan("DOCK-7-P1-QLIDB0000000009")
        assert result.container_id == "DOCK-7-P1"
        assert result.tick == 2 * 10 ** 10 + 9
        assert result.series == "B"

    def test_whitespace_and_case_are_normalized(self):
        result = qlid.parse_scan("  p1bby-qlid0000000001 \n")
        assert result.qlid == "QLID0000000001"
        assert result.container_id == "p1bby"

    @pytest.mark.parametrize("payload", [
        "",
        "   ",
        "-QLID0000000001",
        "P1BBY-",
        "P1BBY-QLID123",
        "P1BBY_QLID0000000001",
        "P1BBY-QLID0000000001-X",
    ])
    def test_rejects_malformed(self, payload):
        with pytest.raises(InvalidIdentifierFormat):
            qlid.parse_scan(payload)

    def test_format_then_parse_keeps_container(self):
        payload = qlid.format_scan_payload("QLID0000000007", "PALLET-9")
        assert payload == "PALLET-9-QLID0000000007"
        assert qlid.parse_scan(payload).container_id == "PALLET-9"

    def test_format_without_container_is_bare(self):
        assert qlid.format_scan_payload("QLID0000000007") == "QLID0000000007"

    def test_parse_returns_tick(self):
        assert qlid.parse("P1-QLIDA0000000001") == 10 ** 10 + 1
