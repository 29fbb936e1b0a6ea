import pytest

from cloudproxy.exceptions import PortSpecError
from cloudproxy.ports import format_ports, parse_ports, split_contiguous

pytestmark = [pytest.mark.unit]


class TestParsePorts:
    def test_list_and_ranges(self):
        assert parse_ports("80, 22,1000-1002") == [22, 80, 1000, 1001, 1002]

    def test_overlaps_collapse(self):
        assert parse_ports("1-5,3-7") == [1, 2, 3, 4, 5, 6, 7]

    def test_open_ranges(self):
        assert parse_ports("-3") == [1, 2, 3]
        assert parse_ports("65534-") == [65534, 65535]

    @pytest.mark.parametrize("spec", ["", "http", "0", "65536", "10-5", "1-x", ","])
    def test_invalid(self, spec):
        with pytest.raises(PortSpecError):
            parse_ports(spec)


class TestFormatPorts:
    def test_collapses_runs(self):
        assert format_ports([22, 80, 81, 82, 443]) == "22,80-82,443"

    def test_empty(self):
        assert format_ports([]) == ""


class TestSplitContiguous:
    def test_even_split(self):
        assert split_contiguous("1-100", 4) == ["1-25", "26-50", "51-75", "76-100"]

    def test_earlier_buckets_take_remainder(self):
        assert split_contiguous("1-10", 3) == ["1-4", "5-7", "8-10"]

    def test_gaps_kept_inside_buckets(self):
        assert split_contiguous("22,80,443,8080", 2) == ["22,80", "443,8080"]

    def test_full_range(self):
        buckets = split_contiguous("1-65535", 50)
        assert len(buckets) == 50
        assert buckets[0].startswith("1-")
        assert buckets[-1].endswith("-65535")

    def test_more_buckets_than_ports(self):
        with pytest.raises(PortSpecError):
            split_contiguous("80,443", 3)

    def test_zero_buckets(self):
        with pytest.raises(PortSpecError):
            split_contiguous("1-100", 0)
