import pytest

from tapstack.addr import ip_str, mac_str, parse_ip_port, str2ip


@pytest.mark.parametrize(
    "text", ["10.0.0.1", "127.0.0.1", "0.0.0.0", "255.255.255.255", "192.168.1.7"]
)
def test_round_trip(text):
    assert ip_str(str2ip(text)) == text


def test_trailing_text_is_ignored():
    assert str2ip("10.0.0.2abc") == str2ip("10.0.0.2")


def test_natural_ordering():
    assert str2ip("1.0.0.0") > str2ip("0.255.255.255")


@pytest.mark.parametrize("text", ["256.0.0.1", "1.2.3", "abc", "", "1.2.3.999"])
def test_bad_addresses(text):
    with pytest.raises(ValueError):
        str2ip(text)


def test_parse_ip_port():
    assert parse_ip_port("10.0.0.2:12345") == (str2ip("10.0.0.2"), 12345)
    assert parse_ip_port("0.0.0.0:1234") == (0, 1234)


def test_parse_ip_port_without_port():
    assert parse_ip_port("10.0.0.2") == (str2ip("10.0.0.2"), 0)


def test_parse_ip_port_garbage_port_is_zero():
    assert parse_ip_port("10.0.0.2:xyz") == (str2ip("10.0.0.2"), 0)


def test_parse_ip_port_bad_address():
    with pytest.raises(ValueError):
        parse_ip_port("300.0.0.1:80")


def test_ip_str_out_of_range():
    with pytest.raises(ValueError):
        ip_str(-1)
    with pytest.raises(ValueError):
        ip_str(1 << 32)


def test_mac_str():
    assert mac_str(b"\xff" * 6) == "ff:ff:ff:ff:ff:ff"
    assert mac_str(bytes([0x02, 0, 0, 0, 0, 0x0A])) == "02:00:00:00:00:0a"


def test_mac_str_wrong_length():
    with pytest.raises(ValueError):
        mac_str(b"\x00" * 5)