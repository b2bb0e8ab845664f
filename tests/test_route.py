import pytest

from tapstack.addr import str2ip
from tapstack.netdev import LoopbackDevice, NetDevice
from tapstack.route import Route, RouteFlag, RoutingTable


@pytest.fixture
def veth():
    return NetDevice("veth", 1500, str2ip("10.0.0.1"), str2ip("255.255.255.0"),
                     bytes.fromhex("020000000001"))


@pytest.fixture
def loop():
    return LoopbackDevice(lambda dev, pkb: None)


@pytest.fixture
def table(loop, veth):
    rt = RoutingTable()
    rt.install_defaults(loop, veth, str2ip("10.0.0.254"))
    return rt


def test_routes_sorted_by_netmask(veth):
    rt = RoutingTable()
    rt.add(0, 0, 0, 0, RouteFlag.DEFAULT, veth)
    rt.add(str2ip("10.0.0.0"), str2ip("255.255.255.0"), 0, 0, RouteFlag.NONE, veth)
    rt.add(str2ip("10.0.0.0"), str2ip("255.0.0.0"), 0, 0, RouteFlag.NONE, veth)
    masks = [r.netmask for r in rt]
    assert masks == sorted(masks, reverse=True)
    assert len(rt) == 3


def test_equal_mask_goes_first(veth):
    rt = RoutingTable()
    first = rt.add(str2ip("10.0.0.0"), str2ip("255.0.0.0"), 0, 0, RouteFlag.NONE, veth)
    second = rt.add(str2ip("11.0.0.0"), str2ip("255.0.0.0"), 0, 0, RouteFlag.NONE, veth)
    assert list(rt) == [second, first]


def test_lookup_longest_prefix(table, loop, veth):
    local = table.lookup(str2ip("10.0.0.1"))
    assert local.flags == RouteFlag.LOCALHOST and local.dev is loop
    neighbour = table.lookup(str2ip("10.0.0.7"))
    assert neighbour.dev is veth and neighbour.flags == RouteFlag.NONE
    remote = table.lookup(str2ip("192.168.1.1"))
    assert remote.flags == RouteFlag.DEFAULT
    assert remote.gateway == str2ip("10.0.0.254")
    assert table.lookup(str2ip("127.0.0.1")).dev is loop


def test_lookup_without_match(veth):
    rt = RoutingTable()
    rt.add(str2ip("10.0.0.0"), str2ip("255.255.255.0"), 0, 0, RouteFlag.NONE, veth)
    assert rt.lookup(str2ip("192.168.0.1")) is None


def test_next_hop(veth):
    dst = str2ip("10.0.0.7")
    gw = str2ip("10.0.0.254")
    direct = Route(str2ip("10.0.0.0"), str2ip("255.255.255.0"), 0, 0, RouteFlag.NONE, veth)
    assert direct.next_hop(dst) == dst
    default = Route(0, 0, gw, 0, RouteFlag.DEFAULT, veth)
    assert default.next_hop(dst) == gw
    remote = Route(str2ip("172.16.0.0"), str2ip("255.255.0.0"), gw, 1, RouteFlag.NONE, veth)
    assert remote.next_hop(dst) == gw


def test_format_table(table):
    lines = table.format_table().splitlines()
    assert lines[0] == "Destination     Gateway         Genmask         Metric Iface"
    assert len(lines) == 3
    assert lines[1].split() == ["10.0.0.0", "*", "255.255.255.0", "0", "veth"]
    assert lines[2].startswith("default         ")
    assert lines[2].split() == ["default", "10.0.0.254", "0.0.0.0", "0", "veth"]


def test_format_empty_table():
    assert RoutingTable().format_table() == ""