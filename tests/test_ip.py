from tapstack.checksum import icmp_checksum, ip_checksum
from tapstack.icmp import ICMP_FRAG_NEEDED, IcmpHeader, IcmpType, build_echo_request
from tapstack.ipfrag import Reassembler
from tapstack.packet import (
    ETH_HEADER_LEN,
    IP_FRAG_DF,
    EthernetHeader,
    EtherType,
    IPv4Header,
    PacketPool,
)
from tapstack.stack import FAKE_GATEWAY, NetStack

GW_MAC = b"\x02\x00\x00\x00\x00\x99"
REMOTE = 0x08080808


def frame(stack, src, dst, payload, proto=1, ttl=64, frag_off=0):
    h = IPv4Header(total_length=20 + len(payload), ident=3, ttl=ttl, proto=proto,
                   frag_off=frag_off, src=src, dst=dst)
    h.checksum = ip_checksum(h.pack())
    eth = EthernetHeader(stack.veth.hwaddr, GW_MAC, EtherType.IP).pack()
    return eth + h.pack() + payload


def resolved_stack(**kw):
    stack = NetStack(**kw)
    stack.arp_cache.insert(stack.veth, EtherType.IP, FAKE_GATEWAY, GW_MAC)
    return stack


def parse(out):
    ip = IPv4Header.parse(out[ETH_HEADER_LEN:])
    return ip, out[ETH_HEADER_LEN + 20:ETH_HEADER_LEN + ip.total_length]


def test_echo_request_answered():
    stack = resolved_stack()
    req = build_echo_request(5, 1, 16)
    stack.veth_receive(frame(stack, FAKE_GATEWAY, stack.veth.ipaddr, req))
    assert len(stack.veth.outbox) == 1
    out = stack.veth.outbox[0]
    ip, body = parse(out)
    assert ip.dst == FAKE_GATEWAY
    assert ip.src == stack.veth.ipaddr
    assert ip_checksum(out[ETH_HEADER_LEN:ETH_HEADER_LEN + 20]) == 0
    assert icmp_checksum(body) == 0
    assert IcmpHeader.parse(body).type == IcmpType.ECHORLY
    assert EthernetHeader.parse(out).dst == GW_MAC
    assert stack.pool.in_use() == 0


def test_bad_checksum_dropped():
    stack = resolved_stack()
    data = bytearray(frame(stack, FAKE_GATEWAY, stack.veth.ipaddr, build_echo_request(1, 1, 8)))
    data[ETH_HEADER_LEN + 8] ^= 0xFF
    stack.veth_receive(bytes(data))
    assert not stack.veth.outbox
    assert stack.pool.in_use() == 0


def test_ttl_expired_on_forward():
    stack = resolved_stack()
    stack.veth_receive(frame(stack, FAKE_GATEWAY, REMOTE, b"x" * 32, proto=17, ttl=1))
    assert len(stack.veth.outbox) == 1
    ip, body = parse(stack.veth.outbox[0])
    assert ip.dst == FAKE_GATEWAY
    assert IcmpHeader.parse(body).type == IcmpType.TIMEEXCEED
    assert stack.pool.in_use() == 0


def test_forward_decrements_ttl_and_redirects():
    stack = resolved_stack()
    stack.veth_receive(frame(stack, FAKE_GATEWAY, REMOTE, b"y" * 32, proto=17, ttl=10))
    parsed = [parse(f) for f in stack.veth.outbox]
    forwarded = [ip for ip, _ in parsed if ip.dst == REMOTE]
    assert len(forwarded) == 1
    assert forwarded[0].ttl == 9
    icmps = [IcmpHeader.parse(b).type for ip, b in parsed if ip.proto == 1]
    assert IcmpType.REDIRECT in icmps


def test_forwarding_disabled_drops():
    stack = resolved_stack(forwarding=False)
    stack.veth_receive(frame(stack, FAKE_GATEWAY, REMOTE, b"z" * 32, proto=17, ttl=10))
    assert not stack.veth.outbox
    assert stack.pool.in_use() == 0


def test_df_too_big_reports_frag_needed():
    stack = resolved_stack()
    stack.veth.mtu = 576
    stack.veth_receive(frame(stack, FAKE_GATEWAY, REMOTE, b"q" * 1000, proto=17,
                             ttl=10, frag_off=IP_FRAG_DF))
    errors = [IcmpHeader.parse(b) for ip, b in map(parse, stack.veth.outbox) if ip.proto == 1]
    assert any(e.type == IcmpType.DESTUNREACH and e.code == ICMP_FRAG_NEEDED for e in errors)
    assert all(ip.dst != REMOTE for ip, _ in map(parse, stack.veth.outbox))


def test_send_info_fragments_large_packet():
    stack = resolved_stack()
    stack.veth.mtu = 576
    payload = bytes(range(200)) * 5
    pkb = stack.pool.allocate(ETH_HEADER_LEN + 20 + len(payload))
    pkb.data[ETH_HEADER_LEN + 20:] = payload
    stack.ip.send_info(pkb, 0, 20 + len(payload), 64, 17, FAKE_GATEWAY)
    assert len(stack.veth.outbox) > 1
    assert stack.pool.in_use() == 0
    pool = PacketPool()
    r = Reassembler(pool)
    result = None
    for out in stack.veth.outbox:
        p = pool.allocate(len(out))
        p.data[:] = out
        result = r.reassemble(p)
    assert bytes(result.data[ETH_HEADER_LEN + 20:]) == payload
    assert IPv4Header.parse(result.data[ETH_HEADER_LEN:]).proto == 17