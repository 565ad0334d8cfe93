import httpx
import pytest

from hoptrace.errors import RedirectLimitExceeded
from hoptrace.models import Timing
from hoptrace.redirects import RedirectCollector
from hoptrace.tracelog import TraceLog
from hoptrace.tracker import PhaseTracker


def _collector(clock, max_redirects: int = 5) -> RedirectCollector:
    log = TraceLog(clock=clock)

    def factory(timing: Timing, idle_since):
        return PhaseTracker(timing, log, idle_since=idle_since, clock=clock, nameservers=lambda: [])

    return RedirectCollector(max_redirects, log, factory, clock=clock)


def _redirect(request: httpx.Request, location: str, status: int = 301) -> tuple[httpx.Response, httpx.Request]:
    response = httpx.Response(status, headers={"Location": location}, request=request)
    return response, httpx.Request("GET", location, extensions=request.extensions)


def test_start_binds_first_hop_to_request(clock) -> None:
    collector = _collector(clock)
    request = httpx.Request("GET", "http://a.test/")

    hop = collector.start(request)

    assert request.extensions["trace"] is hop.tracker
    assert hop.tracker.timing is hop.timing
    assert hop.start == clock.now
    assert collector.redirects == []


def test_redirect_snapshots_hop_and_installs_fresh_tracker(clock) -> None:
    collector = _collector(clock)
    first = httpx.Request("GET", "http://a.test/")
    hop = collector.start(first)
    hop.tracker.got_conn(reused=False)
    hop.timing.dns_lookup = 4_000_000
    clock.advance_ms(25)

    response, second = _redirect(first, "http://b.test/")
    collector.check_redirect(second, [first], response)

    assert len(collector.redirects) == 1
    info = collector.redirects[0]
    assert info.url == "http://a.test/"
    assert info.status_code == 301
    assert info.status == "301 Moved Permanently"
    assert info.elapsed == 25_000_000
    assert info.timing.dns_lookup == 4_000_000
    assert [m.text for m in info.trace_messages] == [
        "Got connection: reused=false, was_idle=false, idle_time=0.00ms"
    ]

    assert collector.hop is not hop
    assert second.extensions["trace"] is collector.hop.tracker
    assert first.extensions["trace"] is hop.tracker
    assert collector.hop.timing.dns_lookup == 0


def test_snapshot_is_not_affected_by_later_hops(clock) -> None:
    collector = _collector(clock)
    first = httpx.Request("GET", "http://a.test/")
    hop = collector.start(first)
    response, second = _redirect(first, "http://a.test/next")

    collector.check_redirect(second, [first], response)
    hop.timing.server_processing = 99

    assert collector.redirects[0].timing.server_processing == 0


def test_limit_one_with_chain_of_three_keeps_one_entry(clock) -> None:
    collector = _collector(clock, max_redirects=1)
    first = httpx.Request("GET", "http://a.test/1")
    collector.start(first)
    response, second = _redirect(first, "http://a.test/2")

    with pytest.raises(RedirectLimitExceeded) as excinfo:
        collector.check_redirect(second, [first], response)

    assert len(collector.redirects) == 1
    assert str(excinfo.value) == "stopped after 1 redirects (max: 1)"


def test_redirects_below_limit_are_collected_in_order(clock) -> None:
    collector = _collector(clock, max_redirects=3)
    request = httpx.Request("GET", "http://a.test/0")
    collector.start(request)
    via = [request]

    for index in range(1, 3):
        response, request = _redirect(via[-1], f"http://a.test/{index}", status=302)
        collector.check_redirect(request, via, response)
        via.append(request)

    assert [r.url for r in collector.redirects] == ["http://a.test/0", "http://a.test/1"]

    response, request = _redirect(via[-1], "http://a.test/3", status=302)
    with pytest.raises(RedirectLimitExceeded):
        collector.check_redirect(request, via, response)


def test_first_invocation_without_response_only_checks_limit(clock) -> None:
    collector = _collector(clock, max_redirects=2)
    request = httpx.Request("GET", "http://a.test/")
    hop = collector.start(request)

    collector.check_redirect(request, [], None)

    assert collector.redirects == []
    assert collector.hop is hop
    with pytest.raises(RedirectLimitExceeded):
        collector.check_redirect(request, [request, request], None)


def test_next_hop_measures_idle_time_from_redirect(clock) -> None:
    collector = _collector(clock)
    first = httpx.Request("GET", "http://a.test/")
    collector.start(first)
    response, second = _redirect(first, "http://a.test/b")
    collector.check_redirect(second, [first], response)
    clock.advance_ms(3)

    collector.hop.tracker.got_conn(reused=True, was_idle=True, idle_time=clock() - collector.redirects[0].end_time)

    assert collector.log.hop_entries[-1].text == "Got connection: reused=true, was_idle=true, idle_time=3.00ms"
