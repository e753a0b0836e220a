import logging

from sync_common.uvicorn import EndpointFilter


def _record(*args):
    return logging.LogRecord("uvicorn.access", logging.INFO, __file__, 1, '%s - "%s %s HTTP/%s" %d', args, None)


def test_filters_health_check():
    f = EndpointFilter("/api/", 200)
    assert not f.filter(_record("127.0.0.1", "GET", "/api/", "1.1", 200))


def test_keeps_other_paths_and_failures():
    f = EndpointFilter("/api/", 200)
    assert f.filter(_record("127.0.0.1", "POST", "/api/sync/progress", "1.1", 200))
    assert f.filter(_record("127.0.0.1", "GET", "/api/", "1.1", 500))


def test_ignores_query_string():
    f = EndpointFilter("/api/sync/all", 200)
    assert not f.filter(_record("127.0.0.1", "GET", "/api/sync/all?userId=u&limit=20", "1.1", 200))
