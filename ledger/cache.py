from django.core.cache import cache


def _version_key(tenant_id):
    return f"reports:version:{tenant_id}"


def report_cache_key(tenant_id, name, full_path):
    """Cache key for one report payload; bumping the tenant version orphans all of them."""
    version = cache.get(_version_key(tenant_id), 0)
    return f"reports:{tenant_id}:{version}:{name}:{full_path}"


def invalidate_tenant_reports(tenant_id):
    key = _version_key(tenant_id)
    if not cache.add(key, 1, timeout=None):
        try:
            cache.incr(key)
        except ValueError:
            cache.set(key, 1, timeout=None)
